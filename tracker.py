"""Simulation clock, tracked-object registry and per-tick propagation.

Everything in this module runs on the host loop's thread.  The fetch worker
never touches the registry; its results are applied here when the host
calls :meth:`Tracker.drain_results` (done automatically by :meth:`tick`).

Per tick
--------
1. Advance the simulation clock by elapsed real time × time scale.
2. Apply any fetch results that arrived since the previous tick.
3. Compute GMST once for the clock instant.
4. For every object with an element record and a propagator: minutes since
   epoch → TEME position → ECEF.  A failure for one object leaves its
   previous position in place and does not affect the others.
"""

from __future__ import annotations

import colorsys
import logging
import math
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum

import numpy as np

from propagator import PropagationError, PropagatorFactory, build_propagator
from sidereal import as_utc, eci_to_ecef, gmst_rad, minutes_since_epoch
from tle_fetcher import (
    FetchFailure,
    FetchPipeline,
    FetchResult,
    FetchSuccess,
    GroupDone,
    GroupFailure,
)
from tle_parser import ElementRecord

logger = logging.getLogger(__name__)

# Golden-ratio conjugate: successive hues land far apart on the colour wheel
_HUE_STEP = 0.618034


# ---------------------------------------------------------------------------
# Simulation clock
# ---------------------------------------------------------------------------

class SimulationClock:
    """Current simulated UTC instant plus a non-negative time scale.

    ``advance`` never moves the instant backwards; ``reset_to_now`` and
    ``set_time`` may jump it anywhere.
    """

    def __init__(self, start: datetime | None = None, time_scale: float = 1.0):
        self.current_utc = as_utc(start) if start else datetime.now(timezone.utc)
        self._time_scale = 1.0
        self.time_scale = time_scale

    @property
    def time_scale(self) -> float:
        return self._time_scale

    @time_scale.setter
    def time_scale(self, value: float) -> None:
        if not (math.isfinite(value) and value >= 0.0):
            raise ValueError(f"time_scale must be finite and non-negative, got {value!r}")
        self._time_scale = float(value)

    def advance(self, elapsed_s: float) -> datetime:
        """Move forward by ``elapsed_s`` real seconds × time scale."""
        if not math.isfinite(elapsed_s):
            raise ValueError(f"elapsed time must be finite, got {elapsed_s!r}")
        scaled = max(elapsed_s * self._time_scale, 0.0)
        if scaled:
            self.current_utc += timedelta(seconds=scaled)
        return self.current_utc

    def reset_to_now(self) -> datetime:
        self.current_utc = datetime.now(timezone.utc)
        self._time_scale = 1.0
        return self.current_utc

    def set_time(self, t: datetime) -> None:
        self.current_utc = as_utc(t)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class ObjectStatus(str, Enum):
    PENDING = "pending"      # no element set yet
    TRACKING = "tracking"    # propagating, no outstanding error
    ERROR = "error"          # error and nothing to show
    STALE = "stale"          # error, but a last-known-good position exists


@dataclass(frozen=True)
class TrailPoint:
    utc: datetime
    position_ecef: np.ndarray


@dataclass
class TrailConfig:
    enabled: bool = True
    max_points: int = 500
    max_age_minutes: float = 120.0


@dataclass
class TrackedObject:
    norad_id: int
    name: str
    color: tuple[float, float, float]
    record: ElementRecord | None = None
    propagator: object | None = None
    error: str | None = None
    propagation_error: str | None = None
    position_ecef: np.ndarray | None = None
    position_utc: datetime | None = None
    last_fetch: datetime | None = None      # wall clock of the last result
    group: str | None = None
    trail: deque = field(default_factory=deque)

    @property
    def status(self) -> ObjectStatus:
        if self.error or self.propagation_error:
            return ObjectStatus.STALE if self.position_ecef is not None else ObjectStatus.ERROR
        if self.record is None or self.propagator is None:
            return ObjectStatus.PENDING
        return ObjectStatus.TRACKING


@dataclass(frozen=True)
class ObjectState:
    """What a renderer needs for one object on one frame."""

    norad_id: int
    name: str
    position_ecef: np.ndarray | None
    color: tuple[float, float, float]
    status: ObjectStatus
    error: str | None
    last_update: datetime | None = None         # wall clock of the last fetch result
    seconds_since_update: float | None = None


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------

class Tracker:
    """Object registry keyed by catalog ID plus the propagation scheduler.

    Parameters
    ----------
    pipeline           : running FetchPipeline, or None to feed results by
                         hand through :meth:`apply_result`
    clock              : simulation clock (default: now, scale 1)
    propagator_factory : ElementRecord → propagator; defaults to SGP4
    dut1_seconds       : UT1 − UTC used for GMST
    trail_config       : orbit-trail history settings
    """

    def __init__(
        self,
        pipeline: FetchPipeline | None = None,
        clock: SimulationClock | None = None,
        propagator_factory: PropagatorFactory = build_propagator,
        dut1_seconds: float = 0.0,
        trail_config: TrailConfig | None = None,
    ):
        self.pipeline = pipeline
        self.clock = clock or SimulationClock()
        self.propagator_factory = propagator_factory
        self.dut1_seconds = dut1_seconds
        self.trail_config = trail_config or TrailConfig()

        self.objects: dict[int, TrackedObject] = {}
        self.groups: dict[str, str | None] = {}     # group → last error
        self._next_hue = 0.0

    # -- requests from the UI layer ---------------------------------------

    def track(self, norad_id: int, name: str | None = None) -> TrackedObject:
        """Start tracking *norad_id* and request its element set."""
        obj = self.objects.get(norad_id)
        if obj is None:
            obj = self._add(norad_id, name)
        if self.pipeline is not None:
            self.pipeline.fetch(norad_id)
        return obj

    def track_group(self, group: str) -> None:
        self.groups[group] = None
        if self.pipeline is not None:
            self.pipeline.fetch_group(group)

    def stop_tracking(self, norad_id: int) -> TrackedObject | None:
        return self.objects.pop(norad_id, None)

    def stop_group(self, group: str) -> list[int]:
        """Forget *group* and every object that was added through it."""
        self.groups.pop(group, None)
        dropped = [i for i, o in self.objects.items() if o.group == group]
        for norad_id in dropped:
            del self.objects[norad_id]
        return dropped

    # -- fetch results ----------------------------------------------------

    def drain_results(self) -> int:
        if self.pipeline is None:
            return 0
        results = self.pipeline.poll()
        for result in results:
            self.apply_result(result)
        return len(results)

    def apply_result(self, result: FetchResult) -> None:
        if isinstance(result, FetchSuccess):
            self._apply_success(result)
        elif isinstance(result, FetchFailure):
            obj = self.objects.get(result.norad_id)
            if obj is None:
                logger.debug("Discarding failure for untracked norad=%d", result.norad_id)
                return
            # Keep the last-known-good record, propagator and position
            obj.error = result.error
            obj.last_fetch = datetime.now(timezone.utc)
        elif isinstance(result, GroupDone):
            if result.group in self.groups:
                self.groups[result.group] = None
            logger.info("Group %s loaded: %d objects", result.group, result.count)
        elif isinstance(result, GroupFailure):
            if result.group in self.groups:
                self.groups[result.group] = result.error
            logger.warning("Group %s failed: %s", result.group, result.error)

    def _apply_success(self, result: FetchSuccess) -> None:
        record = result.record
        obj = self.objects.get(record.norad_id)
        if obj is None:
            if result.group is None or result.group not in self.groups:
                logger.debug("Discarding result for untracked norad=%d", record.norad_id)
                return
            obj = self._add(record.norad_id, record.name, group=result.group)

        obj.last_fetch = datetime.now(timezone.utc)
        try:
            propagator = self.propagator_factory(record)
        except PropagationError as exc:
            obj.error = str(exc)
            logger.warning("norad=%d propagator rejected elements: %s", record.norad_id, exc)
            return

        obj.record = record
        obj.propagator = propagator
        obj.error = result.warning
        if record.name:
            obj.name = record.name

    # -- per-tick ---------------------------------------------------------

    def tick(self, elapsed_s: float) -> list[ObjectState]:
        """Advance the clock, apply fetch results, propagate everything."""
        self.clock.advance(elapsed_s)
        self.drain_results()
        self.propagate()
        return self.states()

    def propagate(self) -> int:
        """Propagate every ready object to the clock instant.

        Returns the number of objects whose position was refreshed.
        """
        now = self.clock.current_utc
        theta = gmst_rad(now, self.dut1_seconds)
        refreshed = 0
        for obj in self.objects.values():
            if obj.record is None or obj.propagator is None:
                continue
            minutes = minutes_since_epoch(now, obj.record.epoch)
            try:
                r_teme = obj.propagator.propagate(minutes)
            except PropagationError as exc:
                obj.propagation_error = str(exc)
                continue
            obj.propagation_error = None
            position = eci_to_ecef(r_teme, theta)
            position.setflags(write=False)
            obj.position_ecef = position
            obj.position_utc = now
            refreshed += 1
            if self.trail_config.enabled:
                self._extend_trail(obj, TrailPoint(now, position))
        return refreshed

    def states(self) -> list[ObjectState]:
        """Snapshot of every object.  Update age is measured on the wall clock
        and keeps growing while a fetch is outstanding."""
        now = datetime.now(timezone.utc)
        return [
            ObjectState(
                norad_id=obj.norad_id,
                name=obj.name,
                position_ecef=obj.position_ecef,
                color=obj.color,
                status=obj.status,
                error=obj.error or obj.propagation_error,
                last_update=obj.last_fetch,
                seconds_since_update=(
                    (now - obj.last_fetch).total_seconds() if obj.last_fetch else None
                ),
            )
            for obj in self.objects.values()
        ]

    def positions(self) -> dict[int, np.ndarray]:
        return {
            i: o.position_ecef for i, o in self.objects.items()
            if o.position_ecef is not None
        }

    # -- internals --------------------------------------------------------

    def _add(self, norad_id: int, name: str | None, group: str | None = None) -> TrackedObject:
        obj = TrackedObject(
            norad_id=norad_id,
            name=name or f"NORAD {norad_id}",
            color=self._next_color(),
            group=group,
        )
        self.objects[norad_id] = obj
        return obj

    def _next_color(self) -> tuple[float, float, float]:
        hue = self._next_hue
        self._next_hue = (hue + _HUE_STEP) % 1.0
        # colorsys takes (h, l, s)
        return colorsys.hls_to_rgb(hue, 0.65, 0.75)

    def _extend_trail(self, obj: TrackedObject, point: TrailPoint) -> None:
        trail = obj.trail
        if trail and point.utc < trail[-1].utc:
            # clock was reset backwards; old history no longer connects
            trail.clear()
        trail.append(point)
        cutoff = point.utc - timedelta(minutes=self.trail_config.max_age_minutes)
        while trail and (trail[0].utc < cutoff or len(trail) > self.trail_config.max_points):
            trail.popleft()
