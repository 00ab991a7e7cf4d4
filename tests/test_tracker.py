"""
Tests for the simulation clock, object registry and propagation scheduler.
"""
from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from conftest import ISS_TEXT, FakeHttp, FakePropagator, FakeResponse, make_record
from propagator import PropagationError
from sidereal import eci_to_ecef, gmst_rad
from tle_fetcher import (
    CELESTRAK_CATNR_URL,
    TRANSPORT,
    FetchFailure,
    FetchPipeline,
    FetchSuccess,
    GroupDone,
    GroupFailure,
)
from tracker import ObjectStatus, SimulationClock, Tracker, TrailConfig

EPOCH = datetime(2024, 8, 13, 13, 30, tzinfo=timezone.utc)


def _tracker(factory=None, start=EPOCH, **kwargs):
    clock = SimulationClock(start=start)
    return Tracker(
        clock=clock,
        propagator_factory=factory or (lambda record: FakePropagator()),
        **kwargs,
    )


class TestSimulationClock:

    def test_scaled_advance(self):
        clock = SimulationClock(start=EPOCH, time_scale=1000.0)
        clock.advance(10.0)
        assert clock.current_utc == EPOCH + timedelta(seconds=10000)

    def test_paused(self):
        clock = SimulationClock(start=EPOCH, time_scale=0.0)
        clock.advance(5.0)
        assert clock.current_utc == EPOCH

    def test_never_backwards(self):
        clock = SimulationClock(start=EPOCH)
        clock.advance(-3.0)
        assert clock.current_utc == EPOCH

    @pytest.mark.parametrize("bad", [-1.0, float("nan"), float("inf")])
    def test_invalid_scale(self, bad):
        with pytest.raises(ValueError):
            SimulationClock(time_scale=bad)

    def test_setter_rejects_infinite_scale(self):
        clock = SimulationClock(start=EPOCH, time_scale=2.0)
        with pytest.raises(ValueError):
            clock.time_scale = float("inf")
        assert clock.time_scale == 2.0

    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_elapsed_rejected(self, bad):
        clock = SimulationClock(start=EPOCH)
        with pytest.raises(ValueError):
            clock.advance(bad)
        assert clock.current_utc == EPOCH

    def test_reset_to_now(self):
        clock = SimulationClock(start=EPOCH, time_scale=50.0)
        before = datetime.now(timezone.utc)
        clock.reset_to_now()
        assert clock.current_utc >= before
        assert clock.time_scale == 1.0

    def test_set_time_naive_is_utc(self):
        clock = SimulationClock()
        clock.set_time(datetime(2024, 1, 1))
        assert clock.current_utc == datetime(2024, 1, 1, tzinfo=timezone.utc)


class TestRegistry:

    def test_track_is_pending(self):
        tracker = _tracker()
        obj = tracker.track(25544)
        assert obj.name == "NORAD 25544"
        assert obj.status is ObjectStatus.PENDING
        assert tracker.states()[0].position_ecef is None

    def test_track_twice_keeps_one_entry(self):
        tracker = _tracker()
        first = tracker.track(25544)
        assert tracker.track(25544) is first
        assert len(tracker.objects) == 1

    def test_success_sets_record_and_name(self, iss_record):
        tracker = _tracker()
        tracker.track(25544)
        tracker.apply_result(FetchSuccess(iss_record))
        obj = tracker.objects[25544]
        assert obj.record == iss_record
        assert obj.name == "ISS (ZARYA)"
        assert obj.status is ObjectStatus.TRACKING

    def test_untracked_result_discarded(self, iss_record):
        tracker = _tracker()
        tracker.apply_result(FetchSuccess(iss_record))
        tracker.apply_result(FetchFailure(1, TRANSPORT, "boom"))
        assert tracker.objects == {}

    def test_stop_tracking(self):
        tracker = _tracker()
        tracker.track(25544)
        assert tracker.stop_tracking(25544).norad_id == 25544
        assert tracker.stop_tracking(25544) is None

    def test_colors_distinct_and_in_range(self):
        tracker = _tracker()
        colors = [tracker.track(i).color for i in range(1, 9)]
        assert len(set(colors)) == len(colors)
        for rgb in colors:
            assert all(0.0 <= c <= 1.0 for c in rgb)

    def test_factory_rejection_is_error(self, iss_record):
        def reject(record):
            raise PropagationError("SGP4 error 1: mean eccentricity out of range [0, 1)", 1)

        tracker = _tracker(factory=reject)
        tracker.track(25544)
        tracker.apply_result(FetchSuccess(iss_record))
        obj = tracker.objects[25544]
        assert obj.status is ObjectStatus.ERROR
        assert "eccentricity" in obj.error


class TestFetchFailure:

    def test_failure_without_data_is_error(self):
        tracker = _tracker()
        tracker.track(25544)
        tracker.apply_result(FetchFailure(25544, TRANSPORT, "HTTP 503"))
        obj = tracker.objects[25544]
        assert obj.status is ObjectStatus.ERROR
        assert obj.last_fetch is not None

    def test_failure_keeps_last_good(self, iss_record):
        tracker = _tracker()
        tracker.track(25544)
        tracker.apply_result(FetchSuccess(iss_record))
        tracker.propagate()
        tracker.apply_result(FetchFailure(25544, TRANSPORT, "HTTP 503"))
        obj = tracker.objects[25544]
        assert obj.record == iss_record
        assert obj.status is ObjectStatus.STALE
        assert tracker.propagate() == 1

    def test_later_success_clears_error(self, iss_record):
        tracker = _tracker()
        tracker.track(25544)
        tracker.apply_result(FetchFailure(25544, TRANSPORT, "HTTP 503"))
        tracker.apply_result(FetchSuccess(iss_record))
        assert tracker.objects[25544].error is None

    def test_cached_fallback_warning_surfaces(self, iss_record):
        tracker = _tracker()
        tracker.track(25544)
        tracker.apply_result(FetchSuccess(iss_record, from_cache=True, warning="offline"))
        tracker.propagate()
        state = tracker.states()[0]
        assert state.status is ObjectStatus.STALE
        assert state.error == "offline"


class _SilentPipeline:
    """Accepts fetch requests and never answers them."""

    def __init__(self):
        self.requested = []

    def fetch(self, norad_id):
        self.requested.append(norad_id)

    def fetch_group(self, group):
        self.requested.append(group)

    def poll(self):
        return []


class TestUpdateAge:

    def test_pending_has_no_update(self):
        tracker = _tracker()
        tracker.track(25544)
        state = tracker.states()[0]
        assert state.last_update is None
        assert state.seconds_since_update is None

    def test_result_sets_last_update(self, iss_record):
        tracker = _tracker()
        tracker.track(25544)
        before = datetime.now(timezone.utc)
        tracker.apply_result(FetchSuccess(iss_record))
        state = tracker.states()[0]
        assert state.last_update >= before
        assert state.seconds_since_update >= 0.0

    def test_outstanding_fetch_leaves_last_update_across_ticks(self, iss_record):
        pipeline = _SilentPipeline()
        tracker = _tracker(pipeline=pipeline)
        tracker.track(25544)
        tracker.apply_result(FetchSuccess(iss_record))
        first = tracker.tick(1.0)[0]

        tracker.track(25544)
        later = [tracker.tick(1.0)[0] for _ in range(3)]
        assert pipeline.requested == [25544, 25544]
        assert all(s.last_update == first.last_update for s in later)
        assert all(s.status is ObjectStatus.TRACKING for s in later)
        ages = [first.seconds_since_update] + [s.seconds_since_update for s in later]
        assert ages == sorted(ages)

    def test_failure_counts_as_update(self, iss_record):
        tracker = _tracker()
        tracker.track(25544)
        tracker.apply_result(FetchSuccess(iss_record))
        first = tracker.states()[0].last_update
        tracker.apply_result(FetchFailure(25544, TRANSPORT, "HTTP 503"))
        assert tracker.states()[0].last_update >= first


class TestGroups:

    def test_group_members_added(self):
        tracker = _tracker()
        tracker.track_group("stations")
        tracker.apply_result(FetchSuccess(make_record(25544), group="stations"))
        tracker.apply_result(FetchSuccess(make_record(48274, name="CSS"), group="stations"))
        tracker.apply_result(GroupDone("stations", 2))
        assert set(tracker.objects) == {25544, 48274}
        assert tracker.objects[48274].group == "stations"
        assert tracker.groups["stations"] is None

    def test_unrequested_group_discarded(self):
        tracker = _tracker()
        tracker.apply_result(FetchSuccess(make_record(25544), group="stations"))
        assert tracker.objects == {}

    def test_group_failure_recorded(self):
        tracker = _tracker()
        tracker.track_group("stations")
        tracker.apply_result(GroupFailure("stations", TRANSPORT, "HTTP 500"))
        assert tracker.groups["stations"] == "HTTP 500"

    def test_stop_group(self):
        tracker = _tracker()
        tracker.track(1)
        tracker.track_group("stations")
        tracker.apply_result(FetchSuccess(make_record(25544), group="stations"))
        assert tracker.stop_group("stations") == [25544]
        assert set(tracker.objects) == {1}


class TestPropagation:

    def test_position_uses_gmst_rotation(self, iss_record):
        tracker = _tracker()
        tracker.track(25544)
        tracker.apply_result(FetchSuccess(iss_record))
        assert tracker.propagate() == 1
        expected = eci_to_ecef([6771.0, 0.0, 0.0], gmst_rad(EPOCH))
        np.testing.assert_allclose(tracker.objects[25544].position_ecef, expected)

    def test_dut1_changes_rotation(self, iss_record):
        plain = _tracker()
        shifted = _tracker(dut1_seconds=0.8)
        for t in (plain, shifted):
            t.track(25544)
            t.apply_result(FetchSuccess(iss_record))
            t.propagate()
        a = plain.objects[25544].position_ecef
        b = shifted.objects[25544].position_ecef
        assert not np.allclose(a, b, rtol=0, atol=1e-6)
        assert np.linalg.norm(a) == pytest.approx(np.linalg.norm(b))

    def test_minutes_since_epoch_passed(self, iss_record):
        prop = FakePropagator()
        tracker = _tracker(factory=lambda record: prop, start=EPOCH + timedelta(minutes=45))
        tracker.track(25544)
        tracker.apply_result(FetchSuccess(iss_record))
        tracker.propagate()
        assert prop.calls == [pytest.approx(45.0)]

    def test_one_failure_does_not_stop_others(self):
        props = {1: FakePropagator(fail_after=5.0), 2: FakePropagator()}
        tracker = _tracker(
            factory=lambda record: props[record.norad_id],
            start=EPOCH + timedelta(minutes=10),
        )
        for norad_id in props:
            tracker.track(norad_id)
            tracker.apply_result(FetchSuccess(make_record(norad_id, epoch=EPOCH)))
        assert tracker.propagate() == 1
        assert tracker.objects[1].status is ObjectStatus.ERROR
        assert tracker.objects[2].status is ObjectStatus.TRACKING

    def test_propagation_error_keeps_last_position_and_recovers(self, iss_record):
        tracker = _tracker(factory=lambda record: FakePropagator(fail_after=5.0))
        tracker.track(25544)
        tracker.apply_result(FetchSuccess(iss_record))
        tracker.propagate()
        good = tracker.objects[25544].position_ecef

        tracker.clock.set_time(EPOCH + timedelta(minutes=10))
        tracker.propagate()
        obj = tracker.objects[25544]
        assert obj.status is ObjectStatus.STALE
        assert obj.position_ecef is good
        assert "decayed" in tracker.states()[0].error

        tracker.clock.set_time(EPOCH + timedelta(minutes=1))
        tracker.propagate()
        assert obj.status is ObjectStatus.TRACKING

    def test_positions_read_only(self, iss_record):
        tracker = _tracker()
        tracker.track(25544)
        tracker.apply_result(FetchSuccess(iss_record))
        tracker.propagate()
        pos = tracker.positions()[25544]
        with pytest.raises(ValueError):
            pos[0] = 0.0

    def test_tick_advances_and_returns_states(self, iss_record):
        tracker = _tracker()
        tracker.clock.time_scale = 60.0
        tracker.track(25544)
        tracker.apply_result(FetchSuccess(iss_record))
        states = tracker.tick(1.0)
        assert tracker.clock.current_utc == EPOCH + timedelta(minutes=1)
        assert states[0].status is ObjectStatus.TRACKING
        assert states[0].position_ecef is not None


class TestTrail:

    def _ready(self, iss_record, **config):
        tracker = _tracker(trail_config=TrailConfig(**config))
        tracker.track(25544)
        tracker.apply_result(FetchSuccess(iss_record))
        return tracker

    def test_max_points(self, iss_record):
        tracker = self._ready(iss_record, max_points=3)
        for _ in range(5):
            tracker.tick(1.0)
        assert len(tracker.objects[25544].trail) == 3

    def test_max_age(self, iss_record):
        tracker = self._ready(iss_record, max_age_minutes=2.0)
        for _ in range(5):
            tracker.tick(60.0)
        trail = tracker.objects[25544].trail
        assert trail[-1].utc - trail[0].utc <= timedelta(minutes=2)

    def test_clock_jump_back_clears(self, iss_record):
        tracker = self._ready(iss_record)
        tracker.tick(60.0)
        tracker.tick(60.0)
        tracker.clock.set_time(EPOCH)
        tracker.propagate()
        assert len(tracker.objects[25544].trail) == 1

    def test_disabled(self, iss_record):
        tracker = self._ready(iss_record, enabled=False)
        tracker.tick(1.0)
        assert len(tracker.objects[25544].trail) == 0


class TestWithPipeline:

    def test_fetch_applied_on_drain(self):
        url = CELESTRAK_CATNR_URL.format(norad_id=25544)
        pipeline = FetchPipeline(http=FakeHttp({url: FakeResponse(200, ISS_TEXT)})).start()
        tracker = _tracker(pipeline=pipeline)
        tracker.track(25544)
        pipeline.close(timeout=5.0)

        assert tracker.drain_results() == 1
        states = tracker.tick(0.0)
        assert states[0].name == "ISS (ZARYA)"
        assert states[0].status is ObjectStatus.TRACKING
