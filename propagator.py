"""Propagator interface and the SGP4 implementation behind it.

Design notes
------------
* The tracker only needs "position at N minutes after epoch", so the
  interface is a single ``propagate(minutes_since_epoch)`` method on an
  object built once per element set.  Any SGP4-class model can be dropped in
  by passing a different factory to the tracker.
* SGP4 returns positions in the TEME frame, which is treated as quasi-ECI
  and rotated to ECEF with GMST by the caller.
* SGP4 signals trouble with a non-zero error code rather than an exception;
  those codes are turned into PropagationError here so the caller has a
  single failure type to catch.
"""

from __future__ import annotations

from typing import Callable, Protocol

import numpy as np
from sgp4.api import Satrec

from tle_parser import ElementRecord

# sgp4 error code meanings
SGP4_ERROR_CODES = {
    1: "mean eccentricity out of range [0, 1)",
    2: "mean motion less than zero",
    3: "perturbed eccentricity out of range [0, 1)",
    4: "semi-latus rectum less than zero",
    5: "epoch elements are sub-orbital",
    6: "satellite has decayed",
}


class PropagationError(RuntimeError):
    """The propagator rejected its inputs (bad or decayed elements)."""

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


class Propagator(Protocol):
    def propagate(self, minutes_since_epoch: float) -> np.ndarray:
        """Return the TEME position (km, shape (3,)) or raise PropagationError."""
        ...


PropagatorFactory = Callable[[ElementRecord], Propagator]


# ---------------------------------------------------------------------------
# SGP4
# ---------------------------------------------------------------------------

class Sgp4Propagator:
    """SGP4/SDP4 via the ``sgp4`` C extension."""

    def __init__(self, record: ElementRecord):
        try:
            self.satrec = Satrec.twoline2rv(record.line1, record.line2)
        except (ValueError, IndexError) as exc:
            raise PropagationError(
                f"norad={record.norad_id}: malformed element set: {exc}"
            ) from exc
        if self.satrec.error:
            raise PropagationError(_describe(self.satrec.error), self.satrec.error)
        self.norad_id = record.norad_id

    def propagate(self, minutes_since_epoch: float) -> np.ndarray:
        sat = self.satrec
        # Keep jd and fraction split for precision, as sgp4 expects
        e, r, _ = sat.sgp4(sat.jdsatepoch, sat.jdsatepochF + minutes_since_epoch / 1440.0)
        if e != 0:
            raise PropagationError(_describe(e), e)
        return np.array(r, dtype=np.float64)


def build_propagator(record: ElementRecord) -> Sgp4Propagator:
    """Default propagator factory."""
    return Sgp4Propagator(record)


def _describe(code: int) -> str:
    return f"SGP4 error {code}: {SGP4_ERROR_CODES.get(code, 'unknown error')}"
