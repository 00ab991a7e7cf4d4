"""Satellite coverage footprint from a simple link budget.

Background
----------
A ground point is covered when two conditions hold:

1. The received signal clears a threshold.  Received power is

       P_rx = P_tx + G - FSPL
       FSPL = 20·log10(d_km) + 20·log10(f_MHz) + 32.45

   with free-space path loss FSPL in dB over slant range d.

2. The satellite stands at least ``min_elevation_deg`` above the local
   horizon of the ground point.

The footprint radius on the surface follows from the tighter of the two
slant-range limits.  The elevation-limited slant range ρ for a satellite at
geocentric radius r_s seen at elevation ε from a point on a sphere of
radius R comes from the triangle centre-ground-satellite:

    ρ = sqrt(r_s² − R²·cos²ε) − R·sin ε

and the ground arc from the central angle λ:

    cos λ = (r_s² + R² − ρ²) / (2·r_s·R),   arc = R·λ

Nothing here draws anything; a renderer turns the radius into a mesh.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np

from coordinates import EARTH_RADIUS_KM

logger = logging.getLogger(__name__)

# Free-space path loss constant for distance in km and frequency in MHz (dB).
FSPL_CONSTANT_DB: float = 32.45

# Signal-limited slant range is searched no further than this multiple of
# the orbital altitude.
MAX_RANGE_ALTITUDE_FACTOR: float = 20.0


@dataclass(frozen=True)
class CoverageParameters:
    """Link-budget inputs for one transmitter.

    Defaults describe a GPS L1-like downlink: 1575 MHz, 100 W into a 20 dBi
    antenna, -120 dBm receiver threshold, 10° mask angle.
    """

    frequency_mhz: float = 1575.0
    transmit_power_dbm: float = 50.0
    antenna_gain_dbi: float = 20.0
    min_signal_strength_dbm: float = -120.0
    min_elevation_deg: float = 10.0

    @property
    def eirp_dbm(self) -> float:
        return self.transmit_power_dbm + self.antenna_gain_dbi


# ---------------------------------------------------------------------------
# Link budget
# ---------------------------------------------------------------------------

def path_loss_db(distance_km, frequency_mhz: float):
    """Free-space path loss (dB).  *distance_km* may be an array."""
    d = np.asarray(distance_km, dtype=np.float64)
    if np.any(d <= 0.0) or frequency_mhz <= 0.0:
        raise ValueError("distance and frequency must be positive")
    loss = 20.0 * np.log10(d) + 20.0 * math.log10(frequency_mhz) + FSPL_CONSTANT_DB
    return float(loss) if loss.ndim == 0 else loss


def signal_strength_dbm(distance_km, params: CoverageParameters):
    """Received power at *distance_km* of slant range (dBm)."""
    return params.eirp_dbm - path_loss_db(distance_km, params.frequency_mhz)


def signal_strength_at_point(sat_ecef, ground_ecef, params: CoverageParameters):
    """Received power at *ground_ecef* from a transmitter at *sat_ecef*.

    *ground_ecef* may be ``(3,)`` or ``(..., 3)``.
    """
    sat = np.asarray(sat_ecef, dtype=np.float64)
    ground = np.asarray(ground_ecef, dtype=np.float64)
    return signal_strength_dbm(np.linalg.norm(ground - sat, axis=-1), params)


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

def max_signal_range_km(altitude_km: float, params: CoverageParameters) -> float:
    """Slant range at which the received power falls to the threshold.

    Inverts the path-loss equation and clamps the result to
    ``[altitude_km, MAX_RANGE_ALTITUDE_FACTOR · altitude_km]``: a link that
    fails even at nadir reports the nadir distance.
    """
    if altitude_km <= 0.0:
        raise ValueError(f"altitude must be positive, got {altitude_km!r}")
    budget_db = (
        params.eirp_dbm
        - params.min_signal_strength_dbm
        - 20.0 * math.log10(params.frequency_mhz)
        - FSPL_CONSTANT_DB
    )
    reach = 10.0 ** (budget_db / 20.0)
    limit = float(np.clip(reach, altitude_km, MAX_RANGE_ALTITUDE_FACTOR * altitude_km))
    logger.debug(
        "alt=%.1f km nadir signal=%.1f dBm threshold=%.1f dBm -> slant range %.1f km",
        altitude_km, signal_strength_dbm(altitude_km, params),
        params.min_signal_strength_dbm, limit,
    )
    return limit


def elevation_limited_range_km(
    altitude_km: float,
    min_elevation_deg: float,
    radius_km: float = EARTH_RADIUS_KM,
) -> float:
    """Longest slant range at which the satellite is at least
    *min_elevation_deg* above the horizon.  Negative masks are treated as
    the geometric horizon, below which the Earth blocks the path.
    """
    el = math.radians(min(max(min_elevation_deg, 0.0), 90.0))
    rs = radius_km + altitude_km
    return math.sqrt(rs * rs - (radius_km * math.cos(el)) ** 2) - radius_km * math.sin(el)


def surface_coverage_radius_km(
    altitude_km: float,
    params: CoverageParameters,
    radius_km: float = EARTH_RADIUS_KM,
) -> float:
    """Ground-arc radius of the footprint centred on the sub-satellite point.

    Returns 0.0 when the geometry has no solution.
    """
    slant = min(
        max_signal_range_km(altitude_km, params),
        elevation_limited_range_km(altitude_km, params.min_elevation_deg, radius_km),
    )
    rs = radius_km + altitude_km
    cos_angle = (rs * rs + radius_km * radius_km - slant * slant) / (2.0 * rs * radius_km)
    if not -1.0 <= cos_angle <= 1.0:
        return 0.0
    return radius_km * math.acos(cos_angle)


def elevation_deg(sat_ecef, ground_ecef):
    """Elevation of *sat_ecef* above the local horizon of *ground_ecef*.

    The local vertical is the geocentric direction of the ground point.
    *ground_ecef* may be ``(3,)`` or ``(..., 3)``.
    """
    sat = np.asarray(sat_ecef, dtype=np.float64)
    ground = np.asarray(ground_ecef, dtype=np.float64)
    los = sat - ground
    los = los / np.linalg.norm(los, axis=-1, keepdims=True)
    up = ground / np.linalg.norm(ground, axis=-1, keepdims=True)
    sin_el = np.clip(np.einsum("...i,...i->...", los, up), -1.0, 1.0)
    el = np.degrees(np.arcsin(sin_el))
    return float(el) if el.ndim == 0 else el


# ---------------------------------------------------------------------------
# Coverage test
# ---------------------------------------------------------------------------

def coverage_mask(sat_ecef, ground_ecef, params: CoverageParameters) -> np.ndarray:
    """Boolean array over ground points: signal and elevation both pass."""
    strong = signal_strength_at_point(sat_ecef, ground_ecef, params) >= params.min_signal_strength_dbm
    high = elevation_deg(sat_ecef, ground_ecef) >= params.min_elevation_deg
    return np.logical_and(strong, high)


def is_point_in_coverage(sat_ecef, ground_ecef, params: CoverageParameters) -> bool:
    return bool(coverage_mask(sat_ecef, ground_ecef, params))
