"""Time scales and the inertial → Earth-fixed rotation.

* Julian Date from a UTC timestamp (proleptic Gregorian, Meeus ch. 7).
* Greenwich Mean Sidereal Time from the IAU-1982 polynomial, optionally
  shifted by a UT1−UTC (DUT1) correction.  DUT1 is below 0.9 s by
  construction, i.e. at most ~13″ of Earth rotation, so leaving it at 0 is
  fine for display work.
* TEME (SGP4 output) → ECEF as a single rotation about +Z by −GMST.  Polar
  motion and the equation of the equinoxes are ignored.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone

import numpy as np

TAU = 2.0 * math.pi

# Julian Date of the J2000.0 epoch, 2000-01-01T12:00:00 UTC
JD_J2000 = 2451545.0
SECONDS_PER_DAY = 86400.0


# ---------------------------------------------------------------------------
# Calendar → Julian Date
# ---------------------------------------------------------------------------

def as_utc(t: datetime) -> datetime:
    """Return *t* as an aware UTC datetime (naive input is taken as UTC)."""
    if t.tzinfo is None:
        return t.replace(tzinfo=timezone.utc)
    return t.astimezone(timezone.utc)


def julian_date(t: datetime) -> float:
    """Julian Date of a UTC instant.

    2000-01-01T12:00:00Z → 2451545.0
    """
    t = as_utc(t)
    y, m, d = t.year, t.month, t.day
    day_fraction = (
        t.hour + (t.minute + (t.second + t.microsecond * 1e-6) / 60.0) / 60.0
    ) / 24.0

    if m <= 2:
        y -= 1
        m += 12

    a = math.floor(y / 100.0)
    b = 2.0 - a + math.floor(a / 4.0)
    jd0 = (
        math.floor(365.25 * (y + 4716))
        + math.floor(30.6001 * (m + 1))
        + d
        + b
        - 1524.5
    )
    return jd0 + day_fraction


# ---------------------------------------------------------------------------
# Sidereal time
# ---------------------------------------------------------------------------

def gmst_rad(t: datetime, dut1_seconds: float = 0.0) -> float:
    """Greenwich Mean Sidereal Time in radians, normalised to [0, 2π).

    Parameters
    ----------
    t            : UTC instant
    dut1_seconds : UT1 − UTC in seconds (0 → UT1 taken equal to UTC)
    """
    jd_ut1 = julian_date(t) + dut1_seconds / SECONDS_PER_DAY
    return gmst_from_jd(jd_ut1)


def gmst_from_jd(jd_ut1: float) -> float:
    """GMST (radians, [0, 2π)) for a UT1 Julian Date."""
    T = (jd_ut1 - JD_J2000) / 36525.0
    gmst_sec = (
        67310.54841
        + (876600.0 * 3600.0 + 8640184.812866) * T
        + 0.093104 * T * T
        - 6.2e-6 * T * T * T
    )
    s = gmst_sec % SECONDS_PER_DAY
    return (s * (TAU / SECONDS_PER_DAY)) % TAU


# ---------------------------------------------------------------------------
# Frame rotation
# ---------------------------------------------------------------------------

def eci_to_ecef(r_eci, theta: float) -> np.ndarray:
    """Rotate ECI (TEME) position vector(s) into ECEF.

    Parameters
    ----------
    r_eci : shape (3,) or (..., 3), km
    theta : sidereal angle, radians (any value; reduced mod 2π first)

    Returns
    -------
    New float64 array with the same shape as r_eci.  The rotation is
    length-preserving, and theta = 0 returns the input values unchanged.
    """
    r = np.asarray(r_eci, dtype=np.float64)
    theta = theta % TAU
    cos_t = math.cos(theta)
    sin_t = math.sin(theta)

    x = r[..., 0]
    y = r[..., 1]

    r_ecef = np.empty_like(r)
    r_ecef[..., 0] = x * cos_t + y * sin_t
    r_ecef[..., 1] = -x * sin_t + y * cos_t
    r_ecef[..., 2] = r[..., 2]
    return r_ecef


# ---------------------------------------------------------------------------
# Propagator time argument
# ---------------------------------------------------------------------------

def minutes_since_epoch(sim_utc: datetime, epoch: datetime) -> float:
    """Signed minutes from *epoch* to *sim_utc* (negative before epoch)."""
    return (as_utc(sim_utc) - as_utc(epoch)).total_seconds() / 60.0
