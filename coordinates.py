"""Geodetic / Earth-fixed coordinate conversions on a spherical Earth.

Design notes
------------
* Earth-fixed (ECEF) positions are float64 numpy arrays of shape (3,), km,
  with the usual axis convention: +X through (0°N, 0°E), +Z through the
  north pole.
* A sphere (not WGS-84) is used throughout.  Everything downstream of this
  module (visibility, overlays) only needs a consistent sphere, and the
  ellipsoid flattening would only shift ground points by ~20 km.
* Within POLE_CLAMP_RAD of either pole the horizontal radius is clamped to
  zero so that every longitude maps to the same pole point.  Longitude read
  back near a pole is therefore meaningless.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
EARTH_RADIUS_KM = 6371.0

# Latitude distance from ±90° (radians) under which the horizontal radius
# is clamped to exactly zero.
POLE_CLAMP_RAD = 1e-7


class InvalidCoordinate(ValueError):
    """Raised for geodetic input outside lat ∈ [-90, 90], lon ∈ [-180, 180]."""


# ---------------------------------------------------------------------------
# Value type
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GeodeticCoordinate:
    """Latitude / longitude in radians.  Build with :meth:`from_degrees`."""

    lat_rad: float
    lon_rad: float

    @classmethod
    def from_degrees(cls, lat_deg: float, lon_deg: float) -> GeodeticCoordinate:
        _check_range(lat_deg, lon_deg)
        return cls(math.radians(lat_deg), math.radians(lon_deg))

    @classmethod
    def from_ecef(cls, point) -> GeodeticCoordinate:
        return ecef_to_geodetic(point)

    def as_degrees(self) -> tuple[float, float]:
        return math.degrees(self.lat_rad), math.degrees(self.lon_rad)

    def to_unit_vector(self) -> np.ndarray:
        return _sphere_point(self.lat_rad, self.lon_rad, 1.0)

    def to_ecef(self, radius_km: float = EARTH_RADIUS_KM) -> np.ndarray:
        return _sphere_point(self.lat_rad, self.lon_rad, radius_km)

    def to_planar(self) -> tuple[float, float]:
        lat, lon = self.as_degrees()
        return to_planar_projection(lat, lon)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def geodetic_to_ecef(
    lat_deg: float,
    lon_deg: float,
    radius_km: float = EARTH_RADIUS_KM,
) -> np.ndarray:
    """Convert latitude / longitude (degrees) to a point on a sphere.

    Parameters
    ----------
    lat_deg   : latitude, degrees North, [-90, 90]
    lon_deg   : longitude, degrees East, [-180, 180]
    radius_km : sphere radius (default: mean Earth radius)

    Returns
    -------
    np.ndarray shape (3,), [x, y, z] in km

    Raises
    ------
    InvalidCoordinate if either angle is out of range.
    """
    _check_range(lat_deg, lon_deg)
    return _sphere_point(math.radians(lat_deg), math.radians(lon_deg), radius_km)


def ecef_to_geodetic(point) -> GeodeticCoordinate:
    """Return the geocentric latitude / longitude of an ECEF vector.

    The vector is normalised first, so its length is irrelevant.  A zero
    vector has no direction and raises InvalidCoordinate.
    """
    p = np.asarray(point, dtype=np.float64)
    norm = float(np.linalg.norm(p))
    if norm == 0.0 or not math.isfinite(norm):
        raise InvalidCoordinate(f"Cannot take the direction of vector {p.tolist()}")
    x, y, z = p / norm
    lat = math.asin(max(-1.0, min(1.0, z)))
    lon = math.atan2(y, x)
    return GeodeticCoordinate(lat, lon)


def subpoint(point) -> tuple[float, float, float]:
    """Return (lat_deg, lon_deg, altitude_km) of an ECEF point above the sphere."""
    p = np.asarray(point, dtype=np.float64)
    lat, lon = ecef_to_geodetic(p).as_degrees()
    return lat, lon, float(np.linalg.norm(p)) - EARTH_RADIUS_KM


def to_planar_projection(lat_deg: float, lon_deg: float) -> tuple[float, float]:
    """Map latitude / longitude to texture coordinates (u, v) ∈ [0, 1]².

    u runs west to east (-180° → 0, +180° → 1), v runs north to south
    (90° → 0, -90° → 1).  No seam handling is done here: callers drawing
    polylines must split where adjacent samples jump by more than 0.5 in u.
    """
    _check_range(lat_deg, lon_deg)
    u = (lon_deg + 180.0) / 360.0
    v = (90.0 - lat_deg) / 180.0
    return u, v


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _check_range(lat_deg: float, lon_deg: float) -> None:
    # NaN fails both comparisons and is rejected too
    if not -90.0 <= lat_deg <= 90.0:
        raise InvalidCoordinate(f"OutOfRange: latitude {lat_deg!r} not in [-90, 90]")
    if not -180.0 <= lon_deg <= 180.0:
        raise InvalidCoordinate(f"OutOfRange: longitude {lon_deg!r} not in [-180, 180]")


def _sphere_point(lat: float, lon: float, radius: float) -> np.ndarray:
    r_xy = math.cos(lat)
    if abs(math.pi / 2.0 - abs(lat)) < POLE_CLAMP_RAD:
        r_xy = 0.0
    return np.array(
        [
            radius * r_xy * math.cos(lon),
            radius * r_xy * math.sin(lon),
            radius * math.sin(lat),
        ],
        dtype=np.float64,
    )
