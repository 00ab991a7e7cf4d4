"""Line of sight between Earth-fixed points past a spherical Earth.

Two tests are provided:

* ``hemisphere_prefilter``: dot(a, b) > R².  For an observer on the sphere
  this says "b is above a's tangent plane", which is necessary for b to be
  visible from a, so it is a safe, cheap rejection step before the exact test.
  (It is not a visibility test in its own right for two points well off the
  surface: two satellites 90° apart see each other with dot(a, b) = 0.)
* ``segment_visibility``: exact segment/sphere intersection.  The segment
  P(t) = a + t(b − a), t ∈ [0, 1] is blocked if |P(t)| = R has a root in
  (ε, 1].  Excluding [0, ε] keeps an observer standing on the surface from
  occluding itself.

All arithmetic is float64, whatever the input dtype: at GEO range a
float32 position is only good to ~4 m, and over tens of thousands of km the
quadratic's discriminant is sensitive enough for that to flip results at
grazing incidence.

``visibility_matrix`` evaluates every observer × object pair at once with
numpy broadcasting.
"""

from __future__ import annotations

import math

import numpy as np

from coordinates import EARTH_RADIUS_KM, geodetic_to_ecef

# Intersection roots with segment parameter t <= this are ignored.
# Nominally 1 cm (1e-5 km); tunable, not a physical constant.
GRAZING_EPS_KM = 1e-5

# (name, lat_deg, lon_deg)
MAJOR_CITIES: list[tuple[str, float, float]] = [
    ("Tokyo", 35.6762, 139.6503),
    ("Delhi", 28.6139, 77.2090),
    ("Shanghai", 31.2304, 121.4737),
    ("São Paulo", -23.5505, -46.6333),
    ("Mexico City", 19.4326, -99.1332),
    ("Cairo", 30.0444, 31.2357),
    ("Mumbai", 19.0760, 72.8777),
    ("Beijing", 39.9042, 116.4074),
    ("Dhaka", 23.8103, 90.4125),
    ("Osaka", 34.6937, 135.5023),
    ("New York", 40.7128, -74.0060),
    ("Karachi", 24.8607, 67.0011),
    ("Buenos Aires", -34.6037, -58.3816),
    ("Istanbul", 41.0082, 28.9784),
    ("Lagos", 6.5244, 3.3792),
    ("Los Angeles", 34.0522, -118.2437),
    ("Moscow", 55.7558, 37.6173),
    ("London", 51.5074, -0.1278),
    ("Paris", 48.8566, 2.3522),
    ("Sydney", -33.8688, 151.2093),
    ("Johannesburg", -26.2041, 28.0473),
    ("Singapore", 1.3521, 103.8198),
    ("Reykjavik", 64.1466, -21.9426),
    ("Anchorage", 61.2181, -149.9003),
]


# ---------------------------------------------------------------------------
# Pairwise tests
# ---------------------------------------------------------------------------

def hemisphere_prefilter(a, b, radius_km: float = EARTH_RADIUS_KM) -> bool:
    """True iff dot(a, b) > R² (each point is outside the other's tangent plane)."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    r = float(radius_km)
    return bool(np.dot(a, b) > r * r)


def segment_visibility(
    a,
    b,
    radius_km: float = EARTH_RADIUS_KM,
    eps: float = GRAZING_EPS_KM,
) -> bool:
    """True if the segment from *a* to *b* does not pass through the sphere.

    Parameters
    ----------
    a, b      : ECEF points, km (a is the observer end)
    radius_km : occluding sphere radius, centred on the origin
    eps       : roots with t <= eps are ignored (observer self-occlusion)

    Coincident points return False.
    """
    c = np.asarray(a, dtype=np.float64)
    u = np.asarray(b, dtype=np.float64) - c

    # |c + t u|² = R²  →  (u·u) t² + 2 (c·u) t + (c·c − R²) = 0
    qa = float(np.dot(u, u))
    if qa == 0.0:
        return False
    r = float(radius_km)
    qb = 2.0 * float(np.dot(c, u))
    qc = float(np.dot(c, c)) - r * r

    disc = qb * qb - 4.0 * qa * qc
    if disc < 0.0:
        return True

    sqrt_d = math.sqrt(disc)
    t1 = (-qb - sqrt_d) / (2.0 * qa)
    t2 = (-qb + sqrt_d) / (2.0 * qa)
    hits = (eps < t1 <= 1.0) or (eps < t2 <= 1.0)
    return not hits


def is_visible(a, b, radius_km: float = EARTH_RADIUS_KM) -> bool:
    """Prefilter, then the exact test.  Intended for surface observers *a*."""
    return hemisphere_prefilter(a, b, radius_km) and segment_visibility(a, b, radius_km)


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------

def visibility_matrix(
    observers,
    objects,
    radius_km: float = EARTH_RADIUS_KM,
    eps: float = GRAZING_EPS_KM,
    prefilter: bool = True,
) -> np.ndarray:
    """Line of sight for every observer × object pair.

    Parameters
    ----------
    observers : shape (n_obs, 3), ECEF km
    objects   : shape (n_obj, 3), ECEF km
    prefilter : also require dot(observer, object) > R² (right for
                observers on the surface; turn off for space-to-space pairs)

    Returns
    -------
    np.ndarray bool, shape (n_obs, n_obj)
    """
    obs = np.asarray(observers, dtype=np.float64).reshape(-1, 3)
    sat = np.asarray(objects, dtype=np.float64).reshape(-1, 3)
    r2 = float(radius_km) ** 2

    c = obs[:, None, :]                 # (n_obs, 1, 3)
    u = sat[None, :, :] - c             # (n_obs, n_obj, 3)

    qa = np.einsum("ijk,ijk->ij", u, u)
    qb = 2.0 * np.einsum("ijk,ijk->ij", np.broadcast_to(c, u.shape), u)
    qc = np.einsum("ik,ik->i", obs, obs)[:, None] - r2
    disc = qb * qb - 4.0 * qa * qc

    degenerate = qa == 0.0
    safe_qa = np.where(degenerate, 1.0, qa)
    sqrt_d = np.sqrt(np.clip(disc, 0.0, None))
    t1 = (-qb - sqrt_d) / (2.0 * safe_qa)
    t2 = (-qb + sqrt_d) / (2.0 * safe_qa)
    hits = ((t1 > eps) & (t1 <= 1.0)) | ((t2 > eps) & (t2 <= 1.0))

    visible = ((disc < 0.0) | ~hits) & ~degenerate
    if prefilter:
        visible &= (obs @ sat.T) > r2
    return visible


def observers_ecef(
    cities: list[tuple[str, float, float]] = MAJOR_CITIES,
    radius_km: float = EARTH_RADIUS_KM,
) -> tuple[list[str], np.ndarray]:
    """Return (names, ECEF array shape (n, 3)) for a city table."""
    names = [name for name, _, _ in cities]
    points = np.array(
        [geodetic_to_ecef(lat, lon, radius_km) for _, lat, lon in cities],
        dtype=np.float64,
    ).reshape(-1, 3)
    return names, points
