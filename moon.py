"""Low-precision lunar ephemeris (Meeus, Astronomical Algorithms, ch. 47).

Only the 20 largest periodic terms of tables 47.A and 47.B are kept, which
is good to roughly 0.1° in longitude and a few hundred km in distance:
plenty to place and light a Moon in a 3D scene.  Output is rotated into
ECEF with the same GMST rotation used for satellites.
"""

from __future__ import annotations

import math
from datetime import datetime

import numpy as np

from sidereal import JD_J2000, eci_to_ecef, gmst_rad, julian_date

MEAN_DISTANCE_KM = 385000.56

# (D, M, M', F, Σl coefficient [1e-6 deg], Σr coefficient [1e-3 km])
LON_DIST_TERMS = [
    (0, 0, 1, 0, 6288774, -20905355),
    (2, 0, -1, 0, 1274027, -3699111),
    (2, 0, 0, 0, 658314, -2955968),
    (0, 0, 2, 0, 213618, -569925),
    (0, 1, 0, 0, -185116, 48888),
    (0, 0, 0, 2, -114332, -3149),
    (2, 0, -2, 0, 58793, 246158),
    (2, -1, -1, 0, 57066, -152138),
    (2, 0, 1, 0, 53322, -170733),
    (2, -1, 0, 0, 45758, -204586),
    (0, 1, -1, 0, -40923, -129620),
    (1, 0, 0, 0, -34720, 108743),
    (0, 1, 1, 0, -30383, 104755),
    (2, 0, 0, -2, 15327, 10321),
    (0, 0, 1, 2, -12528, 0),
    (0, 0, 1, -2, 10980, 79661),
    (4, 0, -1, 0, 10675, -34782),
    (0, 0, 3, 0, 10034, -23210),
    (4, 0, -2, 0, 8548, -21636),
    (2, 1, -1, 0, -7888, 24208),
]

# (D, M, M', F, Σb coefficient [1e-6 deg])
LAT_TERMS = [
    (0, 0, 0, 1, 5128122),
    (0, 0, 1, 1, 280602),
    (0, 0, 1, -1, 277693),
    (2, 0, 0, -1, 173237),
    (2, 0, -1, 1, 55413),
    (2, 0, -1, -1, 46271),
    (2, 0, 0, 1, 32573),
    (0, 0, 2, 1, 17198),
    (2, 0, 1, -1, 9266),
    (0, 0, 2, -1, 8822),
    (2, -1, 0, -1, 8216),
    (2, 0, -2, -1, 4324),
    (2, 0, 1, 1, 4200),
    (2, 1, 0, -1, -3359),
    (2, -1, -1, 1, 2463),
    (2, -1, 0, 1, 2211),
    (2, -1, -1, -1, 2065),
    (0, 1, -1, -1, -1870),
    (4, 0, -1, -1, 1828),
    (0, 1, 0, 1, -1794),
]


def moon_position_eci(t: datetime) -> np.ndarray:
    """Geocentric Moon position in the mean-equator-of-date frame, km."""
    T = (julian_date(t) - JD_J2000) / 36525.0

    # Fundamental arguments, degrees
    Lp = (218.3164477 + 481267.88123421 * T - 0.0015786 * T**2
          + T**3 / 538841.0 - T**4 / 65194000.0) % 360.0
    D = (297.8501921 + 445267.1114034 * T - 0.0018819 * T**2
         + T**3 / 545868.0 - T**4 / 113065000.0) % 360.0
    M = (357.5291092 + 35999.0502909 * T - 0.0001536 * T**2
         + T**3 / 24490000.0) % 360.0
    Mp = (134.9633964 + 477198.8675055 * T + 0.0087414 * T**2
          + T**3 / 69699.0 - T**4 / 14712000.0) % 360.0
    F = (93.2720950 + 483202.0175233 * T - 0.0036539 * T**2
         - T**3 / 3526000.0 + T**4 / 863310000.0) % 360.0

    # Earth orbit eccentricity decay; scales terms containing M
    E = 1.0 - 0.002516 * T - 0.0000074 * T**2
    e_factor = {0: 1.0, 1: E, 2: E * E}

    sum_l = 0.0
    sum_r = 0.0
    for d, m, mp, f, l_coef, r_coef in LON_DIST_TERMS:
        arg = math.radians(d * D + m * M + mp * Mp + f * F)
        k = e_factor[abs(m)]
        sum_l += l_coef * k * math.sin(arg)
        sum_r += r_coef * k * math.cos(arg)

    sum_b = 0.0
    for d, m, mp, f, b_coef in LAT_TERMS:
        arg = math.radians(d * D + m * M + mp * Mp + f * F)
        sum_b += b_coef * e_factor[abs(m)] * math.sin(arg)

    # Additive terms (Venus, Jupiter, Earth flattening)
    A1 = math.radians(119.75 + 131.849 * T)
    A2 = math.radians(53.09 + 479264.290 * T)
    A3 = math.radians(313.45 + 481266.484 * T)
    Lp_r, F_r, Mp_r = math.radians(Lp), math.radians(F), math.radians(Mp)
    sum_l += 3958.0 * math.sin(A1) + 1962.0 * math.sin(Lp_r - F_r) + 318.0 * math.sin(A2)
    sum_b += (
        -2235.0 * math.sin(Lp_r)
        + 382.0 * math.sin(A3)
        + 175.0 * math.sin(A1 - F_r)
        + 175.0 * math.sin(A1 + F_r)
        + 127.0 * math.sin(Lp_r - Mp_r)
        - 115.0 * math.sin(Lp_r + Mp_r)
    )

    lam = math.radians(Lp + sum_l / 1e6)
    beta = math.radians(sum_b / 1e6)
    dist_km = MEAN_DISTANCE_KM + sum_r / 1000.0

    # Ecliptic → equatorial via mean obliquity
    x = dist_km * math.cos(beta) * math.cos(lam)
    y = dist_km * math.cos(beta) * math.sin(lam)
    z = dist_km * math.sin(beta)
    eps = math.radians(23.439291 - 0.0130042 * T)
    return np.array(
        [x, y * math.cos(eps) - z * math.sin(eps), y * math.sin(eps) + z * math.cos(eps)],
        dtype=np.float64,
    )


def moon_position_ecef(t: datetime, dut1_seconds: float = 0.0) -> np.ndarray:
    """Moon position in ECEF, km."""
    return eci_to_ecef(moon_position_eci(t), gmst_rad(t, dut1_seconds))
