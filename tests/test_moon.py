"""
Tests for the low-precision lunar ephemeris.
"""
import math
from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from moon import moon_position_ecef, moon_position_eci


class TestMoonPosition:

    def test_meeus_worked_example(self):
        # 1992 April 12, 0h: RA 134.688°, Dec +13.768°, distance 368409.7 km
        r = moon_position_eci(datetime(1992, 4, 12, tzinfo=timezone.utc))
        dist = np.linalg.norm(r)
        ra = math.degrees(math.atan2(r[1], r[0])) % 360.0
        dec = math.degrees(math.asin(r[2] / dist))
        assert dist == pytest.approx(368409.7, abs=500.0)
        assert ra == pytest.approx(134.688, abs=0.5)
        assert dec == pytest.approx(13.768, abs=0.5)

    @pytest.mark.parametrize("year", [1600, 1700, 1800, 1900, 2024, 2100, 2200, 2300, 2400])
    def test_distance_bounds_over_two_months(self, year):
        # perigee and apogee stay within 356,000 to 407,000 km for centuries
        start = datetime(year, 8, 1, tzinfo=timezone.utc)
        for day in range(0, 60):
            dist = np.linalg.norm(moon_position_eci(start + timedelta(days=day)))
            assert 350_000.0 < dist < 410_000.0

    @pytest.mark.parametrize("year", [1900, 1970, 2050, 2100])
    def test_finite_far_from_j2000(self, year):
        r = moon_position_eci(datetime(year, 6, 1, tzinfo=timezone.utc))
        assert np.all(np.isfinite(r))

    def test_ecef_is_rotation_of_eci(self):
        t = datetime(2024, 8, 13, 13, 30, tzinfo=timezone.utc)
        eci = moon_position_eci(t)
        ecef = moon_position_ecef(t)
        assert np.linalg.norm(ecef) == pytest.approx(np.linalg.norm(eci))
        assert ecef[2] == pytest.approx(eci[2])

    def test_moves_about_half_a_degree_per_hour(self):
        t = datetime(2024, 8, 13, tzinfo=timezone.utc)
        a = moon_position_eci(t)
        b = moon_position_eci(t + timedelta(hours=1))
        angle = math.degrees(
            math.acos(np.dot(a, b) / (np.linalg.norm(a) * np.linalg.norm(b)))
        )
        assert 0.4 < angle < 0.7
