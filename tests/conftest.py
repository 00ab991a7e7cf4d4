"""Shared fixtures: canned element sets and a fake HTTP client."""
import threading
from datetime import datetime, timezone

import numpy as np
import pytest

from propagator import PropagationError
from tle_parser import ElementRecord

ISS_NAME = "ISS (ZARYA)"
ISS_LINE1 = "1 25544U 98067A   24226.56250000  .00007211  00000-0  13379-3 0  9993"
ISS_LINE2 = "2 25544  51.6422 266.4643 0007888 121.4429 238.6624 15.49494792423455"
ISS_TEXT = f"{ISS_NAME}\n{ISS_LINE1}\n{ISS_LINE2}\n"

# Element set published with the sgp4 package documentation
SGP4_LINE1 = "1 25544U 98067A   19343.69339541  .00001764  00000-0  38792-4 0  9991"
SGP4_LINE2 = "2 25544  51.6439 211.2001 0007417  17.6667  85.6398 15.50103472202482"


class FakeResponse:
    def __init__(self, status_code=200, text=""):
        self.status_code = status_code
        self.text = text


class FakeHttp:
    """requests-compatible ``get`` that serves canned responses by URL.

    A value in *routes* may be a FakeResponse or an exception instance,
    which is raised instead.
    """

    def __init__(self, routes=None, default=None):
        self.routes = dict(routes or {})
        self.default = default or FakeResponse(404, "Not Found")
        self.calls = []
        self._lock = threading.Lock()

    def get(self, url, headers=None, timeout=None):
        with self._lock:
            self.calls.append(url)
        reply = self.routes.get(url, self.default)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakePropagator:
    """Circular equatorial orbit, one revolution per *period_min* minutes."""

    def __init__(self, radius_km=6771.0, period_min=92.0, fail_after=None):
        self.radius_km = radius_km
        self.period_min = period_min
        self.fail_after = fail_after
        self.calls = []

    def propagate(self, minutes_since_epoch):
        self.calls.append(minutes_since_epoch)
        if self.fail_after is not None and minutes_since_epoch > self.fail_after:
            raise PropagationError("SGP4 error 6: satellite has decayed", 6)
        phase = 2.0 * np.pi * minutes_since_epoch / self.period_min
        return np.array(
            [self.radius_km * np.cos(phase), self.radius_km * np.sin(phase), 0.0]
        )


def make_record(norad_id=25544, name=ISS_NAME, epoch=None):
    return ElementRecord(
        norad_id=norad_id,
        name=name,
        line1=ISS_LINE1.replace("25544", f"{norad_id:05d}", 1),
        line2=ISS_LINE2.replace("25544", f"{norad_id:05d}", 1),
        epoch=epoch or datetime(2024, 8, 13, 13, 30, tzinfo=timezone.utc),
    )


@pytest.fixture
def iss_record():
    return make_record()


@pytest.fixture
def cache_dir(tmp_path):
    return tmp_path / "tle-cache"
