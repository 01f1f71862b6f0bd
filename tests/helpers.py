import random

from sector_control.aircraft import Aircraft, AircraftStatus
from sector_control.airspace import Airspace


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FixedRandom(random.Random):
    """Random source whose random() always returns the same value."""

    def __init__(self, value: float):
        super().__init__(0)
        self.value = value

    def random(self):
        return self.value


def make_aircraft(**overrides) -> Aircraft:
    values = dict(
        id="ac-1",
        callsign="UAL123",
        aircraft_type="B738",
        x=400.0,
        y=400.0,
        heading=0.0,
        altitude=70.0,
        speed=250.0,
        destination="NOR",
        status=AircraftStatus.ACTIVE,
    )
    values.update(overrides)
    return Aircraft(**values)


def aircraft_at(airspace: Airspace, bearing: float, distance: float, **overrides) -> Aircraft:
    point = airspace.point_at(bearing, distance)
    return make_aircraft(x=point.x, y=point.y, **overrides)
