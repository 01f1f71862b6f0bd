import pytest

from sector_control.airspace import Airspace

from helpers import FakeClock


@pytest.fixture
def airspace():
    return Airspace.default()


@pytest.fixture
def clock():
    return FakeClock(1000.0)


@pytest.fixture
def anyio_backend():
    return "asyncio"
