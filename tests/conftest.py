"""
Shared fixtures for tollmatrix tests.
"""

import math

import pytest

from tollmatrix.geo import EARTH_RADIUS_M, bounding_box
from tollmatrix.store.models import TollPoint
from tollmatrix.store.toll_store import TollStore


def offset_east(latitude: float, longitude: float, meters: float) -> float:
    """Longitude reached by moving `meters` due east along a parallel."""
    return longitude + math.degrees(meters / (EARTH_RADIUS_M * math.cos(math.radians(latitude))))


@pytest.fixture
def store(tmp_path):
    """Create a temporary toll store for testing."""
    return TollStore(tmp_path / "test_tolls.db")


@pytest.fixture
def kansas_region():
    """Region covering the sample Kansas plazas."""
    return bounding_box(38.0, -98.0, 39.5, -96.0)


@pytest.fixture
def kansas_points():
    """Sample plazas along a turnpike, all inside kansas_region."""
    return [
        TollPoint(id="ks-001", name="East Topeka", key="east_topeka", latitude=39.02, longitude=-96.60),
        TollPoint(id="ks-002", name="West Lawrence", key="w_lawrence", latitude=38.98, longitude=-96.30),
        TollPoint(id="ks-003", name="Emporia", key="emporia", latitude=38.40, longitude=-96.18),
        TollPoint(id="ks-004", name="I-35 North", key="i35n", latitude=38.50, longitude=-97.20),
        TollPoint(id="ks-005", name="___", key="", latitude=38.60, longitude=-97.30),
    ]


@pytest.fixture
def east_of():
    """Helper placing a point a given distance east of another."""
    return offset_east
