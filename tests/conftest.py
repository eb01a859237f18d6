"""Pytest configuration and fixtures for territory_claim tests.

Positions are written as (east, north) metric offsets from a fixed origin so that
test geometry reads in meters.
"""

import math

import pytest

from territory_claim.models import EARTH_RADIUS_M, FinalizedTerritory, Fix, GeoPoint, ValidationThresholds

ORIGIN = GeoPoint(latitude=31.2304, longitude=121.4737)
T0_MS = 1_735_689_600_000


def offset(east_m, north_m, origin=ORIGIN):
    """GeoPoint east_m / north_m meters away from origin."""
    dlat = math.degrees(north_m / EARTH_RADIUS_M)
    dlon = math.degrees(east_m / (EARTH_RADIUS_M * math.cos(math.radians(origin.latitude))))
    return GeoPoint(latitude=origin.latitude + dlat, longitude=origin.longitude + dlon)


def make_fix(east_m, north_m, t_s=0.0, accuracy=5.0, speed=1.4):
    return Fix(
        point=offset(east_m, north_m),
        horizontal_accuracy_m=accuracy,
        speed_mps=speed,
        timestamp_ms=T0_MS + int(t_s * 1000),
    )


def make_territory(territory_id, owner_id, corners):
    return FinalizedTerritory(
        territory_id=territory_id,
        owner_id=owner_id,
        polygon=tuple(offset(e, n) for e, n in corners),
        area_sq_m=0.0,
    )


@pytest.fixture
def origin():
    return ORIGIN


@pytest.fixture
def at():
    """Factory: at(east_m, north_m) -> GeoPoint."""
    return offset


@pytest.fixture
def fix_at():
    """Factory: fix_at(east_m, north_m, t_s, accuracy=5.0, speed=1.4) -> Fix."""
    return make_fix


@pytest.fixture
def territory():
    """Factory: territory(id, owner, [(east, north), ...]) -> FinalizedTerritory."""
    return make_territory


@pytest.fixture
def walk():
    """Factory: walk([(east, north), ...]) -> fixes 10 s apart at walking speed."""

    def _walk(offsets, start_s=0.0, accuracy=5.0, speed=1.4):
        return [make_fix(e, n, start_s + 10.0 * i, accuracy, speed) for i, (e, n) in enumerate(offsets)]

    return _walk


@pytest.fixture
def thresholds():
    """Claim rules with the default minimums and a tiny sample spacing."""
    return ValidationThresholds(
        min_points=10,
        min_total_distance_m=50.0,
        min_area_sq_m=100.0,
        closure_distance_m=30.0,
        min_sample_spacing_m=0.3,
        max_jump_m=100.0,
    )


# 12 points, 80 m x 5 m (400 m²), last point 5 m north of the first
ACCEPTED_LOOP = [
    (0, 0), (10, 0), (20, 0), (31, 0), (40, 0), (50, 0),
    (60, 0), (70, 0), (80, 0), (80, 5), (40, 5), (0, 5),
]
# Closes after 6 points
SHORT_LOOP = [(0, 0), (15, 0), (31, 0), (31, 15), (31, 25), (0, 5)]
# 80 m x 0.5 m (40 m²)
THIN_LOOP = [
    (0, 0), (10, 0), (20, 0), (31, 0), (40, 0), (50, 0),
    (60, 0), (70, 0), (80, 0), (80, 0.5), (40, 0.5), (0, 0.5),
]
# (80, 20) -> (50, -20) cuts back across the outbound leg
CROSSING_LOOP = [
    (0, 0), (10, 0), (20, 0), (31, 0), (40, 0), (50, 0),
    (60, 0), (70, 0), (80, 0), (80, 20), (50, -20), (0, -4),
]


@pytest.fixture
def loops():
    return {
        "accepted": ACCEPTED_LOOP,
        "short": SHORT_LOOP,
        "thin": THIN_LOOP,
        "crossing": CROSSING_LOOP,
    }
