import pytest

from pacmac.schemas.location_schema import Coordinates
from pacmac.services.proximity import (
    DEFAULT_RADIUS_METERS,
    haversine_distance_meters,
    verify_proximity,
)

BRATISLAVA = Coordinates(latitude=48.1486, longitude=17.1077)
VIENNA = Coordinates(latitude=48.2082, longitude=16.3738)


def test_identical_coordinates_are_within_range():
    result = verify_proximity(BRATISLAVA, BRATISLAVA)

    assert result.distance_meters == 0
    assert result.within_range


def test_distant_points_are_out_of_range():
    result = verify_proximity(BRATISLAVA, VIENNA)

    assert result.distance_meters == pytest.approx(54_900, rel=0.02)
    assert not result.within_range


def test_distance_is_symmetric():
    assert haversine_distance_meters(BRATISLAVA, VIENNA) == pytest.approx(
        haversine_distance_meters(VIENNA, BRATISLAVA)
    )


def test_points_a_few_meters_apart_are_within_default_radius():
    # 0.0001 degrees of latitude is roughly 11 m
    nearby = Coordinates(latitude=48.1487, longitude=17.1077)
    result = verify_proximity(BRATISLAVA, nearby)

    assert result.distance_meters == pytest.approx(11.1, abs=0.5)
    assert result.within_range


def test_radius_boundary_is_inclusive():
    nearby = Coordinates(latitude=48.1487, longitude=17.1077)
    distance = haversine_distance_meters(BRATISLAVA, nearby)

    assert verify_proximity(BRATISLAVA, nearby, radius_meters=distance).within_range
    assert not verify_proximity(
        BRATISLAVA, nearby, radius_meters=distance - 0.01
    ).within_range


def test_default_radius_is_one_hundred_feet():
    assert DEFAULT_RADIUS_METERS == pytest.approx(100 * 0.3048)


def test_antipodal_points_do_not_fail():
    north = Coordinates(latitude=90, longitude=0)
    south = Coordinates(latitude=-90, longitude=0)

    assert haversine_distance_meters(north, south) == pytest.approx(20_015_086, rel=0.001)
