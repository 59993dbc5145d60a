import math

import pytest

from services.geo import Coordinate, EARTH_RADIUS_KM, coordinate_from_raw, distance_meters


def test_identical_points_are_zero_apart():
    point = Coordinate(14.5995, 120.9842)
    assert distance_meters(point, point) == 0.0


def test_distance_is_symmetric():
    a = Coordinate(14.5995, 120.9842)
    b = Coordinate(41.3111, 69.2797)
    assert distance_meters(a, b) == pytest.approx(distance_meters(b, a))


@pytest.mark.parametrize(
    "a, b",
    [
        (Coordinate(0.0, 0.0), Coordinate(0.0, 180.0)),
        (Coordinate(90.0, 0.0), Coordinate(-90.0, 0.0)),
        (Coordinate(14.5995, 120.9842), Coordinate(-14.5995, -59.0158)),
    ],
)
def test_antipodal_points_are_half_circumference_apart(a, b):
    expected = math.pi * EARTH_RADIUS_KM * 1000
    assert distance_meters(a, b) == pytest.approx(expected, rel=1e-6)


def test_courier_sixty_meters_from_destination():
    destination = Coordinate(14.5995, 120.9842)
    driver = Coordinate(14.5990, 120.9840)
    assert 55 < distance_meters(driver, destination) < 65


def test_one_degree_of_latitude():
    assert distance_meters(Coordinate(0, 0), Coordinate(1, 0)) == pytest.approx(111_195, rel=1e-3)


def test_coordinate_from_numeric_strings():
    assert coordinate_from_raw("14.5995", " 120.9842 ") == Coordinate(14.5995, 120.9842)


def test_coordinate_from_numbers():
    assert coordinate_from_raw(-33, 151.2) == Coordinate(-33.0, 151.2)


@pytest.mark.parametrize(
    "latitude, longitude",
    [
        (None, "120.9842"),
        ("14.5995", None),
        ("", "120.9842"),
        ("abc", "120.9842"),
        ("nan", "120.9842"),
        ("14.5995", "inf"),
        (True, 120.0),
        ("91", "0"),
        ("0", "-180.5"),
        ({"lat": 1}, 2),
    ],
)
def test_coordinate_from_raw_rejects_garbage(latitude, longitude):
    with pytest.raises(ValueError):
        coordinate_from_raw(latitude, longitude)
