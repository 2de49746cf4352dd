"""Tests for box/sphere primitives and signed distances."""

import numpy as np
import pytest

from scptraj.errors import MalformedZoneData
from scptraj.geometry import Box, Sphere, zone_from_data


def test_box_from_corners_any_order():
    """Opposite corners given in either order describe the same box."""
    box = Box.from_corners([2.0, 0.0, 5.0], [0.0, 1.0, 3.0])

    assert np.allclose(box.min_corner, [0.0, 0.0, 3.0])
    assert np.allclose(box.max_corner, [2.0, 1.0, 5.0])
    assert np.allclose(box.center(), [1.0, 0.5, 4.0])


def test_box_zero_extent_rejected():
    """A flat box is malformed."""
    with pytest.raises(MalformedZoneData):
        Box.from_corners([0.0, 0.0, 0.0], [1.0, 0.0, 1.0])


def test_box_signed_distance_outside_and_inside():
    """Distance is positive outside with an outward normal, negative inside."""
    box = Box.from_corners([0.0, 0.0, 0.0], [2.0, 2.0, 2.0])

    dist, grad = box.signed_distance([4.0, 1.0, 1.0])
    assert dist == pytest.approx(2.0)
    assert np.allclose(grad, [1.0, 0.0, 0.0])

    dist, grad = box.signed_distance([1.0, 1.0, 0.25])
    assert dist == pytest.approx(-0.25)
    assert np.allclose(grad, [0.0, 0.0, -1.0])


def test_sphere_signed_distance():
    """Sphere distance is center distance minus radius."""
    sphere = Sphere([0.0, 0.0, 5.0], 1.0)

    dist, grad = sphere.signed_distance([0.0, 0.0, 0.0])

    assert dist == pytest.approx(4.0)
    assert np.allclose(grad, [0.0, 0.0, -1.0])


def test_sphere_radius_must_be_positive():
    """Zero and negative radii are malformed."""
    with pytest.raises(MalformedZoneData):
        Sphere([0.0, 0.0, 0.0], 0.0)
    with pytest.raises(MalformedZoneData):
        Sphere([0.0, 0.0, 0.0], -1.0)


def test_zone_from_data():
    """Entries parse to boxes or spheres depending on their keys."""
    assert isinstance(zone_from_data({"corner1": [0, 0, 0], "corner2": [1, 1, 1]}), Box)
    assert isinstance(zone_from_data({"center": [0, 0, 0], "radius": 1.0}), Sphere)
    with pytest.raises(MalformedZoneData):
        zone_from_data({"corner1": [0, 0, 0]})
    with pytest.raises(MalformedZoneData):
        zone_from_data({"corner1": [0, 0, float("nan")], "corner2": [1, 1, 1]})
