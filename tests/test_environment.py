"""Tests for environment construction and the collision workspace."""

import numpy as np
import pytest

from scptraj.environment import Environment, add_obstacles, build_environment, load_environment
from scptraj.errors import MalformedZoneData
from scptraj.geometry import Box
from scptraj.models import SphereRobot
from scptraj.workspace import Workspace

ZONES = {
    "keepin_zones": [
        {"corner1": [0.0, 0.0, 0.0], "corner2": [10.0, 2.0, 2.0]},
        {"corner1": [8.0, 0.0, 0.0], "corner2": [10.0, 10.0, 2.0]},
    ],
    "keepout_zones": [{"corner1": [-1.0, 3.0, 0.5], "corner2": [1.0, 4.0, 3.5]}],
}


def test_aabb_covers_keepin_and_keepout():
    """AABB is the component-wise min/max corner over keep-in and keep-out zones."""
    env = build_environment(ZONES)

    assert np.allclose(env.world_aabb_min, [-1.0, 0.0, 0.0])
    assert np.allclose(env.world_aabb_max, [10.0, 10.0, 3.5])
    assert env.has_finite_aabb


def test_obstacles_do_not_extend_aabb():
    """Adding obstacles outside the world leaves the AABB unchanged."""
    env = build_environment(ZONES)
    far = [{"center": [50.0, 50.0, 50.0], "radius": 1.0}, {"corner1": [-20, -20, -20], "corner2": [-19, -19, -19]}]

    updated = add_obstacles(env, far)

    assert len(updated.obstacle_set) == 2
    assert len(env.obstacle_set) == 0
    assert np.array_equal(updated.world_aabb_min, env.world_aabb_min)
    assert np.array_equal(updated.world_aabb_max, env.world_aabb_max)


def test_empty_environment_has_empty_aabb():
    """No keep-in/keep-out zones gives an inverted, infinite AABB."""
    env = Environment()

    assert np.all(env.world_aabb_min == np.inf)
    assert np.all(env.world_aabb_max == -np.inf)
    assert not env.has_finite_aabb


def test_update_aabb_after_zone_change():
    """Recomputing the AABB picks up a new keep-in zone."""
    env = build_environment(ZONES)
    env.keepin_zones.append(Box.from_corners([0.0, 0.0, 0.0], [20.0, 1.0, 1.0]))

    env.update_aabb()

    assert env.world_aabb_max[0] == pytest.approx(20.0)


def test_adding_zones_recomputes_aabb():
    """add_keepin/add_keepout grow the AABB without a manual update."""
    env = Environment()

    env.add_keepin(Box.from_corners([0.0, 0.0, 0.0], [4.0, 1.0, 1.0]))
    assert np.allclose(env.world_aabb_max, [4.0, 1.0, 1.0])

    env.add_keepout(Box.from_corners([-2.0, 0.0, 0.0], [-1.0, 1.0, 5.0]))
    assert np.allclose(env.world_aabb_min, [-2.0, 0.0, 0.0])
    assert np.allclose(env.world_aabb_max, [4.0, 1.0, 5.0])
    assert env.has_finite_aabb


@pytest.mark.parametrize(
    "data",
    [
        {"keepin_zones": [{"corner1": [0, 0, 0], "corner2": [1, 1, 0]}]},
        {"keepin_zones": [{"corner1": [0, 0], "corner2": [1, 1]}]},
        {"keepout_zones": [{"corner2": [1, 1, 1]}]},
        {"obstacles": [{"center": [0, 0, 0], "radius": 0.0}]},
        {"keepin": []},
    ],
)
def test_malformed_zone_data(data):
    """Degenerate, non-3-D, incomplete or unknown entries are rejected."""
    with pytest.raises(MalformedZoneData):
        build_environment(data)


def test_load_environment_from_yaml(tmp_path):
    """The loader accepts a file with an environment section."""
    path = tmp_path / "scene.yaml"
    path.write_text(
        "environment:\n"
        "  keepin_zones:\n"
        "    - {corner1: [0, 0, 0], corner2: [1, 1, 1]}\n"
        "  obstacles:\n"
        "    - {center: [0.5, 0.5, 0.5], radius: 0.1}\n",
        encoding="utf-8",
    )

    env = load_environment(path)

    assert len(env.keepin_zones) == 1
    assert len(env.obstacle_set) == 1


def test_workspace_contexts():
    """Keep-out context holds keep-out zones and obstacles, both shrunk by the robot radius."""
    env = add_obstacles(build_environment(ZONES), [{"center": [5.0, 1.0, 1.0], "radius": 0.5}])
    ws = Workspace.build(SphereRobot(collision_radius=0.25), env)

    assert len(ws.keepin) == 2
    assert len(ws.keepout) == 2
    dist, _ = ws.keepout.signed_distance(1, np.array([5.0, 1.0, 2.0]))
    assert dist == pytest.approx(1.0 - 0.5 - 0.25)

    idx, margin = ws.keepin.best_containment(np.array([9.0, 5.0, 1.0]))
    assert idx == 1
    assert margin == pytest.approx(1.0 - 0.25)
