"""Pytest configuration and shared fixtures."""

from pathlib import Path

import numpy as np
import pytest

from scptraj.config import load_scenario
from scptraj.environment import Environment
from scptraj.geometry import Sphere
from scptraj.models import DoubleIntegrator, SphereRobot
from scptraj.problem import Goal, GoalSet, define_problem, discretize
from scptraj.scvx import SCPParam, SCPProblem
from scptraj.socp_problem import TrustRegionConfig

GOAL_POSITION = (3.0, 2.0, 1.0)
CORRIDOR_SCENARIO = Path(__file__).resolve().parents[1] / "configs" / "corridor_corner.yaml"


@pytest.fixture
def linear_top():
    """Obstacle-free rest-to-rest double integrator, N=10, tf=9 (dt=1)."""
    goals = GoalSet()
    goals.add(9.0, Goal((0, 1, 2), Sphere(GOAL_POSITION, 0.1)))
    goals.add(9.0, Goal((3, 4, 5), Sphere(np.zeros(3), 0.1)))
    pd = define_problem(SphereRobot(collision_radius=0.0), DoubleIntegrator(), Environment(), np.zeros(6), goals)
    return discretize(pd, 10, 9.0, fixed_final_time=True)


@pytest.fixture
def linear_param():
    """Default SCvx settings with a looser stopping threshold for solver-precision noise."""
    return SCPParam(fixed_final_time=True, convergence_threshold=1e-2)


@pytest.fixture
def linear_scpp(linear_top, linear_param):
    """SCP problem for the linear scenario."""
    return SCPProblem.from_top(linear_top, linear_param)


@pytest.fixture
def goal_position():
    """Goal position of the linear scenario."""
    return np.array(GOAL_POSITION)


@pytest.fixture
def generous_trust_region():
    """Trust region wide enough never to bind on the linear scenario."""
    return TrustRegionConfig(radius_state=100.0, radius_control=100.0, min_radius=1e-3, max_radius=1e3)


@pytest.fixture
def corridor_cfg():
    """Shipped L-shaped corridor scenario with keep-in, keep-out and obstacle zones."""
    return load_scenario(CORRIDOR_SCENARIO)
