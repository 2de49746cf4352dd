"""Tests for the double-integrator dynamics model."""

import numpy as np
import pytest

from scptraj.models import DoubleIntegrator, SphereRobot


def test_linearization_matches_finite_differences():
    """Analytic drag Jacobians agree with central differences."""
    model = DoubleIntegrator(drag=0.3)
    x = np.array([0.1, -0.2, 0.3, 0.5, -1.0, 0.25])
    u = np.array([0.2, 0.1, -0.3])
    f, A, B = model.linearize(x, u)

    eps = 1e-6
    A_fd = np.column_stack([(model.eom(x + eps * e, u) - model.eom(x - eps * e, u)) / (2 * eps) for e in np.eye(6)])
    B_fd = np.column_stack([(model.eom(x, u + eps * e) - model.eom(x, u - eps * e)) / (2 * eps) for e in np.eye(3)])

    assert np.allclose(f, model.eom(x, u))
    assert np.allclose(A, A_fd, atol=1e-6)
    assert np.allclose(B, B_fd, atol=1e-6)


def test_control_from_costate_is_clipped():
    """The minimum-energy control law saturates at u_max."""
    model = DoubleIntegrator(u_max=0.5)
    p = np.array([0.0, 0.0, 0.0, 4.0, -0.4, 0.0])

    u = model.control_from_costate(np.zeros(6), p)

    assert np.allclose(u, [-0.5, 0.2, 0.0])


def test_model_families_follow_bounds(linear_scpp):
    """Bounds only produce families when finite."""
    unbounded = DoubleIntegrator(zero_terminal_control=False)
    bounded = DoubleIntegrator(u_max=1.0, v_max=2.0)

    assert unbounded.constraint_families(linear_scpp) == []
    names = [family.name for family in bounded.constraint_families(linear_scpp)]
    assert names == ["velocity_bounds", "control_bounds", "terminal_control"]


def test_sphere_robot_radius_validation():
    """Negative collision radii are rejected."""
    with pytest.raises(ValueError):
        SphereRobot(collision_radius=-0.1)
