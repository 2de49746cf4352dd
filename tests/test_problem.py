"""Tests for goals, problem definition, trajectories and discretization."""

import numpy as np
import pytest

from scptraj.environment import Environment
from scptraj.errors import DimensionMismatch, InvalidDiscretization
from scptraj.geometry import Box, Sphere
from scptraj.models import DoubleIntegrator, SphereRobot
from scptraj.problem import Goal, GoalKind, GoalSet, Trajectory, define_problem, discretize


def _goal(center):
    return Goal((0, 1, 2), Sphere(center, 0.1))


def _problem(goals=None):
    goals = goals if goals is not None else GoalSet()
    return define_problem(SphereRobot(0.1), DoubleIntegrator(), Environment(), np.zeros(6), goals)


def test_goal_dimension_must_match_region():
    """A goal on two coordinates cannot use a 3-D region."""
    with pytest.raises(DimensionMismatch):
        Goal((0, 1), Sphere([0.0, 0.0, 0.0], 1.0))


def test_region_goal_needs_box():
    """Region goals are boxes."""
    with pytest.raises(ValueError):
        Goal((0, 1, 2), Sphere([0.0, 0.0, 0.0], 1.0), kind=GoalKind.REGION)
    goal = Goal((0, 1, 2), Box.from_corners([0, 0, 0], [1, 1, 1]), kind="region")
    assert goal.kind is GoalKind.REGION


def test_goal_set_range_queries_keep_insertion_order():
    """Range queries are inclusive and equal times come back oldest first."""
    goals = GoalSet()
    first, second, early = _goal([1, 0, 0]), _goal([2, 0, 0]), _goal([3, 0, 0])
    goals.add(5.0, first)
    goals.add(1.0, early)
    goals.add(5.0, second)

    assert [g for _, g in goals] == [early, first, second]
    assert goals.at(5.0) == [first, second]
    assert [g for _, g in goals.in_range(0.0, 4.9)] == [early]
    assert len(goals.in_range(1.0, 5.0)) == 3


def test_define_problem_dimension_checks():
    """x_init length and goal coordinates are checked against the model."""
    model = DoubleIntegrator()
    with pytest.raises(DimensionMismatch):
        define_problem(SphereRobot(0.1), model, Environment(), np.zeros(5), GoalSet())

    goals = GoalSet()
    goals.add(1.0, Goal((4, 5, 6), Sphere([0, 0, 0], 1.0)))
    with pytest.raises(DimensionMismatch):
        define_problem(SphereRobot(0.1), model, Environment(), np.zeros(6), goals)


@pytest.mark.parametrize("N", [1, 0, 2.5])
def test_discretize_rejects_bad_step_count(N):
    """Fewer than two steps (or a fractional count) cannot define a grid."""
    with pytest.raises(InvalidDiscretization):
        discretize(_problem(), N, 9.0)


def test_discretize_rejects_nonpositive_time():
    """The final-time guess must be positive."""
    with pytest.raises(InvalidDiscretization):
        discretize(_problem(), 10, 0.0)


def test_discretize_grid_and_goal_steps():
    """N=10, tf=9 gives a unit step; goals snap to the nearest step, half up, clamped."""
    goals = GoalSet()
    at_mid, at_half, at_end, late, early = (_goal([i, 0, 0]) for i in range(5))
    goals.add(4.4, at_mid)
    goals.add(4.5, at_half)
    goals.add(9.0, at_end)
    goals.add(100.0, late)
    goals.add(-3.0, early)

    top = discretize(_problem(goals), 10, 9.0)
    steps = {goal.center()[0]: goal.ind_time for _, goal in top.goal_set}

    assert top.dh == pytest.approx(1.0 / 9.0)
    assert Trajectory.blank(top).dt == pytest.approx(1.0)
    assert steps == {0.0: 4, 1.0: 5, 2.0: 9, 3.0: 9, 4.0: 0}
    assert len(top.WS.keepin) == 0


def test_discretizing_twice_keeps_earlier_goal_steps():
    """Each discretization pins its own copies; the definition's goals stay unassigned."""
    goals = GoalSet()
    goal = _goal([3, 2, 1])
    goals.add(9.0, goal)
    pd = _problem(goals)

    fine = discretize(pd, 10, 9.0)
    coarse = discretize(pd, 4, 9.0)

    assert [g.ind_time for _, g in fine.goal_set] == [9]
    assert [g.ind_time for _, g in coarse.goal_set] == [3]
    assert goal.ind_time is None
    assert fine.N == 10


def test_trajectory_dt_and_copy():
    """dt follows Tf and N; copies share no state."""
    traj = Trajectory(np.zeros((6, 5)), np.zeros((3, 5)), 8.0)
    assert traj.dt == pytest.approx(2.0)
    assert np.allclose(traj.t_nodes, [0.0, 2.0, 4.0, 6.0, 8.0])

    clone = traj.copy()
    clone.X[0, 0] = 1.0
    clone.U[0, 0] = 1.0
    clone.Tf = 4.0

    assert traj.X[0, 0] == 0.0
    assert traj.U[0, 0] == 0.0
    assert traj.dt == pytest.approx(2.0)
    assert clone.dt == pytest.approx(1.0)


def test_trajectory_shape_validation():
    """Sample counts must agree and be at least two."""
    with pytest.raises(DimensionMismatch):
        Trajectory(np.zeros((6, 5)), np.zeros((3, 4)), 1.0)
    with pytest.raises(InvalidDiscretization):
        Trajectory(np.zeros((6, 1)), np.zeros((3, 1)), 1.0)
