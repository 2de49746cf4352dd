"""Tests for the constraint registry, core families and obstacle toggling."""

import numpy as np
import pytest

from scptraj.constraints import (
    ConstraintCategory,
    ConstraintKind,
    Convexity,
    DimType,
    Relation,
    SCPConstraints,
    default_constraint_families,
    evaluate_violation,
    keepout_categories,
    true_dynamics_defects,
)
from scptraj.geometry import Box, Sphere
from scptraj.problem import Trajectory
from scptraj.workspace import CollisionContext


def _context(*zones, radius=0.0):
    inf = np.full(3, np.inf)
    return CollisionContext(tuple(zones), radius, inf, -inf)


def _still_traj(point, N=4):
    X = np.zeros((6, N))
    X[:3, :] = np.asarray(point, dtype=float)[:, None]
    return Trajectory(X, np.zeros((3, N)), 3.0)


def test_eighteen_slots_with_consistent_axes():
    """The taxonomy has 18 slots; only convexified and trust-region slots are regenerated."""
    assert len(ConstraintKind) == 18
    assert len({kind.slot for kind in ConstraintKind}) == 18
    regenerated = {kind for kind in ConstraintKind if kind.regenerated_each_iteration}
    assert ConstraintKind.DYNAMICS in regenerated
    assert ConstraintKind.NONCONVEX_STATE_CONVEXIFIED_INEQ in regenerated
    assert ConstraintKind.STATE_TRUST_REGION_INEQ in regenerated
    assert ConstraintKind.CONVEX_STATE_INEQ not in regenerated
    assert not ConstraintKind.NONCONVEX_STATE_INEQ.enters_subproblem
    assert ConstraintKind.CONVEX_STATE_BC_INEQ.is_boundary_condition
    assert ConstraintKind.CONVEX_STATE_BC_INEQ.relation is Relation.INEQ
    assert ConstraintKind.NONCONVEX_STATE_BC_CONVEXIFIED_EQ.convexity is Convexity.CONVEXIFIED


def test_registry_initialization_files_each_category_once(linear_scpp):
    """Every generated category lives in exactly one slot."""
    traj = linear_scpp.PD.model.initialize_trajectory(linear_scpp)
    scpc = SCPConstraints.initialize(default_constraint_families(linear_scpp), linear_scpp, traj)

    scpc.validate()
    assert scpc.names(ConstraintKind.DYNAMICS) == ["dynamics"]
    assert scpc.names(ConstraintKind.STATE_INIT_EQ) == ["initial_state"]
    assert scpc.names(ConstraintKind.CONVEX_STATE_BC_EQ) == ["goal_point", "goal_point"]
    assert scpc.names(ConstraintKind.CONVEX_CONTROL_EQ) == ["terminal_control"]
    # no zones, unbounded world, fixed final time
    assert scpc[ConstraintKind.CONVEX_STATE_INEQ] == ()
    assert scpc[ConstraintKind.NONCONVEX_STATE_CONVEXIFIED_INEQ] == ()
    for cat in scpc.find("goal_point"):
        assert cat.ind_time == (9,)
        assert scpc.kind_of(cat) is ConstraintKind.CONVEX_STATE_BC_EQ


def test_registry_rejects_category_in_two_slots():
    """Filing the same category twice is an error."""
    cat = ConstraintCategory("dup", lambda X, U, Tf, k, c: [X[:, k]], DimType.STATE, (0,))
    scpc = SCPConstraints()
    scpc.add(ConstraintKind.CONVEX_STATE_EQ, cat)
    scpc.add(ConstraintKind.CONVEX_STATE_INEQ, cat)

    with pytest.raises(ValueError):
        scpc.validate()


def test_update_regenerates_only_trajectory_dependent_families(linear_scpp):
    """Convex categories survive an update untouched; dynamics is rebuilt."""
    families = default_constraint_families(linear_scpp)
    traj = linear_scpp.PD.model.initialize_trajectory(linear_scpp)
    scpc = SCPConstraints.initialize(families, linear_scpp, traj)
    init_cat = scpc[ConstraintKind.STATE_INIT_EQ][0]
    dyn_cat = scpc[ConstraintKind.DYNAMICS][0]

    scpc.update(families, linear_scpp, traj)

    assert scpc[ConstraintKind.STATE_INIT_EQ][0] is init_cat
    assert scpc[ConstraintKind.DYNAMICS][0] is not dyn_cat
    assert len(scpc[ConstraintKind.DYNAMICS]) == 1


def test_violation_and_defects_of_straight_line(linear_scpp):
    """The straight-line guess meets the boundary conditions but not the dynamics."""
    traj = linear_scpp.PD.model.initialize_trajectory(linear_scpp)
    scpc = SCPConstraints.initialize(default_constraint_families(linear_scpp), linear_scpp, traj)

    assert evaluate_violation(scpc, traj) == pytest.approx(0.0)
    defects = true_dynamics_defects(linear_scpp.PD.model, traj)
    assert defects.shape == (6, 9)
    assert np.sum(np.abs(defects)) == pytest.approx(6.0)


def test_toggle_boundary_is_strict():
    """A zone exactly at the toggle distance is excluded, just inside it is included."""
    ctx = _context(Box.from_corners([2.0, -1.0, -1.0], [3.0, 1.0, 1.0]))
    traj = _still_traj([0.0, 0.0, 0.0])

    assert keepout_categories(ctx, traj, slice(0, 3), 2.0) == []
    included = keepout_categories(ctx, traj, slice(0, 3), 2.0 + 1e-9)
    assert len(included) == 1
    assert included[0].ind_other == (0,)
    assert included[0].ind_time == (0, 1, 2, 3)


def test_toggle_uses_closest_step_and_constrains_only_near_steps():
    """A zone enters when its closest approach is in range; far steps stay unconstrained."""
    ctx = _context(Sphere([0.0, 0.0, 5.0], 1.0))
    X = np.zeros((6, 3))
    X[2, :] = [0.0, 2.0, 3.5]  # distances 4.0, 2.0, 0.5
    traj = Trajectory(X, np.zeros((3, 3)), 2.0)

    assert keepout_categories(ctx, traj, slice(0, 3), 0.5) == []
    cats = keepout_categories(ctx, traj, slice(0, 3), 3.0)
    assert len(cats) == 1
    assert cats[0].ind_time == (1, 2)


def test_toggle_zero_removes_every_zone_even_when_penetrating():
    """With toggle 0 nothing is constrained; a penetrated zone counts as distance 0."""
    ctx = _context(Box.from_corners([-1.0, -1.0, -1.0], [1.0, 1.0, 1.0]), Sphere([0.0, 0.0, 5.0], 1.0))
    traj = _still_traj([0.0, 0.0, 0.0])

    assert keepout_categories(ctx, traj, slice(0, 3), 0.0) == []
    inside = keepout_categories(ctx, traj, slice(0, 3), 1e-6)
    assert [cat.ind_other for cat in inside] == [(0,)]


def test_keepout_linearization_matches_distance_at_reference():
    """The convexified clearance equals the true clearance at the reference point."""
    ctx = _context(Sphere([0.0, 0.0, 5.0], 1.0), radius=0.5)
    traj = _still_traj([0.0, 0.0, 0.0])
    (cat,) = keepout_categories(ctx, traj, slice(0, 3), np.inf)

    value = cat.evaluate(traj.X, traj.U, traj.Tf, 0)

    assert value == pytest.approx([-(4.0 - 0.5)])
