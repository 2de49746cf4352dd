"""基于 cvxpy 的凸子问题构建。

构建器把登记表中激活的类别组装成围绕当前估计的一个 cvxpy 问题：
线性化动力学由虚拟控制软化，凸化不等式由松弛变量软化，其余均为硬约束。
只有本模块接触求解器原生对象。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import cvxpy as cp
import numpy as np

from .constraints import (
    ConstraintCategory,
    ConstraintFamily,
    ConstraintKind,
    Convexity,
    DimType,
    Relation,
    SCPConstraints,
)
from .errors import SolverFailure
from .problem import Trajectory

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = frozenset({cp.OPTIMAL, cp.OPTIMAL_INACCURATE})


@dataclass
class TrustRegionConfig:
    """信赖域半径及调节半径所用的比值检验参数。"""

    radius_state: float
    radius_control: float
    min_radius: float
    max_radius: float
    radius_time: float = 1.0
    shrink_ratio: float = 0.5
    expand_ratio: float = 1.5
    rho_accept: float = 0.1
    rho_expand: float = 0.7

    @classmethod
    def default(cls) -> "TrustRegionConfig":
        return cls(radius_state=10.0, radius_control=10.0, min_radius=1e-3, max_radius=1e3)

    def scale(self, factor: float) -> None:
        self.radius_state = min(self.max_radius, max(self.min_radius, self.radius_state * factor))
        self.radius_control = min(self.max_radius, max(self.min_radius, self.radius_control * factor))
        self.radius_time = min(self.max_radius, max(self.min_radius, self.radius_time * factor))


def _state_trust_region(X, U, Tf, k, cat):
    p = cat.params
    exprs = [cp.norm(X[:, k] - p["x_ref"][:, k], 2) - p["radius"]]
    if p["free_time"] and k == 0:
        exprs.append(cp.abs(Tf - p["tf_ref"]) - p["radius_time"])
    return exprs


def _control_trust_region(X, U, Tf, k, cat):
    p = cat.params
    return [cp.norm(U[:, k] - p["u_ref"][:, k], 2) - p["radius"]]


def trust_region_families(trust_region: TrustRegionConfig) -> List[ConstraintFamily]:
    """信赖域约束族，在生成时读取（可变的）半径。

    半径不大于零时对应约束不生效。
    """

    def state(scpp, traj):
        if not trust_region.radius_state or trust_region.radius_state <= 0:
            return []
        params = {
            "x_ref": traj.X.copy(),
            "radius": trust_region.radius_state,
            "free_time": not scpp.param.fixed_final_time,
            "tf_ref": traj.Tf,
            "radius_time": trust_region.radius_time,
        }
        return [ConstraintCategory("state_trust_region", _state_trust_region, DimType.STATE, range(scpp.N), params=params)]

    def control(scpp, traj):
        if not trust_region.radius_control or trust_region.radius_control <= 0:
            return []
        params = {"u_ref": traj.U.copy(), "radius": trust_region.radius_control}
        return [
            ConstraintCategory("control_trust_region", _control_trust_region, DimType.CONTROL, range(scpp.N), params=params)
        ]

    return [
        ConstraintFamily("state_trust_region", ConstraintKind.STATE_TRUST_REGION_INEQ, state),
        ConstraintFamily("control_trust_region", ConstraintKind.CONTROL_TRUST_REGION_INEQ, control),
    ]


@dataclass
class SCPVariables:
    """单个子问题的决策变量句柄。

    终端时间固定时 ``Tf`` 是取值为时间猜测的参数，否则是有界变量。
    """

    X: cp.Variable
    U: cp.Variable
    Tf: object

    @classmethod
    def create(cls, scpp) -> "SCPVariables":
        X = cp.Variable((scpp.PD.model.x_dim, scpp.N))
        U = cp.Variable((scpp.PD.model.u_dim, scpp.N))
        if scpp.param.fixed_final_time:
            Tf = cp.Parameter(nonneg=True, value=scpp.tf_guess)
        else:
            Tf = cp.Variable(nonneg=True)
        return cls(X=X, U=U, Tf=Tf)

    def value(self) -> Trajectory:
        return Trajectory(np.asarray(self.X.value), np.asarray(self.U.value), float(self.Tf.value))


@dataclass
class SubproblemDiagnostics:
    """单次凸求解返回给迭代驱动的诊断信息。"""

    solver_status: str
    optimal_value: float
    cost: float
    virtual_norm: float
    slack_sum: float
    num_constraints: int


class SubproblemBuilder:
    """构建、求解并解码凸子问题。

    典型使用方式：

        builder = SubproblemBuilder(virtual_weight=1e3, slack_weight=1e3)
        problem, handles = builder.build_problem(scpp, scpc, traj_ref)
        candidate, diagnostics = builder.solve(problem, handles)
        dual = builder.dynamics_dual(scpc)
    """

    def __init__(
        self,
        *,
        virtual_weight: float,
        slack_weight: float,
        solver_name: Optional[str] = None,
        solver_opts: Optional[Dict[str, object]] = None,
    ):
        self.virtual_weight = float(virtual_weight)
        self.slack_weight = float(slack_weight)
        self.solver_name = solver_name
        self.solver_opts = solver_opts or {}

    def build_problem(self, scpp, scpc: SCPConstraints, traj_ref: Trajectory) -> Tuple[cp.Problem, Dict[str, object]]:
        variables = SCPVariables.create(scpp)
        X, U, Tf = variables.X, variables.U, variables.Tf
        virtual = cp.Variable((scpp.PD.model.x_dim, scpp.N - 1))
        slacks: List[cp.Variable] = []
        constraints = []

        for kind, cat in scpc.categories():
            cat.con_reference = []
            cat.var_reference = []
            if not kind.enters_subproblem:
                continue
            for k in cat.ind_time:
                for expr in cat.expressions(X, U, Tf, k):
                    if kind is ConstraintKind.DYNAMICS:
                        nu = virtual[:, k]
                        con = expr == nu
                        cat.var_reference.append(nu)
                    elif kind.relation is Relation.EQ:
                        con = expr == 0
                    elif kind.convexity is Convexity.CONVEXIFIED:
                        slack = cp.Variable(expr.shape, nonneg=True)
                        con = expr <= slack
                        slacks.append(slack)
                        cat.var_reference.append(slack)
                    else:
                        con = expr <= 0
                    constraints.append(con)
                    cat.con_reference.append(con)

        cost = scpp.PD.model.cost_convexified(X, U, Tf, traj_ref, scpp)
        virtual_term = cp.sum(cp.abs(virtual))
        slack_term = sum((cp.sum(s) for s in slacks), cp.Constant(0.0))
        objective = cp.Minimize(cost + self.virtual_weight * virtual_term + self.slack_weight * slack_term)
        problem = cp.Problem(objective, constraints)
        logger.debug("Subproblem with %d constraints and %d slack blocks", len(constraints), len(slacks))
        handles = {
            "variables": variables,
            "virtual": virtual,
            "slacks": slacks,
            "cost_expr": cost,
            "virtual_expr": virtual_term,
            "slack_expr": slack_term,
        }
        return problem, handles

    def solve(self, problem: cp.Problem, handles: Dict[str, object]) -> Tuple[Trajectory, SubproblemDiagnostics]:
        """求解并解码；没有可用原始解时抛出 ``SolverFailure``。"""

        solve_kwargs = dict(self.solver_opts)
        if self.solver_name:
            solve_kwargs["solver"] = self.solver_name
        try:
            problem.solve(**solve_kwargs)
        except cp.error.SolverError as exc:
            raise SolverFailure("solver_error", str(exc)) from exc
        status = str(problem.status)
        variables: SCPVariables = handles["variables"]
        if status not in SUCCESS_STATUSES:
            raise SolverFailure(status)
        if variables.X.value is None or variables.U.value is None:
            raise SolverFailure("no_solution", f"solver reported '{status}' without primal values")

        candidate = variables.value()
        diagnostics = SubproblemDiagnostics(
            solver_status=status,
            optimal_value=float(problem.value),
            cost=float(handles["cost_expr"].value),
            virtual_norm=float(handles["virtual_expr"].value),
            slack_sum=float(handles["slack_expr"].value),
            num_constraints=len(problem.constraints),
        )
        return candidate, diagnostics

    @staticmethod
    def dynamics_dual(scpc: SCPConstraints) -> Optional[np.ndarray]:
        """动力学约束的乘子，形状 ``(x_dim, N-1)``。"""

        columns = []
        for cat in scpc[ConstraintKind.DYNAMICS]:
            for con in cat.con_reference:
                if con.dual_value is None:
                    return None
                columns.append(np.asarray(con.dual_value, dtype=float).reshape(-1))
        if not columns:
            return None
        return np.column_stack(columns)
