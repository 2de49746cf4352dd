"""SCvx 迭代驱动。

每次外层迭代在当前估计处重新线性化，求解一个凸子问题，用价值函数评估候选解，
再通过信赖域比值检验决定接受或拒绝：

    线性化 → 构建子问题 → 求解 → 比值检验 → 信赖域更新 → 收敛判据
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .constraints import (
    ConstraintFamily,
    SCPConstraints,
    default_constraint_families,
    evaluate_violation,
    true_dynamics_defects,
)
from .errors import DimensionMismatch, SolverFailure
from .problem import GoalSet, ProblemDefinition, Trajectory, TrajectoryOptimizationProblem
from .socp_problem import SubproblemBuilder, TrustRegionConfig, trust_region_families
from .workspace import Workspace

logger = logging.getLogger(__name__)


@dataclass
class SCvxParam:
    """SCvx 算法参数集合。

    Attributes
    ----------
    max_iterations : int
        外层迭代次数上限。
    max_time_s : float
        墙钟时间上限，每次迭代开始时检查。
    max_solver_retries : int
        判定不可行前允许的连续求解失败次数。
    convergence_count : int
        停止所需的连续低于阈值的迭代次数。
    virtual_weight, slack_weight : float
        动力学虚拟控制与凸化不等式松弛变量的精确罚权重（价值函数中对应的
        真实违反量也使用同一权重）。
    feasibility_tolerance : float
        视为可行的违反量上限。
    tf_min_ratio, tf_max_ratio : float
        自由终端时间的上下界，以时间猜测的倍数表示。
    """

    max_iterations: int = 30
    max_time_s: float = math.inf
    max_solver_retries: int = 3
    convergence_count: int = 1
    virtual_weight: float = 1e3
    slack_weight: float = 1e3
    feasibility_tolerance: float = 1e-4
    tf_min_ratio: float = 0.25
    tf_max_ratio: float = 4.0


@dataclass
class SCPParam:
    fixed_final_time: bool
    convergence_threshold: float = 1e-3
    obstacle_toggle_distance: float = math.inf
    alg: SCvxParam = field(default_factory=SCvxParam)


@dataclass
class SCPProblem:
    """离散后的问题以及约束族读取的 SCP 参数。"""

    PD: ProblemDefinition
    WS: Workspace
    param: SCPParam
    N: int
    tf_guess: float
    dh: float
    goal_set: GoalSet

    @classmethod
    def from_top(cls, top: TrajectoryOptimizationProblem, param: Optional[SCPParam] = None) -> "SCPProblem":
        if param is None:
            param = SCPParam(fixed_final_time=top.fixed_final_time)
        return cls(
            PD=top.PD,
            WS=top.WS,
            param=param,
            N=top.N,
            tf_guess=top.tf_guess,
            dh=top.dh,
            goal_set=top.goal_set,
        )


class SCPStatus(Enum):
    INITIALIZED = "initialized"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITER_EXCEEDED = "max_iter_exceeded"
    INFEASIBLE = "infeasible"


class IterationStatus(Enum):
    INITIAL = "initial"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    SOLVER_FAILURE = "solver_failure"


@dataclass
class IterationLog:
    """单次外层迭代的诊断量（第 0 条对应初始猜测）。"""

    iter_idx: int
    iteration_status: str
    scp_status: str
    solver_status: str
    J_true: float
    J_candidate: float
    J_full: float
    rho: float
    convergence_measure: float
    feasibility_violation: float
    trust_radius_state: float
    trust_radius_control: float
    trust_radius_time: float
    virtual_norm: float
    slack_sum: float
    Tf: float
    elapsed_s: float

    @property
    def accepted(self) -> bool:
        return self.iteration_status == IterationStatus.ACCEPTED.value


@dataclass(frozen=True)
class SCPSolution:
    """一次已结束 SCP 运行的不可变记录。"""

    traj: Trajectory
    dual: Optional[np.ndarray]
    logs: Tuple[IterationLog, ...]
    status: SCPStatus
    successful: bool
    converged: bool
    iterations: int
    total_time: float
    feasibility_violation: float
    param: SCPParam
    constraints: SCPConstraints

    @property
    def J_true(self) -> List[float]:
        return [log.J_true for log in self.logs]

    @property
    def J_full(self) -> List[float]:
        return [log.J_full for log in self.logs]

    @property
    def solver_status(self) -> List[str]:
        return [log.solver_status for log in self.logs]

    @property
    def scp_status(self) -> List[str]:
        return [log.scp_status for log in self.logs]

    @property
    def accept_solution(self) -> List[bool]:
        return [log.accepted for log in self.logs]

    @property
    def convergence_measure(self) -> List[float]:
        return [log.convergence_measure for log in self.logs]

    @property
    def iter_elapsed_times(self) -> List[float]:
        return [log.elapsed_s for log in self.logs]

    @property
    def trust_radii(self) -> List[Tuple[float, float, float]]:
        return [(log.trust_radius_state, log.trust_radius_control, log.trust_radius_time) for log in self.logs]

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([asdict(log) for log in self.logs])


class SCPPlanner:
    """逐次凸化（SCvx）规划器。

    Parameters
    ----------
    scpp : SCPProblem
        离散后的问题与 SCP 参数。
    trust_region : TrustRegionConfig, optional
        信赖域设置。规划器只缩放自己的副本，调用方的配置可原样用于后续求解。
    solver_name : str, optional
        cvxpy 求解器名称（``"CLARABEL"``、``"ECOS"``、``"SCS"`` 等）；
        ``None`` 时由 cvxpy 自选已安装的求解器。
    families : Sequence[ConstraintFamily], optional
        约束族，默认为核心约束族加模型自带约束族；信赖域约束族总是追加在末尾。
    """

    def __init__(
        self,
        scpp: SCPProblem,
        *,
        trust_region: Optional[TrustRegionConfig] = None,
        solver_name: Optional[str] = None,
        solver_opts: Optional[Dict[str, object]] = None,
        families: Optional[Sequence[ConstraintFamily]] = None,
    ):
        self.scpp = scpp
        self.trust_region = replace(trust_region) if trust_region is not None else TrustRegionConfig.default()
        alg = scpp.param.alg
        self.builder = SubproblemBuilder(
            virtual_weight=alg.virtual_weight,
            slack_weight=alg.slack_weight,
            solver_name=solver_name,
            solver_opts=solver_opts,
        )
        base = list(families) if families is not None else default_constraint_families(scpp)
        self.families: List[ConstraintFamily] = base + trust_region_families(self.trust_region)
        self.status = SCPStatus.INITIALIZED
        self.logs: List[IterationLog] = []

    def merit(self, traj: Trajectory, scpc: SCPConstraints) -> Tuple[float, float]:
        """返回数值轨迹的 ``(J, violation)``。

        ``J`` 为真实代价加上加权的动力学残差与各计分约束的加权违反量；
        ``violation`` 为这两项不可行量的未加权之和。
        """

        alg = self.scpp.param.alg
        cost = float(self.scpp.PD.model.cost_true(traj, self.scpp))
        defect = float(np.sum(np.abs(true_dynamics_defects(self.scpp.PD.model, traj))))
        violation = evaluate_violation(scpc, traj)
        J = cost + alg.virtual_weight * defect + alg.slack_weight * violation
        return J, defect + violation

    def _check_initial(self, traj: Trajectory) -> None:
        model = self.scpp.PD.model
        if traj.N != self.scpp.N:
            raise DimensionMismatch(f"initial trajectory has {traj.N} samples, problem uses N={self.scpp.N}")
        if traj.X.shape[0] != model.x_dim or traj.U.shape[0] != model.u_dim:
            raise DimensionMismatch(
                f"initial trajectory is ({traj.X.shape[0]}, {traj.U.shape[0]}), "
                f"model expects ({model.x_dim}, {model.u_dim})"
            )

    def solve(self, traj_init: Optional[Trajectory] = None) -> SCPSolution:
        """从 ``traj_init``（或模型的直线初始猜测）开始运行 SCvx。"""

        t_start = time.perf_counter()
        scpp = self.scpp
        alg = scpp.param.alg
        traj = (traj_init if traj_init is not None else scpp.PD.model.initialize_trajectory(scpp)).copy()
        self._check_initial(traj)
        if scpp.param.fixed_final_time:
            traj.Tf = scpp.tf_guess

        scpc = SCPConstraints.initialize(self.families, scpp, traj)
        logger.debug("Constraint registry: %s", scpc.summary())
        J, violation = self.merit(traj, scpc)
        self.status = SCPStatus.ITERATING
        self.logs = [
            self._build_log(
                iter_idx=0,
                iteration_status=IterationStatus.INITIAL,
                solver_status="",
                J=J,
                J_candidate=J,
                J_full=math.nan,
                rho=math.nan,
                measure=math.nan,
                violation=violation,
                traj=traj,
                elapsed=time.perf_counter() - t_start,
            )
        ]

        dual: Optional[np.ndarray] = None
        failures = 0
        below = 0
        iteration = 0
        while True:
            if iteration >= alg.max_iterations or time.perf_counter() - t_start >= alg.max_time_s:
                self.status = SCPStatus.MAX_ITER_EXCEEDED
                break
            iteration += 1
            t_iter = time.perf_counter()

            scpc.update(self.families, scpp, traj)
            problem, handles = self.builder.build_problem(scpp, scpc, traj)
            try:
                candidate, diagnostics = self.builder.solve(problem, handles)
            except SolverFailure as exc:
                failures += 1
                logger.warning("Iteration %d: %s (failure %d)", iteration, exc, failures)
                self.trust_region.scale(self.trust_region.shrink_ratio)
                if failures > alg.max_solver_retries:
                    self.status = SCPStatus.INFEASIBLE
                self.logs.append(
                    self._build_log(
                        iter_idx=iteration,
                        iteration_status=IterationStatus.SOLVER_FAILURE,
                        solver_status=exc.status,
                        J=J,
                        J_candidate=math.nan,
                        J_full=math.nan,
                        rho=math.nan,
                        measure=math.nan,
                        violation=violation,
                        traj=traj,
                        elapsed=time.perf_counter() - t_iter,
                    )
                )
                if self.status is SCPStatus.INFEASIBLE:
                    break
                continue
            failures = 0

            new_dual = self.builder.dynamics_dual(scpc)
            if new_dual is not None:
                dual = new_dual

            J_candidate, violation_candidate = self.merit(candidate, scpc)
            L = diagnostics.optimal_value
            rho = self._evaluate_improvement(J, J_candidate, L)
            measure = abs(J - L) / max(abs(J), 1e-8)
            feasible_enough = (
                violation_candidate <= alg.feasibility_tolerance or violation_candidate <= violation
            )
            accepted = J_candidate < J and rho >= self.trust_region.rho_accept and feasible_enough
            self._update_trust_region(rho, accepted)
            if accepted:
                traj = candidate
                J, violation = J_candidate, violation_candidate

            below = below + 1 if measure < scpp.param.convergence_threshold else 0
            if below >= alg.convergence_count:
                self.status = SCPStatus.CONVERGED

            self.logs.append(
                self._build_log(
                    iter_idx=iteration,
                    iteration_status=IterationStatus.ACCEPTED if accepted else IterationStatus.REJECTED,
                    solver_status=diagnostics.solver_status,
                    J=J,
                    J_candidate=J_candidate,
                    J_full=L,
                    rho=rho,
                    measure=measure,
                    violation=violation,
                    traj=traj,
                    elapsed=time.perf_counter() - t_iter,
                    virtual_norm=diagnostics.virtual_norm,
                    slack_sum=diagnostics.slack_sum,
                )
            )
            logger.info(
                "SCvx iter %2d | %-8s | J=%.6e L=%.6e rho=%+.3f conv=%.2e viol=%.2e | r_x=%.3g r_u=%.3g",
                iteration,
                "accept" if accepted else "reject",
                J,
                L,
                rho,
                measure,
                violation,
                self.trust_region.radius_state,
                self.trust_region.radius_control,
            )
            if self.status is SCPStatus.CONVERGED:
                break

        scpc.validate()
        successful = self.status is not SCPStatus.INFEASIBLE and violation <= alg.feasibility_tolerance
        total_time = time.perf_counter() - t_start
        logger.info(
            "SCvx finished: %s after %d iterations in %.2f s (violation %.2e)",
            self.status.value,
            iteration,
            total_time,
            violation,
        )
        return SCPSolution(
            traj=traj.copy(),
            dual=None if dual is None else dual.copy(),
            logs=tuple(self.logs),
            status=self.status,
            successful=successful,
            converged=self.status is SCPStatus.CONVERGED,
            iterations=iteration,
            total_time=total_time,
            feasibility_violation=violation,
            param=scpp.param,
            constraints=scpc,
        )

    @staticmethod
    def _evaluate_improvement(J: float, J_candidate: float, L: float) -> float:
        """实际下降量与预测下降量之比 ρ。"""

        actual = J - J_candidate
        predicted = J - L
        if predicted <= 1e-12 * max(1.0, abs(J)):
            # 模型预测无下降：只要实际有下降即视为完全一致
            return 1.0 if actual > 0.0 else 0.0
        return float(actual / predicted)

    def _update_trust_region(self, rho: float, accepted: bool) -> None:
        trust = self.trust_region
        if not accepted:
            trust.scale(trust.shrink_ratio)
        elif rho >= trust.rho_expand:
            trust.scale(trust.expand_ratio)

    def _build_log(
        self,
        *,
        iter_idx: int,
        iteration_status: IterationStatus,
        solver_status: str,
        J: float,
        J_candidate: float,
        J_full: float,
        rho: float,
        measure: float,
        violation: float,
        traj: Trajectory,
        elapsed: float,
        virtual_norm: float = math.nan,
        slack_sum: float = math.nan,
    ) -> IterationLog:
        """把收集到的指标打包为 IterationLog 条目。"""

        return IterationLog(
            iter_idx=iter_idx,
            iteration_status=iteration_status.value,
            scp_status=self.status.value,
            solver_status=solver_status,
            J_true=float(J),
            J_candidate=float(J_candidate),
            J_full=float(J_full),
            rho=float(rho),
            convergence_measure=float(measure),
            feasibility_violation=float(violation),
            trust_radius_state=float(self.trust_region.radius_state),
            trust_radius_control=float(self.trust_region.radius_control),
            trust_radius_time=float(self.trust_region.radius_time),
            virtual_norm=float(virtual_norm),
            slack_sum=float(slack_sum),
            Tf=float(traj.Tf),
            elapsed_s=float(elapsed),
        )
