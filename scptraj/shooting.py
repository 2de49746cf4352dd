"""以 SCP 动力学乘子为初值的间接打靶精化。

未知量为初始协态 ``p0``。给定猜测后，在动力学模型提供的庞特里亚金控制律下
同时积分状态与协态；残差由目标分量上的终端误差和其余分量上的自由端横截条件
``p_i(tf) = 0`` 组成，由 ``scipy.optimize.root`` 求零。
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import List, Tuple

import numpy as np
from scipy.integrate import solve_ivp
from scipy.optimize import root

from .errors import ShootingDivergence
from .problem import ProblemDefinition, Trajectory, TrajectoryOptimizationProblem
from .workspace import Workspace

logger = logging.getLogger(__name__)


@dataclass
class ShootingProblem:
    PD: ProblemDefinition
    WS: Workspace
    p0: np.ndarray
    N: int
    tf: float
    dt: float
    x_goal: np.ndarray
    goal_mask: np.ndarray

    @classmethod
    def from_scp(cls, top: TrajectoryOptimizationProblem, scps) -> "ShootingProblem":
        """由已结束的 SCP 运行构造打靶问题。

        终端目标汇集时间等于 ``top.tf_guess`` 的所有目标，多个目标共享分量时以后
        插入者为准。初始协态取第一个区间动力学乘子的相反数（无乘子时取零）。
        """

        x_dim = top.PD.model.x_dim
        x_goal, mask = top.goal_set.target_at(top.tf_guess, x_dim)
        if scps.dual is not None:
            p0 = -np.asarray(scps.dual, dtype=float)[:, 0]
        else:
            p0 = np.zeros(x_dim)
        tf = float(scps.traj.Tf)
        return cls(
            PD=top.PD,
            WS=top.WS,
            p0=p0,
            N=top.N,
            tf=tf,
            dt=tf / (top.N - 1),
            x_goal=x_goal,
            goal_mask=mask,
        )


@dataclass
class ShootingSolution:
    """一次打靶求解的结果；历史列表每次残差评估记录一条。"""

    traj: Trajectory
    p0: np.ndarray
    converged: bool
    message: str = ""
    residual_norm: float = float("nan")
    J_true: List[float] = field(default_factory=list)
    prob_status: List[str] = field(default_factory=list)
    convergence_measure: List[float] = field(default_factory=list)
    iter_elapsed_times: List[float] = field(default_factory=list)


class ShootingSolver:
    """用 ``scipy.optimize.root`` 求解初始协态。

    Parameters
    ----------
    rtol, atol : float
        ``solve_ivp`` 容差。
    tol : float
        视为收敛的残差范数。
    method : str
        ``scipy.optimize.root`` 方法。
    max_evaluations : int
        残差评估次数上限。
    """

    def __init__(
        self,
        *,
        rtol: float = 1e-8,
        atol: float = 1e-10,
        tol: float = 1e-6,
        method: str = "hybr",
        max_evaluations: int = 200,
    ):
        self.rtol = rtol
        self.atol = atol
        self.tol = tol
        self.method = method
        self.max_evaluations = max_evaluations

    def integrate(self, sp: ShootingProblem, p0: np.ndarray) -> Tuple[Trajectory, np.ndarray]:
        """从 ``(x_init, p0)`` 出发积分状态与协态。

        返回采样轨迹和协态采样 ``(x_dim, N)``；积分失败或出现非有限值时抛出
        ``ShootingDivergence``。
        """

        model = sp.PD.model
        n = model.x_dim

        def rhs(t: float, z: np.ndarray) -> np.ndarray:
            x, p = z[:n], z[n:]
            u = model.control_from_costate(x, p)
            f, A, _ = model.linearize(x, u)
            return np.concatenate([f, -A.T @ p])

        z0 = np.concatenate([np.asarray(sp.PD.x_init, dtype=float), np.asarray(p0, dtype=float)])
        t_eval = np.linspace(0.0, sp.tf, sp.N)
        sol = solve_ivp(rhs, (0.0, sp.tf), z0, t_eval=t_eval, method="RK45", rtol=self.rtol, atol=self.atol)
        if not sol.success or sol.y.shape[1] != sp.N or not np.all(np.isfinite(sol.y)):
            raise ShootingDivergence(f"state/costate integration failed: {sol.message}")

        X = sol.y[:n]
        P = sol.y[n:]
        U = np.column_stack([model.control_from_costate(X[:, k], P[:, k]) for k in range(sp.N)])
        return Trajectory(X, U, sp.tf), P

    def residual(self, sp: ShootingProblem, X: np.ndarray, P: np.ndarray) -> np.ndarray:
        x_tf = X[:, -1]
        p_tf = P[:, -1]
        return np.where(sp.goal_mask, x_tf - sp.x_goal, p_tf)

    def solve(self, sp: ShootingProblem, traj_init: Trajectory) -> ShootingSolution:
        """求解 ``p0``；发散通过 ``converged=False`` 报告。

        发散前已出现的残差不超过 ``tol`` 的评估仍然有效。最后一个控制采样在欧拉
        网格上不参与动力学，直接取自 ``traj_init``。
        """

        t_start = time.perf_counter()
        model = sp.PD.model
        solution = ShootingSolution(traj=traj_init.copy(), p0=np.asarray(sp.p0, dtype=float).copy(), converged=False)
        best = {"norm": np.inf, "traj": None, "p0": None}

        def fun(p0: np.ndarray) -> np.ndarray:
            t_eval = time.perf_counter()
            try:
                traj, P = self.integrate(sp, p0)
            except ShootingDivergence:
                solution.prob_status.append("diverged")
                solution.convergence_measure.append(np.inf)
                solution.J_true.append(np.nan)
                solution.iter_elapsed_times.append(time.perf_counter() - t_eval)
                raise
            res = self.residual(sp, traj.X, P)
            norm = float(np.linalg.norm(res))
            solution.prob_status.append("evaluated")
            solution.convergence_measure.append(norm)
            solution.J_true.append(float(model.cost_true(traj, sp)))
            solution.iter_elapsed_times.append(time.perf_counter() - t_eval)
            if norm < best["norm"]:
                best.update(norm=norm, traj=traj, p0=np.array(p0, dtype=float))
            return res

        options = {"maxfev": self.max_evaluations} if self.method == "hybr" else {}
        try:
            result = root(fun, solution.p0, method=self.method, options=options)
            solution.message = str(result.message)
        except ShootingDivergence as exc:
            logger.warning("Shooting diverged: %s", exc)
            solution.message = str(exc)

        solution.residual_norm = float(best["norm"])
        if best["traj"] is not None and best["norm"] <= self.tol:
            traj = best["traj"]
            traj.U[:, -1] = traj_init.U[:, -1]
            solution.traj = traj
            solution.p0 = best["p0"]
            solution.converged = True
        logger.info(
            "Shooting %s after %d evaluations in %.2f s (residual %.2e)",
            "converged" if solution.converged else "did not converge",
            len(solution.convergence_measure),
            time.perf_counter() - t_start,
            best["norm"],
        )
        return solution
