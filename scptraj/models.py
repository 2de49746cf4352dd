"""机器人外形与动力学模型。

动力学模型是优化器中可替换的部分：提供运动方程及其雅可比矩阵、真实代价与
凸化代价、自身的约束族、初始猜测，以及打靶所用的庞特里亚金控制律。
目前提供 ``DoubleIntegrator``。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

import cvxpy as cp
import numpy as np

from .constraints import ConstraintCategory, ConstraintFamily, ConstraintKind, DimType
from .problem import Trajectory


@dataclass(frozen=True)
class SphereRobot:
    """碰撞查询时以包络球近似的机器人。"""

    collision_radius: float
    kind: str = "sphere"

    def __post_init__(self) -> None:
        if self.collision_radius < 0.0:
            raise ValueError("collision radius must be non-negative")


class DynamicsModel:
    """各动力学模型需实现的接口。"""

    kind = "abstract"
    x_dim = 0
    u_dim = 0
    position_slice = slice(0, 3)

    def eom(self, x: np.ndarray, u: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def linearize(self, x: np.ndarray, u: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """返回 ``(x, u)`` 处的 ``(f, A, B)``：状态导数及其对状态/控制的雅可比矩阵。"""

        raise NotImplementedError

    def cost_true(self, traj: Trajectory, scpp) -> float:
        raise NotImplementedError

    def cost_convexified(self, X, U, Tf, traj_ref: Trajectory, scpp):
        raise NotImplementedError

    def constraint_families(self, scpp) -> List[ConstraintFamily]:
        return []

    def initialize_trajectory(self, scpp) -> Trajectory:
        raise NotImplementedError

    def control_from_costate(self, x: np.ndarray, p: np.ndarray) -> np.ndarray:
        raise NotImplementedError


def _velocity_bounds(X, U, Tf, k, cat):
    v = X[cat.params["vel"], k]
    return [v - cat.params["v_max"], -v - cat.params["v_max"]]


def _control_bounds(X, U, Tf, k, cat):
    return [U[:, k] - cat.params["u_max"], -U[:, k] - cat.params["u_max"]]


def _terminal_control(X, U, Tf, k, cat):
    return [U[:, k]]


class DoubleIntegrator(DynamicsModel):
    """三维质点，状态 ``[r, v]``，控制量为加速度。

    ``drag > 0`` 时二次阻力项 ``-drag * |v| * v`` 使动力学非线性。
    运行代价为控制能量 ``sum_k dt * |u_k|^2`` 加上 ``time_weight * Tf``。

    Parameters
    ----------
    u_max : float
        各轴加速度上限。
    v_max : float
        各轴速度上限。
    drag : float
        二次阻力系数。
    time_weight : float
        终端时间权重（仅在终端时间自由时起作用）。
    zero_terminal_control : bool
        固定最后一个控制采样（欧拉离散不会用到它）。
    """

    kind = "double_integrator"
    x_dim = 6
    u_dim = 3
    position_slice = slice(0, 3)
    velocity_slice = slice(3, 6)

    def __init__(
        self,
        *,
        u_max: float = np.inf,
        v_max: float = np.inf,
        drag: float = 0.0,
        time_weight: float = 0.0,
        zero_terminal_control: bool = True,
    ):
        self.u_max = float(u_max)
        self.v_max = float(v_max)
        self.drag = float(drag)
        self.time_weight = float(time_weight)
        self.zero_terminal_control = bool(zero_terminal_control)

    def eom(self, x: np.ndarray, u: np.ndarray) -> np.ndarray:
        v = x[3:6]
        dv = u - self.drag * np.linalg.norm(v) * v
        return np.concatenate([v, dv])

    def linearize(self, x: np.ndarray, u: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        v = x[3:6]
        A = np.zeros((6, 6))
        A[0:3, 3:6] = np.eye(3)
        v_norm = np.linalg.norm(v)
        if self.drag > 0.0 and v_norm > 1e-12:
            # d(|v| v)/dv = |v| I + v v^T / |v|
            A[3:6, 3:6] = -self.drag * (v_norm * np.eye(3) + np.outer(v, v) / v_norm)
        B = np.zeros((6, 3))
        B[3:6, :] = np.eye(3)
        return self.eom(x, u), A, B

    def cost_true(self, traj: Trajectory, scpp) -> float:
        energy = float(np.sum(traj.U[:, :-1] ** 2))
        return traj.dt * energy + self.time_weight * traj.Tf

    def cost_convexified(self, X, U, Tf, traj_ref: Trajectory, scpp):
        # dt * |u|^2 关于 (Tf, u) 是双线性的，每次冻结其中一个因子
        dh = scpp.dh
        energy_ref = float(np.sum(traj_ref.U[:, :-1] ** 2))
        return (
            traj_ref.Tf * dh * cp.sum_squares(U[:, :-1])
            + dh * energy_ref * (Tf - traj_ref.Tf)
            + self.time_weight * Tf
        )

    def constraint_families(self, scpp) -> List[ConstraintFamily]:
        families = []
        N = scpp.N
        if np.isfinite(self.v_max):

            def velocity(scpp, traj):
                params = {"vel": self.velocity_slice, "v_max": self.v_max}
                return [ConstraintCategory("velocity_bounds", _velocity_bounds, DimType.STATE, range(N), params=params)]

            families.append(ConstraintFamily("velocity_bounds", ConstraintKind.CONVEX_STATE_INEQ, velocity))
        if np.isfinite(self.u_max):

            def control(scpp, traj):
                params = {"u_max": self.u_max}
                return [ConstraintCategory("control_bounds", _control_bounds, DimType.CONTROL, range(N), params=params)]

            families.append(ConstraintFamily("control_bounds", ConstraintKind.CONVEX_CONTROL_INEQ, control))
        if self.zero_terminal_control:

            def terminal(scpp, traj):
                return [ConstraintCategory("terminal_control", _terminal_control, DimType.CONTROL, (N - 1,))]

            families.append(ConstraintFamily("terminal_control", ConstraintKind.CONVEX_CONTROL_EQ, terminal))
        return families

    def initialize_trajectory(self, scpp) -> Trajectory:
        """从 ``x_init`` 到末步目标的直线插值，控制取零。"""

        x_init = np.asarray(scpp.PD.x_init, dtype=float)
        x_final = x_init.copy()
        for _, goal in scpp.goal_set:
            if goal.ind_time == scpp.N - 1:
                x_final[list(goal.ind_coordinates)] = goal.center()
        alpha = np.linspace(0.0, 1.0, scpp.N)
        X = np.outer(x_init, 1.0 - alpha) + np.outer(x_final, alpha)
        U = np.zeros((self.u_dim, scpp.N))
        return Trajectory(X, U, scpp.tf_guess)

    def control_from_costate(self, x: np.ndarray, p: np.ndarray) -> np.ndarray:
        # argmin_u |u|^2 + p_v . u over the box |u_i| <= u_max
        return np.clip(-0.5 * p[3:6], -self.u_max, self.u_max)
