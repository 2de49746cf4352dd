"""问题定义、目标、轨迹与时间离散。"""

from __future__ import annotations

import logging
import math
from bisect import bisect_left, bisect_right
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np

from .environment import Environment
from .errors import DimensionMismatch, InvalidDiscretization
from .geometry import Box, Zone
from .workspace import Workspace

logger = logging.getLogger(__name__)


class GoalKind(Enum):
    POINT = "point"  # 到达区域中心
    REGION = "region"  # 终点落在长方体内即可


@dataclass(eq=False)
class Goal:
    """作用于部分状态分量的目标。

    Attributes
    ----------
    ind_coordinates : Tuple[int, ...]
        目标约束的状态下标，顺序与区域坐标轴一致。
    region : Zone
        目标区域，其中心即点目标。
    kind : GoalKind
        ``POINT`` 目标转为边界等式，``REGION`` 目标转为边界不等式（仅限长方体）。
    ind_time : Optional[int]
        离散时间步；只在 ``GoalSet.assign_timesteps`` 生成的副本上设置。
    """

    ind_coordinates: Tuple[int, ...]
    region: Zone
    kind: GoalKind = GoalKind.POINT
    ind_time: Optional[int] = None

    def __post_init__(self) -> None:
        self.ind_coordinates = tuple(int(i) for i in self.ind_coordinates)
        self.kind = GoalKind(self.kind)
        if len(self.ind_coordinates) != self.region.dim:
            raise DimensionMismatch(
                f"goal constrains {len(self.ind_coordinates)} coordinates but its region is {self.region.dim}-D"
            )
        if self.kind is GoalKind.REGION and not isinstance(self.region, Box):
            raise ValueError("region goals need a box region")

    def center(self) -> np.ndarray:
        return self.region.center()


class GoalSet:
    """按时间排序的目标多重映射。

    时间相同的条目保持插入顺序，区间查询按插入先后返回。
    """

    def __init__(self) -> None:
        self._times: List[float] = []
        self._goals: List[Goal] = []

    def add(self, t: float, goal: Goal) -> None:
        idx = bisect_right(self._times, float(t))
        self._times.insert(idx, float(t))
        self._goals.insert(idx, goal)

    def __len__(self) -> int:
        return len(self._goals)

    def __iter__(self) -> Iterator[Tuple[float, Goal]]:
        return iter(list(zip(self._times, self._goals)))

    def in_range(self, t_lo: float, t_hi: float) -> List[Tuple[float, Goal]]:
        """满足 ``t_lo <= t <= t_hi`` 的目标。"""

        lo = bisect_left(self._times, t_lo)
        hi = bisect_right(self._times, t_hi)
        return list(zip(self._times[lo:hi], self._goals[lo:hi]))

    def at(self, t: float) -> List[Goal]:
        return [goal for _, goal in self.in_range(t, t)]

    def assign_timesteps(self, N: int, tf_guess: float) -> "GoalSet":
        """返回新的目标集合，其中每个目标固定到 ``[0, tf_guess]`` 上 ``N`` 点网格的最近时间步。

        本集合中的目标不被修改。
        """

        assigned = GoalSet()
        for t, goal in zip(self._times, self._goals):
            step = math.floor(t / tf_guess * (N - 1) + 0.5)
            assigned.add(t, replace(goal, ind_time=min(max(step, 0), N - 1)))
        return assigned

    def target_at(self, t: float, x_dim: int) -> Tuple[np.ndarray, np.ndarray]:
        """由时刻 ``t`` 的各目标中心拼成的状态向量。

        共享分量上后加入的目标覆盖先加入的目标；掩码标记被某个目标设置过的分量。
        """

        x_goal = np.zeros(x_dim)
        mask = np.zeros(x_dim, dtype=bool)
        for goal in self.at(t):
            x_goal[list(goal.ind_coordinates)] = goal.center()
            mask[list(goal.ind_coordinates)] = True
        return x_goal, mask


@dataclass
class ProblemDefinition:
    robot: object
    model: object
    env: Environment
    x_init: np.ndarray
    goal_set: GoalSet


def define_problem(robot, model, env: Environment, x_init: Sequence[float], goals: GoalSet) -> ProblemDefinition:
    x_init = np.asarray(x_init, dtype=float)
    if x_init.shape != (model.x_dim,):
        raise DimensionMismatch(f"x_init has shape {x_init.shape}, model expects ({model.x_dim},)")
    for _, goal in goals:
        if max(goal.ind_coordinates) >= model.x_dim or min(goal.ind_coordinates) < 0:
            raise DimensionMismatch(
                f"goal coordinates {goal.ind_coordinates} fall outside a {model.x_dim}-D state"
            )
    return ProblemDefinition(robot=robot, model=model, env=env, x_init=x_init, goal_set=goals)


@dataclass
class Trajectory:
    """均匀网格上的状态/控制采样。

    ``X`` 形状为 ``(x_dim, N)``，``U`` 为 ``(u_dim, N)``。步长始终由 ``Tf`` 与 ``N`` 推出。
    """

    X: np.ndarray
    U: np.ndarray
    Tf: float

    def __post_init__(self) -> None:
        self.X = np.array(self.X, dtype=float)
        self.U = np.array(self.U, dtype=float)
        self.Tf = float(self.Tf)
        if self.X.ndim != 2 or self.U.ndim != 2:
            raise DimensionMismatch("X and U must be 2-D arrays (dim x N)")
        if self.X.shape[1] != self.U.shape[1]:
            raise DimensionMismatch(f"X has {self.X.shape[1]} samples but U has {self.U.shape[1]}")
        if self.X.shape[1] < 2:
            raise InvalidDiscretization("a trajectory needs at least two samples")

    @property
    def N(self) -> int:
        return int(self.X.shape[1])

    @property
    def dt(self) -> float:
        return self.Tf / (self.N - 1)

    @property
    def t_nodes(self) -> np.ndarray:
        return np.linspace(0.0, self.Tf, self.N)

    def copy(self) -> "Trajectory":
        return Trajectory(self.X.copy(), self.U.copy(), self.Tf)

    @classmethod
    def blank(cls, top: "TrajectoryOptimizationProblem") -> "Trajectory":
        model = top.PD.model
        return cls(np.zeros((model.x_dim, top.N)), np.zeros((model.u_dim, top.N)), top.tf_guess)


@dataclass
class TrajectoryOptimizationProblem:
    PD: ProblemDefinition
    WS: Workspace
    fixed_final_time: bool
    N: int
    tf_guess: float
    dh: float  # 归一化步长 1/(N-1)
    goal_set: GoalSet  # PD 中的目标在本网格上的副本


def discretize(
    pd: ProblemDefinition,
    N: int,
    tf_guess: float,
    fixed_final_time: bool = False,
) -> TrajectoryOptimizationProblem:
    """确定时间网格，构建工作空间，并把目标固定到时间步。"""

    if int(N) != N or N < 2:
        raise InvalidDiscretization(f"need at least 2 discretization steps, got N={N}")
    if not np.isfinite(tf_guess) or tf_guess <= 0.0:
        raise InvalidDiscretization(f"final time guess must be positive, got {tf_guess}")
    N = int(N)
    ws = Workspace.build(pd.robot, pd.env)
    goal_set = pd.goal_set.assign_timesteps(N, tf_guess)
    logger.debug("Discretized with N=%d, tf_guess=%.3f, %d goals", N, tf_guess, len(goal_set))
    return TrajectoryOptimizationProblem(
        PD=pd,
        WS=ws,
        fixed_final_time=bool(fixed_final_time),
        N=N,
        tf_guess=float(tf_guess),
        dh=1.0 / (N - 1),
        goal_set=goal_set,
    )
