"""由环境与机器人外形构建的碰撞查询上下文。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .environment import Environment


@dataclass(frozen=True)
class CollisionContext:
    """一类区域的只读距离查询。

    距离已计入机器人包络球：``signed_distance`` 是机器人表面到区域的间隙
    （无碰撞时为正），``containment`` 是整个机器人位于区域内部的深度。
    """

    zones: Tuple[object, ...]
    robot_radius: float
    aabb_min: np.ndarray
    aabb_max: np.ndarray

    def __len__(self) -> int:
        return len(self.zones)

    def signed_distance(self, index: int, point: np.ndarray) -> Tuple[float, np.ndarray]:
        dist, grad = self.zones[index].signed_distance(point)
        return dist - self.robot_radius, grad

    def distances(self, point: np.ndarray) -> np.ndarray:
        return np.array([self.signed_distance(i, point)[0] for i in range(len(self.zones))])

    def containment(self, index: int, point: np.ndarray) -> float:
        dist, _ = self.zones[index].signed_distance(point)
        return -dist - self.robot_radius

    def best_containment(self, point: np.ndarray) -> Tuple[int, float]:
        """包含 ``point`` 且裕度最大（或违反最少）的区域。"""

        margins = [self.containment(i, point) for i in range(len(self.zones))]
        best = int(np.argmax(margins))
        return best, float(margins[best])


@dataclass(frozen=True)
class Workspace:
    keepin: CollisionContext
    keepout: CollisionContext

    @classmethod
    def build(cls, robot, env: Environment) -> "Workspace":
        """构建允许区上下文以及“禁入区 ∪ 障碍物”上下文。"""

        radius = float(robot.collision_radius)
        aabb_min = env.world_aabb_min.copy()
        aabb_max = env.world_aabb_max.copy()
        aabb_min.setflags(write=False)
        aabb_max.setflags(write=False)
        keepin = CollisionContext(tuple(env.keepin_zones), radius, aabb_min, aabb_max)
        keepout = CollisionContext(
            (*env.keepout_zones, *env.obstacle_set), radius, aabb_min, aabb_max
        )
        return cls(keepin=keepin, keepout=keepout)
