"""轴对齐长方体、球体及其有向距离查询。

有向距离在几何体外为正、内部为负。随距离一起返回的梯度是最近表面点的
外法向单位向量，禁入区约束线性化直接使用它。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple, Union

import numpy as np

from .errors import MalformedZoneData


def _as_vector(values: Sequence[float], name: str) -> np.ndarray:
    try:
        vec = np.asarray(values, dtype=float).reshape(-1)
    except (TypeError, ValueError) as exc:
        raise MalformedZoneData(f"{name} is not numeric: {values!r}") from exc
    if vec.size == 0:
        raise MalformedZoneData(f"{name} is empty")
    if not np.all(np.isfinite(vec)):
        raise MalformedZoneData(f"{name} contains non-finite values: {values!r}")
    return vec


@dataclass(frozen=True, eq=False)
class Box:
    """轴对齐长方体，以 ``origin``（最小角点）和 ``widths`` 存储。"""

    origin: np.ndarray
    widths: np.ndarray

    def __post_init__(self) -> None:
        origin = _as_vector(self.origin, "origin")
        widths = _as_vector(self.widths, "widths")
        if origin.shape != widths.shape:
            raise MalformedZoneData(
                f"origin has {origin.size} coordinates but widths has {widths.size}"
            )
        if np.any(widths <= 0.0):
            raise MalformedZoneData(f"box has a non-positive extent: widths={widths.tolist()}")
        origin.setflags(write=False)
        widths.setflags(write=False)
        object.__setattr__(self, "origin", origin)
        object.__setattr__(self, "widths", widths)

    @classmethod
    def from_corners(cls, corner1: Sequence[float], corner2: Sequence[float]) -> "Box":
        """由任意顺序给出的两个对角点构造长方体。"""

        c1 = _as_vector(corner1, "corner1")
        c2 = _as_vector(corner2, "corner2")
        if c1.shape != c2.shape:
            raise MalformedZoneData("box corners have different dimensions")
        return cls(origin=np.minimum(c1, c2), widths=np.abs(c2 - c1))

    @property
    def dim(self) -> int:
        return int(self.origin.size)

    @property
    def min_corner(self) -> np.ndarray:
        return self.origin

    @property
    def max_corner(self) -> np.ndarray:
        return self.origin + self.widths

    def center(self) -> np.ndarray:
        return self.origin + 0.5 * self.widths

    def contains(self, point: np.ndarray) -> bool:
        point = np.asarray(point, dtype=float)
        return bool(np.all(point >= self.min_corner) and np.all(point <= self.max_corner))

    def signed_distance(self, point: np.ndarray) -> Tuple[float, np.ndarray]:
        """``point`` 到长方体表面的有向距离及其梯度。"""

        point = np.asarray(point, dtype=float)
        half = 0.5 * self.widths
        offset = point - self.center()
        q = np.abs(offset) - half
        sign = np.where(offset >= 0.0, 1.0, -1.0)
        outside = np.maximum(q, 0.0)
        outside_norm = float(np.linalg.norm(outside))
        if outside_norm > 0.0:
            return outside_norm, sign * outside / outside_norm
        # 点在内部：最近的面是 q 最大（最不负）的那个
        axis = int(np.argmax(q))
        grad = np.zeros_like(point)
        grad[axis] = sign[axis]
        return float(q[axis]), grad


@dataclass(frozen=True, eq=False)
class Sphere:
    """由 ``center`` 与 ``radius`` 给出的球体。"""

    center_point: np.ndarray
    radius: float

    def __post_init__(self) -> None:
        center = _as_vector(self.center_point, "center")
        try:
            radius = float(self.radius)
        except (TypeError, ValueError) as exc:
            raise MalformedZoneData(f"radius is not numeric: {self.radius!r}") from exc
        if not np.isfinite(radius) or radius <= 0.0:
            raise MalformedZoneData(f"sphere radius must be positive, got {self.radius!r}")
        center.setflags(write=False)
        object.__setattr__(self, "center_point", center)
        object.__setattr__(self, "radius", radius)

    @property
    def dim(self) -> int:
        return int(self.center_point.size)

    @property
    def min_corner(self) -> np.ndarray:
        return self.center_point - self.radius

    @property
    def max_corner(self) -> np.ndarray:
        return self.center_point + self.radius

    def center(self) -> np.ndarray:
        return self.center_point

    def contains(self, point: np.ndarray) -> bool:
        return bool(np.linalg.norm(np.asarray(point, dtype=float) - self.center_point) <= self.radius)

    def signed_distance(self, point: np.ndarray) -> Tuple[float, np.ndarray]:
        offset = np.asarray(point, dtype=float) - self.center_point
        dist = float(np.linalg.norm(offset))
        if dist < 1e-12:
            grad = np.zeros_like(offset)
            grad[0] = 1.0
            return -self.radius, grad
        return dist - self.radius, offset / dist


Zone = Union[Box, Sphere]


def zone_from_data(entry: dict) -> Zone:
    """解析一条场景条目：``{corner1, corner2}`` 或 ``{center, radius}``。"""

    if not isinstance(entry, dict):
        raise MalformedZoneData(f"zone entry must be a mapping, got {type(entry).__name__}")
    if "corner1" in entry and "corner2" in entry:
        return Box.from_corners(entry["corner1"], entry["corner2"])
    if "center" in entry and "radius" in entry:
        return Sphere(center_point=entry["center"], radius=entry["radius"])
    raise MalformedZoneData(f"zone entry needs corner1/corner2 or center/radius: {sorted(entry)}")
