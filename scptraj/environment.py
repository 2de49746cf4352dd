"""静态场景：允许区（keep-in）、禁入区（keep-out）与障碍物。

世界包围盒（AABB）只覆盖允许区与禁入区。障碍物属于快速追加项，可以位于
包围盒之外，因此追加障碍物不会使按 AABB 建立的碰撞世界失效。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Iterable, List, Mapping, Sequence, Tuple

import numpy as np
import yaml

from .errors import MalformedZoneData
from .geometry import Box, Zone, zone_from_data

logger = logging.getLogger(__name__)

WORKSPACE_DIM = 3


def compute_aabb(zones: Iterable[Zone], dim: int = WORKSPACE_DIM) -> Tuple[np.ndarray, np.ndarray]:
    """``zones`` 的逐分量最小/最大角点（为空时为 ``+inf``/``-inf``）。"""

    aabb_min = np.full(dim, np.inf)
    aabb_max = np.full(dim, -np.inf)
    for zone in zones:
        aabb_min = np.minimum(aabb_min, zone.min_corner)
        aabb_max = np.maximum(aabb_max, zone.max_corner)
    return aabb_min, aabb_max


def _check_dim(zone: Zone) -> None:
    if zone.dim != WORKSPACE_DIM:
        raise MalformedZoneData(f"zones must be {WORKSPACE_DIM}-D, got a {zone.dim}-D zone")


@dataclass
class Environment:
    """允许区/禁入区/障碍物集合及派生的世界 AABB。

    Attributes
    ----------
    keepin_zones : List[Zone]
        机器人必须位于其中的区域（取并集）。
    keepout_zones : List[Zone]
        机器人必须避开的区域。
    obstacle_set : List[Zone]
        附加的禁入几何体，不参与 AABB 计算。
    world_aabb_min, world_aabb_max : np.ndarray
        派生量。``add_keepin``/``add_keepout`` 会自动重算；直接修改区域列表后
        需手动调用 ``update_aabb``。
    """

    keepin_zones: List[Zone] = field(default_factory=list)
    keepout_zones: List[Zone] = field(default_factory=list)
    obstacle_set: List[Zone] = field(default_factory=list)
    world_aabb_min: np.ndarray = field(init=False)
    world_aabb_max: np.ndarray = field(init=False)

    def __post_init__(self) -> None:
        for zone in (*self.keepin_zones, *self.keepout_zones, *self.obstacle_set):
            _check_dim(zone)
        self.update_aabb()

    def add_keepin(self, zone: Zone) -> None:
        _check_dim(zone)
        self.keepin_zones.append(zone)
        self.update_aabb()

    def add_keepout(self, zone: Zone) -> None:
        _check_dim(zone)
        self.keepout_zones.append(zone)
        self.update_aabb()

    def update_aabb(self) -> None:
        self.world_aabb_min, self.world_aabb_max = compute_aabb(
            (*self.keepin_zones, *self.keepout_zones)
        )

    @property
    def has_finite_aabb(self) -> bool:
        return bool(np.all(np.isfinite(self.world_aabb_min)) and np.all(np.isfinite(self.world_aabb_max)))


def _parse_zones(entries: object, key: str) -> List[Zone]:
    if entries is None:
        return []
    if not isinstance(entries, (list, tuple)):
        raise MalformedZoneData(f"'{key}' must be a list of zones")
    zones = []
    for idx, entry in enumerate(entries):
        try:
            zones.append(zone_from_data(entry))
        except MalformedZoneData as exc:
            raise MalformedZoneData(f"{key}[{idx}]: {exc}") from exc
    return zones


def build_environment(zone_data: Mapping[str, object]) -> Environment:
    """解析允许区/禁入区（及可选障碍物）几何体。

    Parameters
    ----------
    zone_data : Mapping
        ``keepin_zones`` / ``keepout_zones`` 为 ``{corner1, corner2}`` 长方体列表，
        可选的 ``obstacles`` 为长方体或 ``{center, radius}`` 球体列表。
    """

    if not isinstance(zone_data, Mapping):
        raise MalformedZoneData("zone data must be a mapping")
    unknown = set(zone_data) - {"keepin_zones", "keepout_zones", "obstacles"}
    if unknown:
        raise MalformedZoneData(f"unknown zone sections: {sorted(unknown)}")
    env = Environment(
        keepin_zones=_parse_zones(zone_data.get("keepin_zones"), "keepin_zones"),
        keepout_zones=_parse_zones(zone_data.get("keepout_zones"), "keepout_zones"),
    )
    if zone_data.get("obstacles"):
        env = add_obstacles(env, zone_data["obstacles"])
    logger.debug(
        "Environment with %d keep-in, %d keep-out, %d obstacle zones; AABB %s..%s",
        len(env.keepin_zones),
        len(env.keepout_zones),
        len(env.obstacle_set),
        env.world_aabb_min,
        env.world_aabb_max,
    )
    return env


def add_obstacles(env: Environment, obstacle_data: Sequence[object]) -> Environment:
    """返回追加了障碍物的 ``env`` 副本，AABB 保持不变。"""

    obstacles = _parse_zones(obstacle_data, "obstacles")
    for zone in obstacles:
        _check_dim(zone)
    return replace(
        env,
        keepin_zones=list(env.keepin_zones),
        keepout_zones=list(env.keepout_zones),
        obstacle_set=[*env.obstacle_set, *obstacles],
    )


def load_environment(path: str | Path) -> Environment:
    """从 YAML 读取 ``environment`` 段（或直接的区域映射）。"""

    cfg = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    return build_environment(cfg.get("environment", cfg))
