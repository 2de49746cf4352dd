"""YAML 场景加载。

场景文件包含场景本身及全部求解设置：

    environment:   {keepin_zones, keepout_zones, obstacles}
    robot:         {collision_radius}
    model:         {type, u_max, v_max, drag, time_weight}
    problem:       {x_init, goals, N, tf_guess, fixed_final_time}
    scp:           {convergence_threshold, obstacle_toggle_distance, alg: {...}}
    trust_region:  {radius_state, radius_control, ...}
    solver:        {name, options}
    shooting:      {rtol, atol, tol, method}
"""

from __future__ import annotations

import logging
from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from .environment import build_environment
from .errors import MalformedZoneData
from .geometry import Sphere, zone_from_data
from .models import DoubleIntegrator, DynamicsModel, SphereRobot
from .problem import Goal, GoalKind, GoalSet, TrajectoryOptimizationProblem, define_problem, discretize
from .scvx import SCPParam, SCvxParam
from .shooting import ShootingSolver
from .socp_problem import TrustRegionConfig

logger = logging.getLogger(__name__)

MODEL_TYPES = {"double_integrator": DoubleIntegrator}

# 表示 ``point`` 目标的小球半径，只用到球心
POINT_GOAL_RADIUS = 1e-3


def load_scenario(path: str | Path) -> Dict[str, Any]:
    cfg = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    if not isinstance(cfg, dict):
        raise ValueError(f"scenario file {path} does not contain a mapping")
    logger.debug("Loaded scenario %s with sections %s", path, sorted(cfg))
    return cfg


def _known_kwargs(cls, section: Mapping[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    unknown = set(section) - names
    if unknown:
        raise ValueError(f"unknown {cls.__name__} settings: {sorted(unknown)}")
    return dict(section)


def robot_from_cfg(cfg: Mapping[str, Any]) -> SphereRobot:
    robot = cfg.get("robot", {})
    return SphereRobot(collision_radius=float(robot.get("collision_radius", 0.0)))


def model_from_cfg(cfg: Mapping[str, Any]) -> DynamicsModel:
    section = dict(cfg.get("model", {}))
    kind = section.pop("type", "double_integrator")
    if kind not in MODEL_TYPES:
        raise ValueError(f"unknown model type '{kind}', expected one of {sorted(MODEL_TYPES)}")
    return MODEL_TYPES[kind](**section)


def goal_from_cfg(entry: Mapping[str, Any]) -> Goal:
    if "point" in entry:
        region = Sphere(center_point=entry["point"], radius=POINT_GOAL_RADIUS)
    elif "region" in entry:
        region = zone_from_data(entry["region"])
    else:
        raise MalformedZoneData(f"goal needs a 'point' or a 'region': {sorted(entry)}")
    return Goal(
        ind_coordinates=tuple(entry["coordinates"]),
        region=region,
        kind=GoalKind(entry.get("kind", "point")),
    )


def problem_from_cfg(cfg: Mapping[str, Any]) -> TrajectoryOptimizationProblem:
    """根据 ``environment``/``robot``/``model``/``problem`` 段构建并离散问题。"""

    section = cfg["problem"]
    tf_guess = float(section["tf_guess"])
    goals = GoalSet()
    for entry in section.get("goals", []):
        goals.add(float(entry.get("t", tf_guess)), goal_from_cfg(entry))
    pd = define_problem(
        robot_from_cfg(cfg),
        model_from_cfg(cfg),
        build_environment(cfg.get("environment", {})),
        section["x_init"],
        goals,
    )
    return discretize(
        pd,
        int(section.get("N", 20)),
        tf_guess,
        fixed_final_time=bool(section.get("fixed_final_time", False)),
    )


def scp_param_from_cfg(cfg: Mapping[str, Any], fixed_final_time: bool) -> SCPParam:
    section = dict(cfg.get("scp", {}))
    alg = SCvxParam(**_known_kwargs(SCvxParam, section.pop("alg", {})))
    return SCPParam(
        fixed_final_time=fixed_final_time,
        convergence_threshold=float(section.get("convergence_threshold", 1e-3)),
        obstacle_toggle_distance=float(section.get("obstacle_toggle_distance", float("inf"))),
        alg=alg,
    )


def trust_region_from_cfg(cfg: Mapping[str, Any]) -> TrustRegionConfig:
    section = cfg.get("trust_region")
    if not section:
        return TrustRegionConfig.default()
    defaults = TrustRegionConfig.default()
    merged = {f.name: getattr(defaults, f.name) for f in fields(TrustRegionConfig)}
    merged.update(_known_kwargs(TrustRegionConfig, section))
    return TrustRegionConfig(**{k: float(v) for k, v in merged.items()})


def solver_from_cfg(cfg: Mapping[str, Any]) -> Tuple[Optional[str], Dict[str, Any]]:
    section = cfg.get("solver", {}) or {}
    return section.get("name"), dict(section.get("options", {}) or {})


def shooting_solver_from_cfg(cfg: Mapping[str, Any]) -> ShootingSolver:
    return ShootingSolver(**dict(cfg.get("shooting", {}) or {}))
