"""SCP 子问题的约束分类体系。

每个约束族恰好登记在 18 个 ``ConstraintKind`` 槽位之一。槽位同时回答：
约束作用于问题的哪一部分（动力学、路径状态、边界状态、控制、信赖域）；
原式是凸的、非凸的，还是非凸约束的凸化近似；以及是等式还是不等式。

``ConstraintCategory`` 是重新线性化的基本单元。其 ``func`` 将
``(X, U, Tf, k, category)`` 映射为表达式列表 ``g``：不等式槽位表示 ``g <= 0``，
等式槽位表示 ``g == 0``。凸约束函数只使用 numpy 与 cvxpy 共有的运算符，
因此同一类别既能构造子问题，也能在数值轨迹上度量违反量。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from .problem import GoalKind

logger = logging.getLogger(__name__)


class ConstraintGroup(Enum):
    DYNAMICS = "dynamics"
    STATE = "state"
    BOUNDARY_CONDITION = "boundary_condition"
    CONTROL = "control"
    TRUST_REGION = "trust_region"


class Convexity(Enum):
    CONVEX = "convex"
    NONCONVEX = "nonconvex"
    CONVEXIFIED = "convexified"


class Relation(Enum):
    EQ = "eq"
    INEQ = "ineq"


class DimType(Enum):
    STATE = "state"
    CONTROL = "control"
    TIME = "time"
    SCALAR = "scalar"


class ConstraintKind(Enum):
    """登记表的 18 个槽位。"""

    DYNAMICS = ("dynamics", ConstraintGroup.DYNAMICS, Convexity.CONVEXIFIED, Relation.EQ)

    CONVEX_STATE_EQ = ("convex_state_eq", ConstraintGroup.STATE, Convexity.CONVEX, Relation.EQ)
    NONCONVEX_STATE_EQ = ("nonconvex_state_eq", ConstraintGroup.STATE, Convexity.NONCONVEX, Relation.EQ)
    NONCONVEX_STATE_CONVEXIFIED_EQ = (
        "nonconvex_state_convexified_eq",
        ConstraintGroup.STATE,
        Convexity.CONVEXIFIED,
        Relation.EQ,
    )
    CONVEX_STATE_INEQ = ("convex_state_ineq", ConstraintGroup.STATE, Convexity.CONVEX, Relation.INEQ)
    NONCONVEX_STATE_INEQ = ("nonconvex_state_ineq", ConstraintGroup.STATE, Convexity.NONCONVEX, Relation.INEQ)
    NONCONVEX_STATE_CONVEXIFIED_INEQ = (
        "nonconvex_state_convexified_ineq",
        ConstraintGroup.STATE,
        Convexity.CONVEXIFIED,
        Relation.INEQ,
    )

    STATE_INIT_EQ = ("state_init_eq", ConstraintGroup.BOUNDARY_CONDITION, Convexity.CONVEX, Relation.EQ)
    CONVEX_STATE_BC_EQ = (
        "convex_state_boundary_condition_eq",
        ConstraintGroup.BOUNDARY_CONDITION,
        Convexity.CONVEX,
        Relation.EQ,
    )
    NONCONVEX_STATE_BC_EQ = (
        "nonconvex_state_boundary_condition_eq",
        ConstraintGroup.BOUNDARY_CONDITION,
        Convexity.NONCONVEX,
        Relation.EQ,
    )
    NONCONVEX_STATE_BC_CONVEXIFIED_EQ = (
        "nonconvex_state_boundary_condition_convexified_eq",
        ConstraintGroup.BOUNDARY_CONDITION,
        Convexity.CONVEXIFIED,
        Relation.EQ,
    )
    # 等式约束的近似，打靶阶段按等式处理
    CONVEX_STATE_BC_INEQ = (
        "convex_state_boundary_condition_ineq",
        ConstraintGroup.BOUNDARY_CONDITION,
        Convexity.CONVEX,
        Relation.INEQ,
    )
    NONCONVEX_STATE_BC_INEQ = (
        "nonconvex_state_boundary_condition_ineq",
        ConstraintGroup.BOUNDARY_CONDITION,
        Convexity.NONCONVEX,
        Relation.INEQ,
    )
    NONCONVEX_STATE_BC_CONVEXIFIED_INEQ = (
        "nonconvex_state_boundary_condition_convexified_ineq",
        ConstraintGroup.BOUNDARY_CONDITION,
        Convexity.CONVEXIFIED,
        Relation.INEQ,
    )

    CONVEX_CONTROL_EQ = ("convex_control_eq", ConstraintGroup.CONTROL, Convexity.CONVEX, Relation.EQ)
    CONVEX_CONTROL_INEQ = ("convex_control_ineq", ConstraintGroup.CONTROL, Convexity.CONVEX, Relation.INEQ)

    STATE_TRUST_REGION_INEQ = (
        "state_trust_region_ineq",
        ConstraintGroup.TRUST_REGION,
        Convexity.CONVEX,
        Relation.INEQ,
    )
    CONTROL_TRUST_REGION_INEQ = (
        "control_trust_region_ineq",
        ConstraintGroup.TRUST_REGION,
        Convexity.CONVEX,
        Relation.INEQ,
    )

    def __init__(self, slot: str, group: ConstraintGroup, convexity: Convexity, relation: Relation):
        self.slot = slot
        self.group = group
        self.convexity = convexity
        self.relation = relation

    @property
    def regenerated_each_iteration(self) -> bool:
        """类别依赖当前轨迹估计、每次迭代需重新生成的槽位。"""

        return self.convexity is Convexity.CONVEXIFIED or self.group is ConstraintGroup.TRUST_REGION

    @property
    def enters_subproblem(self) -> bool:
        return self.convexity is not Convexity.NONCONVEX

    @property
    def measures_violation(self) -> bool:
        """在数值轨迹上求值、用于评估真实可行性的槽位。"""

        return self.convexity is not Convexity.CONVEXIFIED and self.group is not ConstraintGroup.TRUST_REGION

    @property
    def is_boundary_condition(self) -> bool:
        return self.group is ConstraintGroup.BOUNDARY_CONDITION


ConstraintFunc = Callable[..., List[object]]


@dataclass(eq=False)
class ConstraintCategory:
    """约束族的一个实例：生成函数及其作用的下标。

    ``con_reference`` 与 ``var_reference`` 由子问题构建器填入，分别是为该类别
    创建的求解器原生约束和辅助变量（虚拟控制、松弛变量）。
    """

    name: str
    func: ConstraintFunc
    dimtype: DimType
    ind_time: Tuple[int, ...]
    ind_other: Tuple[object, ...] = ()
    params: Dict[str, object] = field(default_factory=dict)
    con_reference: List[object] = field(default_factory=list)
    var_reference: List[object] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.ind_time = tuple(int(k) for k in self.ind_time)
        self.ind_other = tuple(self.ind_other)

    def expressions(self, X, U, Tf, k: int) -> List[object]:
        return list(self.func(X, U, Tf, k, self))

    def evaluate(self, X: np.ndarray, U: np.ndarray, Tf: float, k: int) -> np.ndarray:
        values = [np.atleast_1d(np.asarray(expr, dtype=float)).ravel() for expr in self.expressions(X, U, Tf, k)]
        return np.concatenate(values) if values else np.zeros(0)


@dataclass(frozen=True)
class ConstraintFamily:
    """具名生成器，将其类别登记到同一槽位。

    ``generate(scpp, traj)`` 返回当前估计下的类别；返回空列表表示该族本轮不激活
    （例如范围内没有障碍物）。
    """

    name: str
    kind: ConstraintKind
    generate: Callable[[object, object], List[ConstraintCategory]]


class SCPConstraints:
    """约束类别登记表，每个槽位一个有序列表。"""

    def __init__(self) -> None:
        self._slots: Dict[ConstraintKind, List[ConstraintCategory]] = {kind: [] for kind in ConstraintKind}

    @classmethod
    def initialize(cls, families: Sequence[ConstraintFamily], scpp, traj) -> "SCPConstraints":
        """围绕初始轨迹生成全部约束族。"""

        scpc = cls()
        for family in families:
            scpc.replace_family(family.kind, family.name, family.generate(scpp, traj))
        return scpc

    def update(self, families: Sequence[ConstraintFamily], scpp, traj) -> None:
        """重新生成依赖轨迹的约束族，凸约束保持不变。"""

        for family in families:
            if family.kind.regenerated_each_iteration:
                self.replace_family(family.kind, family.name, family.generate(scpp, traj))

    def add(self, kind: ConstraintKind, category: ConstraintCategory) -> None:
        self._slots[kind].append(category)

    def replace_family(self, kind: ConstraintKind, name: str, categories: Iterable[ConstraintCategory]) -> None:
        slot = [cat for cat in self._slots[kind] if cat.name != name]
        slot.extend(categories)
        self._slots[kind] = slot

    def clear(self, kind: ConstraintKind) -> None:
        self._slots[kind] = []

    def __getitem__(self, kind: ConstraintKind) -> Tuple[ConstraintCategory, ...]:
        return tuple(self._slots[kind])

    def __len__(self) -> int:
        return sum(len(slot) for slot in self._slots.values())

    def categories(self, kinds: Optional[Iterable[ConstraintKind]] = None) -> Iterator[Tuple[ConstraintKind, ConstraintCategory]]:
        for kind in kinds if kinds is not None else ConstraintKind:
            for category in self._slots[kind]:
                yield kind, category

    def find(self, name: str) -> List[ConstraintCategory]:
        return [cat for _, cat in self.categories() if cat.name == name]

    def kind_of(self, category: ConstraintCategory) -> ConstraintKind:
        for kind, cat in self.categories():
            if cat is category:
                return kind
        raise KeyError(f"category '{category.name}' is not registered")

    def names(self, kind: Optional[ConstraintKind] = None) -> List[str]:
        kinds = [kind] if kind is not None else None
        return [cat.name for _, cat in self.categories(kinds)]

    def validate(self) -> None:
        """若某个类别对象登记在多个槽位中则抛出异常。"""

        seen: Dict[int, ConstraintKind] = {}
        for kind, cat in self.categories():
            if id(cat) in seen:
                raise ValueError(
                    f"category '{cat.name}' registered under both {seen[id(cat)].slot} and {kind.slot}"
                )
            seen[id(cat)] = kind

    def summary(self) -> Dict[str, int]:
        return {kind.slot: len(slot) for kind, slot in self._slots.items() if slot}


# --------------------------------------------------------------------------
# 核心约束族
# --------------------------------------------------------------------------


def selection_matrix(indices: Sequence[int], dim: int) -> np.ndarray:
    S = np.zeros((len(indices), dim))
    for row, idx in enumerate(indices):
        S[row, idx] = 1.0
    return S


def _linearized_dynamics(X, U, Tf, k, cat):
    p = cat.params
    rate = p["f"][k] + p["A"][k] @ (X[:, k] - p["x_ref"][:, k]) + p["B"][k] @ (U[:, k] - p["u_ref"][:, k])
    return [X[:, k + 1] - X[:, k] - p["dh"] * (p["tf_ref"] * rate + (Tf - p["tf_ref"]) * p["f"][k])]


def dynamics_family() -> ConstraintFamily:
    """在当前估计处线性化的动力学，采用前向欧拉离散。

    ``x_{k+1} = x_k + dh * (Tf_ref * (f + A dx + B du) + (Tf - Tf_ref) * f)``，
    在参考点处精确成立；终端时间自由时 ``Tf`` 保留为决策变量。
    """

    def generate(scpp, traj):
        model = scpp.PD.model
        f_seq, A_seq, B_seq = [], [], []
        for k in range(scpp.N - 1):
            f_k, A_k, B_k = model.linearize(traj.X[:, k], traj.U[:, k])
            f_seq.append(f_k)
            A_seq.append(A_k)
            B_seq.append(B_k)
        params = {
            "f": f_seq,
            "A": A_seq,
            "B": B_seq,
            "x_ref": traj.X.copy(),
            "u_ref": traj.U.copy(),
            "tf_ref": float(traj.Tf),
            "dh": scpp.dh,
        }
        return [ConstraintCategory("dynamics", _linearized_dynamics, DimType.STATE, range(scpp.N - 1), params=params)]

    return ConstraintFamily("dynamics", ConstraintKind.DYNAMICS, generate)


def true_dynamics_defects(model, traj) -> np.ndarray:
    """各区间的 ``x_{k+1} - x_k - dt f(x_k, u_k)``，形状 ``(x_dim, N-1)``。"""

    X, U = traj.X, traj.U
    defects = np.zeros((X.shape[0], X.shape[1] - 1))
    for k in range(X.shape[1] - 1):
        defects[:, k] = X[:, k + 1] - X[:, k] - traj.dt * model.eom(X[:, k], U[:, k])
    return defects


def _initial_state(X, U, Tf, k, cat):
    return [X[:, k] - cat.params["x_init"]]


def initial_state_family() -> ConstraintFamily:
    def generate(scpp, traj):
        x_init = np.asarray(scpp.PD.x_init, dtype=float)
        return [
            ConstraintCategory("initial_state", _initial_state, DimType.STATE, (0,), params={"x_init": x_init})
        ]

    return ConstraintFamily("initial_state", ConstraintKind.STATE_INIT_EQ, generate)


def _goal_point(X, U, Tf, k, cat):
    return [cat.params["S"] @ X[:, k] - cat.params["target"]]


def _goal_region(X, U, Tf, k, cat):
    selected = cat.params["S"] @ X[:, k]
    return [selected - cat.params["upper"], cat.params["lower"] - selected]


def goal_families() -> List[ConstraintFamily]:
    """点目标转为边界等式约束，长方体区域目标转为边界不等式约束。"""

    def generate_points(scpp, traj):
        categories = []
        for _, goal in scpp.goal_set:
            if goal.kind is not GoalKind.POINT:
                continue
            params = {
                "S": selection_matrix(goal.ind_coordinates, scpp.PD.model.x_dim),
                "target": np.asarray(goal.center(), dtype=float),
            }
            categories.append(
                ConstraintCategory("goal_point", _goal_point, DimType.STATE, (goal.ind_time,), goal.ind_coordinates, params)
            )
        return categories

    def generate_regions(scpp, traj):
        categories = []
        for _, goal in scpp.goal_set:
            if goal.kind is not GoalKind.REGION:
                continue
            params = {
                "S": selection_matrix(goal.ind_coordinates, scpp.PD.model.x_dim),
                "lower": np.asarray(goal.region.min_corner, dtype=float),
                "upper": np.asarray(goal.region.max_corner, dtype=float),
            }
            categories.append(
                ConstraintCategory("goal_region", _goal_region, DimType.STATE, (goal.ind_time,), goal.ind_coordinates, params)
            )
        return categories

    return [
        ConstraintFamily("goal_point", ConstraintKind.CONVEX_STATE_BC_EQ, generate_points),
        ConstraintFamily("goal_region", ConstraintKind.CONVEX_STATE_BC_INEQ, generate_regions),
    ]


def _world_bounds(X, U, Tf, k, cat):
    pos = X[cat.params["pos"], k]
    return [pos - cat.params["upper"], cat.params["lower"] - pos]


def world_bounds_family() -> ConstraintFamily:
    """将机器人包络球限制在世界 AABB 内（无界时跳过）。"""

    def generate(scpp, traj):
        ctx = scpp.WS.keepin
        if not (np.all(np.isfinite(ctx.aabb_min)) and np.all(np.isfinite(ctx.aabb_max))):
            return []
        params = {
            "pos": scpp.PD.model.position_slice,
            "lower": ctx.aabb_min + ctx.robot_radius,
            "upper": ctx.aabb_max - ctx.robot_radius,
        }
        return [ConstraintCategory("world_bounds", _world_bounds, DimType.STATE, range(scpp.N), params=params)]

    return ConstraintFamily("world_bounds", ConstraintKind.CONVEX_STATE_INEQ, generate)


def _final_time_bounds(X, U, Tf, k, cat):
    return [cat.params["tf_min"] - Tf, Tf - cat.params["tf_max"]]


def final_time_bounds_family() -> ConstraintFamily:
    def generate(scpp, traj):
        if scpp.param.fixed_final_time:
            return []
        alg = scpp.param.alg
        params = {"tf_min": alg.tf_min_ratio * scpp.tf_guess, "tf_max": alg.tf_max_ratio * scpp.tf_guess}
        return [ConstraintCategory("final_time_bounds", _final_time_bounds, DimType.SCALAR, (scpp.N - 1,), params=params)]

    return ConstraintFamily("final_time_bounds", ConstraintKind.CONVEX_STATE_INEQ, generate)


def _keepin_true(X, U, Tf, k, cat):
    _, margin = cat.params["context"].best_containment(X[cat.params["pos"], k])
    return [-margin]


def _keepin_convexified(X, U, Tf, k, cat):
    lin = cat.params["steps"][k]
    pos = X[cat.params["pos"], k]
    if "lower" in lin:
        return [pos - lin["upper"], lin["lower"] - pos]
    return [-(lin["margin"] + lin["grad"] @ (pos - lin["p_ref"]))]


def keepin_families() -> List[ConstraintFamily]:
    """保持在允许区的并集内。

    并集是非凸的；每个离散点选定当前估计裕度最大的区域进行凸化。
    长方体区域给出精确的（按机器人半径收缩的）边界，球体区域给出切平面。
    """

    def generate_true(scpp, traj):
        ctx = scpp.WS.keepin
        if len(ctx) == 0:
            return []
        params = {"context": ctx, "pos": scpp.PD.model.position_slice}
        return [ConstraintCategory("keepin", _keepin_true, DimType.STATE, range(scpp.N), params=params)]

    def generate_convexified(scpp, traj):
        ctx = scpp.WS.keepin
        if len(ctx) == 0:
            return []
        pos = scpp.PD.model.position_slice
        steps = {}
        for k in range(scpp.N):
            p_ref = traj.X[pos, k]
            idx, margin = ctx.best_containment(p_ref)
            zone = ctx.zones[idx]
            if hasattr(zone, "widths"):
                steps[k] = {
                    "zone": idx,
                    "lower": zone.min_corner + ctx.robot_radius,
                    "upper": zone.max_corner - ctx.robot_radius,
                }
            else:
                _, grad = zone.signed_distance(p_ref)
                steps[k] = {"zone": idx, "margin": margin, "grad": -grad, "p_ref": p_ref.copy()}
        params = {"pos": pos, "steps": steps}
        return [ConstraintCategory("keepin", _keepin_convexified, DimType.STATE, range(scpp.N), params=params)]

    return [
        ConstraintFamily("keepin", ConstraintKind.NONCONVEX_STATE_INEQ, generate_true),
        ConstraintFamily("keepin", ConstraintKind.NONCONVEX_STATE_CONVEXIFIED_INEQ, generate_convexified),
    ]


def _keepout_true(X, U, Tf, k, cat):
    return [-cat.params["context"].distances(X[cat.params["pos"], k])]


def _keepout_convexified(X, U, Tf, k, cat):
    lin = cat.params["steps"][k]
    pos = X[cat.params["pos"], k]
    return [-(lin["dist"] + lin["normal"] @ (pos - lin["p_ref"]))]


def keepout_categories(ctx, traj, position_slice, toggle_distance: float) -> List[ConstraintCategory]:
    """对 ``toggle_distance`` 以内的区域生成线性化间隙约束。

    区域的估计距离取 ``max(0, min_k d_k)``。距离不小于切换距离的区域本轮省略；
    被纳入的区域中也只约束距离小于切换距离的离散点。
    """

    categories = []
    for j in range(len(ctx)):
        steps = {}
        for k in range(traj.N):
            p_ref = traj.X[position_slice, k]
            dist, normal = ctx.signed_distance(j, p_ref)
            if max(dist, 0.0) < toggle_distance:
                steps[k] = {"dist": dist, "normal": normal, "p_ref": p_ref.copy()}
        if not steps:
            continue
        params = {"pos": position_slice, "steps": steps}
        categories.append(
            ConstraintCategory("keepout", _keepout_convexified, DimType.STATE, sorted(steps), (j,), params)
        )
    return categories


def keepout_families() -> List[ConstraintFamily]:
    def generate_true(scpp, traj):
        ctx = scpp.WS.keepout
        if len(ctx) == 0:
            return []
        params = {"context": ctx, "pos": scpp.PD.model.position_slice}
        return [ConstraintCategory("keepout", _keepout_true, DimType.STATE, range(scpp.N), params=params)]

    def generate_convexified(scpp, traj):
        categories = keepout_categories(
            scpp.WS.keepout,
            traj,
            scpp.PD.model.position_slice,
            scpp.param.obstacle_toggle_distance,
        )
        logger.debug("keep-out zones in range: %d of %d", len(categories), len(scpp.WS.keepout))
        return categories

    return [
        ConstraintFamily("keepout", ConstraintKind.NONCONVEX_STATE_INEQ, generate_true),
        ConstraintFamily("keepout", ConstraintKind.NONCONVEX_STATE_CONVEXIFIED_INEQ, generate_convexified),
    ]


def default_constraint_families(scpp) -> List[ConstraintFamily]:
    """核心约束族，其后接动力学模型自带的约束族。"""

    families = [
        dynamics_family(),
        initial_state_family(),
        *goal_families(),
        world_bounds_family(),
        final_time_bounds_family(),
        *keepin_families(),
        *keepout_families(),
    ]
    families.extend(scpp.PD.model.constraint_families(scpp))
    return families


def evaluate_violation(scpc: SCPConstraints, traj) -> float:
    """``traj`` 处凸约束与真实非凸约束的总违反量。

    不等式计其正部，等式计其绝对值。凸化槽位与信赖域槽位只是近似，不计入；
    动力学残差由 ``true_dynamics_defects`` 单独度量。
    """

    total = 0.0
    for kind, cat in scpc.categories():
        if not kind.measures_violation:
            continue
        for k in cat.ind_time:
            values = cat.evaluate(traj.X, traj.U, traj.Tf, k)
            if kind.relation is Relation.EQ:
                total += float(np.sum(np.abs(values)))
            else:
                total += float(np.sum(np.maximum(values, 0.0)))
    return total
