"""基于序列凸规划（SCvx）的轨迹优化，附带打靶精化。"""

from .constraints import ConstraintCategory, ConstraintFamily, ConstraintKind, SCPConstraints
from .environment import Environment, add_obstacles, build_environment, load_environment
from .errors import (
    DimensionMismatch,
    InvalidDiscretization,
    MalformedZoneData,
    ScpTrajError,
    ShootingDivergence,
    SolverFailure,
)
from .geometry import Box, Sphere
from .models import DoubleIntegrator, DynamicsModel, SphereRobot
from .problem import (
    Goal,
    GoalKind,
    GoalSet,
    ProblemDefinition,
    Trajectory,
    TrajectoryOptimizationProblem,
    define_problem,
    discretize,
)
from .scvx import IterationLog, SCPParam, SCPPlanner, SCPProblem, SCPSolution, SCPStatus, SCvxParam
from .shooting import ShootingProblem, ShootingSolution, ShootingSolver
from .socp_problem import SCPVariables, SubproblemBuilder, TrustRegionConfig
from .trajopt import TrajectoryOptimizationSolution, solve_trajectory_optimization
from .workspace import CollisionContext, Workspace

__all__ = [
    "Box",
    "CollisionContext",
    "ConstraintCategory",
    "ConstraintFamily",
    "ConstraintKind",
    "DimensionMismatch",
    "DoubleIntegrator",
    "DynamicsModel",
    "Environment",
    "Goal",
    "GoalKind",
    "GoalSet",
    "InvalidDiscretization",
    "IterationLog",
    "MalformedZoneData",
    "ProblemDefinition",
    "SCPConstraints",
    "SCPParam",
    "SCPPlanner",
    "SCPProblem",
    "SCPSolution",
    "SCPStatus",
    "SCPVariables",
    "SCvxParam",
    "ScpTrajError",
    "ShootingDivergence",
    "ShootingProblem",
    "ShootingSolution",
    "ShootingSolver",
    "SolverFailure",
    "Sphere",
    "SphereRobot",
    "SubproblemBuilder",
    "Trajectory",
    "TrajectoryOptimizationProblem",
    "TrajectoryOptimizationSolution",
    "TrustRegionConfig",
    "Workspace",
    "add_obstacles",
    "build_environment",
    "define_problem",
    "discretize",
    "load_environment",
    "solve_trajectory_optimization",
]
