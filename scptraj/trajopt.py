"""顶层流程：SCvx 求解，随后可选的打靶精化。"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional

from .constraints import evaluate_violation
from .problem import Trajectory, TrajectoryOptimizationProblem
from .scvx import SCPParam, SCPPlanner, SCPProblem, SCPSolution
from .shooting import ShootingProblem, ShootingSolution, ShootingSolver
from .socp_problem import TrustRegionConfig

logger = logging.getLogger(__name__)


@dataclass
class TrajectoryOptimizationSolution:
    traj: Trajectory
    scp: SCPSolution
    shooting: Optional[ShootingSolution]
    total_time: float
    source: str = "scp"  # 产生 ``traj`` 的阶段


def solve_trajectory_optimization(
    top: TrajectoryOptimizationProblem,
    param: Optional[SCPParam] = None,
    traj_init: Optional[Trajectory] = None,
    trust_region: Optional[TrustRegionConfig] = None,
    solver_name: Optional[str] = None,
    solver_opts: Optional[Dict[str, object]] = None,
    run_shooting: bool = True,
    shooting_solver: Optional[ShootingSolver] = None,
) -> TrajectoryOptimizationSolution:
    """先运行 SCP，再以其乘子为初值进行打靶。

    只有打靶收敛且结果在可行性容差内满足计分约束时，才用打靶轨迹替换 SCP 轨迹。
    """

    t_start = time.perf_counter()
    scpp = SCPProblem.from_top(top, param)
    planner = SCPPlanner(scpp, trust_region=trust_region, solver_name=solver_name, solver_opts=solver_opts)
    scps = planner.solve(traj_init)

    traj = scps.traj
    source = "scp"
    shooting: Optional[ShootingSolution] = None
    if run_shooting:
        sp = ShootingProblem.from_scp(top, scps)
        shooting = (shooting_solver or ShootingSolver()).solve(sp, scps.traj)
        if shooting.converged:
            violation = evaluate_violation(scps.constraints, shooting.traj)
            if violation <= scpp.param.alg.feasibility_tolerance:
                traj = shooting.traj
                source = "shooting"
            else:
                logger.info("Shooting trajectory violates constraints by %.2e; keeping SCP result", violation)

    return TrajectoryOptimizationSolution(
        traj=traj.copy(),
        scp=scps,
        shooting=shooting,
        total_time=time.perf_counter() - t_start,
        source=source,
    )
