#!/usr/bin/env python
"""在 YAML 场景上运行 SCvx（+ 打靶），并将结果写为 CSV。"""

from __future__ import annotations

import argparse
import csv
import logging
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(PROJECT_ROOT))

from scptraj.config import (  # noqa: E402
    load_scenario,
    problem_from_cfg,
    scp_param_from_cfg,
    shooting_solver_from_cfg,
    solver_from_cfg,
    trust_region_from_cfg,
)
from scptraj.logging_config import setup_logging  # noqa: E402
from scptraj.problem import Trajectory  # noqa: E402
from scptraj.trajopt import solve_trajectory_optimization  # noqa: E402

logger = logging.getLogger("run_scp_demo")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="SCP trajectory optimization demo")
    parser.add_argument(
        "--config",
        type=Path,
        default=PROJECT_ROOT / "configs" / "corridor_corner.yaml",
        help="scenario YAML file",
    )
    parser.add_argument("--nodes", type=int, default=None, help="override problem.N")
    parser.add_argument("--tf", type=float, default=None, help="override problem.tf_guess")
    parser.add_argument("--no-shooting", action="store_true", help="skip the shooting refinement")
    parser.add_argument("--outdir", type=Path, default=PROJECT_ROOT / "outputs" / "scp", help="output directory")
    parser.add_argument("--verbose", action="store_true", help="DEBUG logging")
    return parser.parse_args()


def save_traj_csv(traj: Trajectory, outfile: Path) -> None:
    outfile.parent.mkdir(parents=True, exist_ok=True)
    state_cols = [f"x{i}" for i in range(traj.X.shape[0])]
    control_cols = [f"u{i}" for i in range(traj.U.shape[0])]
    with outfile.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(["t_s"] + state_cols + control_cols)
        for idx, t in enumerate(traj.t_nodes):
            writer.writerow(
                [f"{t:.3f}"]
                + [f"{val:.6e}" for val in traj.X[:, idx]]
                + [f"{val:.6e}" for val in traj.U[:, idx]],
            )


def main() -> None:
    args = parse_args()
    setup_logging(log_dir=args.outdir, log_level=logging.DEBUG if args.verbose else logging.INFO)

    cfg = load_scenario(args.config)
    problem_cfg = cfg.setdefault("problem", {})
    if args.nodes is not None:
        problem_cfg["N"] = args.nodes
    if args.tf is not None:
        problem_cfg["tf_guess"] = args.tf
        for goal in problem_cfg.get("goals", []):
            goal.pop("t", None)

    top = problem_from_cfg(cfg)
    solver_name, solver_opts = solver_from_cfg(cfg)
    solution = solve_trajectory_optimization(
        top,
        param=scp_param_from_cfg(cfg, top.fixed_final_time),
        trust_region=trust_region_from_cfg(cfg),
        solver_name=solver_name,
        solver_opts=solver_opts,
        run_shooting=not args.no_shooting,
        shooting_solver=shooting_solver_from_cfg(cfg),
    )

    scps = solution.scp
    print("=== SCP trajectory optimization ===")
    print(f"{'status':>16s}: {scps.status.value}")
    print(f"{'successful':>16s}: {scps.successful}")
    print(f"{'iterations':>16s}: {scps.iterations}")
    print(f"{'violation':>16s}: {scps.feasibility_violation:.3e}")
    print(f"{'final time':>16s}: {solution.traj.Tf:.3f}")
    if solution.shooting is not None:
        print(f"{'shooting':>16s}: converged={solution.shooting.converged}, residual={solution.shooting.residual_norm:.3e}")
    print(f"{'result from':>16s}: {solution.source}")
    print(f"{'total time':>16s}: {solution.total_time:.2f} s")

    args.outdir.mkdir(parents=True, exist_ok=True)
    save_traj_csv(solution.traj, args.outdir / "trajectory.csv")
    scps.to_dataframe().to_csv(args.outdir / "scp_iterations.csv", index=False)
    logger.info("Wrote %s and %s", args.outdir / "trajectory.csv", args.outdir / "scp_iterations.csv")


if __name__ == "__main__":
    main()
