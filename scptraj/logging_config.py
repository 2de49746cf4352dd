"""Logging configuration for the scripts and interactive runs."""

import logging
from pathlib import Path
from typing import Optional


def setup_logging(
    log_dir: Optional[Path] = None,
    log_level: int = logging.INFO,
) -> None:
    """Configure root logging once.

    Args:
        log_dir: Optional directory for ``scp_trajopt.log``
        log_level: Logging level (default: INFO)
    """
    handlers = [logging.StreamHandler()]
    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / "scp_trajopt.log", encoding="utf-8"))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
    )
    # cvxpy logs every canonicalization at INFO
    logging.getLogger("__cvxpy__").setLevel(max(log_level, logging.WARNING))
