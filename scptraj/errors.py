"""场景加载、问题构建与迭代求解的异常体系。

建模类错误在优化开始前抛出。``SolverFailure`` 与 ``ShootingDivergence``
由求解器适配层抛出、由迭代驱动捕获，不会逃出 ``SCPPlanner.solve`` 或
``ShootingSolver.solve``。
"""

from __future__ import annotations


class ScpTrajError(Exception):
    """本包所有异常的基类。"""


class MalformedZoneData(ScpTrajError, ValueError):
    """场景数据描述了退化或无法解析的区域。"""


class DimensionMismatch(ScpTrajError, ValueError):
    """向量或下标集合与动力学模型维数不一致。"""


class InvalidDiscretization(ScpTrajError, ValueError):
    """离散点数或终端时间猜测无法构成时间网格。"""


class SolverFailure(ScpTrajError, RuntimeError):
    """凸求解器没有返回可用的原始解。"""

    def __init__(self, status: str, message: str = ""):
        self.status = status
        super().__init__(message or f"convex solver finished with status '{status}'")


class ShootingDivergence(ScpTrajError, RuntimeError):
    """打靶评估中状态/协态积分发散。"""
