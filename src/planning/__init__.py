"""急救调度规划算法库。

提供邻近检索、分诊分级与候选评分等纯计算能力，
由 domains 层的调度编排器调用，本身不持有任何状态。
"""

from src.planning.algorithms import *  # noqa: F401,F403
