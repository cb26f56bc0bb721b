"""
评分系统基础设施
提供评分算法与配对策略
"""

from .pairing_strategies import (
    PairingStrategy,
    QuartilePairingStrategy,
    RandomPairingStrategy,
)
from .rating_algorithms import (
    RatingAlgorithm,
    TieredEloRatingAlgorithm,
    expected_outcome,
    k_factor,
    update_pair,
)

__all__ = [
    # 配对策略
    'PairingStrategy',
    'QuartilePairingStrategy',
    'RandomPairingStrategy',
    # 评分算法
    'RatingAlgorithm',
    'TieredEloRatingAlgorithm',
    'expected_outcome',
    'k_factor',
    'update_pair',
]
