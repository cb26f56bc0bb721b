"""
评分算法模块
提供适用于 1-10 分制、按层级自适应 K 值的 ELO 评分算法
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple
import math

from drinkrank.core.errors import ValidationError
from drinkrank.core.models import Tier


DEFAULT_BASE_K: Dict[str, float] = {
    Tier.LOVED.value: 1.5,
    Tier.LIKED.value: 1.0,
    Tier.DISLIKED.value: 0.6,
}


class RatingAlgorithm(ABC):
    """评分算法基类: 定义评分算法接口"""

    @abstractmethod
    def update_pair(
        self,
        winner_rating: float,
        loser_rating: float,
        winner_comparisons: int,
        loser_comparisons: int,
        tier: Tier,
    ) -> Tuple[float, float]:
        """根据一次比较结果更新胜者与败者的评分"""
        pass

    @abstractmethod
    def get_initial_rating(self, tier_count: int) -> float:
        """获取初始评分"""
        pass

    @abstractmethod
    def get_expected_score(
        self,
        rating_a: float,
        rating_b: float
    ) -> float:
        """计算期望得分"""
        pass


class TieredEloRatingAlgorithm(RatingAlgorithm):
    """分层自适应ELO评分算法: 每个饮品按自身比较次数计算 K 值，层级决定基础强度"""

    def __init__(
        self,
        logistic_divisor: float = 3.0,
        base_k: Optional[Dict[str, float]] = None,
        k_decay: float = 0.1,
        min_rating: float = 1.0,
        max_rating: float = 10.0,
        initial_start: float = 10.0,
        initial_step: float = 0.1,
        initial_floor: float = 5.0,
    ):
        self.logistic_divisor = logistic_divisor
        self.base_k = {**DEFAULT_BASE_K, **(base_k or {})}
        self.k_decay = k_decay
        self.min_rating = min_rating
        self.max_rating = max_rating
        self.initial_start = initial_start
        self.initial_step = initial_step
        self.initial_floor = initial_floor

    @classmethod
    def from_settings(cls, settings: Optional[Dict]) -> "TieredEloRatingAlgorithm":
        """从配置字典（ConfigManager.get_ranking_settings）构建算法实例"""
        settings = settings or {}
        initial = settings.get('initial_rating', {}) or {}
        return cls(
            logistic_divisor=float(settings.get('logistic_divisor', 3.0)),
            base_k=settings.get('base_k'),
            k_decay=float(settings.get('k_decay', 0.1)),
            min_rating=float(settings.get('min_rating', 1.0)),
            max_rating=float(settings.get('max_rating', 10.0)),
            initial_start=float(initial.get('start', 10.0)),
            initial_step=float(initial.get('step', 0.1)),
            initial_floor=float(initial.get('floor', 5.0)),
        )

    def get_expected_score(
        self,
        rating_a: float,
        rating_b: float
    ) -> float:
        """
        计算期望得分

        公式: E_a = 1 / (1 + 10^((R_b - R_a) / divisor))
        除数取 3 时，3 分的评分差约对应 10:1 的期望胜率比
        """
        return 1 / (1 + math.pow(10, (rating_b - rating_a) / self.logistic_divisor))

    def get_k_factor(self, tier: Tier, comparisons: int) -> float:
        """K = 层级基础K / (1 + decay * 比较次数)，比较越多评分越稳定"""
        tier = Tier.parse(tier)
        if comparisons < 0:
            raise ValidationError(f"比较次数不能为负数: {comparisons}")
        return self.base_k[tier.value] / (1 + self.k_decay * comparisons)

    def clamp(self, rating: float) -> float:
        return max(self.min_rating, min(self.max_rating, rating))

    def update_pair(
        self,
        winner_rating: float,
        loser_rating: float,
        winner_comparisons: int,
        loser_comparisons: int,
        tier: Tier,
    ) -> Tuple[float, float]:
        """ELO评分更新：new_rating = old_rating + K_self * (actual - expected)，结果限制在评分区间内"""
        expected_winner = self.get_expected_score(winner_rating, loser_rating)
        expected_loser = self.get_expected_score(loser_rating, winner_rating)

        winner_k = self.get_k_factor(tier, winner_comparisons)
        loser_k = self.get_k_factor(tier, loser_comparisons)

        new_winner_rating = self.clamp(winner_rating + winner_k * (1.0 - expected_winner))
        new_loser_rating = self.clamp(loser_rating + loser_k * (0.0 - expected_loser))

        return new_winner_rating, new_loser_rating

    def get_initial_rating(self, tier_count: int) -> float:
        """同层级第 N 个饮品的初始评分：max(start - step * N, floor)，保留一位小数"""
        if tier_count < 0:
            raise ValidationError(f"层级内饮品数量不能为负数: {tier_count}")
        return round(max(self.initial_start - self.initial_step * tier_count, self.initial_floor), 1)


_default_algorithm = TieredEloRatingAlgorithm()


def expected_outcome(rating_a: float, rating_b: float) -> float:
    """饮品A被偏好于饮品B的期望概率"""
    return _default_algorithm.get_expected_score(rating_a, rating_b)


def k_factor(tier: Tier, comparisons: int) -> float:
    return _default_algorithm.get_k_factor(tier, comparisons)


def update_pair(
    winner_rating: float,
    loser_rating: float,
    winner_comparisons: int,
    loser_comparisons: int,
    tier: Tier,
) -> Tuple[float, float]:
    return _default_algorithm.update_pair(
        winner_rating, loser_rating, winner_comparisons, loser_comparisons, tier
    )
