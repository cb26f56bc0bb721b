"""
配对策略模块
为焦点饮品挑选下一次比较的对手：分层四分位抽样、完全随机两种策略
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, TypeVar
import math
import random

from drinkrank.core.models import PersonalRating, Tier

T = TypeVar('T', bound=PersonalRating)


class PairingStrategy(ABC):
    """配对策略基类: 定义候选池筛选接口"""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    @abstractmethod
    def candidate_pool(self, candidates: Sequence[T], tier: Tier) -> List[T]:
        """从候选饮品中筛选出可抽取的候选池"""
        pass

    def pick(self, candidates: Sequence[T], tier: Tier) -> T:
        """在候选池中等概率抽取一个对手"""
        pool = self.candidate_pool(candidates, tier)
        if not pool:
            raise ValueError("候选池为空，无法选择对手")
        return self.rng.choice(pool)


class RandomPairingStrategy(PairingStrategy):
    """随机配对策略: 不考虑评分，全部候选等概率"""

    def candidate_pool(self, candidates: Sequence[T], tier: Tier) -> List[T]:
        return list(candidates)


class QuartilePairingStrategy(PairingStrategy):
    """
    四分位配对策略: 按评分降序排列后，根据层级限定候选区间

    - loved: 前四分之一，优先细化榜单顶部
    - disliked: 后四分之一，优先细化榜单底部
    - liked: 中间一半，消解中段的模糊排序
    候选不足 min_pool_size 时退化为完全随机
    """

    def __init__(self, rng: Optional[random.Random] = None, min_pool_size: int = 4):
        super().__init__(rng)
        self.min_pool_size = min_pool_size
        self._fallback = RandomPairingStrategy(self.rng)

    def uses_quartiles(self, candidate_count: int) -> bool:
        return candidate_count >= self.min_pool_size

    def candidate_pool(self, candidates: Sequence[T], tier: Tier) -> List[T]:
        if not self.uses_quartiles(len(candidates)):
            return self._fallback.candidate_pool(candidates, tier)

        tier = Tier.parse(tier)
        # 评分相同时按 item_id 排序，保证同样输入得到同样的候选区间
        sorted_candidates = sorted(candidates, key=lambda c: (-c.rating, c.item_id))
        n = len(sorted_candidates)

        if tier is Tier.LOVED:
            pool = sorted_candidates[0:math.ceil(0.25 * n)]
        elif tier is Tier.DISLIKED:
            pool = sorted_candidates[math.floor(0.75 * n):n]
        else:
            pool = sorted_candidates[math.floor(0.25 * n):math.ceil(0.75 * n)]

        if not pool:
            pool = sorted_candidates

        return pool
