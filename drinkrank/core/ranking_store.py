"""
个人排名存储
管理每个用户的个人评分记录，保证同一用户的写入串行化
"""

import threading
import time
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Dict, Iterator, List, Optional

from drinkrank.core.aggregator import GlobalAggregator
from drinkrank.core.errors import ConsistencyFault, NotFoundError, ValidationError
from drinkrank.core.models import PersonalRating, PreferenceOutcome, Tier
from drinkrank.core.preference_ledger import PreferenceLedger
from drinkrank.infra.scoring.rating_algorithms import RatingAlgorithm
from drinkrank.storage.sqlite_storage import SQLiteStorage
from drinkrank.utils.logger import get_logger

logger = get_logger(__name__)


def require_id(value: Any, field_name: str) -> str:
    """校验标识符为非空字符串"""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} 缺失或非法: {value!r}")
    return value


class PersonalRankingStore:
    """个人排名存储: 初始化、读取、记录偏好"""

    def __init__(
        self,
        storage: SQLiteStorage,
        algorithm: RatingAlgorithm,
        ledger: PreferenceLedger,
        aggregator: GlobalAggregator,
        max_retries: int = 5,
        retry_delay: float = 0.05,
    ):
        self.storage = storage
        self.algorithm = algorithm
        self.ledger = ledger
        self.aggregator = aggregator
        if max_retries < 1:
            raise ValueError(f"max_retries 必须为正整数: {max_retries}")
        self.max_retries = max_retries
        self.retry_delay = retry_delay

        self._user_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _user_lock(self, user_id: str) -> Iterator[None]:
        """同一用户的偏好提交串行执行，不同用户互不阻塞"""
        with self._locks_guard:
            lock = self._user_locks.setdefault(user_id, threading.Lock())
        with lock:
            yield

    def initialize(self, user_id: str, item_id: str, tier: Tier) -> PersonalRating:
        """
        将饮品加入用户的个人排名

        已存在时原样返回（幂等）；否则按该层级已有饮品数量计算初始评分：
        第一个为 10.0，之后每个递减 0.1，最低 5.0。层级一经确定不可更改。
        """
        require_id(user_id, "user_id")
        require_id(item_id, "item_id")
        tier = Tier.parse(tier)

        record, created = self.storage.insert_rating_if_absent(
            user_id, item_id, tier, self.algorithm.get_initial_rating
        )
        if created:
            logger.info(f"用户 {user_id} 将饮品 {item_id} 加入 {tier.value}，初始评分 {record.rating:.1f}")
        elif record.tier is not tier:
            logger.warning(
                f"用户 {user_id} 的饮品 {item_id} 已在 {record.tier.value} 层级，忽略调整为 {tier.value} 的请求"
            )
        return record

    def get(self, user_id: str, item_id: str) -> Optional[PersonalRating]:
        return self.storage.get_rating(user_id, item_id)

    def list_tier(self, user_id: str, tier: Tier) -> List[PersonalRating]:
        return self.storage.list_ratings(user_id, Tier.parse(tier))

    def list_user(self, user_id: str) -> List[PersonalRating]:
        return self.storage.list_ratings(user_id)

    def count_tier(self, user_id: str, tier: Tier) -> int:
        return self.storage.count_tier(user_id, Tier.parse(tier))

    def _load_in_tier(self, user_id: str, item_id: str, tier: Tier) -> PersonalRating:
        record = self.storage.get_rating(user_id, item_id)
        if record is None:
            raise NotFoundError(f"用户 {user_id} 尚未对饮品 {item_id} 评分，请先初始化")
        if record.tier is not tier:
            raise NotFoundError(
                f"饮品 {item_id} 属于 {record.tier.value} 层级，不在 {tier.value} 层级中",
                should_initialize=False,
            )
        return record

    def record_preference(
        self,
        user_id: str,
        preferred_item_id: str,
        rejected_item_id: str,
        tier: Tier,
    ) -> PreferenceOutcome:
        """记录一次成对偏好：更新两条评分、追加偏好记录、刷新两者的公共评分"""
        require_id(user_id, "user_id")
        require_id(preferred_item_id, "preferred_item_id")
        require_id(rejected_item_id, "rejected_item_id")
        if preferred_item_id == rejected_item_id:
            raise ValidationError("不能将饮品与自身比较")
        tier = Tier.parse(tier)

        with self._user_lock(user_id):
            for attempt in range(1, self.max_retries + 1):
                winner = self._load_in_tier(user_id, preferred_item_id, tier)
                loser = self._load_in_tier(user_id, rejected_item_id, tier)

                new_winner_rating, new_loser_rating = self.algorithm.update_pair(
                    winner.rating,
                    loser.rating,
                    winner.comparisons,
                    loser.comparisons,
                    tier,
                )
                try:
                    record = self.ledger.append(winner, loser, new_winner_rating, new_loser_rating)
                    break
                except ConsistencyFault as e:
                    if attempt >= self.max_retries:
                        raise ConsistencyFault(
                            f"用户 {user_id} 的评分写入冲突，已重试 {attempt} 次: {e.message}",
                            attempts=attempt,
                        )
                    wait_time = self.retry_delay * (2 ** (attempt - 1))
                    logger.warning(f"评分写入冲突，{wait_time:.2f}s 后重新读取重试 ({attempt}/{self.max_retries})")
                    time.sleep(wait_time)

        logger.info(
            f"用户 {user_id} [{tier.value}] {preferred_item_id}({winner.rating:.2f}->{new_winner_rating:.2f}) "
            f"胜 {rejected_item_id}({loser.rating:.2f}->{new_loser_rating:.2f})"
        )

        self.aggregator.schedule_refresh(preferred_item_id)
        self.aggregator.schedule_refresh(rejected_item_id)

        return PreferenceOutcome(
            winner=replace(
                winner,
                rating=new_winner_rating,
                comparisons=winner.comparisons + 1,
                updated_at=record.timestamp,
            ),
            loser=replace(
                loser,
                rating=new_loser_rating,
                comparisons=loser.comparisons + 1,
                updated_at=record.timestamp,
            ),
            record=record,
        )
