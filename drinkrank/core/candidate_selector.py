"""对手选择器：为焦点饮品在同层级中挑选下一次比较的对手"""

from typing import Optional

from drinkrank.core.errors import ExhaustedCandidatesError, NotFoundError
from drinkrank.core.models import PersonalRating, Tier
from drinkrank.core.ranking_store import require_id
from drinkrank.infra.scoring.pairing_strategies import PairingStrategy, QuartilePairingStrategy
from drinkrank.storage.sqlite_storage import SQLiteStorage
from drinkrank.utils.logger import get_logger

logger = get_logger(__name__)


class CandidateSelector:
    def __init__(self, storage: SQLiteStorage, strategy: Optional[PairingStrategy] = None):
        self.storage = storage
        self.strategy = strategy or QuartilePairingStrategy()

    def select_opponent(self, user_id: str, focal_item_id: str, tier: Tier) -> PersonalRating:
        require_id(user_id, "user_id")
        require_id(focal_item_id, "focal_item_id")
        tier = Tier.parse(tier)

        tier_ratings = self.storage.list_ratings(user_id, tier)
        if not any(r.item_id == focal_item_id for r in tier_ratings):
            raise NotFoundError(f"饮品 {focal_item_id} 不在用户 {user_id} 的 {tier.value} 层级中")

        candidates = [r for r in tier_ratings if r.item_id != focal_item_id]
        if not candidates:
            raise ExhaustedCandidatesError(
                f"用户 {user_id} 的 {tier.value} 层级中没有其他可比较的饮品"
            )

        opponent = self.strategy.pick(candidates, tier)
        logger.debug(
            f"为 {focal_item_id} 选择对手 {opponent.item_id} "
            f"(候选数: {len(candidates)}, 评分: {opponent.rating:.2f})"
        )
        return opponent
