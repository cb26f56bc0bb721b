"""偏好记录账本：记录只追加，不提供修改和删除"""

from typing import List, Optional

from drinkrank.core.errors import ValidationError
from drinkrank.core.models import PersonalRating, PreferenceRecord
from drinkrank.storage.sqlite_storage import SQLiteStorage
from drinkrank.utils.logger import get_logger

logger = get_logger(__name__)


class PreferenceLedger:
    """成对比较结果的审计日志，追加记录时同时写回两条个人评分"""

    def __init__(self, storage: SQLiteStorage):
        self.storage = storage

    def append(
        self,
        winner: PersonalRating,
        loser: PersonalRating,
        new_winner_rating: float,
        new_loser_rating: float,
    ) -> PreferenceRecord:
        """
        写回胜者与败者的新评分并追加一条偏好记录

        两者在同一事务中完成：任一评分已被并发修改时整体回滚并抛出 ConsistencyFault。
        """
        if winner.item_id == loser.item_id:
            raise ValidationError("不能将饮品与自身比较")
        record = self.storage.apply_preference(winner, loser, new_winner_rating, new_loser_rating)
        logger.debug(
            f"追加偏好记录 #{record.record_id}: {record.user_id} "
            f"{record.preferred_item_id} > {record.rejected_item_id} ({record.tier.value})"
        )
        return record

    def list_records(
        self,
        user_id: Optional[str] = None,
        item_id: Optional[str] = None,
    ) -> List[PreferenceRecord]:
        return self.storage.list_preferences(user_id=user_id, item_id=item_id)

    def count(self, user_id: Optional[str] = None) -> int:
        return self.storage.count_preferences(user_id=user_id)
