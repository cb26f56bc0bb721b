"""
排名引擎门面
对外提供初始化评分、获取比较对手、记录偏好三个操作，输出评分统一保留一位小数
"""

import asyncio
import random
from typing import Any, Dict, List, Optional

from drinkrank.core.aggregator import GlobalAggregator
from drinkrank.core.candidate_selector import CandidateSelector
from drinkrank.core.errors import NotFoundError
from drinkrank.core.models import Item, PersonalRating, Tier
from drinkrank.core.preference_ledger import PreferenceLedger
from drinkrank.core.ranking_store import PersonalRankingStore, require_id
from drinkrank.infra.config import ConfigManager
from drinkrank.infra.scoring.pairing_strategies import PairingStrategy, QuartilePairingStrategy
from drinkrank.infra.scoring.rating_algorithms import RatingAlgorithm, TieredEloRatingAlgorithm
from drinkrank.storage.sqlite_storage import SQLiteStorage
from drinkrank.utils.logger import get_logger

logger = get_logger(__name__)


class RankingEngine:
    """排名引擎: 组装存储、评分算法、对手选择、账本与聚合器"""

    def __init__(
        self,
        storage: SQLiteStorage,
        algorithm: Optional[RatingAlgorithm] = None,
        strategy: Optional[PairingStrategy] = None,
        max_retries: int = 5,
        deferred_aggregation: bool = False,
        queue_max_size: int = 10000,
    ):
        self.storage = storage
        self.algorithm = algorithm or TieredEloRatingAlgorithm()
        self.deferred_aggregation = deferred_aggregation
        self.ledger = PreferenceLedger(storage)
        self.aggregator = GlobalAggregator(storage, queue_max_size=queue_max_size)
        self.store = PersonalRankingStore(
            storage,
            self.algorithm,
            self.ledger,
            self.aggregator,
            max_retries=max_retries,
        )
        self.selector = CandidateSelector(storage, strategy or QuartilePairingStrategy())

    @classmethod
    def from_config(cls, config_manager: ConfigManager) -> "RankingEngine":
        """根据配置文件构建引擎"""
        selection = config_manager.get_selection_settings()
        aggregation = config_manager.get_aggregation_settings()
        rng = random.Random(selection['seed']) if selection['seed'] is not None else None
        max_retries = config_manager.get_storage_max_retries()

        return cls(
            storage=SQLiteStorage(
                db_path=config_manager.get_storage_db_path(),
                lock_retries=max_retries,
            ),
            algorithm=TieredEloRatingAlgorithm.from_settings(config_manager.get_ranking_settings()),
            strategy=QuartilePairingStrategy(rng=rng, min_pool_size=selection['min_pool_for_quartiles']),
            max_retries=max_retries,
            deferred_aggregation=aggregation['deferred'],
            queue_max_size=aggregation['queue_max_size'],
        )

    async def start(self):
        """开启延迟聚合时启动后台刷新队列"""
        if self.deferred_aggregation:
            await self.aggregator.start()

    async def stop(self):
        await self.aggregator.stop()

    # ==================== 饮品目录 ====================

    def register_item(self, item_id: str, name: str, category: Optional[str] = None) -> Item:
        require_id(item_id, "item_id")
        require_id(name, "name")
        item = Item(item_id=item_id, name=name, category=category)
        self.storage.save_item(item)
        return item

    def _require_item(self, item_id: str, field_name: str = "item_id") -> Item:
        require_id(item_id, field_name)
        item = self.storage.get_item(item_id)
        if item is None:
            raise NotFoundError(f"饮品不存在: {item_id}", should_initialize=False)
        return item

    # ==================== 核心操作 ====================

    def initialize_rating(self, user_id: str, item_id: str, tier: str) -> Dict[str, Any]:
        """将饮品加入用户的个人排名（已存在时原样返回）"""
        require_id(user_id, "user_id")
        tier = Tier.parse(tier)
        self._require_item(item_id)
        record = self.store.initialize(user_id, item_id, tier)
        return {
            'user_id': user_id,
            'ranked_item': record.to_response(),
        }

    def get_comparison_opponent(self, user_id: str, focal_item_id: str, tier: str) -> Dict[str, Any]:
        """为焦点饮品选择同层级的比较对手"""
        require_id(user_id, "user_id")
        tier = Tier.parse(tier)
        focal_item = self._require_item(focal_item_id, "focal_item_id")
        opponent = self.selector.select_opponent(user_id, focal_item_id, tier)
        opponent_item = self.storage.get_item(opponent.item_id)
        return {
            'user_id': user_id,
            'focal_item': {'item_id': focal_item.item_id, 'name': focal_item.name},
            'opponent': {
                **opponent.to_response(),
                'name': opponent_item.name if opponent_item else None,
            },
            'total_ranked_items': len(self.store.list_user(user_id)),
        }

    def record_preference(
        self,
        user_id: str,
        preferred_item_id: str,
        rejected_item_id: str,
        tier: str,
    ) -> Dict[str, Any]:
        """记录一次偏好结果，返回两者更新后的评分与比较次数"""
        require_id(user_id, "user_id")
        outcome = self.store.record_preference(user_id, preferred_item_id, rejected_item_id, tier)
        return {
            'user_id': user_id,
            **outcome.to_response(),
        }

    async def ainitialize_rating(self, user_id: str, item_id: str, tier: str) -> Dict[str, Any]:
        return await asyncio.to_thread(self.initialize_rating, user_id, item_id, tier)

    async def aget_comparison_opponent(self, user_id: str, focal_item_id: str, tier: str) -> Dict[str, Any]:
        return await asyncio.to_thread(self.get_comparison_opponent, user_id, focal_item_id, tier)

    async def arecord_preference(
        self,
        user_id: str,
        preferred_item_id: str,
        rejected_item_id: str,
        tier: str,
    ) -> Dict[str, Any]:
        return await asyncio.to_thread(
            self.record_preference, user_id, preferred_item_id, rejected_item_id, tier
        )

    # ==================== 查询 ====================

    def get_ranked_list(self, user_id: str) -> List[Dict[str, Any]]:
        """用户的个人排名列表：按层级分组，组内按评分降序并给出名次"""
        require_id(user_id, "user_id")
        ranked: List[Dict[str, Any]] = []
        tier_positions: Dict[Tier, int] = {}
        for record in self.store.list_user(user_id):
            tier_positions[record.tier] = tier_positions.get(record.tier, 0) + 1
            item = self.storage.get_item(record.item_id)
            ranked.append({
                'rank': tier_positions[record.tier],
                'name': item.name if item else None,
                **record.to_response(),
            })
        return ranked

    def get_public_score(self, item_id: str) -> Optional[Dict[str, Any]]:
        """公共评分；尚无用户评分时返回 None"""
        self._require_item(item_id)
        score = self.aggregator.get(item_id)
        return score.to_response() if score else None

    def get_personal_rating(self, user_id: str, item_id: str) -> Optional[PersonalRating]:
        return self.store.get(user_id, item_id)
