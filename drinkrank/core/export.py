"""
排名导出模块
将用户的个人排名与偏好记录导出为CSV
"""

import time
from pathlib import Path
from typing import Dict, Optional

import pandas as pd

from drinkrank.core.engine import RankingEngine
from drinkrank.utils.logger import get_logger

logger = get_logger(__name__)

RANKING_COLUMNS = ['rank', 'item_id', 'name', 'tier', 'rating', 'comparisons']
LEDGER_COLUMNS = [
    'record_id', 'timestamp', 'tier', 'preferred_item_id', 'rejected_item_id',
    'preferred_rating_before', 'preferred_rating_after',
    'rejected_rating_before', 'rejected_rating_after',
]


def ranking_dataframe(engine: RankingEngine, user_id: str) -> pd.DataFrame:
    """用户个人排名表"""
    return pd.DataFrame(engine.get_ranked_list(user_id), columns=RANKING_COLUMNS)


def ledger_dataframe(engine: RankingEngine, user_id: str) -> pd.DataFrame:
    """用户偏好记录表，评分保留一位小数"""
    return pd.DataFrame(
        [record.to_response() for record in engine.ledger.list_records(user_id=user_id)],
        columns=LEDGER_COLUMNS,
    )


def export_user_rankings(
    engine: RankingEngine,
    user_id: str,
    output_dir: Optional[Path] = None,
    include_ledger: bool = False,
) -> Dict[str, Optional[str]]:
    """导出个人排名（可选同时导出偏好记录），返回生成的文件路径"""
    if output_dir is None:
        day_tag = time.strftime('%Y_%m_%d', time.localtime())
        output_dir = Path("results") / day_tag
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = time.strftime('%Y_%m_%d_%H_%M_%S', time.localtime())

    ranking_path = output_dir / f"{user_id}_rankings_{timestamp}.csv"
    ranking_dataframe(engine, user_id).to_csv(ranking_path, index=False)
    logger.info(f"已保存个人排名: {ranking_path}")

    ledger_path = None
    if include_ledger:
        ledger_path = output_dir / f"{user_id}_preferences_{timestamp}.csv"
        ledger_dataframe(engine, user_id).to_csv(ledger_path, index=False)
        logger.info(f"已保存偏好记录: {ledger_path}")

    return {
        'ranking_path': str(ranking_path),
        'ledger_path': str(ledger_path) if ledger_path else None,
    }
