"""排名引擎数据模型"""

from dataclasses import dataclass, asdict
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Optional

from drinkrank.core.errors import ValidationError


class Tier(str, Enum):
    """饮品层级：用户首次添加饮品时给出的定性评价"""

    LOVED = 'loved'
    LIKED = 'liked'
    DISLIKED = 'disliked'

    @classmethod
    def parse(cls, value: Any) -> "Tier":
        """将字符串解析为层级，非法值抛出 ValidationError"""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(f"非法的层级: {value!r}，可选值: loved / liked / disliked")


def round_rating(value: Optional[float]) -> Optional[float]:
    """对外输出的评分统一保留一位小数（四舍五入）"""
    if value is None:
        return None
    return float(Decimal(str(value)).quantize(Decimal('0.1'), rounding=ROUND_HALF_UP))


@dataclass
class Item:
    """饮品目录条目"""
    item_id: str
    name: str
    category: Optional[str] = None


@dataclass
class PersonalRating:
    """用户对某个饮品的个人评分记录"""
    user_id: str
    item_id: str
    tier: Tier
    rating: float
    comparisons: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        return {
            'item_id': self.item_id,
            'tier': self.tier.value,
            'rating': round_rating(self.rating),
            'comparisons': self.comparisons,
        }


RATING_FIELDS = (
    'preferred_rating_before',
    'preferred_rating_after',
    'rejected_rating_before',
    'rejected_rating_after',
)


@dataclass
class PreferenceRecord:
    """一次成对比较的结果记录（只追加，不修改）"""
    user_id: str
    preferred_item_id: str
    rejected_item_id: str
    tier: Tier
    timestamp: str
    preferred_rating_before: Optional[float] = None
    preferred_rating_after: Optional[float] = None
    rejected_rating_before: Optional[float] = None
    rejected_rating_after: Optional[float] = None
    record_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['tier'] = self.tier.value
        return data

    def to_response(self) -> Dict[str, Any]:
        """对外输出：前后评分保留一位小数，to_dict 保留原始精度用于审计"""
        data = self.to_dict()
        for field_name in RATING_FIELDS:
            data[field_name] = round_rating(data[field_name])
        return data


@dataclass
class ItemPublicScore:
    """饮品的公共评分（所有用户个人评分的均值）"""
    item_id: str
    average_rating: Optional[float] = None
    total_ratings: int = 0
    updated_at: Optional[str] = None

    @property
    def has_score(self) -> bool:
        return self.average_rating is not None

    def to_response(self) -> Dict[str, Any]:
        return {
            'item_id': self.item_id,
            'average_rating': round_rating(self.average_rating),
            'total_ratings': self.total_ratings,
        }


@dataclass
class PreferenceOutcome:
    """记录偏好后的结果：胜者与败者的最新评分"""
    winner: PersonalRating
    loser: PersonalRating
    record: PreferenceRecord

    def to_response(self) -> Dict[str, Any]:
        return {
            'winner': self.winner.to_response(),
            'loser': self.loser.to_response(),
            'preference': self.record.to_response(),
        }
