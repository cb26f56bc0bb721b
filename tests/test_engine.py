"""
RankingEngine集成测试
"""

import random

import pytest

from drinkrank.core.engine import RankingEngine
from drinkrank.core.errors import ExhaustedCandidatesError, NotFoundError, ValidationError
from drinkrank.infra.scoring.pairing_strategies import QuartilePairingStrategy
from drinkrank.storage.sqlite_storage import SQLiteStorage


def build_engine(tmp_path, deferred=False):
    storage = SQLiteStorage(str(tmp_path / 'drinkrank.db'))
    engine = RankingEngine(
        storage,
        strategy=QuartilePairingStrategy(rng=random.Random(42)),
        deferred_aggregation=deferred,
    )
    engine.store.retry_delay = 0
    engine.register_item('A', 'Oat Latte', 'Coffee')
    engine.register_item('B', 'Matcha Latte', 'Matcha')
    engine.register_item('C', 'Cold Brew', 'Coffee')
    return engine


@pytest.fixture
def engine(tmp_path):
    return build_engine(tmp_path)


def test_end_to_end_first_comparison(engine):
    """测试完整流程：初始化、选择对手、记录偏好、公共评分"""
    a = engine.initialize_rating('u1', 'A', 'loved')
    b = engine.initialize_rating('u1', 'B', 'loved')

    assert a['ranked_item'] == {'item_id': 'A', 'tier': 'loved', 'rating': 10.0, 'comparisons': 0}
    assert b['ranked_item']['rating'] == 9.9

    opponent = engine.get_comparison_opponent('u1', 'A', 'loved')
    assert opponent['focal_item'] == {'item_id': 'A', 'name': 'Oat Latte'}
    assert opponent['opponent']['item_id'] == 'B'
    assert opponent['opponent']['name'] == 'Matcha Latte'
    assert opponent['total_ranked_items'] == 2

    result = engine.record_preference('u1', 'A', 'B', 'loved')

    assert result['winner'] == {'item_id': 'A', 'tier': 'loved', 'rating': 10.0, 'comparisons': 1}
    assert result['loser']['rating'] == 9.2
    assert result['loser']['comparisons'] == 1
    assert result['preference']['preferred_item_id'] == 'A'
    assert result['preference']['rejected_item_id'] == 'B'
    assert result['preference']['tier'] == 'loved'
    assert result['preference']['preferred_rating_before'] == 10.0
    assert result['preference']['preferred_rating_after'] == 10.0
    assert result['preference']['rejected_rating_before'] == 9.9
    assert result['preference']['rejected_rating_after'] == 9.2

    stored_b = engine.get_personal_rating('u1', 'B')
    assert stored_b.rating == pytest.approx(9.1788, abs=1e-3)

    records = engine.ledger.list_records(user_id='u1')
    assert len(records) == 1
    assert records[0].preferred_item_id == 'A'
    # 账本保留原始精度
    assert records[0].to_dict()['rejected_rating_after'] == pytest.approx(9.1788, abs=1e-3)

    assert engine.get_public_score('A') == {'item_id': 'A', 'average_rating': 10.0, 'total_ratings': 1}
    assert engine.get_public_score('B') == {'item_id': 'B', 'average_rating': 9.2, 'total_ratings': 1}


def test_public_score_absent_until_rated(engine):
    """测试未被评分的饮品没有公共评分"""
    engine.initialize_rating('u1', 'A', 'liked')

    assert engine.get_public_score('C') is None


def test_public_score_spans_users(engine):
    """测试公共评分汇总所有用户"""
    for user_id in ('u1', 'u2'):
        engine.initialize_rating(user_id, 'A', 'liked')
        engine.initialize_rating(user_id, 'B', 'liked')
    engine.record_preference('u1', 'A', 'B', 'liked')
    engine.record_preference('u2', 'B', 'A', 'liked')

    a_ratings = [engine.get_personal_rating(u, 'A').rating for u in ('u1', 'u2')]
    score = engine.get_public_score('A')

    assert score['total_ratings'] == 2
    assert score['average_rating'] == pytest.approx(sum(a_ratings) / 2, abs=0.05)


def test_unknown_item(engine):
    """测试未登记的饮品"""
    with pytest.raises(NotFoundError) as exc_info:
        engine.initialize_rating('u1', 'ghost', 'loved')
    assert exc_info.value.should_initialize is False

    with pytest.raises(NotFoundError):
        engine.get_public_score('ghost')


def test_invalid_inputs(engine):
    """测试非法参数"""
    with pytest.raises(ValidationError):
        engine.initialize_rating('u1', 'A', 'amazing')
    with pytest.raises(ValidationError):
        engine.get_comparison_opponent('', 'A', 'loved')
    with pytest.raises(ValidationError):
        engine.register_item('D', '')


def test_opponent_requires_initialization(engine):
    """测试焦点饮品未初始化或没有其他候选"""
    with pytest.raises(NotFoundError) as exc_info:
        engine.get_comparison_opponent('u1', 'A', 'loved')
    assert exc_info.value.should_initialize is True

    engine.initialize_rating('u1', 'A', 'loved')
    with pytest.raises(ExhaustedCandidatesError):
        engine.get_comparison_opponent('u1', 'A', 'loved')


def test_ranked_list(engine):
    """测试个人排名列表的分组与名次"""
    engine.initialize_rating('u1', 'A', 'liked')
    engine.initialize_rating('u1', 'B', 'liked')
    engine.initialize_rating('u1', 'C', 'disliked')
    engine.record_preference('u1', 'B', 'A', 'liked')

    ranked = engine.get_ranked_list('u1')

    assert [(e['item_id'], e['tier'], e['rank']) for e in ranked] == [
        ('B', 'liked', 1),
        ('A', 'liked', 2),
        ('C', 'disliked', 1),
    ]
    assert ranked[0]['name'] == 'Matcha Latte'
    assert engine.get_ranked_list('nobody') == []


@pytest.mark.asyncio
async def test_async_operations_with_deferred_aggregation(tmp_path):
    """测试异步接口与延迟聚合"""
    engine = build_engine(tmp_path, deferred=True)
    await engine.start()
    try:
        await engine.ainitialize_rating('u1', 'A', 'loved')
        await engine.ainitialize_rating('u1', 'B', 'loved')

        opponent = await engine.aget_comparison_opponent('u1', 'B', 'loved')
        assert opponent['opponent']['item_id'] == 'A'

        result = await engine.arecord_preference('u1', 'A', 'B', 'loved')
        assert result['winner']['comparisons'] == 1

        await engine.aggregator.drain()
        assert engine.get_public_score('B')['average_rating'] == 9.2
    finally:
        await engine.stop()

    assert engine.aggregator.is_running is False


def test_from_config(tmp_path):
    """测试从配置构建引擎"""
    from drinkrank.infra.config import ConfigManager

    config_path = tmp_path / 'config.yaml'
    config_path.write_text(
        "ranking:\n"
        "  base_k:\n"
        "    loved: 2.0\n"
        "selection:\n"
        "  seed: 7\n"
        "storage:\n"
        "  sqlite:\n"
        f"    db_path: {tmp_path / 'engine.db'}\n"
        "    max_retries: 2\n",
        encoding='utf-8',
    )

    engine = RankingEngine.from_config(ConfigManager(str(config_path)))

    assert engine.algorithm.base_k['loved'] == 2.0
    assert engine.store.max_retries == 2
    assert engine.storage.db_path == tmp_path / 'engine.db'
    assert engine.deferred_aggregation is False
