"""
命令行入口测试
"""

import json

import pytest

from drinkrank import run_drinkrank


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    """临时配置：数据库写入临时目录，日志不落盘"""
    monkeypatch.setattr(run_drinkrank, 'configure_root_logger', lambda **kwargs: None)
    path = tmp_path / 'config.yaml'
    path.write_text(
        "selection:\n"
        "  seed: 1\n"
        "storage:\n"
        "  sqlite:\n"
        f"    db_path: {tmp_path / 'cli.db'}\n"
        "logging:\n"
        "  log_to_file: false\n",
        encoding='utf-8',
    )
    return str(path)


def run(config_path, *args):
    return run_drinkrank.main(['--config', config_path, *args])


def test_full_flow(config_path, capsys):
    """测试登记、初始化、比较、记录偏好"""
    assert run(config_path, 'add-item', 'A', 'Oat Latte') == 0
    assert run(config_path, 'add-item', 'B', 'Matcha Latte', '--category', 'Matcha') == 0
    assert run(config_path, 'init', 'u1', 'A', 'loved') == 0
    assert run(config_path, 'init', 'u1', 'B', 'loved') == 0
    capsys.readouterr()

    assert run(config_path, 'compare', 'u1', 'A', 'loved') == 0
    opponent = json.loads(capsys.readouterr().out)
    assert opponent['opponent']['item_id'] == 'B'

    assert run(config_path, 'prefer', 'u1', 'A', 'B', 'loved') == 0
    result = json.loads(capsys.readouterr().out)
    assert result['loser']['rating'] == 9.2

    assert run(config_path, 'score', 'B') == 0
    score = json.loads(capsys.readouterr().out)
    assert score == {'item_id': 'B', 'average_rating': 9.2, 'total_ratings': 1}

    assert run(config_path, 'ledger', 'u1') == 0
    records = json.loads(capsys.readouterr().out)
    assert [r['preferred_item_id'] for r in records] == ['A']
    assert records[0]['rejected_rating_after'] == 9.2

    assert run(config_path, 'show', 'u1') == 0
    out = capsys.readouterr().out
    assert '[loved]' in out
    assert 'Oat Latte' in out


def test_domain_error_exit_code(config_path, capsys):
    """测试业务错误返回1"""
    assert run(config_path, 'init', 'u1', 'ghost', 'loved') == 1


def test_invalid_tier_exit_code(config_path):
    """测试非法层级返回1"""
    assert run(config_path, 'add-item', 'A', 'Oat Latte') == 0
    assert run(config_path, 'init', 'u1', 'A', 'amazing') == 1


def test_missing_config_exit_code(tmp_path, capsys):
    """测试配置文件不存在返回2"""
    assert run_drinkrank.main(['--config', str(tmp_path / 'missing.yaml'), 'show', 'u1']) == 2
    assert '配置加载失败' in capsys.readouterr().err


def test_invalid_config_exit_code(tmp_path, monkeypatch):
    """测试配置验证失败返回2"""
    monkeypatch.setattr(run_drinkrank, 'configure_root_logger', lambda **kwargs: None)
    path = tmp_path / 'bad.yaml'
    path.write_text("ranking:\n  min_rating: 10\n  max_rating: 1\n", encoding='utf-8')

    assert run_drinkrank.main(['--config', str(path), 'show', 'u1']) == 2


def test_export_command(config_path, tmp_path, capsys):
    """测试导出命令"""
    run(config_path, 'add-item', 'A', 'Oat Latte')
    run(config_path, 'init', 'u1', 'A', 'liked')
    capsys.readouterr()

    output_dir = tmp_path / 'out'
    assert run(config_path, 'export', 'u1', '--output-dir', str(output_dir), '--include-ledger') == 0

    paths = json.loads(capsys.readouterr().out)
    assert paths['ranking_path'].startswith(str(output_dir))
    assert paths['ledger_path'] is not None
