"""
日志与环境变量工具测试
"""

import logging
import os

import pytest

from drinkrank.utils.env_loader import load_project_env
from drinkrank.utils.logger import configure_root_logger, get_logger, reset_root_logger


@pytest.fixture
def clean_root_logger():
    root = logging.getLogger()
    original_level = root.level
    reset_root_logger()
    yield root
    reset_root_logger()
    root.setLevel(original_level)


def test_configure_root_logger_writes_file(clean_root_logger, tmp_path):
    """测试根记录器写入日志文件"""
    assert configure_root_logger(
        level='DEBUG',
        log_to_file=True,
        log_to_console=False,
        log_dir=tmp_path / 'logs',
        log_file_name='test.log',
    ) is True

    get_logger('drinkrank.test').info('已刷新公共评分')
    for handler in clean_root_logger.handlers:
        handler.flush()

    content = (tmp_path / 'logs' / 'test.log').read_text(encoding='utf-8')
    assert 'drinkrank.test - INFO - 已刷新公共评分' in content
    assert clean_root_logger.level == logging.DEBUG


def test_configure_root_logger_once(clean_root_logger, tmp_path):
    """测试重复配置不会叠加处理器，重置后可重新配置"""
    configure_root_logger(log_to_file=True, log_to_console=True, log_dir=tmp_path)
    handler_count = len(clean_root_logger.handlers)

    assert configure_root_logger(log_to_file=True, log_dir=tmp_path) is False
    assert len(clean_root_logger.handlers) == handler_count

    reset_root_logger()
    assert len(clean_root_logger.handlers) == handler_count - 2
    assert configure_root_logger(log_to_file=False, log_to_console=True) is True


def test_load_project_env(tmp_path, monkeypatch):
    """测试加载.env文件"""
    monkeypatch.delenv('DRINKRANK_ENV_TEST', raising=False)
    env_file = tmp_path / '.env'
    env_file.write_text('DRINKRANK_ENV_TEST=/tmp/ranking.db\n', encoding='utf-8')

    assert load_project_env(env_file) is True
    assert os.environ['DRINKRANK_ENV_TEST'] == '/tmp/ranking.db'
    monkeypatch.delenv('DRINKRANK_ENV_TEST')

    assert load_project_env(tmp_path / 'missing.env') is False
