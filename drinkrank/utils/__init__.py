"""
工具模块
日志配置与环境变量加载
"""

from drinkrank.utils.logger import (
    configure_root_logger,
    get_logger,
    reset_root_logger,
    setup_logger,
)

__all__ = [
    'configure_root_logger',
    'get_logger',
    'reset_root_logger',
    'setup_logger',
]
