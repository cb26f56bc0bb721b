"""
日志配置模块
根记录器负责输出，各模块通过 get_logger(__name__) 获取子记录器
"""
import logging
import os
import sys
import time
from pathlib import Path
from typing import List, Optional, Union


PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DEFAULT_LOGS_DIR = Path(os.getenv('DRINKRANK_LOG_DIR', PROJECT_ROOT / "logs"))

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

LOG_LEVELS = {
    'DEBUG': logging.DEBUG,
    'INFO': logging.INFO,
    'WARNING': logging.WARNING,
    'ERROR': logging.ERROR,
    'CRITICAL': logging.CRITICAL,
}

# configure_root_logger 安装的处理器，reset_root_logger 时只移除这些
_installed_handlers: List[logging.Handler] = []


def parse_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    return LOG_LEVELS.get(str(level).upper(), logging.INFO)


def setup_logger(
    name: Optional[str] = None,
    level: Union[str, int] = 'INFO',
    log_to_file: bool = False,
    log_to_console: bool = True,
    log_dir: Optional[Path] = None,
    log_file_name: Optional[str] = None,
    encoding: str = 'utf-8'
) -> List[logging.Handler]:
    """
    为指定记录器安装控制台/文件处理器

    控制台输出写到 stderr，stdout 留给命令行的 JSON 结果。

    Returns:
        新安装的处理器列表
    """
    logger = logging.getLogger(name) if name else logging.getLogger()
    log_level = parse_level(level)
    logger.setLevel(log_level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    handlers: List[logging.Handler] = []

    if log_to_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    if log_to_file:
        log_dir = Path(log_dir) if log_dir else DEFAULT_LOGS_DIR
        log_dir.mkdir(parents=True, exist_ok=True)
        if log_file_name is None:
            log_file_name = f"drinkrank_{time.strftime('%Y_%m_%d', time.localtime())}.log"

        file_handler = logging.FileHandler(log_dir / log_file_name, encoding=encoding, mode='a')
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    for handler in handlers:
        logger.addHandler(handler)
    return handlers


def get_logger(name: str) -> logging.Logger:
    """获取模块记录器，输出交由根记录器处理"""
    return logging.getLogger(name)


def configure_root_logger(
    level: Union[str, int] = 'INFO',
    log_to_file: bool = True,
    log_to_console: bool = True,
    log_dir: Optional[Path] = None,
    log_file_name: Optional[str] = None
) -> bool:
    """
    配置根日志记录器（程序启动时调用一次）

    Returns:
        本次是否实际完成配置；已配置过时返回 False
    """
    if _installed_handlers:
        return False

    _installed_handlers.extend(setup_logger(
        name=None,
        level=level,
        log_to_file=log_to_file,
        log_to_console=log_to_console,
        log_dir=log_dir,
        log_file_name=log_file_name,
    ))
    return True


def reset_root_logger() -> None:
    """移除 configure_root_logger 安装的处理器，允许重新配置"""
    root = logging.getLogger()
    while _installed_handlers:
        handler = _installed_handlers.pop()
        root.removeHandler(handler)
        handler.close()
