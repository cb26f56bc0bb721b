"""
统一配置管理器
加载和解析YAML配置文件，支持环境变量解析、配置验证
"""

from pathlib import Path
from typing import Dict, List, Optional
import yaml
import os

from drinkrank.core.models import Tier
from drinkrank.utils.logger import LOG_LEVELS

DEFAULT_RANKING_SETTINGS: Dict = {
    'logistic_divisor': 3.0,
    'base_k': {
        'loved': 1.5,
        'liked': 1.0,
        'disliked': 0.6,
    },
    'k_decay': 0.1,
    'min_rating': 1.0,
    'max_rating': 10.0,
    'initial_rating': {
        'start': 10.0,
        'step': 0.1,
        'floor': 5.0,
    },
}


class ConfigManager:
    """统一配置管理器: 加载YAML配置、解析环境变量、提供配置访问接口"""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = Path(config_path) if config_path else None
        if self.config_path is not None and not self.config_path.exists():
            raise FileNotFoundError(f"配置文件不存在: {config_path}")

        self._config = self._load_config() if self.config_path else {}

    def _load_config(self) -> dict:
        """加载配置文件"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
                if not config:
                    raise ValueError("配置文件为空")
                return config
        except yaml.YAMLError as e:
            raise ValueError(f"配置文件格式错误: {e}")

    def _resolve_env_var(self, value):
        """解析环境变量格式的配置值，支持格式: env_var:VARIABLE_NAME"""
        if isinstance(value, str) and value.startswith("env_var:"):
            env_key = value[8:]  # 移除 "env_var:" 前缀
            env_value = os.getenv(env_key)
            if env_value is None:
                raise ValueError(f"环境变量 {env_key} 未设置")
            return env_value
        return value

    def get_raw_config(self) -> dict:
        """获取原始配置字典"""
        return self._config

    # ==================== 评分相关配置 ====================

    def get_ranking_settings(self) -> Dict:
        """获取评分算法设置（未配置的项使用默认值）"""
        configured = self._config.get('ranking', {}) or {}
        settings = {**DEFAULT_RANKING_SETTINGS, **configured}
        settings['base_k'] = {
            **DEFAULT_RANKING_SETTINGS['base_k'],
            **(configured.get('base_k') or {}),
        }
        settings['initial_rating'] = {
            **DEFAULT_RANKING_SETTINGS['initial_rating'],
            **(configured.get('initial_rating') or {}),
        }
        return settings

    def get_selection_settings(self) -> Dict:
        """获取对手选择设置"""
        selection = self._config.get('selection', {}) or {}
        return {
            'min_pool_for_quartiles': int(selection.get('min_pool_for_quartiles', 4)),
            'seed': selection.get('seed'),
        }

    def get_aggregation_settings(self) -> Dict:
        """获取公共评分聚合设置"""
        aggregation = self._config.get('aggregation', {}) or {}
        return {
            'deferred': bool(aggregation.get('deferred', False)),
            'queue_max_size': int(aggregation.get('queue_max_size', 10000)),
        }

    # ==================== 存储相关配置 ====================

    def get_storage_config(self) -> Dict:
        """获取存储配置"""
        return self._config.get('storage', {}) or {}

    def get_storage_db_path(self) -> str:
        """获取SQLite数据库路径"""
        sqlite_config = self.get_storage_config().get('sqlite', {}) or {}
        return str(self._resolve_env_var(sqlite_config.get('db_path', 'data/drinkrank.db')))

    def get_storage_max_retries(self) -> int:
        """获取并发写冲突的最大重试次数"""
        sqlite_config = self.get_storage_config().get('sqlite', {}) or {}
        return int(sqlite_config.get('max_retries', 5))

    # ==================== 日志相关配置 ====================

    def get_logging_settings(self) -> Dict:
        """获取日志配置"""
        logging_config = self._config.get('logging', {}) or {}
        return {
            'level': str(logging_config.get('level', 'INFO')),
            'log_to_file': bool(logging_config.get('log_to_file', True)),
            'log_to_console': bool(logging_config.get('log_to_console', True)),
            'log_dir': self._resolve_env_var(logging_config['log_dir']) if logging_config.get('log_dir') else None,
        }

    def validate_config(self) -> List[str]:
        """验证配置文件的完整性和有效性"""
        errors = []

        ranking = self.get_ranking_settings()
        configured_k = (self._config.get('ranking', {}) or {}).get('base_k') or {}
        for tier_name in configured_k:
            if tier_name not in {t.value for t in Tier}:
                errors.append(f"base_k 中存在未知层级: {tier_name}")

        for tier in Tier:
            value = ranking['base_k'].get(tier.value)
            if not isinstance(value, (int, float)) or value <= 0:
                errors.append(f"层级 {tier.value} 的 base_k 必须为正数")

        if ranking['logistic_divisor'] <= 0:
            errors.append("logistic_divisor 必须为正数")
        if ranking['k_decay'] <= 0:
            errors.append("k_decay 必须为正数")
        if ranking['min_rating'] >= ranking['max_rating']:
            errors.append("min_rating 必须小于 max_rating")

        initial = ranking['initial_rating']
        if initial['floor'] > initial['start']:
            errors.append("initial_rating.floor 不能大于 initial_rating.start")
        if not ranking['min_rating'] <= initial['floor'] <= ranking['max_rating']:
            errors.append("initial_rating.floor 超出评分区间")
        if not ranking['min_rating'] <= initial['start'] <= ranking['max_rating']:
            errors.append("initial_rating.start 超出评分区间")

        if self.get_selection_settings()['min_pool_for_quartiles'] < 1:
            errors.append("selection.min_pool_for_quartiles 必须为正整数")

        if self.get_storage_max_retries() < 1:
            errors.append("storage.sqlite.max_retries 必须为正整数")

        level = str((self._config.get('logging', {}) or {}).get('level', 'INFO')).upper()
        if level not in LOG_LEVELS:
            errors.append(f"logging.level 非法: {level}")

        return errors
