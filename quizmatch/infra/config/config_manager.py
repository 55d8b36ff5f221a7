"""
统一配置管理器
加载和解析YAML配置文件，支持环境变量解析、配置验证
"""

from pathlib import Path
from typing import Any, Dict, List, Optional
import os

import yaml

from quizmatch.core.models import (
    DEFAULT_LEVEL_RATINGS,
    DEFAULT_QUESTION_RATING,
    DEFAULT_USER_RATING,
)
from quizmatch.storage.sqlite_storage import DEFAULT_TABLES


class ConfigManager:
    """统一配置管理器: 加载YAML配置、解析环境变量、提供配置访问接口"""

    def __init__(self, config_path: str):
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise FileNotFoundError(f"配置文件不存在: {config_path}")

        self._config = self._load_config()

    def _load_config(self) -> dict:
        """加载配置文件"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
                if not config:
                    raise ValueError("配置文件为空")
                if not isinstance(config, dict):
                    raise ValueError("配置文件顶层必须是映射")
                return config
        except yaml.YAMLError as e:
            raise ValueError(f"配置文件格式错误: {e}")

    def _resolve_env_var(self, value: Any) -> Any:
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

    # ==================== 测评相关配置 ====================

    def get_assessment_settings(self) -> Dict:
        """获取测评实例设置"""
        return self._config.get('assessment', {}) or {}

    def get_assessment_id(self) -> int:
        return int(self.get_assessment_settings().get('assessment_id', 1))

    def get_question_list_id(self) -> int:
        return int(self.get_assessment_settings().get('question_list_id', 1))

    def get_default_user_rating(self) -> float:
        """获取新学习者的初始评分"""
        return float(self.get_assessment_settings().get('default_user_rating', DEFAULT_USER_RATING))

    def get_default_question_rating(self) -> float:
        """获取新题目的初始评分"""
        return float(self.get_assessment_settings().get('default_question_rating', DEFAULT_QUESTION_RATING))

    def get_level_ratings(self) -> List[float]:
        """获取等级阈值列表"""
        levels = self.get_assessment_settings().get('level_ratings', DEFAULT_LEVEL_RATINGS)
        return [float(level) for level in levels]

    # ==================== 评分系统与选题策略 ====================

    def get_rating_system_settings(self) -> Dict:
        return self._config.get('rating_system', {}) or {}

    def get_default_rating_system(self) -> str:
        """获取默认评分系统名称"""
        return self.get_rating_system_settings().get('name', 'elo')

    def get_rating_system_configuration(self) -> Optional[Dict]:
        """获取评分系统初始配置，未配置时返回 None（使用实现默认值）"""
        return self.get_rating_system_settings().get('configuration')

    def get_matchmaking_settings(self) -> Dict:
        return self._config.get('matchmaking', {}) or {}

    def get_default_matchmaking_strategy(self) -> str:
        """获取默认选题策略名称"""
        return self.get_matchmaking_settings().get('name', 'n_closest')

    def get_matchmaking_configuration(self) -> Optional[Dict]:
        return self.get_matchmaking_settings().get('configuration')

    # ==================== 存储与日志 ====================

    def get_storage_config(self) -> Dict:
        """获取存储配置"""
        return self._config.get('storage', {}) or {}

    def get_storage_db_path(self) -> str:
        """获取SQLite数据库路径"""
        sqlite_config = self.get_storage_config().get('sqlite', {}) or {}
        return self._resolve_env_var(sqlite_config.get('db_path', 'data/quizmatch.db'))

    def get_storage_tables(self) -> Dict[str, str]:
        """获取存储表名配置"""
        sqlite_config = self.get_storage_config().get('sqlite', {}) or {}
        return {key: sqlite_config.get(key, default) for key, default in DEFAULT_TABLES.items()}

    def get_logging_settings(self) -> Dict:
        """获取日志配置"""
        settings = self._config.get('logging', {}) or {}
        return {
            'level': settings.get('level', 'INFO'),
            'log_to_file': settings.get('log_to_file', True),
            'log_to_console': settings.get('log_to_console', True),
        }

    def get_export_dir(self) -> Path:
        """获取评分导出目录"""
        export_dir = (self._config.get('export', {}) or {}).get('output_dir', 'exports')
        return Path(export_dir)

    def validate_config(self) -> List[str]:
        """验证配置文件的完整性和有效性"""
        errors = []

        assessment = self.get_assessment_settings()
        if not assessment:
            errors.append("缺少必要配置: assessment")
        else:
            for key in ('assessment_id', 'question_list_id'):
                value = assessment.get(key)
                if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                    errors.append(f"assessment.{key} 必须是正整数")

            levels = assessment.get('level_ratings', DEFAULT_LEVEL_RATINGS)
            if not isinstance(levels, list) or not all(
                isinstance(level, (int, float)) and not isinstance(level, bool) for level in levels
            ):
                errors.append("assessment.level_ratings 必须是数值列表")
            elif levels != sorted(levels):
                errors.append("assessment.level_ratings 必须按升序排列")

        for section in ('rating_system', 'matchmaking'):
            configuration = (self._config.get(section, {}) or {}).get('configuration')
            if configuration is not None and not isinstance(configuration, dict):
                errors.append(f"{section}.configuration 必须是键值映射")

        try:
            db_path = self.get_storage_db_path()
            if not db_path:
                errors.append("storage.sqlite.db_path 不能为空")
        except ValueError as e:
            errors.append(str(e))

        for key, table in self.get_storage_tables().items():
            if not isinstance(table, str) or not table.replace("_", "").isalnum():
                errors.append(f"storage.sqlite.{key} 不是合法的表名: {table}")

        return errors
