"""
评分与选题基础设施
提供评分系统、选题策略、实现注册表和配置文档工具
"""

from .configuration import (
    ConfigField,
    Configurable,
    deserialize_configuration,
    serialize_configuration,
)
from .configuration_forms import ConfigurationForm
from .matchmaking_strategies import (
    MatchmakingStrategy,
    NClosestSelector,
)
from .rating_systems import (
    RatingSystem,
    EloRatingSystem,
    expected_score,
)
from .registry import (
    RatingSystemRegistry,
    MatchmakingStrategyRegistry,
)

__all__ = [
    # 配置文档
    'ConfigField',
    'Configurable',
    'ConfigurationForm',
    'deserialize_configuration',
    'serialize_configuration',
    # 选题策略
    'MatchmakingStrategy',
    'NClosestSelector',
    # 评分系统
    'RatingSystem',
    'EloRatingSystem',
    'expected_score',
    # 注册表
    'RatingSystemRegistry',
    'MatchmakingStrategyRegistry',
]
