"""
实现注册表模块
按名称构造评分系统与选题策略实例
"""

from typing import Any, Dict, List, Optional, Type

from quizmatch.core.exceptions import UnknownMatchmakingStrategy, UnknownRatingSystem
from quizmatch.infra.scoring.configuration_forms import ConfigurationForm
from quizmatch.infra.scoring.matchmaking_strategies import MatchmakingStrategy, NClosestSelector
from quizmatch.infra.scoring.rating_systems import EloRatingSystem, RatingSystem

DEFAULT_RATING_SYSTEMS: Dict[str, Type[RatingSystem]] = {
    'elo': EloRatingSystem,
}

DEFAULT_MATCHMAKING_STRATEGIES: Dict[str, Type[MatchmakingStrategy]] = {
    'n_closest': NClosestSelector,
}


class RatingSystemRegistry:
    """评分系统注册表: 名称 -> 实现类，每次调用构造新实例"""

    def __init__(self, implementations: Optional[Dict[str, Type[RatingSystem]]] = None):
        source = DEFAULT_RATING_SYSTEMS if implementations is None else implementations
        self._implementations = dict(source)

    def register(self, name: str, implementation: Type[RatingSystem]) -> None:
        """登记新的实现（应在进程启动时完成）"""
        self._implementations[name] = implementation

    def names(self) -> List[str]:
        """已登记的评分系统名称"""
        return sorted(self._implementations)

    def rating_system(self, name: str) -> RatingSystem:
        """构造指定名称的评分系统"""
        implementation = self._implementations.get(name)
        if implementation is None:
            raise UnknownRatingSystem(name)
        return implementation()

    def configuration_form(
        self,
        name: str,
        configuration: Optional[Dict[str, Any]],
        target_url: str
    ) -> ConfigurationForm:
        """由具体实现生成配置表单"""
        return self.rating_system(name).configuration_form(configuration, target_url)


class MatchmakingStrategyRegistry:
    """选题策略注册表: 构造实例时注入题目池"""

    def __init__(
        self,
        question_pool,
        implementations: Optional[Dict[str, Type[MatchmakingStrategy]]] = None,
        rng=None
    ):
        source = DEFAULT_MATCHMAKING_STRATEGIES if implementations is None else implementations
        self._implementations = dict(source)
        self.question_pool = question_pool
        self.rng = rng

    def register(self, name: str, implementation: Type[MatchmakingStrategy]) -> None:
        self._implementations[name] = implementation

    def names(self) -> List[str]:
        return sorted(self._implementations)

    def strategy(self, name: str) -> MatchmakingStrategy:
        """构造指定名称的选题策略"""
        implementation = self._implementations.get(name)
        if implementation is None:
            raise UnknownMatchmakingStrategy(name)
        return implementation(self.question_pool, rng=self.rng)

    def configuration_form(
        self,
        name: str,
        configuration: Optional[Dict[str, Any]],
        target_url: str
    ) -> ConfigurationForm:
        return self.strategy(name).configuration_form(configuration, target_url)
