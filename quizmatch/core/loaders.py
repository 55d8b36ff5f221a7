"""
实现加载器模块
管理每个测评实例当前启用的评分系统/选题策略: 读取持久化配置、按名称重建实现、保存配置变更
"""

from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Dict, Optional

from quizmatch.core.exceptions import (
    InvalidConfiguration,
    UnknownMatchmakingStrategy,
    UnknownRatingSystem,
)
from quizmatch.core.models import (
    MATCHMAKING_STRATEGY_KIND,
    RATING_SYSTEM_KIND,
    RatingSystemConfigEntry,
)
from quizmatch.infra.scoring.configuration import deserialize_configuration, serialize_configuration
from quizmatch.infra.scoring.configuration_forms import ConfigurationForm
from quizmatch.infra.scoring.matchmaking_strategies import MatchmakingStrategy
from quizmatch.infra.scoring.rating_systems import RatingSystem
from quizmatch.infra.scoring.registry import MatchmakingStrategyRegistry, RatingSystemRegistry
from quizmatch.storage.base import AssessmentStorage
from quizmatch.utils.logger import get_logger

logger = get_logger(__name__)


class ImplementationLoader(ABC):
    """
    单个测评实例的实现加载器

    状态: 无记录(未配置) -> 有记录(已配置)。
    内存状态只在持久化写入成功后更新，写入失败的异常原样抛给调用方。
    """

    kind: str = ''
    unconfigured_name: str = ''
    unknown_errors = (UnknownRatingSystem, UnknownMatchmakingStrategy)

    def __init__(self, storage: AssessmentStorage, assessment_id: int):
        self.storage = storage
        self.assessment_id = assessment_id
        self._db_entry: Optional[RatingSystemConfigEntry] = None
        self._configuration: Optional[Dict[str, Any]] = None
        self._configuration_intact = True
        self._load_configuration()

    @abstractmethod
    def _build(self, name: str):
        """按名称构造实现，未知名称抛出对应异常"""

    @abstractmethod
    def _form(self, name: str, configuration: Optional[Dict[str, Any]], target_url: str) -> ConfigurationForm:
        pass

    def _load_configuration(self) -> None:
        entry = self.storage.get_config_entry(self.kind, self.assessment_id)
        if entry is not None:
            self._set_configuration(entry)

    def _set_configuration(self, entry: RatingSystemConfigEntry) -> None:
        self._db_entry = entry
        self._configuration = deserialize_configuration(entry.configuration)
        # 非空但无法解析的配置视为损坏
        self._configuration_intact = not entry.configuration or self._configuration is not None

    def implementation(self):
        """重建当前实现并应用持久化配置，未配置时返回 None"""
        if self._db_entry is None:
            return None

        name = self._db_entry.rating_system_name
        instance = self._build(name)
        if self._configuration:
            try:
                instance.configure(self._configuration)
            except InvalidConfiguration as e:
                logger.warning(f"测评 {self.assessment_id} 的 {name} 配置无效，使用默认配置: {e}")
                instance = self._build(name)
        return instance

    def has_implementation(self) -> bool:
        """记录存在、实现可重建且持久化配置可解析时为 True"""
        if self._db_entry is None or not self._configuration_intact:
            return False
        try:
            return self.implementation() is not None
        except self.unknown_errors as e:
            logger.warning(f"测评 {self.assessment_id} 的记录无法重建: {e}")
            return False

    def current_name(self) -> str:
        if self._db_entry is None:
            return self.unconfigured_name
        return self._db_entry.rating_system_name

    def configuration(self) -> Optional[Dict[str, Any]]:
        """当前持久化的配置（已反序列化），无配置时返回 None"""
        return dict(self._configuration) if self._configuration else None

    def configuration_form(self, target_url: str) -> Optional[ConfigurationForm]:
        if self._db_entry is None:
            return None
        return self._form(self._db_entry.rating_system_name, self._configuration, target_url)

    def configure_current(self, candidate: Dict[str, Any]) -> bool:
        """对当前实现应用候选配置并持久化，未配置时不做任何事并返回 False"""
        if self._db_entry is None:
            return False

        instance = self.implementation()
        instance.configure(candidate)
        configuration = instance.configuration()
        entry = replace(
            self._db_entry,
            configuration=serialize_configuration(configuration) if configuration else '',
        )
        self.storage.update_config_entry(self.kind, entry)
        self._set_configuration(entry)
        logger.info(f"测评 {self.assessment_id} 已更新 {entry.rating_system_name} 配置: {entry.configuration}")
        return True

    def set_implementation(self, name: str, configuration: Optional[Dict[str, Any]] = None) -> None:
        """切换实现，旧配置被替换而不是迁移"""
        instance = self._build(name)
        if configuration is not None:
            instance.configure(configuration)
            configuration = instance.configuration()
        else:
            configuration = instance.default_configuration()

        entry = RatingSystemConfigEntry(
            assessment_id=self.assessment_id,
            rating_system_name=name,
            configuration=serialize_configuration(configuration) if configuration else '',
        )
        if self._db_entry is not None:
            entry.id = self._db_entry.id
            self.storage.update_config_entry(self.kind, entry)
        else:
            entry = self.storage.insert_config_entry(self.kind, entry)

        self._set_configuration(entry)
        logger.info(f"测评 {self.assessment_id} 已启用 {self.kind}: {name}")


class RatingSystemLoader(ImplementationLoader):
    """评分系统加载器"""

    kind = RATING_SYSTEM_KIND
    unconfigured_name = "No rating system specified"

    def __init__(
        self,
        storage: AssessmentStorage,
        assessment_id: int,
        registry: Optional[RatingSystemRegistry] = None
    ):
        self.registry = registry or RatingSystemRegistry()
        super().__init__(storage, assessment_id)

    def _build(self, name: str) -> RatingSystem:
        return self.registry.rating_system(name)

    def _form(self, name: str, configuration: Optional[Dict[str, Any]], target_url: str) -> ConfigurationForm:
        return self.registry.configuration_form(name, configuration, target_url)

    def rating_system(self) -> Optional[RatingSystem]:
        return self.implementation()

    def has_rating_system(self) -> bool:
        return self.has_implementation()

    def current_rating_system_name(self) -> str:
        return self.current_name()

    def set_rating_system(self, name: str, configuration: Optional[Dict[str, Any]] = None) -> None:
        self.set_implementation(name, configuration)

    def configure_current_rating_system(self, candidate: Dict[str, Any]) -> bool:
        return self.configure_current(candidate)


class MatchmakingStrategyLoader(ImplementationLoader):
    """选题策略加载器"""

    kind = MATCHMAKING_STRATEGY_KIND
    unconfigured_name = "No matchmaking strategy specified"

    def __init__(
        self,
        storage: AssessmentStorage,
        assessment_id: int,
        registry: Optional[MatchmakingStrategyRegistry] = None,
        rng=None
    ):
        self.registry = registry or MatchmakingStrategyRegistry(storage, rng=rng)
        super().__init__(storage, assessment_id)

    def _build(self, name: str) -> MatchmakingStrategy:
        return self.registry.strategy(name)

    def _form(self, name: str, configuration: Optional[Dict[str, Any]], target_url: str) -> ConfigurationForm:
        return self.registry.configuration_form(name, configuration, target_url)

    def strategy(self) -> Optional[MatchmakingStrategy]:
        return self.implementation()

    def has_strategy(self) -> bool:
        return self.has_implementation()

    def current_strategy_name(self) -> str:
        return self.current_name()

    def set_strategy(self, name: str, configuration: Optional[Dict[str, Any]] = None) -> None:
        self.set_implementation(name, configuration)

    def configure_current_strategy(self, candidate: Dict[str, Any]) -> bool:
        return self.configure_current(candidate)
