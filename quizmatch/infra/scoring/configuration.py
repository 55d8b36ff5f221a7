"""
配置文档模块
扁平的键值配置: 字段声明、类型转换、序列化与容错反序列化
"""

import json
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from quizmatch.core.exceptions import ConfigurationDeserializationFailure, InvalidConfiguration
from quizmatch.infra.scoring.configuration_forms import ConfigurationForm
from quizmatch.utils.logger import get_logger

logger = get_logger(__name__)

SCALAR_TYPES = (bool, int, float, str)


@dataclass(frozen=True)
class ConfigField:
    """单个配置项声明，validator 返回错误描述或 None"""

    name: str
    type: type
    default: Any
    label: str = ''
    validator: Optional[Callable[[Any], Optional[str]]] = None

    def coerce(self, value: Any) -> Any:
        """将原始值转换为字段类型并校验，失败时抛出 InvalidConfiguration"""
        converted = self._convert(value)
        if self.validator is not None:
            error = self.validator(converted)
            if error:
                raise InvalidConfiguration(self.name, value, error)
        return converted

    def _convert(self, value: Any) -> Any:
        if self.type is bool:
            if isinstance(value, bool):
                return value
            if isinstance(value, str) and value.strip().lower() in ('1', 'true', 'yes', 'on'):
                return True
            if isinstance(value, str) and value.strip().lower() in ('0', 'false', 'no', 'off'):
                return False
            raise InvalidConfiguration(self.name, value, "需要布尔值")

        if isinstance(value, bool):
            raise InvalidConfiguration(self.name, value, f"需要 {self.type.__name__} 类型")

        if self.type is float:
            try:
                converted = float(value)
            except (TypeError, ValueError):
                raise InvalidConfiguration(self.name, value, "需要数值")
            if not math.isfinite(converted):
                raise InvalidConfiguration(self.name, value, "需要有限数值")
            return converted

        if self.type is int:
            try:
                as_float = float(value)
            except (TypeError, ValueError):
                raise InvalidConfiguration(self.name, value, "需要整数")
            if not math.isfinite(as_float) or not as_float.is_integer():
                raise InvalidConfiguration(self.name, value, "需要整数")
            return int(as_float)

        if self.type is str:
            if not isinstance(value, str):
                raise InvalidConfiguration(self.name, value, "需要字符串")
            return value

        raise InvalidConfiguration(self.name, value, f"不支持的字段类型 {self.type.__name__}")


def positive(value: Any) -> Optional[str]:
    """校验器: 必须大于0"""
    if value <= 0:
        return "必须大于0"
    return None


def open_unit_interval(value: Any) -> Optional[str]:
    """校验器: 必须位于开区间 (0, 1)"""
    if not 0 < value < 1:
        return "必须位于开区间 (0, 1)"
    return None


def serialize_configuration(configuration: Dict[str, Any]) -> str:
    """序列化为 JSON 文本，键有序以便比较"""
    return json.dumps(configuration, sort_keys=True, ensure_ascii=False)


def parse_configuration(text: str) -> Dict[str, Any]:
    """严格解析配置文本，不合法时抛出 ConfigurationDeserializationFailure"""
    try:
        document = json.loads(text)
    except (TypeError, ValueError) as e:
        raise ConfigurationDeserializationFailure(f"配置不是合法的 JSON: {e}")

    if not isinstance(document, dict):
        raise ConfigurationDeserializationFailure(f"配置必须是键值对象，实际为 {type(document).__name__}")

    for key, value in document.items():
        if not isinstance(value, SCALAR_TYPES):
            raise ConfigurationDeserializationFailure(f"配置项 {key} 不是标量值")
    return document


def deserialize_configuration(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """容错解析: 空文本或格式错误都视为无配置"""
    if not text:
        return None
    try:
        return parse_configuration(text)
    except ConfigurationDeserializationFailure as e:
        logger.warning(f"配置解析失败，按无配置处理: {e}")
        return None


class Configurable:
    """可配置实现的基类: 由 config_fields 驱动 configure/configuration/default_configuration"""

    config_fields: Tuple[ConfigField, ...] = ()

    def __init__(self):
        self._configured = False
        for config_field in self.config_fields:
            setattr(self, config_field.name, config_field.default)

    def default_configuration(self) -> Dict[str, Any]:
        """实现自带的默认配置"""
        return {config_field.name: config_field.default for config_field in self.config_fields}

    def configure(self, configuration: Dict[str, Any]) -> None:
        """采用给定配置: 忽略未知键，缺失键保持原值，任一已知键非法则整体不生效"""
        accepted = {}
        for config_field in self.config_fields:
            if config_field.name in configuration:
                accepted[config_field.name] = config_field.coerce(configuration[config_field.name])

        for name, value in accepted.items():
            setattr(self, name, value)
        self._configured = True

    def configuration(self) -> Optional[Dict[str, Any]]:
        """当前配置，未显式配置过时返回 None"""
        if not self._configured:
            return None
        return {config_field.name: getattr(self, config_field.name) for config_field in self.config_fields}

    def configuration_form(
        self,
        configuration: Optional[Dict[str, Any]],
        target_url: str
    ) -> ConfigurationForm:
        """生成管理端配置表单"""
        values = self.default_configuration()
        if configuration:
            values.update({k: v for k, v in configuration.items() if k in values})
        return ConfigurationForm(
            fields=self.config_fields,
            values=values,
            target_url=target_url,
        )
