"""
配置表单模块
管理端编辑配置时使用的表单描述与提交解析
"""

from typing import Any, Dict, List, Sequence


class ConfigurationForm:
    """配置表单: 渲染层只需要 to_dict() 的结果"""

    def __init__(self, fields: Sequence, values: Dict[str, Any], target_url: str):
        self.fields = tuple(fields)
        self.values = dict(values)
        self.target_url = target_url

    def to_dict(self) -> Dict[str, Any]:
        """转为可渲染的表单描述"""
        items: List[Dict[str, Any]] = []
        for config_field in self.fields:
            items.append({
                'name': config_field.name,
                'label': config_field.label or config_field.name,
                'type': config_field.type.__name__,
                'value': self.values.get(config_field.name, config_field.default),
            })
        return {
            'action': self.target_url,
            'method': 'post',
            'fields': items,
        }

    def parse_submission(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """解析提交数据为候选配置，空输入与未知字段被忽略"""
        candidate = {}
        for config_field in self.fields:
            if config_field.name not in data:
                continue
            raw = data[config_field.name]
            if isinstance(raw, str):
                raw = raw.strip()
                if raw == '':
                    continue
            candidate[config_field.name] = config_field.coerce(raw)
        return candidate
