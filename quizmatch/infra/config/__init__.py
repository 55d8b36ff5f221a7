from quizmatch.infra.config.config_manager import ConfigManager

__all__ = ['ConfigManager']
