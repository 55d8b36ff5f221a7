"""
工具模块
提供项目中使用的日志与环境变量工具
"""

from quizmatch.utils.logger import (
    configure_root_logger,
    get_logger,
    setup_logger,
)

__all__ = [
    'configure_root_logger',
    'get_logger',
    'setup_logger',
]
