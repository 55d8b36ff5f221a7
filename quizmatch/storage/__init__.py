"""
存储模块
持久化端口及其 SQLite / 内存实现
"""

from quizmatch.storage.base import AssessmentStorage
from quizmatch.storage.memory_storage import InMemoryStorage
from quizmatch.storage.sqlite_storage import SQLiteStorage

__all__ = [
    'AssessmentStorage',
    'InMemoryStorage',
    'SQLiteStorage',
]
