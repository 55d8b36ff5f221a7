"""
测试公共夹具
"""

import os

os.environ.setdefault('QUIZMATCH_LOG_TO_FILE', '0')

import pytest

from quizmatch.core.models import QuestionList, QuestionRating
from quizmatch.storage.memory_storage import InMemoryStorage
from quizmatch.storage.sqlite_storage import SQLiteStorage


def add_questions(storage, question_list_id, ratings):
    """按 {question_id: rating} 向题目池添加题目"""
    for question_id, rating in ratings.items():
        storage.add_question(QuestionRating(
            question_id=question_id,
            question_list_id=question_list_id,
            rating=rating,
        ))


@pytest.fixture
def memory_storage():
    """内存存储"""
    return InMemoryStorage()


@pytest.fixture
def sqlite_storage(tmp_path):
    """临时目录中的SQLite存储"""
    return SQLiteStorage(db_path=str(tmp_path / "quizmatch.db"))


@pytest.fixture
def scenario_pool(memory_storage):
    """三道题的题目池: 700 / 810 / 1200"""
    memory_storage.save_question_list(QuestionList(id=1))
    add_questions(memory_storage, 1, {1: 700.0, 2: 810.0, 3: 1200.0})
    return memory_storage
