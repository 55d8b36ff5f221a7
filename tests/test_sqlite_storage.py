"""
SQLiteStorage单元测试
"""

from datetime import datetime, timedelta

import pytest

from quizmatch.core.exceptions import PersistenceFailure
from quizmatch.core.models import (
    MISSING_QUESTION_NAME,
    MISSING_QUESTION_TEXT,
    RATING_SYSTEM_KIND,
    Attempt,
    LearnerRating,
    QuestionList,
    QuestionRating,
    RatingSystemConfigEntry,
)
from quizmatch.storage.sqlite_storage import SQLiteStorage

from conftest import add_questions


def test_fetch_questions_ranked_by_distance(sqlite_storage):
    """测试按与目标评分的距离排序并限制数量"""
    add_questions(sqlite_storage, 1, {1: 700.0, 2: 810.0, 3: 1200.0})

    questions = sqlite_storage.fetch_questions(1, target_rating=809.15, limit=2)

    assert [q.question_id for q in questions] == [2, 1]


def test_fetch_questions_excludes_before_limit(sqlite_storage):
    """测试排除的题目在排序前剔除"""
    add_questions(sqlite_storage, 1, {1: 700.0, 2: 810.0, 3: 1200.0})

    questions = sqlite_storage.fetch_questions(1, target_rating=809.15, limit=2, excluded_question_ids=[2])

    assert [q.question_id for q in questions] == [1, 3]


def test_fetch_questions_scoped_to_list(sqlite_storage):
    """测试只返回指定题目列表中的题目"""
    add_questions(sqlite_storage, 1, {1: 700.0})
    add_questions(sqlite_storage, 2, {1: 705.0, 5: 900.0})

    questions = sqlite_storage.fetch_questions(2, target_rating=700, limit=10)

    assert [(q.question_list_id, q.question_id) for q in questions] == [(2, 1), (2, 5)]


def test_question_bank_hydration(sqlite_storage):
    """测试题目展示信息来自题库，缺失时使用占位文本"""
    sqlite_storage.save_question_bank_entry(1, '加法', '1 + 1 = ?')
    add_questions(sqlite_storage, 1, {1: 700.0, 2: 800.0})

    present = sqlite_storage.get_question(1, 1)
    missing = sqlite_storage.get_question(1, 2)

    assert present.name == '加法'
    assert present.text == '1 + 1 = ?'
    assert missing.name == MISSING_QUESTION_NAME
    assert missing.text == MISSING_QUESTION_TEXT
    assert sqlite_storage.lookup_question_bank(2) is None


def test_update_question_rating(sqlite_storage):
    """测试更新题目评分"""
    add_questions(sqlite_storage, 1, {1: 700.0})

    sqlite_storage.update_question_rating(1, 1, 712.5)

    assert sqlite_storage.get_question(1, 1).rating == 712.5
    with pytest.raises(PersistenceFailure):
        sqlite_storage.update_question_rating(1, 99, 500.0)


def test_duplicate_question_rejected(sqlite_storage):
    """测试同一题目列表中重复题目被拒绝"""
    add_questions(sqlite_storage, 1, {1: 700.0})

    with pytest.raises(PersistenceFailure):
        sqlite_storage.add_question(QuestionRating(question_id=1, question_list_id=1, rating=600.0))


def test_question_list_round_trip(sqlite_storage):
    """测试题目列表配置的保存与读取"""
    sqlite_storage.save_question_list(QuestionList(id=3, level_ratings=[1000, 1100], default_question_rating=500))
    sqlite_storage.save_question_list(QuestionList(id=3, level_ratings=[1000, 1200], default_question_rating=550))

    question_list = sqlite_storage.get_question_list(3)

    assert question_list.level_ratings == [1000.0, 1200.0]
    assert question_list.default_question_rating == 550.0
    assert sqlite_storage.get_question_list(4) is None


def test_config_entry_lifecycle(sqlite_storage):
    """测试配置记录的写入、读取与更新"""
    assert sqlite_storage.get_config_entry(RATING_SYSTEM_KIND, 1) is None

    inserted = sqlite_storage.insert_config_entry(RATING_SYSTEM_KIND, RatingSystemConfigEntry(
        assessment_id=1,
        rating_system_name='elo',
        configuration='{"student_k_factor": 32.0}',
    ))
    assert inserted.id is not None

    sqlite_storage.update_config_entry(RATING_SYSTEM_KIND, RatingSystemConfigEntry(
        assessment_id=1,
        rating_system_name='elo',
        configuration='',
        id=inserted.id,
    ))
    entry = sqlite_storage.get_config_entry(RATING_SYSTEM_KIND, 1)

    assert entry.id == inserted.id
    assert entry.configuration == ''


def test_config_entry_unique_per_assessment(sqlite_storage):
    """测试每个测评实例最多一条配置记录"""
    entry = RatingSystemConfigEntry(assessment_id=1, rating_system_name='elo')
    sqlite_storage.insert_config_entry(RATING_SYSTEM_KIND, entry)

    with pytest.raises(PersistenceFailure):
        sqlite_storage.insert_config_entry(RATING_SYSTEM_KIND, entry)


def test_update_missing_config_entry(sqlite_storage):
    """测试更新不存在的配置记录"""
    with pytest.raises(PersistenceFailure):
        sqlite_storage.update_config_entry(
            RATING_SYSTEM_KIND,
            RatingSystemConfigEntry(assessment_id=9, rating_system_name='elo'),
        )


def test_unknown_config_kind(sqlite_storage):
    """测试未知配置类型"""
    with pytest.raises(ValueError):
        sqlite_storage.get_config_entry('grading', 1)


def test_learner_lifecycle(sqlite_storage):
    """测试学习者评分的新增与更新"""
    learner = sqlite_storage.insert_learner(LearnerRating(user_id=7, assessment_id=1, rating=1200.0))
    learner.rating = 1250.0
    learner.highest_level_reached = 2
    sqlite_storage.update_learner(learner)

    stored = sqlite_storage.get_learner(1, 7)

    assert stored.rating == 1250.0
    assert stored.highest_level_reached == 2
    assert sqlite_storage.get_learner(2, 7) is None


def test_attempts_and_exclusions(sqlite_storage):
    """测试作答记录与排除题目"""
    now = datetime(2024, 1, 1, 12, 0, 0)
    first = sqlite_storage.create_attempt(Attempt(assessment_id=1, user_id=7, question_id=10, time_created=now))
    sqlite_storage.mark_attempt_answered(first.id, True, now + timedelta(minutes=1))
    second = sqlite_storage.create_attempt(Attempt(assessment_id=1, user_id=7, question_id=11))
    sqlite_storage.mark_attempt_answered(second.id, False, now + timedelta(minutes=2))
    sqlite_storage.create_attempt(Attempt(assessment_id=1, user_id=7, question_id=12))

    pending = sqlite_storage.pending_attempt(1, 7)

    assert pending.question_id == 12
    assert pending.answered is False
    # 待作答的题目 + 最近一次已作答的题目
    assert sqlite_storage.excluded_question_ids(1, 7) == {11, 12}
    assert sqlite_storage.excluded_question_ids(1, 8) == set()


def test_invalid_table_name(tmp_path):
    """测试非法表名被拒绝"""
    with pytest.raises(ValueError, match="非法的SQLite标识符"):
        SQLiteStorage(db_path=str(tmp_path / "bad.db"), tables={'questions_table': 'questions; DROP'})


def test_data_persists_across_instances(tmp_path):
    """测试数据在重新打开数据库后仍然存在"""
    db_path = str(tmp_path / "nested" / "quizmatch.db")
    add_questions(SQLiteStorage(db_path=db_path), 1, {1: 650.0})

    reopened = SQLiteStorage(db_path=db_path)

    assert reopened.get_question(1, 1).rating == 650.0


def test_save_attempt_result(sqlite_storage):
    """测试在同一事务中写回评分并标记作答"""
    add_questions(sqlite_storage, 1, {10: 700.0})
    learner = sqlite_storage.insert_learner(LearnerRating(user_id=7, assessment_id=1, rating=1200.0))
    attempt = sqlite_storage.create_attempt(Attempt(assessment_id=1, user_id=7, question_id=10))
    question = sqlite_storage.get_question(1, 10)
    question.rating = 695.0
    learner.rating = 1210.0

    sqlite_storage.save_attempt_result(attempt.id, True, datetime(2024, 1, 1, 12, 0), question, learner)

    assert sqlite_storage.get_question(1, 10).rating == 695.0
    assert sqlite_storage.get_learner(1, 7).rating == 1210.0
    assert sqlite_storage.pending_attempt(1, 7) is None

    # 已作答的记录不能再次写回
    with pytest.raises(PersistenceFailure):
        sqlite_storage.save_attempt_result(attempt.id, True, datetime(2024, 1, 1, 12, 1), question, learner)


def test_save_attempt_result_rolls_back(sqlite_storage):
    """测试任一写入失败时整体回滚"""
    add_questions(sqlite_storage, 1, {10: 700.0})
    attempt = sqlite_storage.create_attempt(Attempt(assessment_id=1, user_id=7, question_id=10))
    question = sqlite_storage.get_question(1, 10)
    question.rating = 695.0
    # 学习者记录不存在，最后一步更新失败
    learner = LearnerRating(user_id=7, assessment_id=1, rating=1210.0)

    with pytest.raises(PersistenceFailure):
        sqlite_storage.save_attempt_result(attempt.id, True, datetime(2024, 1, 1, 12, 0), question, learner)

    assert sqlite_storage.get_question(1, 10).rating == 700.0
    assert sqlite_storage.pending_attempt(1, 7).id == attempt.id
