"""
内存存储
与 SQLiteStorage 行为一致的进程内实现，用于测试与演示
"""

from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

import numpy as np

from quizmatch.core.exceptions import PersistenceFailure
from quizmatch.core.models import (
    Attempt,
    LearnerRating,
    QuestionList,
    QuestionRating,
    RatingSystemConfigEntry,
)
from quizmatch.storage.base import CONFIG_KINDS, AssessmentStorage


class InMemoryStorage(AssessmentStorage):
    """内存存储: 所有读写返回副本，避免调用方直接修改内部状态"""

    def __init__(self):
        self._questions: Dict[Tuple[int, int], QuestionRating] = {}
        self._question_lists: Dict[int, QuestionList] = {}
        self._question_bank: Dict[int, dict] = {}
        self._config_entries: Dict[str, Dict[int, RatingSystemConfigEntry]] = {kind: {} for kind in CONFIG_KINDS}
        self._learners: Dict[Tuple[int, int], LearnerRating] = {}
        self._attempts: Dict[int, Attempt] = {}
        self._next_id = 1

    def _allocate_id(self) -> int:
        row_id = self._next_id
        self._next_id += 1
        return row_id

    # ==================== 题目池 ====================

    def _hydrate(self, question: QuestionRating) -> QuestionRating:
        return question.with_bank_entry(self._question_bank.get(question.question_id))

    def fetch_questions(
        self,
        question_list_id: int,
        target_rating: float,
        limit: int,
        excluded_question_ids: Iterable[int] = ()
    ) -> List[QuestionRating]:
        excluded = set(excluded_question_ids)
        pool = [
            question for question in self.list_questions(question_list_id)
            if question.question_id not in excluded
        ]
        if not pool or limit <= 0:
            return []

        ratings = np.array([question.rating for question in pool], dtype=float)
        order = np.argsort(np.abs(ratings - target_rating), kind='stable')
        return [pool[index] for index in order[:limit]]

    def list_questions(self, question_list_id: int) -> List[QuestionRating]:
        questions = [
            question for (list_id, _), question in self._questions.items()
            if list_id == question_list_id
        ]
        questions.sort(key=lambda question: question.id)
        return [self._hydrate(question) for question in questions]

    def get_question(self, question_list_id: int, question_id: int) -> Optional[QuestionRating]:
        question = self._questions.get((question_list_id, question_id))
        return self._hydrate(question) if question else None

    def add_question(self, question: QuestionRating) -> QuestionRating:
        key = (question.question_list_id, question.question_id)
        if key in self._questions:
            raise PersistenceFailure(f"题目 {question.question_id} 已存在于题目列表 {question.question_list_id}")
        self._questions[key] = replace(question, id=self._allocate_id(), rating=float(question.rating))
        return self.get_question(*key)

    def update_question_rating(self, question_list_id: int, question_id: int, rating: float) -> None:
        key = (question_list_id, question_id)
        if key not in self._questions:
            raise PersistenceFailure(f"题目 {question_id} 不存在于题目列表 {question_list_id}")
        self._questions[key] = replace(self._questions[key], rating=float(rating))

    def get_question_list(self, question_list_id: int) -> Optional[QuestionList]:
        question_list = self._question_lists.get(question_list_id)
        if question_list is None:
            return None
        return replace(question_list, level_ratings=list(question_list.level_ratings))

    def save_question_list(self, question_list: QuestionList) -> None:
        self._question_lists[question_list.id] = replace(
            question_list, level_ratings=list(question_list.level_ratings)
        )

    # ==================== 外部题库 ====================

    def lookup_question_bank(self, question_id: int) -> Optional[dict]:
        entry = self._question_bank.get(question_id)
        return dict(entry) if entry else None

    def save_question_bank_entry(self, question_id: int, name: str, text: str) -> None:
        self._question_bank[question_id] = {'name': name, 'text': text}

    # ==================== 实现选择与配置 ====================

    def get_config_entry(self, kind: str, assessment_id: int) -> Optional[RatingSystemConfigEntry]:
        entry = self._config_entries[self._check_kind(kind)].get(assessment_id)
        return replace(entry) if entry else None

    def insert_config_entry(self, kind: str, entry: RatingSystemConfigEntry) -> RatingSystemConfigEntry:
        entries = self._config_entries[self._check_kind(kind)]
        if entry.assessment_id in entries:
            raise PersistenceFailure(f"测评 {entry.assessment_id} 已存在配置记录")
        stored = replace(entry, id=self._allocate_id(), configuration=entry.configuration or '')
        entries[entry.assessment_id] = stored
        return replace(stored)

    def update_config_entry(self, kind: str, entry: RatingSystemConfigEntry) -> None:
        entries = self._config_entries[self._check_kind(kind)]
        existing = entries.get(entry.assessment_id)
        if existing is None:
            raise PersistenceFailure(f"测评 {entry.assessment_id} 的配置记录不存在")
        entries[entry.assessment_id] = replace(
            entry, id=existing.id, configuration=entry.configuration or ''
        )

    # ==================== 学习者 ====================

    def get_learner(self, assessment_id: int, user_id: int) -> Optional[LearnerRating]:
        learner = self._learners.get((assessment_id, user_id))
        return replace(learner) if learner else None

    def insert_learner(self, learner: LearnerRating) -> LearnerRating:
        key = (learner.assessment_id, learner.user_id)
        if key in self._learners:
            raise PersistenceFailure(f"学习者 {learner.user_id} 已存在于测评 {learner.assessment_id}")
        self._learners[key] = replace(learner, id=self._allocate_id())
        return replace(self._learners[key])

    def update_learner(self, learner: LearnerRating) -> None:
        key = (learner.assessment_id, learner.user_id)
        if key not in self._learners:
            raise PersistenceFailure(f"学习者 {learner.user_id} 不存在于测评 {learner.assessment_id}")
        self._learners[key] = replace(learner, id=self._learners[key].id)

    # ==================== 作答记录 ====================

    def create_attempt(self, attempt: Attempt) -> Attempt:
        stored = replace(
            attempt,
            id=self._allocate_id(),
            answered=False,
            correct=None,
            time_created=attempt.time_created or datetime.now(),
        )
        self._attempts[stored.id] = stored
        return replace(stored)

    def _user_attempts(self, assessment_id: int, user_id: int) -> List[Attempt]:
        return [
            attempt for attempt in self._attempts.values()
            if attempt.assessment_id == assessment_id and attempt.user_id == user_id
        ]

    def pending_attempt(self, assessment_id: int, user_id: int) -> Optional[Attempt]:
        pending = [a for a in self._user_attempts(assessment_id, user_id) if not a.answered]
        if not pending:
            return None
        return replace(max(pending, key=lambda a: a.id))

    def mark_attempt_answered(self, attempt_id: int, correct: bool, answered_at: datetime) -> None:
        if attempt_id not in self._attempts:
            raise PersistenceFailure(f"作答记录 {attempt_id} 不存在")
        self._attempts[attempt_id] = replace(
            self._attempts[attempt_id], answered=True, correct=correct, time_answered=answered_at
        )

    def save_attempt_result(
        self,
        attempt_id: int,
        correct: bool,
        answered_at: datetime,
        question: QuestionRating,
        learner: LearnerRating
    ) -> None:
        attempt = self._attempts.get(attempt_id)
        if attempt is None or attempt.answered:
            raise PersistenceFailure(f"作答记录 {attempt_id} 不存在或已作答")
        question_key = (question.question_list_id, question.question_id)
        if question_key not in self._questions:
            raise PersistenceFailure(f"题目 {question.question_id} 不存在于题目列表 {question.question_list_id}")
        learner_key = (learner.assessment_id, learner.user_id)
        if learner_key not in self._learners:
            raise PersistenceFailure(f"学习者 {learner.user_id} 不存在于测评 {learner.assessment_id}")

        # 全部校验通过后才写入
        self._attempts[attempt_id] = replace(attempt, answered=True, correct=correct, time_answered=answered_at)
        self._questions[question_key] = replace(self._questions[question_key], rating=float(question.rating))
        self._learners[learner_key] = replace(learner, id=self._learners[learner_key].id)

    def excluded_question_ids(self, assessment_id: int, user_id: int) -> Set[int]:
        attempts = self._user_attempts(assessment_id, user_id)
        excluded = {a.question_id for a in attempts if not a.answered}
        answered = [a for a in attempts if a.answered]
        if answered:
            latest = max(answered, key=lambda a: a.id)
            excluded.add(latest.question_id)
        return excluded
