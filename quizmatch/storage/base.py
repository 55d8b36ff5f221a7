"""
存储接口
选题引擎依赖的持久化端口，SQLite 实现与内存实现共用
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List, Optional, Set

from quizmatch.core.models import (
    MATCHMAKING_STRATEGY_KIND,
    RATING_SYSTEM_KIND,
    Attempt,
    LearnerRating,
    QuestionList,
    QuestionRating,
    RatingSystemConfigEntry,
)

CONFIG_KINDS = (RATING_SYSTEM_KIND, MATCHMAKING_STRATEGY_KIND)


class AssessmentStorage(ABC):
    """持久化端口: 题目池、题库查询、配置记录、学习者评分与作答记录"""

    @staticmethod
    def _check_kind(kind: str) -> str:
        if kind not in CONFIG_KINDS:
            raise ValueError(f"未知的配置类型: {kind}")
        return kind

    # ==================== 题目池 ====================

    @abstractmethod
    def fetch_questions(
        self,
        question_list_id: int,
        target_rating: float,
        limit: int,
        excluded_question_ids: Iterable[int] = ()
    ) -> List[QuestionRating]:
        """按 |rating - target_rating| 升序返回最多 limit 道题，排除项在排序前剔除"""

    @abstractmethod
    def list_questions(self, question_list_id: int) -> List[QuestionRating]:
        pass

    @abstractmethod
    def get_question(self, question_list_id: int, question_id: int) -> Optional[QuestionRating]:
        pass

    @abstractmethod
    def add_question(self, question: QuestionRating) -> QuestionRating:
        pass

    @abstractmethod
    def update_question_rating(self, question_list_id: int, question_id: int, rating: float) -> None:
        pass

    @abstractmethod
    def get_question_list(self, question_list_id: int) -> Optional[QuestionList]:
        pass

    @abstractmethod
    def save_question_list(self, question_list: QuestionList) -> None:
        pass

    # ==================== 外部题库 ====================

    @abstractmethod
    def lookup_question_bank(self, question_id: int) -> Optional[dict]:
        """返回 {'name', 'text'}，不存在时返回 None"""

    @abstractmethod
    def save_question_bank_entry(self, question_id: int, name: str, text: str) -> None:
        pass

    # ==================== 实现选择与配置 ====================

    @abstractmethod
    def get_config_entry(self, kind: str, assessment_id: int) -> Optional[RatingSystemConfigEntry]:
        pass

    @abstractmethod
    def insert_config_entry(self, kind: str, entry: RatingSystemConfigEntry) -> RatingSystemConfigEntry:
        pass

    @abstractmethod
    def update_config_entry(self, kind: str, entry: RatingSystemConfigEntry) -> None:
        pass

    # ==================== 学习者 ====================

    @abstractmethod
    def get_learner(self, assessment_id: int, user_id: int) -> Optional[LearnerRating]:
        pass

    @abstractmethod
    def insert_learner(self, learner: LearnerRating) -> LearnerRating:
        pass

    @abstractmethod
    def update_learner(self, learner: LearnerRating) -> None:
        pass

    # ==================== 作答记录 ====================

    @abstractmethod
    def create_attempt(self, attempt: Attempt) -> Attempt:
        pass

    @abstractmethod
    def pending_attempt(self, assessment_id: int, user_id: int) -> Optional[Attempt]:
        """最近一条尚未作答的记录"""

    @abstractmethod
    def mark_attempt_answered(self, attempt_id: int, correct: bool, answered_at: datetime) -> None:
        pass

    @abstractmethod
    def save_attempt_result(
        self,
        attempt_id: int,
        correct: bool,
        answered_at: datetime,
        question: QuestionRating,
        learner: LearnerRating
    ) -> None:
        """
        在同一事务中写回题目评分、学习者评分并将待作答记录标记为已作答

        任一写入失败时三者都不生效；记录已作答或不存在时抛出 PersistenceFailure。
        """

    @abstractmethod
    def excluded_question_ids(self, assessment_id: int, user_id: int) -> Set[int]:
        """暂不可出的题目: 待作答的题目加上最近一次已作答的题目"""
