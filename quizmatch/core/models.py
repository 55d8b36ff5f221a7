"""
数据模型
题目评分、学习者评分、配置记录与作答结果
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import List, Optional


MISSING_QUESTION_NAME = 'Missing question'
MISSING_QUESTION_TEXT = 'This question is missing.'

DEFAULT_USER_RATING = 1200.0
DEFAULT_QUESTION_RATING = 600.0
DEFAULT_LEVEL_RATINGS = [1300.0, 1450.0, 1600.0, 1800.0, 2000.0]

RATING_SYSTEM_KIND = 'rating_system'
MATCHMAKING_STRATEGY_KIND = 'matchmaking_strategy'


@dataclass
class QuestionRating:
    """题目评分记录，name/text 来自外部题库，仅用于展示"""

    question_id: int
    question_list_id: int
    rating: float
    id: Optional[int] = None
    name: str = MISSING_QUESTION_NAME
    text: str = MISSING_QUESTION_TEXT

    def with_bank_entry(self, bank_entry: Optional[dict]) -> 'QuestionRating':
        """用题库条目刷新展示字段，条目缺失时使用占位文本"""
        if bank_entry is None:
            return replace(self, name=MISSING_QUESTION_NAME, text=MISSING_QUESTION_TEXT)
        return replace(
            self,
            name=bank_entry.get('name', MISSING_QUESTION_NAME),
            text=bank_entry.get('text', MISSING_QUESTION_TEXT),
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'question_id': self.question_id,
            'question_list_id': self.question_list_id,
            'rating': self.rating,
            'name': self.name,
            'text': self.text,
        }


@dataclass
class LearnerRating:
    """学习者在某个测评实例中的评分"""

    user_id: int
    assessment_id: int
    rating: float = DEFAULT_USER_RATING
    highest_level_reached: int = 0
    id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'assessment_id': self.assessment_id,
            'rating': self.rating,
            'highest_level_reached': self.highest_level_reached,
        }


@dataclass
class QuestionList:
    """题目列表，持有等级阈值和新题目的默认评分"""

    id: int
    level_ratings: List[float] = field(default_factory=lambda: list(DEFAULT_LEVEL_RATINGS))
    default_question_rating: float = DEFAULT_QUESTION_RATING

    def level_for_rating(self, rating: float) -> int:
        """评分达到的等级: 不高于该评分的阈值个数"""
        return sum(1 for threshold in sorted(self.level_ratings) if rating >= threshold)


@dataclass
class RatingSystemConfigEntry:
    """每个测评实例一条的实现选择记录，configuration 为空串表示无配置"""

    assessment_id: int
    rating_system_name: str
    configuration: str = ''
    id: Optional[int] = None


@dataclass
class AttemptOutcome:
    """宿主系统判定后的一次作答结果"""

    learner_id: int
    question_id: int
    correct: bool
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class Attempt:
    """一次出题记录，作答前为待定状态"""

    assessment_id: int
    user_id: int
    question_id: int
    id: Optional[int] = None
    answered: bool = False
    correct: Optional[bool] = None
    time_created: Optional[datetime] = None
    time_answered: Optional[datetime] = None
