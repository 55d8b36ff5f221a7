"""
评分系统模块
根据作答对错同时更新学习者与题目的评分
"""

from abc import ABC, abstractmethod
from typing import Tuple

from quizmatch.infra.scoring.configuration import ConfigField, Configurable, positive

LOGISTIC_CONSTANT = 400.0


def expected_score(own_rating: float, opponent_rating: float) -> float:
    """
    计算期望得分

    公式: E = 1 / (1 + 10^((R_opponent - R_own) / 400))
    """
    return 1.0 / (1.0 + 10 ** ((opponent_rating - own_rating) / LOGISTIC_CONSTANT))


class RatingSystem(Configurable, ABC):
    """评分系统基类: 定义评分更新与配置接口"""

    @abstractmethod
    def update_ratings(
        self,
        learner_rating: float,
        question_rating: float,
        correct: bool
    ) -> Tuple[float, float]:
        """返回 (新学习者评分, 新题目评分)，不得有副作用"""
        pass


class EloRatingSystem(RatingSystem):
    """ELO评分系统: 学习者与题目视为对局双方，各自使用独立的K因子"""

    config_fields = (
        ConfigField('student_k_factor', float, 32.0, label='学习者K因子', validator=positive),
        ConfigField('question_k_factor', float, 8.0, label='题目K因子', validator=positive),
    )

    def expected_score(self, own_rating: float, opponent_rating: float) -> float:
        """计算 own 一方对 opponent 一方的期望胜率"""
        return expected_score(own_rating, opponent_rating)

    def update_ratings(
        self,
        learner_rating: float,
        question_rating: float,
        correct: bool
    ) -> Tuple[float, float]:
        """ELO评分更新：new_rating = old_rating + K * (actual - expected)"""
        expected_learner = self.expected_score(learner_rating, question_rating)
        expected_question = 1 - expected_learner

        actual_learner = 1.0 if correct else 0.0
        actual_question = 1.0 - actual_learner

        new_learner_rating = learner_rating + self.student_k_factor * (actual_learner - expected_learner)
        new_question_rating = question_rating + self.question_k_factor * (actual_question - expected_question)

        return new_learner_rating, new_question_rating
