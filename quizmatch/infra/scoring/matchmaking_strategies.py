"""
选题策略模块
根据学习者评分从题目池中挑选下一道题
"""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional
import math
import random

from quizmatch.core.models import LearnerRating, QuestionList, QuestionRating
from quizmatch.infra.scoring.configuration import (
    ConfigField,
    Configurable,
    open_unit_interval,
    positive,
)
from quizmatch.infra.scoring.rating_systems import LOGISTIC_CONSTANT
from quizmatch.utils.logger import get_logger

logger = get_logger(__name__)


class MatchmakingStrategy(Configurable, ABC):
    """选题策略基类: 定义选题与配置接口"""

    def __init__(self, question_pool, rng: Optional[random.Random] = None):
        super().__init__()
        self.question_pool = question_pool
        self.rng = rng or random.Random()

    @abstractmethod
    def next_question_for_user(
        self,
        learner: LearnerRating,
        question_list: QuestionList,
        excluded_questions: Iterable[int]
    ) -> Optional[QuestionRating]:
        """为学习者选择下一道题，无可用题目时返回 None"""
        pass


class NClosestSelector(MatchmakingStrategy):
    """N近邻选题: 在评分最接近理想难度的N道题中均匀随机选择"""

    config_fields = (
        ConfigField('user_win_probability', float, 0.75, label='学习者目标答对概率',
                    validator=open_unit_interval),
        ConfigField('number_of_questions_to_select', int, 10, label='候选题目数量',
                    validator=positive),
    )

    def ideal_question_rating(self, learner_rating: float) -> float:
        """
        理想题目评分

        对期望得分公式求逆，使学习者答对该题的期望概率恰好等于 user_win_probability:
        ideal = 400 * log10(1/p - 1) + R_learner
        """
        p = self.user_win_probability
        return LOGISTIC_CONSTANT * math.log10(1.0 / p - 1.0) + learner_rating

    def candidate_questions(
        self,
        learner: LearnerRating,
        question_list: QuestionList,
        excluded_questions: Iterable[int] = ()
    ) -> List[QuestionRating]:
        """按与理想评分的距离升序取前N道题，排除的题目在排序前剔除"""
        ideal = self.ideal_question_rating(learner.rating)
        return self.question_pool.fetch_questions(
            question_list.id,
            target_rating=ideal,
            limit=self.number_of_questions_to_select,
            excluded_question_ids=set(excluded_questions),
        )

    def next_question_for_user(
        self,
        learner: LearnerRating,
        question_list: QuestionList,
        excluded_questions: Iterable[int] = ()
    ) -> Optional[QuestionRating]:
        candidates = self.candidate_questions(learner, question_list, excluded_questions)
        if not candidates:
            logger.info(f"题目列表 {question_list.id} 没有可供学习者 {learner.user_id} 选择的题目")
            return None

        question = self.rng.choice(candidates)
        logger.debug(
            f"学习者 {learner.user_id} (评分 {learner.rating:.1f}) 从 {len(candidates)} 道候选题中"
            f"选中题目 {question.question_id} (评分 {question.rating:.1f})"
        )
        return question
