"""
测评引擎模块
协调选题策略和评分系统: 为学习者出题、记录作答结果并更新双方评分
"""

import random
from dataclasses import replace
from typing import Optional, Tuple

from quizmatch.core.exceptions import NoActiveRatingSystem, NoPendingAttempt
from quizmatch.core.loaders import MatchmakingStrategyLoader, RatingSystemLoader
from quizmatch.core.models import (
    DEFAULT_USER_RATING,
    Attempt,
    AttemptOutcome,
    LearnerRating,
    QuestionList,
    QuestionRating,
)
from quizmatch.infra.scoring.matchmaking_strategies import MatchmakingStrategy
from quizmatch.infra.scoring.registry import MatchmakingStrategyRegistry, RatingSystemRegistry
from quizmatch.storage.base import AssessmentStorage
from quizmatch.utils.logger import get_logger

logger = get_logger(__name__)


class AssessmentEngine:
    """
    测评引擎: 每次请求都从持久化配置重建评分系统与选题策略，不跨请求缓存

    出题时学习者若有待作答的题目则直接返回该题；每道出过的题只接受一次作答结果，
    题目评分、学习者评分与作答状态在同一事务中写回存储。
    """

    def __init__(
        self,
        storage: AssessmentStorage,
        assessment_id: int,
        question_list_id: int,
        default_user_rating: float = DEFAULT_USER_RATING,
        default_strategy: str = 'n_closest',
        rating_system_registry: Optional[RatingSystemRegistry] = None,
        strategy_registry: Optional[MatchmakingStrategyRegistry] = None,
        rng: Optional[random.Random] = None
    ):
        self.storage = storage
        self.assessment_id = assessment_id
        self.question_list_id = question_list_id
        self.default_user_rating = default_user_rating
        self.default_strategy = default_strategy
        self.rating_system_registry = rating_system_registry or RatingSystemRegistry()
        self.strategy_registry = strategy_registry or MatchmakingStrategyRegistry(storage, rng=rng)

    def rating_system_loader(self) -> RatingSystemLoader:
        return RatingSystemLoader(self.storage, self.assessment_id, registry=self.rating_system_registry)

    def strategy_loader(self) -> MatchmakingStrategyLoader:
        return MatchmakingStrategyLoader(self.storage, self.assessment_id, registry=self.strategy_registry)

    def question_list(self) -> QuestionList:
        """题目列表配置，未保存过时使用默认等级阈值"""
        question_list = self.storage.get_question_list(self.question_list_id)
        if question_list is None:
            question_list = QuestionList(id=self.question_list_id)
        return question_list

    def learner(self, user_id: int) -> LearnerRating:
        """获取学习者评分，首次参与时按默认评分创建"""
        learner = self.storage.get_learner(self.assessment_id, user_id)
        if learner is None:
            learner = self.storage.insert_learner(LearnerRating(
                user_id=user_id,
                assessment_id=self.assessment_id,
                rating=self.default_user_rating,
            ))
            logger.info(f"测评 {self.assessment_id}: 新学习者 {user_id}，初始评分 {learner.rating}")
        return learner

    def _strategy(self) -> MatchmakingStrategy:
        loader = self.strategy_loader()
        strategy = loader.strategy()
        if strategy is None:
            logger.debug(f"测评 {self.assessment_id} 未选择选题策略，使用默认策略 {self.default_strategy}")
            strategy = self.strategy_registry.strategy(self.default_strategy)
        return strategy

    def next_question(self, user_id: int) -> Optional[QuestionRating]:
        """为学习者选择下一道题，无可用题目时返回 None"""
        pending = self.storage.pending_attempt(self.assessment_id, user_id)
        if pending is not None:
            question = self.storage.get_question(self.question_list_id, pending.question_id)
            if question is not None:
                return question
            logger.warning(f"待作答题目 {pending.question_id} 已不在题目列表中，重新选题")

        learner = self.learner(user_id)
        excluded = self.storage.excluded_question_ids(self.assessment_id, user_id)
        question = self._strategy().next_question_for_user(learner, self.question_list(), excluded)
        if question is None:
            return None

        self.storage.create_attempt(Attempt(
            assessment_id=self.assessment_id,
            user_id=user_id,
            question_id=question.question_id,
        ))
        return question

    def record_outcome(self, outcome: AttemptOutcome) -> Tuple[LearnerRating, QuestionRating]:
        """根据作答结果更新学习者与题目评分"""
        rating_system = self.rating_system_loader().rating_system()
        if rating_system is None:
            raise NoActiveRatingSystem(self.assessment_id)

        question = self.storage.get_question(self.question_list_id, outcome.question_id)
        if question is None:
            raise ValueError(f"题目 {outcome.question_id} 不存在于题目列表 {self.question_list_id}")

        # 每次出题只接受一次作答结果
        pending = self.storage.pending_attempt(self.assessment_id, outcome.learner_id)
        if pending is None or pending.question_id != outcome.question_id:
            raise NoPendingAttempt(outcome.learner_id, outcome.question_id)
        learner = self.learner(outcome.learner_id)

        new_learner_rating, new_question_rating = rating_system.update_ratings(
            learner.rating, question.rating, outcome.correct
        )
        level = self.question_list().level_for_rating(new_learner_rating)
        updated_learner = replace(
            learner,
            rating=new_learner_rating,
            highest_level_reached=max(learner.highest_level_reached, level),
        )
        updated_question = replace(question, rating=new_question_rating)

        self.storage.save_attempt_result(
            pending.id,
            outcome.correct,
            outcome.timestamp,
            question=updated_question,
            learner=updated_learner,
        )

        logger.info(
            f"测评 {self.assessment_id}: 学习者 {outcome.learner_id} "
            f"{'答对' if outcome.correct else '答错'}题目 {outcome.question_id}，"
            f"学习者评分 {learner.rating:.1f} -> {new_learner_rating:.1f}，"
            f"题目评分 {question.rating:.1f} -> {new_question_rating:.1f}"
        )
        if updated_learner.highest_level_reached > learner.highest_level_reached:
            logger.info(f"学习者 {outcome.learner_id} 达到等级 {updated_learner.highest_level_reached}")

        return updated_learner, updated_question
