#!/usr/bin/env python3
"""
模拟演示脚本
用隐藏能力值模拟学习者作答，观察评分系统与选题策略的收敛情况
"""

import argparse
import random
import sys
from pathlib import Path

import numpy as np

ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

try:
    from quizmatch.core.assessment_engine import AssessmentEngine
    from quizmatch.core.loaders import MatchmakingStrategyLoader, RatingSystemLoader
    from quizmatch.core.models import AttemptOutcome, QuestionList, QuestionRating
    from quizmatch.infra.scoring.rating_systems import expected_score
    from quizmatch.storage.memory_storage import InMemoryStorage
    from quizmatch.utils.logger import configure_root_logger, get_logger
except ImportError as e:
    print(f"导入错误: {e}")
    print("\n💡 提示: 请先安装项目依赖:")
    print("   pip install -e .")
    sys.exit(1)

logger = get_logger(__name__)

ASSESSMENT_ID = 1
QUESTION_LIST_ID = 1


def build_engine(question_count: int, seed: int) -> tuple:
    storage = InMemoryStorage()
    storage.save_question_list(QuestionList(id=QUESTION_LIST_ID))

    # 题目的真实难度未知，初始评分统一为默认值
    rng = np.random.default_rng(seed)
    difficulties = rng.normal(1200, 250, size=question_count)
    for question_id in range(1, question_count + 1):
        storage.add_question(QuestionRating(question_id=question_id, question_list_id=QUESTION_LIST_ID, rating=600.0))

    RatingSystemLoader(storage, ASSESSMENT_ID).set_rating_system('elo')
    MatchmakingStrategyLoader(storage, ASSESSMENT_ID).set_strategy('n_closest')

    engine = AssessmentEngine(
        storage,
        assessment_id=ASSESSMENT_ID,
        question_list_id=QUESTION_LIST_ID,
        rng=random.Random(seed),
    )
    return engine, storage, dict(zip(range(1, question_count + 1), difficulties))


def simulate(learner_count: int, question_count: int, rounds: int, seed: int) -> None:
    engine, storage, difficulties = build_engine(question_count, seed)
    rng = np.random.default_rng(seed + 1)
    abilities = dict(zip(range(1, learner_count + 1), rng.normal(1300, 200, size=learner_count)))

    for round_index in range(rounds):
        for user_id, ability in abilities.items():
            question = engine.next_question(user_id)
            if question is None:
                logger.warning(f"学习者 {user_id} 无可用题目")
                continue
            correct = rng.random() < expected_score(ability, difficulties[question.question_id])
            engine.record_outcome(AttemptOutcome(learner_id=user_id, question_id=question.question_id, correct=correct))

        if (round_index + 1) % 10 == 0:
            logger.info(f"已完成 {round_index + 1}/{rounds} 轮")

    learner_ratings = np.array([engine.learner(user_id).rating for user_id in abilities])
    question_ratings = np.array([storage.get_question(QUESTION_LIST_ID, qid).rating for qid in difficulties])

    learner_corr = np.corrcoef(list(abilities.values()), learner_ratings)[0, 1]
    question_corr = np.corrcoef(list(difficulties.values()), question_ratings)[0, 1]

    print(f"学习者评分与真实能力相关系数: {learner_corr:.3f}")
    print(f"题目评分与真实难度相关系数: {question_corr:.3f}")
    print(f"学习者评分均值: {learner_ratings.mean():.1f}，题目评分均值: {question_ratings.mean():.1f}")


def main() -> int:
    parser = argparse.ArgumentParser(description="quizmatch 作答模拟")
    parser.add_argument('--learners', type=int, default=30)
    parser.add_argument('--questions', type=int, default=60)
    parser.add_argument('--rounds', type=int, default=50)
    parser.add_argument('--seed', type=int, default=7)
    args = parser.parse_args()

    configure_root_logger(level='INFO', log_to_file=False)
    simulate(args.learners, args.questions, args.rounds, args.seed)
    return 0


if __name__ == "__main__":
    sys.exit(main())
