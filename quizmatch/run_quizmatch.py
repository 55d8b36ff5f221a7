import argparse
import json
import sys
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from quizmatch.core.assessment_engine import AssessmentEngine
from quizmatch.core.exceptions import QuizMatchError
from quizmatch.core.loaders import MatchmakingStrategyLoader, RatingSystemLoader
from quizmatch.core.models import AttemptOutcome, QuestionList, QuestionRating
from quizmatch.infra.config import ConfigManager
from quizmatch.storage.base import AssessmentStorage
from quizmatch.storage.sqlite_storage import SQLiteStorage
from quizmatch.utils.env_loader import load_project_env
from quizmatch.utils.logger import configure_root_logger, get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / 'configs' / 'default.yaml'


def parse_key_values(pairs: Optional[List[str]]) -> Dict[str, str]:
    """解析命令行中的 key=value 列表，值保持字符串交由配置表单转换"""
    result = {}
    for pair in pairs or []:
        if '=' not in pair:
            raise ValueError(f"参数格式应为 key=value: {pair}")
        key, value = pair.split('=', 1)
        result[key.strip()] = value.strip()
    return result


def export_question_ratings(storage: AssessmentStorage, question_list_id: int, output_path: Path) -> Path:
    """将题目列表的当前评分导出为CSV，按评分升序排列"""
    questions = storage.list_questions(question_list_id)
    df = pd.DataFrame(
        [question.to_dict() for question in questions],
        columns=['question_id', 'question_list_id', 'rating', 'name', 'text'],
    )
    if not df.empty:
        df = df.sort_values('rating', kind='stable').reset_index(drop=True)

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_path, index=False, encoding='utf-8')
    logger.info(f"已导出 {len(df)} 道题目评分: {output_path}")
    return output_path


def build_storage(config_manager: ConfigManager) -> SQLiteStorage:
    return SQLiteStorage(
        db_path=config_manager.get_storage_db_path(),
        tables=config_manager.get_storage_tables(),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="quizmatch 自适应选题引擎")
    parser.add_argument('--config', type=str, default=str(DEFAULT_CONFIG_PATH), help='YAML配置文件路径')
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('init-db', help='创建数据表并写入题目列表与默认实现')

    add_question = subparsers.add_parser('add-question', help='向题目列表添加题目')
    add_question.add_argument('--question-id', type=int, required=True)
    add_question.add_argument('--name', type=str, default=None, help='题库中的题目名称')
    add_question.add_argument('--text', type=str, default=None, help='题库中的题干')
    add_question.add_argument('--rating', type=float, default=None, help='初始评分，默认取配置值')

    set_rating_system = subparsers.add_parser('set-rating-system', help='切换评分系统')
    set_rating_system.add_argument('name', type=str)

    configure_rating_system = subparsers.add_parser('configure-rating-system', help='修改当前评分系统配置')
    configure_rating_system.add_argument('--set', dest='pairs', nargs='+', required=True, metavar='KEY=VALUE')

    set_strategy = subparsers.add_parser('set-strategy', help='切换选题策略')
    set_strategy.add_argument('name', type=str)

    configure_strategy = subparsers.add_parser('configure-strategy', help='修改当前选题策略配置')
    configure_strategy.add_argument('--set', dest='pairs', nargs='+', required=True, metavar='KEY=VALUE')

    subparsers.add_parser('show-config', help='显示当前评分系统与选题策略')

    next_question = subparsers.add_parser('next-question', help='为学习者选择下一道题')
    next_question.add_argument('--user', type=int, required=True)

    answer = subparsers.add_parser('answer', help='记录作答结果')
    answer.add_argument('--user', type=int, required=True)
    answer.add_argument('--question-id', type=int, required=True)
    result = answer.add_mutually_exclusive_group(required=True)
    result.add_argument('--correct', dest='correct', action='store_true')
    result.add_argument('--incorrect', dest='correct', action='store_false')

    export = subparsers.add_parser('export-ratings', help='导出题目评分为CSV')
    export.add_argument('--output', type=str, default=None)

    return parser


def run_command(args: argparse.Namespace, config_manager: ConfigManager, storage: AssessmentStorage) -> int:
    assessment_id = config_manager.get_assessment_id()
    question_list_id = config_manager.get_question_list_id()

    if args.command == 'init-db':
        storage.save_question_list(QuestionList(
            id=question_list_id,
            level_ratings=config_manager.get_level_ratings(),
            default_question_rating=config_manager.get_default_question_rating(),
        ))
        rating_loader = RatingSystemLoader(storage, assessment_id)
        if not rating_loader.has_rating_system():
            rating_loader.set_rating_system(
                config_manager.get_default_rating_system(),
                config_manager.get_rating_system_configuration(),
            )
        strategy_loader = MatchmakingStrategyLoader(storage, assessment_id)
        if not strategy_loader.has_strategy():
            strategy_loader.set_strategy(
                config_manager.get_default_matchmaking_strategy(),
                config_manager.get_matchmaking_configuration(),
            )
        logger.info(f"测评 {assessment_id} 初始化完成")
        return 0

    if args.command == 'add-question':
        if args.name is not None or args.text is not None:
            storage.save_question_bank_entry(args.question_id, args.name or '', args.text or '')
        rating = args.rating if args.rating is not None else config_manager.get_default_question_rating()
        question = storage.add_question(QuestionRating(
            question_id=args.question_id,
            question_list_id=question_list_id,
            rating=rating,
        ))
        print(json.dumps(question.to_dict(), ensure_ascii=False))
        return 0

    if args.command == 'set-rating-system':
        RatingSystemLoader(storage, assessment_id).set_rating_system(args.name)
        return 0

    if args.command == 'configure-rating-system':
        loader = RatingSystemLoader(storage, assessment_id)
        form = loader.configuration_form(target_url='')
        if form is None:
            logger.error("当前测评尚未选择评分系统")
            return 1
        loader.configure_current_rating_system(form.parse_submission(parse_key_values(args.pairs)))
        return 0

    if args.command == 'set-strategy':
        MatchmakingStrategyLoader(storage, assessment_id).set_strategy(args.name)
        return 0

    if args.command == 'configure-strategy':
        loader = MatchmakingStrategyLoader(storage, assessment_id)
        form = loader.configuration_form(target_url='')
        if form is None:
            logger.error("当前测评尚未选择选题策略")
            return 1
        loader.configure_current_strategy(form.parse_submission(parse_key_values(args.pairs)))
        return 0

    if args.command == 'show-config':
        rating_loader = RatingSystemLoader(storage, assessment_id)
        strategy_loader = MatchmakingStrategyLoader(storage, assessment_id)
        print(json.dumps({
            'rating_system': rating_loader.current_rating_system_name(),
            'rating_system_configuration': rating_loader.configuration(),
            'matchmaking_strategy': strategy_loader.current_strategy_name(),
            'matchmaking_configuration': strategy_loader.configuration(),
        }, ensure_ascii=False, indent=2))
        return 0

    engine = AssessmentEngine(
        storage,
        assessment_id=assessment_id,
        question_list_id=question_list_id,
        default_user_rating=config_manager.get_default_user_rating(),
        default_strategy=config_manager.get_default_matchmaking_strategy(),
    )

    if args.command == 'next-question':
        question = engine.next_question(args.user)
        if question is None:
            print(json.dumps({'question': None}))
            return 0
        print(json.dumps({'question': question.to_dict()}, ensure_ascii=False))
        return 0

    if args.command == 'answer':
        learner, question = engine.record_outcome(AttemptOutcome(
            learner_id=args.user,
            question_id=args.question_id,
            correct=args.correct,
        ))
        print(json.dumps({'learner': learner.to_dict(), 'question': question.to_dict()}, ensure_ascii=False))
        return 0

    if args.command == 'export-ratings':
        output = Path(args.output) if args.output else (
            config_manager.get_export_dir() / f"question_list_{question_list_id}_ratings.csv"
        )
        export_question_ratings(storage, question_list_id, output)
        return 0

    raise ValueError(f"未知命令: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    load_project_env()

    args = build_parser().parse_args(argv)

    try:
        config_manager = ConfigManager(args.config)
        validation_errors = config_manager.validate_config()
        if validation_errors:
            logger.error("配置验证失败，发现以下问题：")
            for error in validation_errors:
                logger.error(f"  - {error}")
            return 1
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"配置加载失败: {e}")
        return 1

    configure_root_logger(**config_manager.get_logging_settings())

    try:
        storage = build_storage(config_manager)
        return run_command(args, config_manager, storage)
    except (QuizMatchError, ValueError) as e:
        logger.error(f"{args.command} 执行失败: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
