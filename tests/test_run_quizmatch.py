"""
命令行入口单元测试
"""

import json

import pandas as pd
import pytest
import yaml

from quizmatch.core.loaders import MatchmakingStrategyLoader, RatingSystemLoader
from quizmatch.run_quizmatch import export_question_ratings, main, parse_key_values
from quizmatch.storage.sqlite_storage import SQLiteStorage

from conftest import add_questions


@pytest.fixture
def cli_config(tmp_path):
    """写入临时目录的命令行配置"""
    config = {
        'assessment': {
            'assessment_id': 2,
            'question_list_id': 4,
            'default_question_rating': 600,
        },
        'rating_system': {'name': 'elo'},
        'matchmaking': {
            'name': 'n_closest',
            'configuration': {'number_of_questions_to_select': 1},
        },
        'storage': {'sqlite': {'db_path': str(tmp_path / 'cli.db')}},
        'logging': {'level': 'WARNING', 'log_to_file': False},
        'export': {'output_dir': str(tmp_path / 'exports')},
    }
    config_path = tmp_path / 'quizmatch.yaml'
    config_path.write_text(yaml.dump(config), encoding='utf-8')
    return str(config_path)


def run(config_path, *args):
    return main(['--config', config_path, *args])


def json_lines(output, prefix):
    return [json.loads(line) for line in output.splitlines() if line.startswith(prefix)]


def test_parse_key_values():
    """测试 key=value 参数解析"""
    assert parse_key_values(['a=1', ' b = x=y ']) == {'a': '1', 'b': 'x=y'}
    assert parse_key_values(None) == {}

    with pytest.raises(ValueError):
        parse_key_values(['missing'])


def test_init_db_seeds_implementations(cli_config, tmp_path):
    """测试初始化写入题目列表与默认实现"""
    assert run(cli_config, 'init-db') == 0

    storage = SQLiteStorage(db_path=str(tmp_path / 'cli.db'))
    assert storage.get_question_list(4).default_question_rating == 600.0
    assert RatingSystemLoader(storage, 2).current_rating_system_name() == 'elo'
    strategy = MatchmakingStrategyLoader(storage, 2).strategy()
    assert strategy.number_of_questions_to_select == 1


def test_full_session(cli_config, tmp_path, capsys):
    """测试完整流程: 添加题目、修改配置、出题、作答、导出"""
    assert run(cli_config, 'init-db') == 0
    assert run(cli_config, 'add-question', '--question-id', '1', '--rating', '1000', '--name', '乘法') == 0
    assert run(cli_config, 'add-question', '--question-id', '2', '--rating', '1500') == 0
    assert run(cli_config, 'add-question', '--question-id', '3') == 0
    assert run(cli_config, 'configure-rating-system', '--set', 'student_k_factor=16') == 0
    capsys.readouterr()

    assert run(cli_config, 'next-question', '--user', '9') == 0
    served = json_lines(capsys.readouterr().out, '{"question"')[-1]['question']
    assert served['question_id'] == 1
    assert served['name'] == '乘法'

    assert run(cli_config, 'answer', '--user', '9', '--question-id', '1', '--correct') == 0
    answered = json_lines(capsys.readouterr().out, '{"learner"')[-1]
    # 1200 对 1000 答对: 16 * (1 - 0.7597)
    assert answered['learner']['rating'] == pytest.approx(1200.0 + 16 * 0.240253, abs=1e-3)
    assert answered['question']['rating'] < 1000.0

    # 重复提交同一作答结果被拒绝
    assert run(cli_config, 'answer', '--user', '9', '--question-id', '1', '--correct') == 1

    output = tmp_path / 'ratings.csv'
    assert run(cli_config, 'export-ratings', '--output', str(output)) == 0

    df = pd.read_csv(output)
    assert list(df.columns) == ['question_id', 'question_list_id', 'rating', 'name', 'text']
    assert df['question_id'].tolist() == [3, 1, 2]
    assert df['rating'].is_monotonic_increasing


def test_configure_without_selection(cli_config):
    """测试未选择评分系统时修改配置失败"""
    assert run(cli_config, 'configure-rating-system', '--set', 'student_k_factor=16') == 1


def test_invalid_configuration_value(cli_config, tmp_path):
    """测试非法配置值返回错误码且不修改持久化配置"""
    assert run(cli_config, 'init-db') == 0

    assert run(cli_config, 'configure-strategy', '--set', 'user_win_probability=1.5') == 1

    storage = SQLiteStorage(db_path=str(tmp_path / 'cli.db'))
    assert MatchmakingStrategyLoader(storage, 2).configuration()['user_win_probability'] == 0.75


def test_unknown_rating_system(cli_config):
    """测试切换到未知评分系统返回错误码"""
    assert run(cli_config, 'set-rating-system', 'glicko') == 1


def test_invalid_config_file(tmp_path):
    """测试配置验证失败时返回错误码"""
    config_path = tmp_path / 'bad.yaml'
    config_path.write_text('assessment:\n  assessment_id: -1\n  question_list_id: 1\n', encoding='utf-8')

    assert main(['--config', str(config_path), 'show-config']) == 1


def test_export_empty_question_list(sqlite_storage, tmp_path):
    """测试导出空题目列表时只写表头"""
    output = export_question_ratings(sqlite_storage, 1, tmp_path / 'out' / 'empty.csv')

    assert output.read_text(encoding='utf-8').strip() == 'question_id,question_list_id,rating,name,text'


def test_export_orders_by_rating(sqlite_storage, tmp_path):
    """测试导出结果按评分升序排列"""
    add_questions(sqlite_storage, 1, {1: 900.0, 2: 400.0, 3: 650.0})

    df = pd.read_csv(export_question_ratings(sqlite_storage, 1, tmp_path / 'ratings.csv'))

    assert df['question_id'].tolist() == [2, 3, 1]
