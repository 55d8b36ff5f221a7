"""
ConfigManager单元测试
"""

from pathlib import Path

import pytest
import yaml

from quizmatch.infra.config.config_manager import ConfigManager


@pytest.fixture
def sample_config():
    """创建示例配置"""
    return {
        'assessment': {
            'assessment_id': 3,
            'question_list_id': 8,
            'default_user_rating': 1100,
            'default_question_rating': 500,
            'level_ratings': [1200, 1400],
        },
        'rating_system': {
            'name': 'elo',
            'configuration': {'student_k_factor': 24},
        },
        'matchmaking': {
            'name': 'n_closest',
            'configuration': {'user_win_probability': 0.7},
        },
        'storage': {
            'sqlite': {
                'db_path': 'env_var:QUIZMATCH_TEST_DB',
                'questions_table': 'capquiz_questions',
            }
        },
        'logging': {
            'level': 'DEBUG',
            'log_to_file': False,
        },
    }


@pytest.fixture
def config_file(tmp_path, sample_config):
    """创建临时配置文件"""
    config_path = tmp_path / 'config.yaml'
    config_path.write_text(yaml.dump(sample_config, allow_unicode=True), encoding='utf-8')
    return str(config_path)


@pytest.fixture
def env_keys(monkeypatch):
    """为依赖环境变量的测试提供默认值"""
    monkeypatch.setenv('QUIZMATCH_TEST_DB', '/tmp/quizmatch-test.db')


def test_missing_config_file(tmp_path):
    """测试配置文件不存在"""
    with pytest.raises(FileNotFoundError):
        ConfigManager(str(tmp_path / 'missing.yaml'))


def test_empty_config_file(tmp_path):
    """测试空配置文件"""
    config_path = tmp_path / 'empty.yaml'
    config_path.write_text('', encoding='utf-8')

    with pytest.raises(ValueError, match="配置文件为空"):
        ConfigManager(str(config_path))


def test_assessment_settings(config_file):
    """测试测评实例设置"""
    manager = ConfigManager(config_file)

    assert manager.get_assessment_id() == 3
    assert manager.get_question_list_id() == 8
    assert manager.get_default_user_rating() == 1100.0
    assert manager.get_default_question_rating() == 500.0
    assert manager.get_level_ratings() == [1200.0, 1400.0]


def test_implementation_settings(config_file):
    """测试评分系统与选题策略设置"""
    manager = ConfigManager(config_file)

    assert manager.get_default_rating_system() == 'elo'
    assert manager.get_rating_system_configuration() == {'student_k_factor': 24}
    assert manager.get_default_matchmaking_strategy() == 'n_closest'
    assert manager.get_matchmaking_configuration() == {'user_win_probability': 0.7}


def test_defaults_when_sections_missing(tmp_path):
    """测试缺省配置段使用默认值"""
    config_path = tmp_path / 'minimal.yaml'
    config_path.write_text('assessment:\n  assessment_id: 1\n  question_list_id: 1\n', encoding='utf-8')
    manager = ConfigManager(str(config_path))

    assert manager.get_default_user_rating() == 1200.0
    assert manager.get_level_ratings() == [1300.0, 1450.0, 1600.0, 1800.0, 2000.0]
    assert manager.get_default_rating_system() == 'elo'
    assert manager.get_rating_system_configuration() is None
    assert manager.get_storage_db_path() == 'data/quizmatch.db'
    assert manager.get_export_dir() == Path('exports')
    assert manager.validate_config() == []


def test_storage_db_path_from_env(config_file, env_keys):
    """测试数据库路径从环境变量解析"""
    manager = ConfigManager(config_file)

    assert manager.get_storage_db_path() == '/tmp/quizmatch-test.db'


def test_storage_db_path_env_missing(config_file, monkeypatch):
    """测试缺失的环境变量"""
    monkeypatch.delenv('QUIZMATCH_TEST_DB', raising=False)
    manager = ConfigManager(config_file)

    with pytest.raises(ValueError, match="环境变量.*未设置"):
        manager.get_storage_db_path()


def test_storage_tables(config_file):
    """测试存储表名配置，未配置的表名使用默认值"""
    manager = ConfigManager(config_file)
    tables = manager.get_storage_tables()

    assert tables['questions_table'] == 'capquiz_questions'
    assert tables['rating_systems_table'] == 'rating_systems'


def test_logging_settings(config_file):
    """测试日志配置"""
    manager = ConfigManager(config_file)

    assert manager.get_logging_settings() == {
        'level': 'DEBUG',
        'log_to_file': False,
        'log_to_console': True,
    }


def test_validate_config_valid(config_file, env_keys):
    """测试配置验证 - 有效配置"""
    manager = ConfigManager(config_file)

    assert manager.validate_config() == []


def test_validate_config_reports_errors(tmp_path, sample_config):
    """测试配置验证 - 多项错误"""
    sample_config['assessment']['assessment_id'] = 0
    sample_config['assessment']['level_ratings'] = [1400, 1200]
    sample_config['matchmaking']['configuration'] = 'n=5'
    sample_config['storage']['sqlite'] = {'db_path': 'data/x.db', 'learners_table': 'bad-name'}
    config_path = tmp_path / 'invalid.yaml'
    config_path.write_text(yaml.dump(sample_config), encoding='utf-8')

    errors = ConfigManager(str(config_path)).validate_config()

    assert any('assessment.assessment_id' in error for error in errors)
    assert any('升序' in error for error in errors)
    assert any('matchmaking.configuration' in error for error in errors)
    assert any('learners_table' in error for error in errors)


def test_validate_config_missing_env(config_file, monkeypatch):
    """测试配置验证 - 环境变量缺失"""
    monkeypatch.delenv('QUIZMATCH_TEST_DB', raising=False)

    errors = ConfigManager(config_file).validate_config()

    assert any('QUIZMATCH_TEST_DB' in error for error in errors)


def test_bundled_default_config():
    """测试随包发布的默认配置有效"""
    config_path = Path(__file__).resolve().parent.parent / 'quizmatch' / 'configs' / 'default.yaml'
    manager = ConfigManager(str(config_path))

    assert manager.validate_config() == []
    assert manager.get_matchmaking_configuration() == {
        'user_win_probability': 0.75,
        'number_of_questions_to_select': 10,
    }
