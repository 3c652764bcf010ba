"""
Tests for InvexConfig and logging setup
"""

import logging

import pytest
import yaml

from invex.config.invex_config import InvexConfig
from invex.logging_config import setup_logging


class TestInvexConfig:
    """Tests for configuration loading"""

    def test_defaults(self):
        """Packaged defaults cover every section"""
        config = InvexConfig(load_user_config=False)

        assert config.get('database.type') == 'sqlite'
        assert config.get('renderer.dpi') == 150
        assert config.get('renderer.quality') == 85
        assert config.get('llm.model') == 'gpt-4o-2024-08-06'
        assert config.get('llm.max_tokens') == 4096
        assert config.get('pipeline.lease_ttl') == 3600
        assert config.get('pipeline.error_message_limit') == 500
        assert config.get('pipeline.stages.extract.backoff') == [30, 60, 120]
        assert config.get('pipeline.stages.render.timeout') == 120
        assert config.get('circuit_breaker.failure_threshold') == 10

    def test_overrides_merge_deeply(self):
        """Overrides replace single keys, not whole sections"""
        config = InvexConfig(
            overrides={'pipeline': {'stages': {'extract': {'timeout': 10}}}},
            load_user_config=False
        )

        assert config.get('pipeline.stages.extract.timeout') == 10
        assert config.get('pipeline.stages.extract.max_attempts') == 3
        assert config.get('pipeline.lease_ttl') == 3600

    def test_get_default_and_set(self):
        """Dot notation get/set"""
        config = InvexConfig(load_user_config=False)

        assert config.get('does.not.exist', 'fallback') == 'fallback'
        config.set('worker.custom.flag', True)
        assert config.get('worker.custom.flag') is True

    def test_from_file(self, tmp_path):
        """A YAML file overlays the defaults"""
        path = tmp_path / 'config.yaml'
        path.write_text(yaml.dump({'database': {'path': str(tmp_path / 'x.db')}, 'renderer': {'dpi': 200}}))

        config = InvexConfig.from_file(str(path))

        assert config.get('renderer.dpi') == 200
        assert config.get('renderer.quality') == 85
        assert config.get('database.path') == str(tmp_path / 'x.db')

    def test_env_config_file(self, tmp_path, monkeypatch):
        """INVEX_CONFIG names an extra config file"""
        path = tmp_path / 'env.yaml'
        path.write_text(yaml.dump({'worker': {'max_concurrent': 12}}))
        monkeypatch.setenv('INVEX_CONFIG', str(path))

        assert InvexConfig().get('worker.max_concurrent') == 12

    def test_empty_env_config_file(self, tmp_path, monkeypatch):
        """An empty config file is an error"""
        path = tmp_path / 'empty.yaml'
        path.write_text('')
        monkeypatch.setenv('INVEX_CONFIG', str(path))

        with pytest.raises(RuntimeError):
            InvexConfig()

    def test_unsupported_database_without_url(self):
        """Only sqlite can be configured without a URL"""
        with pytest.raises(RuntimeError):
            InvexConfig(overrides={'database': {'type': 'postgresql'}}, load_user_config=False)

    def test_database_url_bypasses_type_check(self):
        config = InvexConfig(
            overrides={'database': {'type': 'postgresql', 'url': 'postgresql://localhost/invex'}},
            load_user_config=False
        )
        assert config.get('database.url') == 'postgresql://localhost/invex'

    def test_get_all_is_a_copy(self):
        config = InvexConfig(load_user_config=False)
        snapshot = config.get_all()
        snapshot['renderer']['dpi'] = 1

        assert config.get('renderer.dpi') == 150


@pytest.mark.usefixtures('restore_root_logger')
class TestSetupLogging:
    """Tests for logging setup"""

    def test_level_from_config(self, config):
        """The configured level is applied to the root logger"""
        setup_logging(config)
        assert logging.getLogger().level == logging.DEBUG

    def test_explicit_level_wins(self, config):
        setup_logging(config, level='warning')
        assert logging.getLogger().level == logging.WARNING

    def test_file_handler(self, config, tmp_path):
        """A log file can be configured"""
        log_file = tmp_path / 'invex.log'
        config.set('logging.file', str(log_file))

        setup_logging(config)
        logging.getLogger('invex.test').info('hello from the test')

        for handler in logging.getLogger().handlers:
            handler.flush()
        assert 'hello from the test' in log_file.read_text()
