#!/usr/bin/env python3
"""
Unit tests for configuration loading.
"""

import json

import pytest

from semantic_pg.core.config import ConfigService

CONFIG_ENV_VARS = [
    'DATABASE_URL', 'DB_MAX_CONNECTIONS', 'OPENAI_EMBEDDING_MODEL', 'EMBEDDING_DIMENSIONS',
    'EMBEDDING_BATCH_SIZE', 'TABLE_TOP_K', 'COLUMN_TOP_K', 'USE_NATIVE_VECTOR_SEARCH',
    'EMBED_ON_DIRECT_SQL', 'GENERATION_MODEL', 'GENERATION_TEMPERATURE', 'GENERATION_MAX_TOKENS',
    'MAX_CONTEXT_TOKENS', 'STATEMENT_TIMEOUT_MS', 'API_HOST', 'API_PORT', 'LOG_LEVEL',
]


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    """Tests for built-in defaults"""

    def test_defaults(self):
        config = ConfigService(setup_logging=False)

        assert config.retrieval.table_top_k == 5
        assert config.retrieval.column_top_k == 10
        assert config.retrieval.embed_on_direct_sql is True
        assert config.generation.temperature == 0.0
        assert config.embedding.openai_model == "text-embedding-3-small"
        assert config.metadata.column_metadata_table == "column_metadata"


class TestEnvironment:
    """Tests for environment overrides"""

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv('DATABASE_URL', 'postgresql://localhost/shop')
        monkeypatch.setenv('COLUMN_TOP_K', '20')
        monkeypatch.setenv('USE_NATIVE_VECTOR_SEARCH', 'true')
        monkeypatch.setenv('EMBED_ON_DIRECT_SQL', 'no')
        monkeypatch.setenv('STATEMENT_TIMEOUT_MS', '1500')
        monkeypatch.setenv('LOG_LEVEL', 'debug')

        config = ConfigService(setup_logging=False)

        assert config.database.connection_string == 'postgresql://localhost/shop'
        assert config.retrieval.column_top_k == 20
        assert config.retrieval.use_native_vector_search is True
        assert config.retrieval.embed_on_direct_sql is False
        assert config.execution.statement_timeout_ms == 1500
        assert config.config.log_level == 'DEBUG'

    def test_invalid_values_rejected(self, monkeypatch):
        monkeypatch.setenv('GENERATION_TEMPERATURE', '3.5')
        with pytest.raises(ValueError, match="temperature"):
            ConfigService(setup_logging=False)

    def test_unknown_log_level(self, monkeypatch):
        monkeypatch.setenv('LOG_LEVEL', 'chatty')
        with pytest.raises(ValueError, match="log level"):
            ConfigService(setup_logging=False)


class TestConfigFile:
    """Tests for JSON configuration files"""

    def test_file_overrides_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv('TABLE_TOP_K', '7')
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "retrieval": {"table_top_k": 3, "unknown_option": 1},
            "generation": {"model": "gpt-4o"},
            "api_port": 9000
        }))

        config = ConfigService(str(path), setup_logging=False)

        assert config.retrieval.table_top_k == 3
        assert config.generation.model == "gpt-4o"
        assert config.config.api_port == 9000

    def test_missing_file_is_ignored(self, tmp_path):
        config = ConfigService(str(tmp_path / "absent.json"), setup_logging=False)
        assert config.retrieval.table_top_k == 5

    def test_malformed_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        with pytest.raises(ValueError):
            ConfigService(str(path), setup_logging=False)


class TestAccessors:
    """Tests for dotted get/set"""

    def test_get_and_set(self):
        config = ConfigService(setup_logging=False)

        config.set('retrieval.column_top_k', 15)
        assert config.get('retrieval.column_top_k') == 15
        assert config.get('retrieval.nothing', 'fallback') == 'fallback'

        with pytest.raises(KeyError):
            config.set('retrieval.nothing', 1)

    def test_to_json(self):
        data = json.loads(ConfigService(setup_logging=False).to_json())
        assert data['generation']['default_row_limit'] == 100


class TestGlobalInstance:
    """Tests for the module-level helpers"""

    def test_load_config_replaces_global(self, tmp_path):
        from semantic_pg.core import config as config_module

        path = tmp_path / "config.json"
        path.write_text(json.dumps({"retrieval": {"column_top_k": 12}}))

        loaded = config_module.load_config(str(path))
        assert config_module.get_config() is loaded
        assert config_module.get_config().retrieval.column_top_k == 12
