"""Tests for tripsight.config."""

from __future__ import annotations

import os
from datetime import timedelta
from unittest.mock import patch

import keyring.errors
import pytest

from tripsight.analysis.orchestrator import OrchestratorConfig
from tripsight.config import (
    AIMode,
    APIKeyError,
    APIKeyManager,
    APIKeyNotFoundError,
    AppConfig,
    ConfigError,
    KeySource,
    PathsConfig,
    get_api_key,
    load_config,
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Remove TRIPSIGHT_* and key variables so tests see only what they set."""
    for name in list(os.environ):
        if name.upper().startswith("TRIPSIGHT_") or name in APIKeyManager.ENV_VAR_NAMES:
            monkeypatch.delenv(name, raising=False)


class TestDefaults:
    def test_defaults(self):
        config = AppConfig()

        assert config.ai.mode is AIMode.ENABLED
        assert config.quota.daily_budget == 5
        assert config.cache.memory_ttl == timedelta(minutes=5)
        assert config.refresh.refresh_interval == timedelta(hours=24)
        assert config.refresh.check_interval == timedelta(hours=1)
        assert config.generation.concurrent is True

    def test_paths_derived(self, tmp_path):
        paths = PathsConfig(data_dir=tmp_path)

        assert paths.log_dir == tmp_path.resolve() / "logs"
        assert paths.local_store_dir == tmp_path.resolve() / "local"
        assert paths.remote_store_dir == tmp_path.resolve() / "remote"

    def test_orchestrator_config_from_app_config(self):
        config = AppConfig(generation={"concurrent": False, "max_workers": 2, "subtask_timeout_seconds": 30})

        orchestrator_config = OrchestratorConfig.from_app_config(config)

        assert orchestrator_config.concurrent is False
        assert orchestrator_config.max_workers == 2
        assert orchestrator_config.subtask_timeout_seconds == 30


class TestLoadConfig:
    """File and environment layering."""

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "tripsight.yaml"
        path.write_text("quota:\n  daily_budget: 9\nrefresh:\n  interval_hours: 12\n")

        config = load_config(path)

        assert config.quota.daily_budget == 9
        assert config.refresh.refresh_interval == timedelta(hours=12)

    def test_environment_wins_over_file(self, tmp_path, monkeypatch):
        path = tmp_path / "tripsight.yaml"
        path.write_text("quota:\n  daily_budget: 9\n")
        monkeypatch.setenv("TRIPSIGHT_QUOTA__DAILY_BUDGET", "2")
        monkeypatch.setenv("TRIPSIGHT_GENERATION__CONCURRENT", "false")

        config = load_config(path)

        assert config.quota.daily_budget == 2
        assert config.generation.concurrent is False

    def test_malformed_yaml_uses_defaults(self, tmp_path, caplog):
        path = tmp_path / "tripsight.yaml"
        path.write_text("quota: [unclosed\n")

        config = load_config(path)

        assert config.quota.daily_budget == 5
        assert "Malformed YAML" in caplog.text

    def test_invalid_values_use_defaults(self, tmp_path, caplog):
        path = tmp_path / "tripsight.yaml"
        path.write_text("quota:\n  daily_budget: -3\n")

        config = load_config(path)

        assert config.quota.daily_budget == 5
        assert "invalid field" in caplog.text

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "tripsight.yaml"
        path.write_text("- just\n- a list\n")

        assert load_config(path).quota.daily_budget == 5


class TestAPIKeyManager:
    """Key lookup order and keyring storage."""

    def test_environment_first(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "env-key")

        with patch("tripsight.config.keyring.get_password") as mock_get:
            manager = APIKeyManager()
            key = manager.get_key()

        assert key.get_secret_value() == "env-key"
        assert manager.get_key_source() is KeySource.ENVIRONMENT
        mock_get.assert_not_called()

    @patch("tripsight.config.keyring.get_password", return_value="ring-key")
    def test_keyring_fallback(self, mock_get):
        manager = APIKeyManager()

        assert manager.get_key().get_secret_value() == "ring-key"
        assert manager.get_key_source() is KeySource.KEYRING
        mock_get.assert_called_once_with("tripsight", "gemini")

    @patch("tripsight.config.keyring.get_password", side_effect=keyring.errors.NoKeyringError())
    def test_keyring_unavailable(self, _mock_get):
        manager = APIKeyManager()

        assert manager.get_key() is None
        assert manager.get_key_source() is KeySource.NONE

    @patch("tripsight.config.keyring.get_password", return_value=None)
    def test_get_api_key_raises_when_missing(self, _mock_get):
        with pytest.raises(APIKeyNotFoundError):
            get_api_key()

    @patch("tripsight.config.keyring.set_password")
    def test_store_key(self, mock_set):
        APIKeyManager().store_key("  AIzaStoredKey  ")

        mock_set.assert_called_once_with("tripsight", "gemini", "AIzaStoredKey")

    def test_store_key_rejects_whitespace(self):
        with pytest.raises(APIKeyError):
            APIKeyManager().store_key("two words")

    @patch("tripsight.config.keyring.set_password", side_effect=keyring.errors.PasswordSetError("locked"))
    def test_store_key_backend_failure(self, _mock_set):
        with pytest.raises(ConfigError):
            APIKeyManager().store_key("AIzaStoredKey")
