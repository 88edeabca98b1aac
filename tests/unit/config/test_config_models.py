"""Tests for homecontrol/config_models.py"""

from unittest.mock import patch

import pytest

from homecontrol.config_models import (
    ExpoConfig,
    PushConfig,
    WorkerConfig,
    load_and_validate,
    load_push_config,
)


class TestPushConfig:
    def test_defaults(self):
        config = PushConfig()
        assert config.worker.interval_minutes == 5
        assert config.worker.batch_size == 200
        assert config.worker.max_attempts == 5
        assert config.worker.base_delay_minutes == 5
        assert config.worker.max_delay_minutes == 360
        assert config.expo.chunk_size == 100
        assert config.recurrence.max_iterations == 50
        assert config.defaults.timezone == "UTC"

    def test_valid_overrides(self):
        config = PushConfig(
            worker={"max_attempts": 3, "batch_size": 50},
            expo={"timeout_seconds": 10},
        )
        assert config.worker.max_attempts == 3
        assert config.worker.batch_size == 50
        assert config.expo.timeout_seconds == 10

    def test_extra_keys_allowed(self):
        config = PushConfig(worker={"max_attempts": 2, "jitter": True})
        assert config.worker.max_attempts == 2

    def test_chunk_size_capped_by_provider_limit(self):
        with pytest.raises(ValueError):
            ExpoConfig(chunk_size=500)

    def test_invalid_attempts_rejected(self):
        with pytest.raises(ValueError):
            WorkerConfig(max_attempts=0)

    def test_env_access_token_wins(self, monkeypatch):
        monkeypatch.setenv("EXPO_ACCESS_TOKEN", "from-env")
        config = PushConfig(expo={"access_token": "from-yaml"})
        assert config.expo_access_token() == "from-env"

    def test_yaml_access_token_used_without_env(self, monkeypatch):
        monkeypatch.delenv("EXPO_ACCESS_TOKEN", raising=False)
        config = PushConfig(expo={"access_token": "from-yaml"})
        assert config.expo_access_token() == "from-yaml"


class TestLoadAndValidate:
    def test_unknown_config_raises(self):
        with pytest.raises(ValueError, match="Unknown config"):
            load_and_validate("nonexistent_config")

    def test_shipped_push_yaml_is_valid(self):
        config = load_push_config()
        assert isinstance(config, PushConfig)
        assert config.worker.max_delay_minutes == 360

    def test_missing_file_returns_defaults(self, tmp_path):
        with patch("homecontrol.config_models.ARGS_DIR", tmp_path):
            config = load_and_validate("push")
            assert isinstance(config, PushConfig)
            assert config.worker.max_attempts == 5

    def test_valid_yaml_loads(self, tmp_path):
        yaml_file = tmp_path / "push.yaml"
        yaml_file.write_text("worker:\n  max_attempts: 8\n  interval_minutes: 1\n")
        with patch("homecontrol.config_models.ARGS_DIR", tmp_path):
            config = load_and_validate("push")
            assert config.worker.max_attempts == 8
            assert config.worker.interval_minutes == 1

    def test_invalid_values_return_defaults(self, tmp_path):
        yaml_file = tmp_path / "push.yaml"
        yaml_file.write_text("worker:\n  batch_size: -1\n")
        with patch("homecontrol.config_models.ARGS_DIR", tmp_path):
            config = load_and_validate("push")
            assert config.worker.batch_size == 200

    def test_broken_yaml_returns_defaults(self, tmp_path):
        yaml_file = tmp_path / "push.yaml"
        yaml_file.write_text("worker: [unclosed\n")
        with patch("homecontrol.config_models.ARGS_DIR", tmp_path):
            config = load_and_validate("push")
            assert isinstance(config, PushConfig)
