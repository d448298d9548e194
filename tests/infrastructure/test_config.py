"""Tests for configuration module."""

import json
import os
import pytest
from unittest.mock import patch

from bluegreen.infrastructure.config import (
    BlueGreenConfig,
    DeploymentConfig,
    HealthConfig,
    ServiceConfig,
    load_config,
)

MISSING = "/nonexistent/bluegreen.json"


class TestDefaultConfig:
    def test_defaults(self):
        config = load_config(path=MISSING)
        assert config.log_level == "WARNING"
        assert config.service.name == "web"
        assert config.service.production_listener == "production"
        assert config.deployment.shift_mode == "all_at_once"
        assert config.deployment.bake_seconds == 300.0
        assert config.pipeline.queue_policy == "run_each"
        assert config.storage.db_path == "bluegreen.db"
        assert config.probe.url == ""

    def test_all_sections_present(self):
        config = load_config(path=MISSING)
        assert isinstance(config, BlueGreenConfig)
        assert isinstance(config.service, ServiceConfig)
        assert isinstance(config.deployment, DeploymentConfig)
        assert isinstance(config.health, HealthConfig)


class TestFileConfig:
    def test_load_from_file(self, tmp_path):
        config_file = tmp_path / "bluegreen.json"
        config_file.write_text(json.dumps({
            "log_level": "DEBUG",
            "service": {"name": "api", "repository": "registry.example.com/team/api"},
            "deployment": {"bake_seconds": 60, "rollback_on_alarm": False},
            "health": {"healthy_windows": 5},
            "autoscaler": {"enabled": False},
        }))

        config = load_config(path=str(config_file))
        assert config.log_level == "DEBUG"
        assert config.service.name == "api"
        assert config.service.repository == "registry.example.com/team/api"
        assert config.deployment.bake_seconds == 60.0
        assert isinstance(config.deployment.bake_seconds, float)
        assert config.deployment.rollback_on_alarm is False
        assert config.health.healthy_windows == 5
        assert config.autoscaler.enabled is False

    def test_partial_config(self, tmp_path):
        config_file = tmp_path / "bluegreen.json"
        config_file.write_text(json.dumps({"service": {"desired_count": 4}}))

        config = load_config(path=str(config_file))
        assert config.service.desired_count == 4
        assert config.service.name == "web"  # default preserved
        assert config.health.failure_threshold == 3  # default preserved

    def test_invalid_json_returns_defaults(self, tmp_path):
        config_file = tmp_path / "bluegreen.json"
        config_file.write_text("not valid json{{{")

        config = load_config(path=str(config_file))
        assert config.service.container_port == 8080  # defaults

    def test_unknown_keys_ignored(self, tmp_path):
        config_file = tmp_path / "bluegreen.json"
        config_file.write_text(json.dumps({
            "service": {"cpu": 512, "unknown_key": "ignored"},
        }))

        config = load_config(path=str(config_file))
        assert config.service.cpu == 512


class TestEnvOverride:
    def test_env_overrides_file(self, tmp_path):
        config_file = tmp_path / "bluegreen.json"
        config_file.write_text(json.dumps({"service": {"name": "api"}}))

        with patch.dict(os.environ, {"BLUEGREEN_SERVICE_NAME": "worker"}):
            config = load_config(path=str(config_file))

        assert config.service.name == "worker"

    def test_env_numeric_coercion(self):
        with patch.dict(os.environ, {
            "BLUEGREEN_DEPLOYMENT_BAKE_SECONDS": "45",
            "BLUEGREEN_SERVICE_DESIRED_COUNT": "6",
        }):
            config = load_config(path=MISSING)

        assert config.deployment.bake_seconds == 45.0
        assert config.service.desired_count == 6

    def test_env_bool_conversion(self):
        with patch.dict(os.environ, {"BLUEGREEN_AUTOSCALER_ENABLED": "false"}):
            config = load_config(path=MISSING)

        assert config.autoscaler.enabled is False

    def test_env_log_level(self):
        with patch.dict(os.environ, {"BLUEGREEN_LOG_LEVEL": "INFO"}):
            config = load_config(path=MISSING)

        assert config.log_level == "INFO"

    def test_custom_prefix(self):
        with patch.dict(os.environ, {"MYAPP_STORAGE_DB_PATH": "/tmp/x.db"}):
            config = load_config(path=MISSING, env_prefix="MYAPP")

        assert config.storage.db_path == "/tmp/x.db"


class TestConfigImmutability:
    def test_frozen(self):
        config = load_config(path=MISSING)
        with pytest.raises(AttributeError):
            config.log_level = "DEBUG"

    def test_sub_config_frozen(self):
        config = load_config(path=MISSING)
        with pytest.raises(AttributeError):
            config.deployment.bake_seconds = 1.0
