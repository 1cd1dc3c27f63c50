"""
Tests for ConfigManager.
"""

import os
import json
import tempfile
from datetime import timedelta
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from sasforge.core.config_manager import (
    ConfigManager,
    DelegationConfig,
    LogLevel,
    SasForgeConfig,
    SasPolicyConfig,
)
from sasforge.sas.permissions import SasProtocol

DESCRIPTOR = "AccountName=acct;AccountKey=a2V5"

ENV_VARS = (
    "SASFORGE_CONNECTION_STRING",
    "SASFORGE_SAS_VERSION",
    "SASFORGE_KEY_LIFETIME_MINUTES",
    "SASFORGE_LOG_LEVEL",
    "SASFORGE_LOG_FILE",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestConfigManager:
    """Test suite for ConfigManager."""

    def test_load_defaults(self):
        """Test loading default configuration."""
        config = ConfigManager().load()

        assert config.connection_string is None
        assert config.policy.version == "2021-08-06"
        assert config.policy.protocol == SasProtocol.HTTPS
        assert config.delegation.key_lifetime_minutes == 5.0
        assert config.logging.level == LogLevel.INFO

    def test_load_from_yaml_file(self):
        """Test loading configuration from YAML file."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            yaml.dump(
                {
                    "connection_string": DESCRIPTOR,
                    "policy": {"version": "2020-12-06", "start_backdate_minutes": 15},
                    "logging": {"level": "DEBUG", "format": "json"},
                },
                f,
            )
            config_file = f.name

        try:
            config = ConfigManager().load(config_file=config_file)

            assert config.connection_string == DESCRIPTOR
            assert config.policy.version == "2020-12-06"
            assert config.policy.start_backdate_minutes == 15
            assert config.logging.level == LogLevel.DEBUG
            assert config.logging.format == "json"
        finally:
            Path(config_file).unlink()

    def test_load_from_json_file_with_alias(self):
        """appsettings.json style files name the descriptor storageConnectionString."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.json', delete=False) as f:
            json.dump({"storageConnectionString": DESCRIPTOR}, f)
            config_file = f.name

        try:
            config = ConfigManager().load(config_file=config_file)

            assert config.connection_string == DESCRIPTOR
        finally:
            Path(config_file).unlink()

    def test_load_from_env_variables(self):
        """Test loading configuration from environment variables."""
        os.environ["SASFORGE_CONNECTION_STRING"] = DESCRIPTOR
        os.environ["SASFORGE_SAS_VERSION"] = "2020-02-10"
        os.environ["SASFORGE_KEY_LIFETIME_MINUTES"] = "30"
        os.environ["SASFORGE_LOG_LEVEL"] = "warning"

        try:
            config = ConfigManager().load()

            assert config.connection_string == DESCRIPTOR
            assert config.policy.version == "2020-02-10"
            assert config.delegation.key_lifetime == timedelta(minutes=30)
            assert config.logging.level == LogLevel.WARNING
        finally:
            for name in ENV_VARS:
                os.environ.pop(name, None)

    def test_configuration_precedence(self, tmp_path, monkeypatch):
        """CLI overrides beat environment, environment beats the file."""
        config_file = tmp_path / "sasforge.yaml"
        config_file.write_text(
            yaml.dump({"connection_string": "AccountName=file;AccountKey=a2V5",
                       "policy": {"version": "2019-12-12"}})
        )
        monkeypatch.setenv("SASFORGE_CONNECTION_STRING", "AccountName=env;AccountKey=a2V5")

        config = ConfigManager().load(
            config_file=str(config_file),
            cli_overrides={"policy": {"version": "2021-08-06"}},
        )

        assert config.connection_string == "AccountName=env;AccountKey=a2V5"
        assert config.policy.version == "2021-08-06"

    def test_cli_connection_string_override(self, monkeypatch):
        monkeypatch.setenv("SASFORGE_CONNECTION_STRING", "AccountName=env;AccountKey=a2V5")

        config = ConfigManager().load(cli_overrides={"connection_string": DESCRIPTOR})

        assert config.connection_string == DESCRIPTOR

    def test_defaults_layer_loses_to_every_source(self, tmp_path, monkeypatch):
        defaults = {"logging": {"level": "WARNING"}, "policy": {"version": "2020-02-10"}}

        assert ConfigManager().load(defaults=defaults).logging.level == LogLevel.WARNING

        config_file = tmp_path / "sasforge.yaml"
        config_file.write_text(yaml.dump({"logging": {"level": "ERROR"}}))
        from_file = ConfigManager().load(config_file=str(config_file), defaults=defaults)
        assert from_file.logging.level == LogLevel.ERROR
        assert from_file.policy.version == "2020-02-10"

        monkeypatch.setenv("SASFORGE_LOG_LEVEL", "debug")
        from_env = ConfigManager().load(config_file=str(config_file), defaults=defaults)
        assert from_env.logging.level == LogLevel.DEBUG

    def test_invalid_sas_version(self):
        """Test validation of the signed version."""
        with pytest.raises(ValidationError):
            ConfigManager().load(cli_overrides={"policy": {"version": "2015-04-05"}})

    def test_invalid_log_format(self):
        with pytest.raises(ValidationError):
            ConfigManager().load(cli_overrides={"logging": {"format": "xml"}})

    def test_file_not_found(self):
        """Test error when config file doesn't exist."""
        with pytest.raises(FileNotFoundError):
            ConfigManager().load(config_file="/nonexistent/sasforge.yaml")

    def test_unsupported_file_format(self, tmp_path):
        """Test error for unsupported file format."""
        config_file = tmp_path / "sasforge.toml"
        config_file.write_text("connection_string = 'x'")

        with pytest.raises(ValueError, match="Unsupported config file format"):
            ConfigManager().load(config_file=str(config_file))

    def test_get_config_before_load(self):
        """Test error when getting config before loading."""
        with pytest.raises(RuntimeError, match="Configuration not loaded"):
            ConfigManager().get_config()

    def test_get_config_after_load(self):
        manager = ConfigManager()
        config = manager.load()

        assert manager.get_config() is config

    def test_reload_configuration(self, tmp_path):
        """Test reloading configuration picks up file changes."""
        config_file = tmp_path / "sasforge.yaml"
        config_file.write_text(yaml.dump({"delegation": {"key_lifetime_minutes": 10}}))

        manager = ConfigManager()
        assert manager.load(config_file=str(config_file)).delegation.key_lifetime_minutes == 10

        config_file.write_text(yaml.dump({"delegation": {"key_lifetime_minutes": 20}}))

        assert manager.reload().delegation.key_lifetime_minutes == 20

    def test_connection_string_redacted_in_logs(self, caplog):
        with caplog.at_level("INFO", logger="sasforge.core.config_manager"):
            ConfigManager().load(cli_overrides={"connection_string": DESCRIPTOR})

        assert "a2V5" not in caplog.text
        assert "***REDACTED***" in caplog.text


class TestSasPolicyConfig:
    """Test suite for issuance policy settings."""

    def test_to_policy(self):
        policy = SasPolicyConfig(
            version="2020-12-06",
            protocol="https,http",
            start_backdate_minutes=15,
            delegated_max_window_hours=24,
        ).to_policy()

        assert policy.version == "2020-12-06"
        assert policy.protocol == SasProtocol.HTTPS_AND_HTTP
        assert policy.start_backdate == timedelta(minutes=15)
        assert policy.delegated_max_window == timedelta(hours=24)

    def test_negative_backdate_rejected(self):
        with pytest.raises(ValidationError):
            SasPolicyConfig(start_backdate_minutes=-5)

    def test_window_over_seven_days_rejected(self):
        with pytest.raises(ValidationError):
            SasPolicyConfig(delegated_max_window_hours=200)

    def test_unknown_protocol_rejected(self):
        with pytest.raises(ValidationError):
            SasPolicyConfig(protocol="http")


class TestDelegationConfig:
    """Test suite for delegation settings."""

    def test_defaults(self):
        config = DelegationConfig()

        assert config.key_lifetime == timedelta(minutes=5)
        assert config.fetch_timeout_seconds is None

    def test_lifetime_must_be_positive(self):
        with pytest.raises(ValidationError):
            DelegationConfig(key_lifetime_minutes=0)

    def test_nested_in_main_config(self):
        config = SasForgeConfig(delegation={"fetch_timeout_seconds": 2.5})

        assert config.delegation.fetch_timeout_seconds == 2.5
