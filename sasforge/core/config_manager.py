"""
Layered configuration for sasforge: pydantic schema plus a file/env/CLI loader.
"""

import os
import json
import logging
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional
from enum import Enum

import yaml
from pydantic import BaseModel, Field, field_validator, ValidationError, ConfigDict

from sasforge.sas.canonical import DEFAULT_VERSION, check_version
from sasforge.sas.issuer import SasPolicy
from sasforge.sas.permissions import SasProtocol
from sasforge.core.logging_config import REDACTED
from sasforge.exceptions import InvalidScopeError

logger = logging.getLogger(__name__)


class LogLevel(str, Enum):
    """Valid log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: LogLevel = LogLevel.INFO
    format: str = "text"
    file: Optional[str] = None
    rotation_size: str = "10MB"
    rotation_count: int = 5
    module_levels: Optional[Dict[str, str]] = Field(
        default=None,
        description="Per-module log levels, e.g., {'sasforge.auth.delegation': 'DEBUG'}"
    )

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v not in ("json", "text"):
            raise ValueError("Log format must be 'json' or 'text'")
        return v


class SasPolicyConfig(BaseModel):
    """SAS issuance policy."""
    version: str = Field(default=DEFAULT_VERSION, description="Signed service version (sv)")
    protocol: SasProtocol = SasProtocol.HTTPS
    start_backdate_minutes: int = Field(
        default=0,
        ge=0,
        description="Backdate resource-scope start times to absorb clock skew"
    )
    delegated_max_window_hours: float = Field(
        default=7 * 24,
        gt=0.0,
        le=7 * 24,
        description="Longest validity window of a delegation-key signed SAS"
    )
    delegated_min_remaining_minutes: float = Field(
        default=1.0,
        ge=0.0,
        description="Delegation key lifetime a default-expiry delegated SAS must still get"
    )

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate signed version format."""
        try:
            return check_version(v)
        except InvalidScopeError as exc:
            raise ValueError(exc.message) from exc

    def to_policy(self) -> SasPolicy:
        """Issuance policy for ``SasIssuer``."""
        return SasPolicy(
            version=self.version,
            protocol=SasProtocol(self.protocol),
            start_backdate=timedelta(minutes=self.start_backdate_minutes),
            delegated_max_window=timedelta(hours=self.delegated_max_window_hours),
            delegated_min_remaining=timedelta(minutes=self.delegated_min_remaining_minutes),
        )


class DelegationConfig(BaseModel):
    """Delegation key broker configuration."""
    key_lifetime_minutes: float = Field(
        default=5.0,
        gt=0.0,
        le=7 * 24 * 60,
        description="Validity window requested for each delegation key"
    )
    fetch_timeout_seconds: Optional[float] = Field(
        default=None,
        gt=0.0,
        description="How long callers wait for an authority fetch"
    )

    @property
    def key_lifetime(self) -> timedelta:
        return timedelta(minutes=self.key_lifetime_minutes)


class SasForgeConfig(BaseModel):
    """Main sasforge configuration schema."""

    connection_string: Optional[str] = Field(
        default=None,
        description="Storage account credential descriptor"
    )

    policy: SasPolicyConfig = Field(default_factory=SasPolicyConfig)

    delegation: DelegationConfig = Field(default_factory=DelegationConfig)

    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(use_enum_values=True)


def _read_yaml(handle) -> Dict[str, Any]:
    return yaml.safe_load(handle) or {}


def _read_json(handle) -> Dict[str, Any]:
    return json.load(handle)


class ConfigManager:
    """
    Loads a ``SasForgeConfig`` from layered sources.

    Later layers win: schema defaults, caller defaults, then the config file, then ``SASFORGE_*``
    environment variables, then CLI overrides. Nested sections merge key by
    key, so an environment variable can change ``policy.version`` without
    discarding the rest of the file's ``policy`` block.
    """

    # Keys accepted in place of connection_string, e.g. from an appsettings.json
    CONNECTION_STRING_ALIASES = ("storageConnectionString", "StorageConnectionString")

    READERS = {".yaml": _read_yaml, ".yml": _read_yaml, ".json": _read_json}

    # env var -> (dotted config path, converter)
    ENV_VARS = {
        "SASFORGE_CONNECTION_STRING": ("connection_string", str),
        "SASFORGE_SAS_VERSION": ("policy.version", str),
        "SASFORGE_KEY_LIFETIME_MINUTES": ("delegation.key_lifetime_minutes", float),
        "SASFORGE_LOG_LEVEL": ("logging.level", str.upper),
        "SASFORGE_LOG_FILE": ("logging.file", str),
    }

    def __init__(self):
        self._config: Optional[SasForgeConfig] = None
        self._config_file: Optional[Path] = None

    def load(
        self,
        config_file: Optional[str] = None,
        cli_overrides: Optional[Dict[str, Any]] = None,
        defaults: Optional[Dict[str, Any]] = None,
    ) -> SasForgeConfig:
        """
        Build and validate the configuration.

        Args:
            config_file: YAML or JSON file, optional
            cli_overrides: Nested dict of values given on the command line
            defaults: Nested dict replacing schema defaults; every other
                source beats it

        Raises:
            FileNotFoundError: ``config_file`` does not exist
            ValueError: ``config_file`` has an unsupported extension
            ValidationError: The merged values fail validation
        """
        layers = [("defaults", defaults or {})]
        if config_file:
            self._config_file = Path(config_file)
            layers.append(("file", self._read_file(self._config_file)))
        layers.append(("environment", self._env_overrides()))
        layers.append(("command line", cli_overrides or {}))

        merged: Dict[str, Any] = {}
        for source, values in layers:
            if values:
                logger.debug(f"Applying {len(values)} setting(s) from {source}")
                merged = _deep_merge(merged, values)

        try:
            self._config = SasForgeConfig(**merged)
        except ValidationError as e:
            logger.error(f"Configuration validation failed: {e}")
            raise

        logger.info(f"Active configuration: {self._describe()}")
        return self._config

    def _read_file(self, path: Path) -> Dict[str, Any]:
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        reader = self.READERS.get(path.suffix.lower())
        if reader is None:
            raise ValueError(f"Unsupported config file format: {path.suffix}")

        with open(path, "r", encoding="utf-8") as handle:
            values = reader(handle)

        for alias in self.CONNECTION_STRING_ALIASES:
            if alias in values:
                values.setdefault("connection_string", values.pop(alias))
        return values

    def _env_overrides(self) -> Dict[str, Any]:
        overrides: Dict[str, Any] = {}
        for name, (dotted, convert) in self.ENV_VARS.items():
            raw = os.getenv(name)
            if not raw:
                continue
            *sections, key = dotted.split(".")
            target = overrides
            for section in sections:
                target = target.setdefault(section, {})
            target[key] = convert(raw)
        return overrides

    def _describe(self) -> str:
        dumped = self._config.model_dump()
        if dumped.get("connection_string"):
            dumped["connection_string"] = REDACTED
        return json.dumps(dumped, sort_keys=True)

    def get_config(self) -> SasForgeConfig:
        """The last loaded configuration; raises RuntimeError before ``load``."""
        if self._config is None:
            raise RuntimeError("Configuration not loaded. Call load() first.")
        return self._config

    def reload(self) -> SasForgeConfig:
        """Load again from the same file and the current environment."""
        config_file = str(self._config_file) if self._config_file else None
        return self.load(config_file=config_file)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged
