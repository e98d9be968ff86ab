"""
Fee audit configuration manager.

Centralized configuration supporting:
- Environment-based configs (development/production)
- Config file loading (YAML/JSON)
- Command-line override support
- Environment variable support (FEEAUDIT_*)
- Config validation
"""

import json
import os
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv

from feeaudit.core.audit_exceptions import ConfigurationError
from feeaudit.core.constants import (
    DEFAULT_BLOCK_COUNT,
    DEFAULT_CONCURRENCY,
    DEFAULT_CRAWL_TIMEOUT_SECONDS,
)

DEFAULT_CONFIG_DIR = Path.cwd() / "config"
ENV_PREFIX = "FEEAUDIT_"

# Named networks resolve to a chain data service; extend with a `networks`
# section in a config file.
NETWORK_ENDPOINTS: Dict[str, str] = {
    "local": "http://127.0.0.1:8080",
}


class Environment(Enum):
    """Environment types"""
    DEVELOPMENT = "development"
    PRODUCTION = "production"


@dataclass
class ProviderConfig:
    """Chain data service settings"""
    network: str = "local"
    url: Optional[str] = None
    timeout: float = 30.0
    max_retries: int = 3

    def validate(self):
        if self.timeout <= 0:
            raise ConfigurationError(f"Invalid timeout: {self.timeout}. Must be > 0")
        if self.max_retries < 0:
            raise ConfigurationError(f"Invalid max_retries: {self.max_retries}. Must be >= 0")


@dataclass
class CrawlConfig:
    """Crawl range and concurrency settings"""
    concurrency: int = DEFAULT_CONCURRENCY
    first: Optional[int] = None
    blocks: Optional[int] = DEFAULT_BLOCK_COUNT
    timeout_seconds: float = DEFAULT_CRAWL_TIMEOUT_SECONDS  # 0 disables the watchdog
    strict: bool = False

    def validate(self):
        if self.concurrency < 1:
            raise ConfigurationError(f"Invalid concurrency: {self.concurrency}. Must be >= 1")
        if self.first is not None and self.first < 1:
            raise ConfigurationError(f"Invalid first block: {self.first}. Must be >= 1")
        if self.blocks is not None and self.blocks < 1:
            raise ConfigurationError(f"Invalid blocks: {self.blocks}. Must be >= 1")
        if self.timeout_seconds < 0:
            raise ConfigurationError(f"Invalid timeout_seconds: {self.timeout_seconds}. Must be >= 0")


@dataclass
class StorageConfig:
    """Checkpoint database settings"""
    data_dir: str = "."
    db_path: Optional[str] = None  # default: <data_dir>/db-fee.<spec>.<para_id>.db

    def validate(self):
        if not self.data_dir:
            raise ConfigurationError("data_dir cannot be empty")


@dataclass
class LoggingConfig:
    """Logging configuration settings"""
    level: str = "INFO"
    log_file: Optional[str] = None
    json: bool = False

    def validate(self):
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.level.upper() not in valid_levels:
            raise ConfigurationError(f"Invalid log level: {self.level}. Must be one of {valid_levels}")


class ConfigManager:
    """
    Configuration Manager for the fee audit

    Sources, highest priority first:
    1. Command-line arguments
    2. Environment variables (FEEAUDIT_SECTION_KEY)
    3. Environment-specific config file
    4. Default config file
    5. Built-in defaults
    """

    SECTIONS = ("provider", "crawl", "storage", "logging")

    def __init__(self,
                 environment: Optional[str] = None,
                 config_dir: Optional[str] = None,
                 cli_overrides: Optional[Dict[str, Any]] = None):
        """
        Initialize Configuration Manager

        Args:
            environment: Environment name (development/production)
            config_dir: Directory containing config files
            cli_overrides: Dotted-key overrides, e.g. {"crawl.first": 10}
        """
        load_dotenv()

        self.environment = self._determine_environment(environment)
        self.config_dir = Path(config_dir).resolve() if config_dir else DEFAULT_CONFIG_DIR
        self.cli_overrides = cli_overrides or {}

        self.provider: ProviderConfig = None
        self.crawl: CrawlConfig = None
        self.storage: StorageConfig = None
        self.logging: LoggingConfig = None
        self.networks: Dict[str, str] = {}

        self._raw_config: Dict[str, Any] = {}
        self._load_configuration()

    def _determine_environment(self, environment: Optional[str]) -> Environment:
        env_str = (environment or os.getenv(f"{ENV_PREFIX}ENVIRONMENT", "development")).lower()
        env_mapping = {
            "dev": Environment.DEVELOPMENT,
            "development": Environment.DEVELOPMENT,
            "prod": Environment.PRODUCTION,
            "production": Environment.PRODUCTION,
        }
        return env_mapping.get(env_str, Environment.DEVELOPMENT)

    def _load_configuration(self):
        default_config = self._load_config_file("default")
        env_config = self._load_config_file(self.environment.value)
        merged_config = self._merge_configs(default_config, env_config)
        merged_config = self._apply_env_variables(merged_config)
        merged_config = self._apply_cli_overrides(merged_config)

        self._raw_config = merged_config
        self._parse_configuration(merged_config)
        self._validate_configuration()

    def _load_config_file(self, filename: str) -> Dict[str, Any]:
        """Load `<filename>.yaml` or `<filename>.json` from the config directory."""
        yaml_path = self.config_dir / f"{filename}.yaml"
        json_path = self.config_dir / f"{filename}.json"
        try:
            if yaml_path.exists():
                with open(yaml_path, "r") as f:
                    return yaml.safe_load(f) or {}
            if json_path.exists():
                with open(json_path, "r") as f:
                    return json.load(f)
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Cannot parse config file {filename}: {exc}") from exc
        return {}

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value
        return result

    def _apply_env_variables(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply environment variable overrides

        Format: FEEAUDIT_SECTION_KEY=value, e.g. FEEAUDIT_CRAWL_CONCURRENCY=4
        """
        result = config.copy()

        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX) or key == f"{ENV_PREFIX}ENVIRONMENT":
                continue

            parts = key[len(ENV_PREFIX):].lower().split("_")
            if len(parts) < 2:
                continue

            section = parts[0]
            if section not in self.SECTIONS:
                continue
            section_values = dict(result.get(section) or {})
            section_values["_".join(parts[1:])] = self._parse_env_value(value)
            result[section] = section_values

        return result

    def _parse_env_value(self, value: str) -> Union[str, int, float, bool]:
        if value.lower() in ("true", "yes", "on"):
            return True
        if value.lower() in ("false", "no", "off"):
            return False
        try:
            return int(value)
        except ValueError:
            pass
        try:
            return float(value)
        except ValueError:
            pass
        return value

    def _apply_cli_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        result = config.copy()

        for key, value in self.cli_overrides.items():
            if value is None:
                continue
            parts = key.split(".")
            if len(parts) == 1:
                result[key] = value
            elif len(parts) == 2:
                section, config_key = parts
                section_values = dict(result.get(section) or {})
                section_values[config_key] = value
                result[section] = section_values

        return result

    def _parse_configuration(self, config: Dict[str, Any]):
        try:
            self.provider = ProviderConfig(**config.get("provider", {}))
            self.crawl = CrawlConfig(**config.get("crawl", {}))
            self.storage = StorageConfig(**config.get("storage", {}))
            self.logging = LoggingConfig(**config.get("logging", {}))
        except TypeError as exc:
            raise ConfigurationError(f"Unknown configuration key: {exc}") from exc
        self.networks = {**NETWORK_ENDPOINTS, **(config.get("networks") or {})}

    def _validate_configuration(self):
        self.provider.validate()
        self.crawl.validate()
        self.storage.validate()
        self.logging.validate()
        if not self.provider.url and self.provider.network not in self.networks:
            raise ConfigurationError(
                f"Unknown network: {self.provider.network}. "
                f"Known networks: {sorted(self.networks)}; or pass an explicit url"
            )

    @property
    def endpoint_url(self) -> str:
        """Explicit url, else the endpoint of the named network."""
        return self.provider.url or self.networks[self.provider.network]

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by dot-notation key, e.g. "crawl.concurrency"."""
        value = self._raw_config
        for part in key.split("."):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return default
        return value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "environment": self.environment.value,
            "provider": asdict(self.provider),
            "crawl": asdict(self.crawl),
            "storage": asdict(self.storage),
            "logging": asdict(self.logging),
            "networks": dict(self.networks),
        }

    def reload(self):
        self._load_configuration()

    def __repr__(self) -> str:
        return f"ConfigManager(environment={self.environment.value})"
