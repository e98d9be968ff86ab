"""
Configuration precedence: built-in defaults, config files, FEEAUDIT_*
environment variables and command-line overrides.
"""
import json
import os

import pytest
import yaml

from feeaudit.config_manager import ConfigManager, Environment
from feeaudit.core.audit_exceptions import ConfigurationError
from feeaudit.core.constants import DEFAULT_BLOCK_COUNT, DEFAULT_CONCURRENCY


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("FEEAUDIT_"):
            monkeypatch.delenv(key)


def write_yaml(directory, name, data):
    (directory / f"{name}.yaml").write_text(yaml.safe_dump(data))


def test_defaults(tmp_path):
    config = ConfigManager(config_dir=str(tmp_path))

    assert config.environment is Environment.DEVELOPMENT
    assert config.crawl.concurrency == DEFAULT_CONCURRENCY
    assert config.crawl.blocks == DEFAULT_BLOCK_COUNT
    assert config.crawl.strict is False
    assert config.endpoint_url == "http://127.0.0.1:8080"


def test_environment_file_overrides_default(tmp_path):
    write_yaml(tmp_path, "default", {"crawl": {"concurrency": 4, "first": 100}})
    write_yaml(tmp_path, "production", {"crawl": {"concurrency": 16}})

    config = ConfigManager(environment="prod", config_dir=str(tmp_path))

    assert config.environment is Environment.PRODUCTION
    assert config.crawl.concurrency == 16
    assert config.crawl.first == 100


def test_json_config_file(tmp_path):
    (tmp_path / "default.json").write_text(json.dumps({"storage": {"data_dir": "/var/lib/feeaudit"}}))

    config = ConfigManager(config_dir=str(tmp_path))

    assert config.storage.data_dir == "/var/lib/feeaudit"


def test_env_variables_override_files(tmp_path, monkeypatch):
    write_yaml(tmp_path, "default", {"crawl": {"concurrency": 4}})
    monkeypatch.setenv("FEEAUDIT_CRAWL_CONCURRENCY", "12")
    monkeypatch.setenv("FEEAUDIT_CRAWL_STRICT", "true")
    monkeypatch.setenv("FEEAUDIT_PROVIDER_MAX_RETRIES", "5")

    config = ConfigManager(config_dir=str(tmp_path))

    assert config.crawl.concurrency == 12
    assert config.crawl.strict is True
    assert config.provider.max_retries == 5


def test_cli_overrides_win(tmp_path, monkeypatch):
    monkeypatch.setenv("FEEAUDIT_CRAWL_CONCURRENCY", "12")

    config = ConfigManager(
        config_dir=str(tmp_path),
        cli_overrides={"crawl.concurrency": 2, "crawl.first": None, "provider.url": "http://node:9000"},
    )

    assert config.crawl.concurrency == 2
    assert config.crawl.first is None
    assert config.endpoint_url == "http://node:9000"
    assert config.get("crawl.concurrency") == 2
    assert config.get("crawl.missing", "fallback") == "fallback"


def test_named_networks_extend_builtin(tmp_path):
    write_yaml(tmp_path, "default", {"networks": {"moonriver": "http://sidecar-movr:8080"}})

    config = ConfigManager(config_dir=str(tmp_path), cli_overrides={"provider.network": "moonriver"})

    assert config.endpoint_url == "http://sidecar-movr:8080"
    assert "local" in config.to_dict()["networks"]


def test_unknown_network_rejected(tmp_path):
    with pytest.raises(ConfigurationError, match="Unknown network"):
        ConfigManager(config_dir=str(tmp_path), cli_overrides={"provider.network": "atlantis"})


@pytest.mark.parametrize(
    "overrides",
    [
        {"crawl.concurrency": 0},
        {"crawl.first": 0},
        {"crawl.blocks": -1},
        {"crawl.timeout_seconds": -5},
        {"provider.timeout": 0},
        {"logging.level": "LOUD"},
        {"crawl.speed": "fast"},
    ],
)
def test_invalid_values_rejected(tmp_path, overrides):
    with pytest.raises(ConfigurationError):
        ConfigManager(config_dir=str(tmp_path), cli_overrides=overrides)


def test_malformed_file_rejected(tmp_path):
    (tmp_path / "default.yaml").write_text("crawl: [unclosed")

    with pytest.raises(ConfigurationError):
        ConfigManager(config_dir=str(tmp_path))


def test_reload_picks_up_file_changes(tmp_path):
    config = ConfigManager(config_dir=str(tmp_path))
    write_yaml(tmp_path, "default", {"crawl": {"concurrency": 3}})

    config.reload()

    assert config.crawl.concurrency == 3
