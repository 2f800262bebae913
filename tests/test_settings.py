"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from tests.conftest import get_test_logger
from tests.helpers import write_config

from datasource.core import ConstantBinding
from datasource.settings import (
    ConfigurationError,
    DataSourceSettings,
    load_datasource_config,
    load_settings,
    parse_bindings,
)

logger = get_test_logger(__name__)
logger.info("Starting tests for settings module")


def test_load_yaml_with_aliases(tmp_path: Path) -> None:
    path = write_config(
        tmp_path / "datasource.yaml",
        {
            "path": "http://engine.test:8080",
            "accessMode": "DIRECT",
            "const": [{"name": "token", "value": "abc"}],
            "macro": {"double": "<% 2 * %>"},
        },
    )
    settings = load_settings(path)
    assert settings.base_url == "http://engine.test:8080"
    assert settings.access == "direct"
    assert settings.constants == [ConstantBinding("token", "abc")]
    assert settings.macros == [ConstantBinding("double", "<% 2 * %>")]


def test_env_references_are_expanded(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENGINE_TOKEN", "s3cret")
    path = write_config(
        tmp_path / "datasource.json",
        {"base_url": "http://engine.test", "constants": {"token": "${ENGINE_TOKEN}"}},
    )
    assert load_settings(path).constants[0].value == "s3cret"


def test_missing_env_reference(tmp_path: Path) -> None:
    path = write_config(tmp_path / "datasource.yaml", {"base_url": "${DATASOURCE_TEST_UNSET_VAR}"})
    with pytest.raises(ConfigurationError):
        load_datasource_config(path)


def test_env_variable_points_at_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = write_config(tmp_path / "custom.yaml", {"base_url": "http://from-env.test"})
    monkeypatch.setenv("DATASOURCE_CONFIG", str(path))
    monkeypatch.chdir(tmp_path)
    assert load_settings().base_url == "http://from-env.test"


def test_overrides_win(tmp_path: Path) -> None:
    path = write_config(tmp_path / "datasource.yaml", {"base_url": "http://engine.test"})
    settings = load_settings(path, access="proxy", proxy_url="http://backend.test")
    assert settings.access == "proxy"
    assert settings.proxy_url == "http://backend.test"


def test_missing_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    with pytest.raises(ConfigurationError):
        load_settings()
    with pytest.raises(ConfigurationError):
        load_settings(tmp_path / "absent.yaml")


def test_validation() -> None:
    with pytest.raises(ConfigurationError):
        DataSourceSettings(access="carrier-pigeon", base_url="http://engine.test")
    with pytest.raises(ConfigurationError):
        DataSourceSettings(access="direct")
    with pytest.raises(ConfigurationError):
        DataSourceSettings(base_url="http://engine.test", timeout_s=0)


def test_duplicate_binding_names_keep_last_value() -> None:
    bindings = parse_bindings(
        [{"name": "a", "value": "1"}, {"name": "b", "value": "2"}, {"name": "a", "value": "3"}],
        kind="constant",
    )
    assert bindings == [ConstantBinding("a", "3"), ConstantBinding("b", "2")]
    with pytest.raises(ConfigurationError):
        parse_bindings([{"value": "x"}], kind="macro")
