"""CLI smoke tests using Typer's runner with a scripted channel."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from tests.conftest import get_test_logger
from tests.helpers import FakeChannel, build_series, write_config

from datasource.core import RemoteScriptError
from datasource.dispatcher import Dispatcher

logger = get_test_logger(__name__)
logger.info("Starting tests for CLI module")

CONFIG = {
    "base_url": "http://engine.test",
    "constants": {"token": "abc"},
    "macros": {"double": "<% 2 * %>"},
}


@pytest.fixture
def cli(monkeypatch: pytest.MonkeyPatch):
    from cli import app as cli_app

    monkeypatch.setattr(cli_app, "configure_logging", lambda *_: None)
    return cli_app


def _with_channel(monkeypatch: pytest.MonkeyPatch, cli_app, channel: FakeChannel) -> None:
    monkeypatch.setattr(cli_app, "Dispatcher", lambda settings: Dispatcher(settings, channel=channel))


def test_cli_help(cli) -> None:
    result = CliRunner().invoke(cli.app, ["--help"])
    assert result.exit_code == 0
    assert "query" in result.stdout


def test_header_command(cli, tmp_path: Path) -> None:
    config = write_config(tmp_path / "datasource.yaml", CONFIG)
    result = CliRunner().invoke(
        cli.app,
        [
            "header",
            "--config", str(config),
            "--from", "2024-01-01T00:00:00Z",
            "--to", "2024-01-01T01:00:00Z",
            "--max-data-points", "100",
            "--var", "host=a",
            "--var", "host=b",
        ],
    )
    assert result.exit_code == 0, result.output
    assert "1704067200000000 'start' STORE" in result.stdout
    assert "'~' $host_list REOPTALT + 'host' STORE" in result.stdout
    assert "'abc' 'token' STORE" in result.stdout
    assert result.stdout.endswith("LINEON\n")


def test_query_command_writes_csv(cli, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config = write_config(tmp_path / "datasource.yaml", CONFIG)
    channel = FakeChannel({"A": [build_series("cpu", {"host": "web-1"})]})
    _with_channel(monkeypatch, cli, channel)
    out = tmp_path / "out" / "frames.csv"
    result = CliRunner().invoke(cli.app, ["query", "NOW", "--config", str(config), "--out", str(out)])
    assert result.exit_code == 0, result.output
    assert out.exists()
    assert channel.scripts["A"].endswith("LINEON\nNOW")


def test_query_command_reports_script_error(cli, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config = write_config(tmp_path / "datasource.yaml", CONFIG)
    _with_channel(monkeypatch, cli, FakeChannel({"A": RemoteScriptError("Unknown function 'FOO'")}))
    result = CliRunner().invoke(cli.app, ["query", "FOO", "--config", str(config)])
    assert result.exit_code == 1
    assert "Unknown function" in result.stdout


def test_health_command(cli, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config = write_config(tmp_path / "datasource.yaml", CONFIG)
    _with_channel(monkeypatch, cli, FakeChannel(default=[3]))
    result = CliRunner().invoke(cli.app, ["health", "--config", str(config)])
    assert result.exit_code == 0
    assert "Datasource is working" in result.stdout


def test_variables_command_json(cli, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config = write_config(tmp_path / "datasource.yaml", CONFIG)
    _with_channel(monkeypatch, cli, FakeChannel(default=[["par", "ams"]]))
    result = CliRunner().invoke(cli.app, ["variables", "[ 'par' 'ams' ]", "--config", str(config), "--json"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout) == [{"text": "par", "value": "par"}, {"text": "ams", "value": "ams"}]


def test_missing_config_exits(cli, tmp_path: Path) -> None:
    result = CliRunner().invoke(cli.app, ["health", "--config", str(tmp_path / "absent.yaml")])
    assert result.exit_code == 2


def test_serve_command_starts_backend(cli, monkeypatch: pytest.MonkeyPatch) -> None:
    calls = {}
    monkeypatch.setattr("backend.server.start_backend", lambda host, port: calls.update(start=(host, port)))
    result = CliRunner().invoke(cli.app, ["serve", "--port", "9100"])
    assert result.exit_code == 0
    assert calls["start"] == ("127.0.0.1", 9100)
