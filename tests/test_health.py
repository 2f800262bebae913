"""Tests for the connectivity probe."""

from __future__ import annotations

import requests

from tests.conftest import get_test_logger
from tests.helpers import FakeHttpResponse, FakeSession

from datasource.dispatcher import Dispatcher
from datasource.health import HEALTH_SCRIPT, HealthStatus, probe_sync
from datasource.settings import DataSourceSettings

logger = get_test_logger(__name__)
logger.info("Starting tests for health module")


def test_direct_probe_runs_trivial_script() -> None:
    session = FakeSession(post=FakeHttpResponse([3]))
    result = probe_sync(Dispatcher(DataSourceSettings(base_url="http://engine.test"), session=session))
    assert result.status is HealthStatus.OK
    assert result.message == "Datasource is working"
    assert session.posts[0]["data"] == HEALTH_SCRIPT.encode("utf-8")


def test_unreachable_engine_reports_error() -> None:
    session = FakeSession(post=requests.ConnectionError("no route to host"))
    result = probe_sync(Dispatcher(DataSourceSettings(base_url="http://engine.test"), session=session))
    assert result.status is HealthStatus.ERROR
    assert result.message == "An error has occurred"
    assert "no route to host" in result.details


def test_engine_error_status_reports_error() -> None:
    session = FakeSession(post=FakeHttpResponse(status_code=503, text="maintenance"))
    result = probe_sync(Dispatcher(DataSourceSettings(base_url="http://engine.test"), session=session))
    assert not result.ok
    assert "503" in result.details


def test_proxy_probe_uses_backend_health() -> None:
    session = FakeSession(get=FakeHttpResponse({"status": "ok", "message": "Datasource is working"}))
    settings = DataSourceSettings(access="proxy", proxy_url="http://backend.test")
    result = probe_sync(Dispatcher(settings, session=session))
    assert result.ok
    assert session.gets[0]["url"] == "http://backend.test/api/health"
    assert session.posts == []


def test_proxy_probe_backend_reports_error() -> None:
    session = FakeSession(get=FakeHttpResponse({"status": "error", "message": "An error has occurred"}))
    settings = DataSourceSettings(access="proxy", proxy_url="http://backend.test")
    assert probe_sync(Dispatcher(settings, session=session)).status is HealthStatus.ERROR
