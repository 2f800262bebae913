"""Tests for query-type variable values."""

from __future__ import annotations

from tests.conftest import get_test_logger
from tests.helpers import FakeHttpResponse, FakeSession

from datasource.core import ConstantBinding
from datasource.dispatcher import Dispatcher
from datasource.settings import DataSourceSettings
from datasource.variables import MetricFindValue, find_variable_values_sync, parse_variable_values

logger = get_test_logger(__name__)
logger.info("Starting tests for variables module")


def test_list_entries() -> None:
    assert parse_variable_values([["a", 2]]) == [MetricFindValue("a", "a"), MetricFindValue("2", "2")]


def test_map_entries() -> None:
    assert parse_variable_values([{"Paris": "par", "Amsterdam": 1.0}]) == [
        MetricFindValue("Paris", "par"),
        MetricFindValue("Amsterdam", "1"),
    ]


def test_scalars_and_ignored_objects() -> None:
    assert parse_variable_values(["x", 3.5, None]) == [MetricFindValue("x", "x"), MetricFindValue("3.5", "3.5")]


def test_query_is_prefixed_with_datasource_context() -> None:
    session = FakeSession(post=FakeHttpResponse([["a", "b"]]))
    settings = DataSourceSettings(
        base_url="http://engine.test",
        constants=[ConstantBinding("token", "t0k")],
        macros=[ConstantBinding("m", "<% %>")],
    )
    values = find_variable_values_sync(Dispatcher(settings, session=session), "[ 'a' 'b' ]")
    assert [item.value for item in values] == ["a", "b"]
    body = session.posts[0]["data"].decode("utf-8")
    assert body == "'t0k' 'token' STORE\n<% %> 'm' STORE\nLINEON\n[ 'a' 'b' ]"
