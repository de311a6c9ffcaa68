"""
Unit tests for the configuration diff used by ConnectionRegistry.reconcile.
"""
import pytest

from mcp_hub.manager.reconciler import (
    COMMON_RESTART_FIELDS,
    TRANSPORT_RESTART_FIELDS,
    plan_reconciliation,
    requires_restart,
)
from mcp_hub.models.servers import (
    HttpServerConfig,
    StdioServerConfig,
    WebSocketServerConfig,
    parse_server_configuration,
)

MODELS_BY_TRANSPORT = {
    "stdio": StdioServerConfig,
    "http": HttpServerConfig,
    "websocket": WebSocketServerConfig,
}


def test_restart_fields_cover_every_config_field():
    """A field added to a server model must be classified here, or edits to it would be ignored."""
    assert set(TRANSPORT_RESTART_FIELDS) == set(MODELS_BY_TRANSPORT)
    for transport, model in MODELS_BY_TRANSPORT.items():
        compared = set(COMMON_RESTART_FIELDS) | set(TRANSPORT_RESTART_FIELDS[transport])
        assert compared == set(model.model_fields), transport


def _configs(raw):
    return parse_server_configuration(raw)


def test_plan_partitions_ids():
    previous = _configs({
        "keep": {"command": "keep-server"},
        "restart": {"command": "old"},
        "remove": {"command": "gone"},
    })
    new = _configs({
        "keep": {"command": "keep-server"},
        "restart": {"command": "new"},
        "add": {"transport": "http", "url": "https://example.com/mcp"},
    })

    plan = plan_reconciliation(previous, new)

    assert plan.to_add == {"add"}
    assert plan.to_remove == {"remove"}
    assert plan.to_restart == {"restart"}
    assert plan.unchanged == {"keep"}
    assert not plan.is_noop


@pytest.mark.parametrize("previous, new", [
    ({}, {}),
    ({"a": {"command": "x"}}, {}),
    ({}, {"a": {"command": "x"}}),
    ({"a": {"command": "x"}, "b": {"command": "y"}}, {"b": {"command": "z"}, "c": {"command": "y"}}),
    ({"a": {"command": "x", "enabled": False}}, {"a": {"command": "x"}}),
])
def test_plan_sets_are_disjoint_and_complete(previous, new):
    plan = plan_reconciliation(_configs(previous), _configs(new))
    sets = [plan.to_add, plan.to_remove, plan.to_restart, plan.unchanged]
    assert sum(len(s) for s in sets) == len(set(previous) | set(new))
    assert set().union(*sets) == set(previous) | set(new)


def test_identical_configuration_is_noop():
    raw = {"a": {"command": "x", "args": ["1"]}, "b": {"transport": "websocket", "url": "ws://localhost:1"}}
    plan = plan_reconciliation(_configs(raw), _configs(raw))
    assert plan.is_noop
    assert plan.unchanged == {"a", "b"}


@pytest.mark.parametrize("change", [
    {"command": "other"},
    {"args": ["--verbose"]},
    {"env": {"TOKEN": "2"}},
    {"cwd": "/srv"},
    {"name": "Renamed"},
    {"description": "Now described"},
    {"enabled": False},
])
def test_stdio_field_changes_require_restart(change):
    base = {"command": "server", "env": {"TOKEN": "1"}}
    previous = StdioServerConfig(**base)
    assert requires_restart(previous, StdioServerConfig(**{**base, **change}))


@pytest.mark.parametrize("change", [
    {"url": "https://other.example.com/mcp"},
    {"headers": {"Authorization": "Bearer new"}},
])
def test_http_field_changes_require_restart(change):
    base = {"transport": "http", "url": "https://example.com/mcp", "headers": {"Authorization": "Bearer old"}}
    assert requires_restart(HttpServerConfig(**base), HttpServerConfig(**{**base, **change}))


@pytest.mark.parametrize("change", [
    {"reconnect_attempts": 9},
    {"reconnect_delay_ms": 50},
])
def test_websocket_field_changes_require_restart(change):
    base = {"transport": "websocket", "url": "ws://localhost:9000"}
    assert requires_restart(WebSocketServerConfig(**base), WebSocketServerConfig(**{**base, **change}))


def test_transport_change_requires_restart():
    previous = StdioServerConfig(command="server")
    new = HttpServerConfig(transport="http", url="https://example.com/mcp")
    assert requires_restart(previous, new)
