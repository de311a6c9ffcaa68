"""
Connection management: registry, configuration reconciliation, health
classification and the tool bridge.
"""
from .bridge import ToolBridge, ToolDefinition
from .health import ErrorClass, classify_error
from .reconciler import ReconcilePlan, plan_reconciliation
from .registry import ConnectionRegistry
from .tools import (
    EnabledTools,
    disable_all_server_tools,
    enable_all_running_tools,
    enable_all_server_tools,
    qualify_tool_name,
    split_qualified_name,
    toggle_tool,
)

__all__ = [
    "ConnectionRegistry",
    "EnabledTools",
    "ErrorClass",
    "ReconcilePlan",
    "ToolBridge",
    "ToolDefinition",
    "classify_error",
    "disable_all_server_tools",
    "enable_all_running_tools",
    "enable_all_server_tools",
    "plan_reconciliation",
    "qualify_tool_name",
    "split_qualified_name",
    "toggle_tool",
]
