"""
agentrun Tools - Registry, executor and tool definitions
"""

from .models import (
    CORE_CATEGORY,
    RegisteredTool,
    ToolDefinition,
    ToolExecutionFailure,
    ToolExecutionResult,
    ToolExecutionSuccess,
    ToolFailure,
    ToolResult,
    ToolSuccess,
)
from .registry import ToolRegistry
from .executor import ToolExecutor
from .decorator import FunctionTool, tool

__all__ = [
    "CORE_CATEGORY",
    "RegisteredTool",
    "ToolDefinition",
    "ToolExecutionFailure",
    "ToolExecutionResult",
    "ToolExecutionSuccess",
    "ToolFailure",
    "ToolResult",
    "ToolSuccess",
    "ToolRegistry",
    "ToolExecutor",
    "FunctionTool",
    "tool",
]
