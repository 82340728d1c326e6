"""
agentrun Tool Models - Data structures for tool registration and execution
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

# Tools in this category are always visible to the model
CORE_CATEGORY = "core"

# Argument key carrying the caller's conversation id into every invocation
CONVERSATION_ID_ARG = "_conversation_id"


@dataclass
class ToolDefinition:
    """
    Declared shape of a tool.

    Attributes:
        name: Unique tool name within a registry
        description: Natural-language description shown to the model
        parameters: JSON schema of the arguments object
        category: "core" (always visible) or an on-demand category name
        timeout_ms: Per-call deadline, 0 means the executor default
    """
    name: str
    description: str
    parameters: Dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    category: str = CORE_CATEGORY
    timeout_ms: int = 0

    @property
    def is_core(self) -> bool:
        return self.category == CORE_CATEGORY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
            "category": self.category,
            "timeout_ms": self.timeout_ms,
        }


# --- Results returned by tool handles ---


@dataclass
class ToolSuccess:
    """Successful tool invocation"""
    output: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    image_paths: List[str] = field(default_factory=list)


@dataclass
class ToolFailure:
    """Failed tool invocation"""
    error: str
    cause: Optional[BaseException] = None


ToolResult = Union[ToolSuccess, ToolFailure]


# --- Results produced by the executor for one tool call ---


@dataclass
class ToolExecutionSuccess:
    tool_call_id: str
    tool_name: str
    output: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    image_paths: List[str] = field(default_factory=list)

    @property
    def is_error(self) -> bool:
        return False


@dataclass
class ToolExecutionFailure:
    tool_call_id: str
    tool_name: str
    error: str
    cause: Optional[BaseException] = None

    @property
    def is_error(self) -> bool:
        return True


ToolExecutionResult = Union[ToolExecutionSuccess, ToolExecutionFailure]


@dataclass
class RegisteredTool:
    """
    A tool as stored in the registry.

    Attributes:
        plugin_id: Owner; unregistering it removes all of its tools
        definition: Declared shape
        handle: Object with ``async invoke(name, arguments) -> ToolResult``
    """
    plugin_id: str
    definition: ToolDefinition
    handle: Any

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def category(self) -> str:
        return self.definition.category
