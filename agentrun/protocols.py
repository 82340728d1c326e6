"""
agentrun Protocols - Interfaces of the collaborators the runtime consumes

Persistence, secret storage and concrete tool implementations live
outside this package. These protocols define what the runtime needs
from them; ``agentrun.stores`` ships in-memory versions for tests and
single-process hosts.
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .tools.models import ToolResult

# Record roles beyond the four message roles
META_ROLE = "meta"
SUMMARY_MARKER = "summary"
STOPPED_MARKER = "stopped"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class MessageRecord:
    """
    Persisted projection of a conversation message.

    Attributes:
        conversation_id: Owning conversation
        role: system/user/assistant/tool, or "meta" for markers
        content: Text content
        tool_call_id: Links a tool result to its call
        tool_name: Tool name for tool rows, marker kind for meta rows
        tool_calls_json: JSON list of OpenAI-format tool calls
        image_paths: Files produced by a tool
    """
    conversation_id: str
    role: str
    content: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: int = field(default_factory=_now_ms)
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None
    tool_calls_json: Optional[str] = None
    image_paths: Optional[List[str]] = None

    @property
    def is_summary(self) -> bool:
        return self.role == META_ROLE and self.tool_name == SUMMARY_MARKER

    @property
    def is_stopped_marker(self) -> bool:
        return self.role == META_ROLE and self.tool_name == STOPPED_MARKER

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
            "tool_call_id": self.tool_call_id,
            "tool_name": self.tool_name,
            "tool_calls_json": self.tool_calls_json,
            "image_paths": self.image_paths,
        }


@runtime_checkable
class MessageStore(Protocol):
    """
    Append-only sink for conversation records.

    Implementations must preserve insertion order per conversation.
    """

    async def insert(self, record: MessageRecord) -> None:
        """Append a record"""
        ...


@runtime_checkable
class ConversationStore(Protocol):
    """Read side of message persistence, used to seed history after a cold start."""

    async def get_messages(self, conversation_id: str) -> List[MessageRecord]:
        """Return all records of a conversation in insertion order"""
        ...


@runtime_checkable
class CredentialVault(Protocol):
    """
    Namespaced secret storage.

    The runtime treats it as an opaque key-value store; keys look like
    ``"openai_api_key"``.
    """

    def get_secret(self, key: str) -> Optional[str]:
        ...

    def save_secret(self, key: str, value: str) -> None:
        ...

    def delete_secret(self, key: str) -> None:
        ...


@runtime_checkable
class ToolHandle(Protocol):
    """
    Invocation boundary of a concrete tool implementation.

    Example:
        class ReadFile:
            async def invoke(self, name, arguments):
                path = arguments["path"]
                return ToolSuccess(output=open(path).read())
    """

    async def invoke(self, name: str, arguments: Dict[str, Any]) -> "ToolResult":
        """
        Run the tool.

        Args:
            name: Tool name (one handle may serve several tools)
            arguments: Parsed arguments, including ``_conversation_id``

        Returns:
            ToolSuccess or ToolFailure
        """
        ...
