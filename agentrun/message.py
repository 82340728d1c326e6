"""
Canonical message types shared by the loop, the coordinator and every
LLM adapter.

A tool-role message always carries a ``tool_call_id`` that references a
``ToolCall`` issued by a preceding assistant message.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Role(str, Enum):
    """Message author role"""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass
class ToolCall:
    """
    A tool call issued by the model.

    Attributes:
        id: Call id, unique within one assistant turn
        name: Function name
        arguments: Raw JSON argument string, parsed lazily
    """
    id: str
    name: str
    arguments: str = "{}"

    def parse_arguments(self) -> Dict[str, Any]:
        """Parse the argument string. Raises ValueError on malformed JSON."""
        if not self.arguments or not self.arguments.strip():
            return {}
        parsed = json.loads(self.arguments)
        if not isinstance(parsed, dict):
            raise ValueError("tool arguments must be a JSON object")
        return parsed

    def to_dict(self) -> Dict[str, Any]:
        """OpenAI function-call shape, also used for persistence."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolCall":
        func = data.get("function", {})
        return cls(
            id=data.get("id", ""),
            name=func.get("name", ""),
            arguments=func.get("arguments") or "{}",
        )


@dataclass
class MediaData:
    """Inline attachment sent with a single user turn."""
    base64: str
    mime_type: str
    file_name: Optional[str] = None

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    @property
    def is_audio(self) -> bool:
        return self.mime_type.startswith("audio/")

    @property
    def is_video(self) -> bool:
        return self.mime_type.startswith("video/")

    @property
    def is_document(self) -> bool:
        return self.mime_type == "application/pdf"


@dataclass
class Message:
    """
    A single conversation message.

    ``media`` is transient: it is sent with the turn it is attached to and
    is never kept in replayed history.
    """
    role: str
    content: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None
    media: Optional[List[MediaData]] = field(default=None, repr=False)

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=Role.SYSTEM.value, content=content)

    @classmethod
    def user(cls, content: str, media: Optional[List[MediaData]] = None) -> "Message":
        return cls(role=Role.USER.value, content=content, media=media or None)

    @classmethod
    def assistant(
        cls,
        content: Optional[str],
        tool_calls: Optional[List[ToolCall]] = None,
    ) -> "Message":
        return cls(role=Role.ASSISTANT.value, content=content, tool_calls=tool_calls or None)

    @classmethod
    def tool(cls, tool_call_id: str, content: str, name: Optional[str] = None) -> "Message":
        return cls(role=Role.TOOL.value, content=content, tool_call_id=tool_call_id, name=name)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def without_media(self) -> "Message":
        if not self.media:
            return self
        return Message(
            role=self.role,
            content=self.content,
            tool_calls=self.tool_calls,
            tool_call_id=self.tool_call_id,
            name=self.name,
        )
