"""
agentrun LLM Client Base - Canonical response types and the adapter base class

This module provides:
- FinishReason: Normalized reason a model turn ended
- LLMConfig: Configuration dataclass
- Tool: Vendor-neutral tool description sent to the model
- LLMResponse: Canonical ``{choices: [{message, finish_reason}], usage}`` shape
- BaseLLMClient: Abstract base class for all provider adapters
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..message import Message, ToolCall
from ..tools.models import ToolDefinition
from .errors import (
    AuthenticationError,
    ContextOverflowError,
    LLMError,
    RateLimitError,
    ServiceUnavailableError,
)

logger = logging.getLogger(__name__)


class FinishReason(str, Enum):
    """Why the model stopped generating"""
    STOP = "stop"               # Natural completion
    TOOL_CALLS = "tool_calls"   # Model wants to call tools
    LENGTH = "length"           # Hit token limit
    OTHER = "other"             # Content filter, refusal, unknown


# Substrings providers use when a request does not fit the context window
CONTEXT_OVERFLOW_MARKERS = (
    "context_length_exceeded",
    "maximum context length",
    "prompt is too long",
    "too many tokens",
    "exceeds the maximum",
    "request payload size exceeds",
    "context window",
)

_SECRET_PATTERN = re.compile(r"(sk-[A-Za-z0-9_\-]{8,}|AIza[A-Za-z0-9_\-]{8,})")


@dataclass
class LLMConfig:
    """
    Configuration for LLM clients.

    Attributes:
        api_key: API key for the provider
        model: Default model name
        base_url: Optional base URL override for API
        temperature: Default sampling temperature
        max_tokens: Maximum tokens in response (None = provider default)
        timeout: Request timeout in seconds
        max_retries: SDK-level retries on transient failures
        default_headers: Additional headers to send with requests
    """
    api_key: Optional[str] = None
    model: str = ""
    base_url: Optional[str] = None
    temperature: float = 0.7
    max_tokens: Optional[int] = None
    timeout: int = 120
    max_retries: int = 2
    default_headers: Dict[str, str] = field(default_factory=dict)

    # Extra provider-specific config
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary (never includes the key)"""
        return {
            "model": self.model,
            "base_url": self.base_url,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "timeout": self.timeout,
        }


@dataclass
class Tool:
    """Vendor-neutral tool description"""
    name: str
    description: str
    parameters: Dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    @classmethod
    def from_definition(cls, definition: ToolDefinition) -> "Tool":
        return cls(
            name=definition.name,
            description=definition.description,
            parameters=definition.parameters,
        )


@dataclass
class Usage:
    """Token usage information"""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class Choice:
    message: Message
    finish_reason: str = FinishReason.STOP.value
    index: int = 0


@dataclass
class LLMResponse:
    """
    Canonical LLM response.

    All adapters return this shape regardless of the vendor format.
    """
    choices: List[Choice] = field(default_factory=list)
    usage: Optional[Usage] = None
    id: Optional[str] = None
    model: Optional[str] = None

    # Raw response for debugging
    raw_response: Optional[Any] = field(default=None, repr=False)

    @property
    def first(self) -> Optional[Choice]:
        return self.choices[0] if self.choices else None

    @property
    def content(self) -> Optional[str]:
        return self.first.message.content if self.first else None

    @property
    def tool_calls(self) -> List[ToolCall]:
        if not self.first:
            return []
        return list(self.first.message.tool_calls or [])

    @property
    def finish_reason(self) -> Optional[str]:
        return self.first.finish_reason if self.first else None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "model": self.model,
            "choices": [
                {
                    "index": choice.index,
                    "message": {
                        "role": choice.message.role,
                        "content": choice.message.content,
                        "tool_calls": [tc.to_dict() for tc in choice.message.tool_calls or []],
                    },
                    "finish_reason": choice.finish_reason,
                }
                for choice in self.choices
            ],
            "usage": self.usage.to_dict() if self.usage else None,
        }


class BaseLLMClient(ABC):
    """
    Abstract base class for LLM clients.

    Subclasses translate canonical messages and tools into the vendor
    payload in ``_call_api`` and translate vendor exceptions into
    ``LLMError`` subclasses in ``_translate_error``.

    Example:
        class MyClient(BaseLLMClient):
            provider = "mine"

            async def _call_api(self, messages, tools, model, temperature, max_tokens):
                ...
    """

    # Provider name (override in subclasses)
    provider: str = "unknown"

    def __init__(self, config: Optional[LLMConfig] = None, **kwargs):
        """
        Initialize the client.

        Args:
            config: LLMConfig instance
            **kwargs: Override config values
        """
        if config is None:
            config = LLMConfig(**kwargs)
        else:
            for key, value in kwargs.items():
                if hasattr(config, key):
                    setattr(config, key, value)

        self.config = config
        self._client = None  # Lazy-initialized SDK client

    @abstractmethod
    async def _call_api(
        self,
        messages: List[Message],
        tools: Optional[List[Dict[str, Any]]],
        model: str,
        temperature: float,
        max_tokens: Optional[int],
    ) -> LLMResponse:
        """
        Make the actual API call (provider-specific).

        Args:
            messages: Canonical messages, system messages included
            tools: Tools already passed through _format_tool
            model: Model name
            temperature: Sampling temperature
            max_tokens: Response token cap, None for provider default

        Returns:
            LLMResponse in canonical form
        """
        pass

    async def complete(
        self,
        messages: List[Message],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        tools: Optional[List[Tool]] = None,
    ) -> LLMResponse:
        """
        Send a completion request.

        Args:
            messages: Canonical message list
            model: Model override (defaults to config.model)
            temperature: Temperature override
            max_tokens: Token cap override
            tools: Tools the model may call

        Returns:
            LLMResponse

        Raises:
            ContextOverflowError: The request did not fit the model's window
            LLMError: Any other provider or transport failure
        """
        tool_schemas = [self._format_tool(tool) for tool in tools] if tools else None
        try:
            return await self._call_api(
                messages,
                tool_schemas,
                model=model or self.config.model,
                temperature=self.config.temperature if temperature is None else temperature,
                max_tokens=max_tokens if max_tokens is not None else self.config.max_tokens,
            )
        except LLMError:
            raise
        except Exception as e:
            error = self._translate_error(e)
            logger.warning(f"{self.provider} call failed: {error}")
            raise error from e

    def _format_tool(self, tool: Tool) -> Dict[str, Any]:
        """Format a tool for this provider's API (OpenAI function format by default)"""
        return {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters,
            },
        }

    # ------------------------------------------------------------------
    # Error normalization
    # ------------------------------------------------------------------

    def _translate_error(self, exc: Exception) -> LLMError:
        """Map a vendor exception to an LLMError. Adapters override for SDK types."""
        return LLMError(
            f"{self.provider} API error: {self._redact(str(exc))}",
            provider=self.provider,
        )

    def _error_for_status(self, status: int, detail: str) -> LLMError:
        """Build an actionable error from an HTTP status and vendor message."""
        detail = self._redact(detail)
        if status in (400, 413) and self._is_context_overflow(detail):
            return ContextOverflowError(
                f"Context window exceeded: {detail}", provider=self.provider, status_code=status
            )
        if status == 401:
            return AuthenticationError(
                "Unauthorized: invalid API key", provider=self.provider, status_code=status
            )
        if status == 403:
            return AuthenticationError(
                f"Forbidden: {detail}", provider=self.provider, status_code=status
            )
        if status == 429:
            return RateLimitError(
                f"Rate limit exceeded: {detail}", provider=self.provider, status_code=status
            )
        if status >= 500:
            return ServiceUnavailableError(
                f"Service error ({status}): {detail}", provider=self.provider, status_code=status
            )
        return LLMError(f"HTTP error {status}: {detail}", provider=self.provider, status_code=status)

    @staticmethod
    def _is_context_overflow(text: str) -> bool:
        lowered = (text or "").lower()
        return any(marker in lowered for marker in CONTEXT_OVERFLOW_MARKERS)

    def _redact(self, text: str) -> str:
        """Strip credentials from text that may end up in logs or history."""
        text = text or ""
        if self.config.api_key:
            text = text.replace(self.config.api_key, "***")
        return _SECRET_PATTERN.sub("***", text)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying SDK client"""
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()
        self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
