"""
agentrun Anthropic Client - Anthropic Messages API adapter

Supports:
- Claude Sonnet, Opus and Haiku models
- Tool use via tool_use / tool_result content blocks
- Image and PDF attachments (audio and video are dropped)
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional

from ..message import Message, Role, ToolCall
from .base import BaseLLMClient, Choice, FinishReason, LLMConfig, LLMResponse, Tool, Usage
from .errors import LLMConnectionError, LLMError, LLMTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096

_STOP_REASONS = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "tool_use": FinishReason.TOOL_CALLS,
    "max_tokens": FinishReason.LENGTH,
}

_IMAGE_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}


class AnthropicClient(BaseLLMClient):
    """
    Anthropic API client.

    Example:
        client = AnthropicClient(api_key="sk-ant-xxx", model="claude-sonnet-4-5")
        response = await client.complete(
            [Message.system("You are helpful."), Message.user("Hello!")]
        )
    """

    provider = "anthropic"

    def __init__(self, config: Optional[LLMConfig] = None, **kwargs):
        """
        Initialize Anthropic client.

        Args:
            config: LLMConfig instance
            api_key: Anthropic API key (or set ANTHROPIC_API_KEY env var)
            model: Model name
            **kwargs: Additional config options
        """
        if config is None and "api_key" not in kwargs:
            kwargs["api_key"] = os.environ.get("ANTHROPIC_API_KEY")

        if config is None:
            if "model" not in kwargs:
                raise ValueError("model is required")
            model = kwargs.pop("model")
            config = LLMConfig(model=model, **kwargs)
            kwargs = {}

        super().__init__(config, **kwargs)

    def _get_client(self):
        """Get or create the Anthropic client"""
        if self._client is None:
            try:
                from anthropic import AsyncAnthropic
            except ImportError:
                raise ImportError(
                    "anthropic package not installed. "
                    "Install with: pip install anthropic"
                )
            if not self.config.api_key:
                raise LLMError(
                    "API key not set. Configure an Anthropic API key.", provider=self.provider
                )

            self._client = AsyncAnthropic(
                api_key=self.config.api_key,
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                max_retries=self.config.max_retries,
                default_headers=self.config.default_headers or None,
            )

        return self._client

    def _format_tool(self, tool: Tool) -> Dict[str, Any]:
        """Format tool to Anthropic format"""
        schema = dict(tool.parameters or {})
        schema.setdefault("type", "object")
        return {
            "name": tool.name,
            "description": tool.description,
            "input_schema": schema,
        }

    async def _call_api(
        self,
        messages: List[Message],
        tools: Optional[List[Dict[str, Any]]],
        model: str,
        temperature: float,
        max_tokens: Optional[int],
    ) -> LLMResponse:
        """Make Anthropic API call"""
        client = self._get_client()

        system, turns = self._convert_messages(messages)
        params: Dict[str, Any] = {
            "model": model,
            "messages": turns,
            "max_tokens": max_tokens or DEFAULT_MAX_TOKENS,
            "temperature": temperature,
        }
        if system:
            params["system"] = system
        if tools:
            params["tools"] = tools
            params["tool_choice"] = {"type": "auto"}

        response = await client.messages.create(**params)

        text_parts = []
        tool_calls = []
        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append(ToolCall(
                    id=block.id,
                    name=block.name,
                    arguments=json.dumps(block.input or {}, ensure_ascii=False),
                ))

        usage = None
        if response.usage:
            usage = Usage(
                prompt_tokens=response.usage.input_tokens,
                completion_tokens=response.usage.output_tokens,
                total_tokens=response.usage.input_tokens + response.usage.output_tokens,
            )

        content = "".join(text_parts) or None
        return LLMResponse(
            choices=[Choice(
                message=Message.assistant(content, tool_calls),
                finish_reason=self._parse_stop_reason(response.stop_reason).value,
            )],
            usage=usage,
            id=response.id,
            model=response.model,
            raw_response=response,
        )

    # ------------------------------------------------------------------
    # Payload conversion
    # ------------------------------------------------------------------

    def _convert_messages(self, messages: List[Message]):
        """Split out the system prompt and build alternating Anthropic turns."""
        system_parts = []
        turns: List[Dict[str, Any]] = []

        for message in messages:
            if message.role == Role.SYSTEM.value:
                if message.content:
                    system_parts.append(message.content)
                continue

            if message.role == Role.TOOL.value:
                block = {
                    "type": "tool_result",
                    "tool_use_id": message.tool_call_id,
                    "content": message.content or "",
                }
                self._append_blocks(turns, "user", [block])
                continue

            if message.role == Role.ASSISTANT.value:
                blocks: List[Dict[str, Any]] = []
                if message.content:
                    blocks.append({"type": "text", "text": message.content})
                for tc in message.tool_calls or []:
                    blocks.append({
                        "type": "tool_use",
                        "id": tc.id,
                        "name": tc.name,
                        "input": self._safe_arguments(tc),
                    })
                if blocks:
                    self._append_blocks(turns, "assistant", blocks)
                continue

            self._append_blocks(turns, "user", self._user_blocks(message))

        return "\n\n".join(system_parts), turns

    @staticmethod
    def _append_blocks(turns: List[Dict[str, Any]], role: str, blocks: List[Dict[str, Any]]) -> None:
        if not blocks:
            return
        if turns and turns[-1]["role"] == role:
            turns[-1]["content"].extend(blocks)
        else:
            turns.append({"role": role, "content": list(blocks)})

    def _user_blocks(self, message: Message) -> List[Dict[str, Any]]:
        blocks: List[Dict[str, Any]] = []
        # Anthropic prefers attachments before text
        for media in message.media or []:
            if media.is_image and media.mime_type in _IMAGE_TYPES:
                blocks.append({
                    "type": "image",
                    "source": {"type": "base64", "media_type": media.mime_type, "data": media.base64},
                })
            elif media.is_document:
                blocks.append({
                    "type": "document",
                    "source": {"type": "base64", "media_type": media.mime_type, "data": media.base64},
                })
            else:
                logger.debug(f"Dropping unsupported attachment for Anthropic: {media.mime_type}")
        if message.content:
            blocks.append({"type": "text", "text": message.content})
        return blocks

    @staticmethod
    def _safe_arguments(tool_call: ToolCall) -> Dict[str, Any]:
        try:
            return tool_call.parse_arguments()
        except ValueError:
            return {}

    @staticmethod
    def _parse_stop_reason(reason: Optional[str]) -> FinishReason:
        return _STOP_REASONS.get(reason or "", FinishReason.OTHER)

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def _translate_error(self, exc: Exception) -> LLMError:
        import anthropic

        if isinstance(exc, anthropic.APITimeoutError):
            return LLMTimeoutError(
                f"Request timed out after {self.config.timeout}s", provider=self.provider
            )
        if isinstance(exc, anthropic.APIConnectionError):
            return LLMConnectionError(
                f"Network error: {self._redact(str(exc))}", provider=self.provider
            )
        if isinstance(exc, anthropic.APIStatusError):
            return self._error_for_status(exc.status_code, exc.message or str(exc))
        return super()._translate_error(exc)
