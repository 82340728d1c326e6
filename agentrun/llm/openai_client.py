"""
agentrun OpenAI Client - OpenAI chat-completions adapter

Supports:
- GPT-4.1, GPT-4o and their mini variants
- Reasoning models (o1, o3, o4, gpt-5), which reject temperature
- Any OpenAI-compatible API via base_url
"""

import logging
import os
from typing import Any, Dict, List, Optional

from ..message import MediaData, Message, Role, ToolCall
from .base import BaseLLMClient, Choice, FinishReason, LLMConfig, LLMResponse, Usage
from .errors import LLMConnectionError, LLMError, LLMTimeoutError

logger = logging.getLogger(__name__)

_FINISH_REASONS = {
    "stop": FinishReason.STOP,
    "tool_calls": FinishReason.TOOL_CALLS,
    "function_call": FinishReason.TOOL_CALLS,
    "length": FinishReason.LENGTH,
}

_AUDIO_FORMATS = {
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
}

_RESTRICTED_PREFIXES = ("o1", "o3", "o4", "gpt-5")


class OpenAIClient(BaseLLMClient):
    """
    OpenAI API client.

    Example:
        client = OpenAIClient(api_key="sk-xxx", model="gpt-4o-mini")
        response = await client.complete([Message.user("Hello!")])

        # OpenAI-compatible server
        client = OpenAIClient(
            api_key="xxx",
            base_url="http://localhost:8000/v1",
            model="llama-3.1-70b",
        )
    """

    provider = "openai"

    def __init__(self, config: Optional[LLMConfig] = None, **kwargs):
        """
        Initialize OpenAI client.

        Args:
            config: LLMConfig instance
            api_key: OpenAI API key (or set OPENAI_API_KEY env var)
            model: Model name
            base_url: Optional base URL for API
            **kwargs: Additional config options
        """
        if config is None and "api_key" not in kwargs:
            kwargs["api_key"] = os.environ.get("OPENAI_API_KEY")

        if config is None:
            if "model" not in kwargs:
                raise ValueError("model is required")
            model = kwargs.pop("model")
            config = LLMConfig(model=model, **kwargs)
            kwargs = {}

        super().__init__(config, **kwargs)

    def _get_client(self):
        """Get or create the OpenAI client"""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError:
                raise ImportError(
                    "openai package not installed. "
                    "Install with: pip install openai"
                )
            if not self.config.api_key:
                raise LLMError(
                    "API key not set. Configure an OpenAI API key.", provider=self.provider
                )

            self._client = AsyncOpenAI(
                api_key=self.config.api_key,
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                max_retries=self.config.max_retries,
                default_headers=self.config.default_headers or None,
            )

        return self._client

    @staticmethod
    def _is_restricted_model(model: str) -> bool:
        """Reasoning models reject temperature and use max_completion_tokens."""
        return model.lower().startswith(_RESTRICTED_PREFIXES)

    def _model_params(self, model: str, temperature: float, max_tokens: Optional[int]) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if self._is_restricted_model(model):
            if max_tokens:
                params["max_completion_tokens"] = max_tokens
        else:
            params["temperature"] = temperature
            if max_tokens:
                params["max_tokens"] = max_tokens
        return params

    async def _call_api(
        self,
        messages: List[Message],
        tools: Optional[List[Dict[str, Any]]],
        model: str,
        temperature: float,
        max_tokens: Optional[int],
    ) -> LLMResponse:
        """Make OpenAI API call"""
        client = self._get_client()

        params = {
            "model": model,
            "messages": [self._convert_message(m) for m in messages],
            **self._model_params(model, temperature, max_tokens),
        }
        if tools:
            params["tools"] = tools
            params["tool_choice"] = "auto"

        response = await client.chat.completions.create(**params)

        choices = []
        for choice in response.choices or []:
            message = choice.message
            tool_calls = [
                ToolCall(
                    id=tc.id,
                    name=tc.function.name,
                    arguments=tc.function.arguments or "{}",
                )
                for tc in (message.tool_calls or [])
            ]
            finish_reason = self._parse_finish_reason(choice.finish_reason)
            # Some compatible servers report "stop" alongside tool calls
            if tool_calls:
                finish_reason = FinishReason.TOOL_CALLS
            choices.append(Choice(
                index=choice.index,
                message=Message.assistant(message.content, tool_calls),
                finish_reason=finish_reason.value,
            ))

        usage = None
        if response.usage:
            usage = Usage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
                total_tokens=response.usage.total_tokens or 0,
            )

        return LLMResponse(
            choices=choices,
            usage=usage,
            id=response.id,
            model=response.model,
            raw_response=response,
        )

    # ------------------------------------------------------------------
    # Payload conversion
    # ------------------------------------------------------------------

    def _convert_message(self, message: Message) -> Dict[str, Any]:
        if message.role == Role.TOOL.value:
            return {
                "role": "tool",
                "tool_call_id": message.tool_call_id,
                "content": message.content or "",
            }

        if message.role == Role.ASSISTANT.value:
            msg: Dict[str, Any] = {"role": "assistant", "content": message.content}
            if message.tool_calls:
                msg["tool_calls"] = [tc.to_dict() for tc in message.tool_calls]
            return msg

        if message.role == Role.USER.value and message.media:
            return {"role": "user", "content": self._user_content_parts(message)}

        return {"role": message.role, "content": message.content or ""}

    def _user_content_parts(self, message: Message) -> List[Dict[str, Any]]:
        parts: List[Dict[str, Any]] = []
        if message.content:
            parts.append({"type": "text", "text": message.content})
        for media in message.media or []:
            part = self._media_part(media)
            if part is not None:
                parts.append(part)
            else:
                logger.debug(f"Dropping unsupported attachment for OpenAI: {media.mime_type}")
        return parts

    @staticmethod
    def _media_part(media: MediaData) -> Optional[Dict[str, Any]]:
        if media.is_image:
            return {
                "type": "image_url",
                "image_url": {"url": f"data:{media.mime_type};base64,{media.base64}"},
            }
        if media.is_audio and media.mime_type in _AUDIO_FORMATS:
            return {
                "type": "input_audio",
                "input_audio": {"data": media.base64, "format": _AUDIO_FORMATS[media.mime_type]},
            }
        if media.is_document:
            return {
                "type": "file",
                "file": {
                    "filename": media.file_name or "document.pdf",
                    "file_data": f"data:{media.mime_type};base64,{media.base64}",
                },
            }
        return None

    @staticmethod
    def _parse_finish_reason(reason: Optional[str]) -> FinishReason:
        return _FINISH_REASONS.get(reason or "", FinishReason.OTHER)

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def _translate_error(self, exc: Exception) -> LLMError:
        import openai

        if isinstance(exc, openai.APITimeoutError):
            return LLMTimeoutError(
                f"Request timed out after {self.config.timeout}s", provider=self.provider
            )
        if isinstance(exc, openai.APIConnectionError):
            return LLMConnectionError(
                f"Network error: {self._redact(str(exc))}", provider=self.provider
            )
        if isinstance(exc, openai.APIStatusError):
            detail = exc.message or str(exc)
            if getattr(exc, "code", None) == "context_length_exceeded":
                detail = f"context_length_exceeded: {detail}"
            return self._error_for_status(exc.status_code, detail)
        return super()._translate_error(exc)
