"""
agentrun Gemini Client - Google Gemini adapter via the google-genai SDK

Supports:
- Gemini 2.5 Pro / Flash and Gemini 3 previews
- Function calling, including thought-signature round trips
- Image, audio, video and PDF attachments as inline bytes

Thinking models sign the turn that produced a function call. The signed
turn must be sent back verbatim together with the function response,
so the adapter keeps the raw model turn in a small cache keyed by tool
call id and evicts it once the follow-up call succeeds.
"""

import base64
import json
import logging
import os
import uuid
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Set

import httpx
from google.genai import errors as genai_errors
from google.genai import types

from ..message import Message, Role, ToolCall
from .base import BaseLLMClient, Choice, FinishReason, LLMConfig, LLMResponse, Tool, Usage
from .errors import LLMConnectionError, LLMError, LLMTimeoutError

logger = logging.getLogger(__name__)

GENERATED_ID_PREFIX = "gemini-call-"
MAX_PENDING_TURNS = 256

_FINISH_REASONS = {
    "STOP": FinishReason.STOP,
    "MAX_TOKENS": FinishReason.LENGTH,
}


class GeminiClient(BaseLLMClient):
    """
    Google Gemini API client.

    Example:
        client = GeminiClient(api_key="xxx", model="gemini-2.5-flash")
        response = await client.complete([Message.user("Hello!")], tools=[weather_tool])
    """

    provider = "gemini"

    def __init__(self, config: Optional[LLMConfig] = None, **kwargs):
        """
        Initialize Gemini client.

        Args:
            config: LLMConfig instance
            api_key: Google API key (or set GOOGLE_API_KEY / GEMINI_API_KEY env var)
            model: Model name
            **kwargs: Additional config options
        """
        if config is None and "api_key" not in kwargs:
            kwargs["api_key"] = os.environ.get("GOOGLE_API_KEY") or os.environ.get("GEMINI_API_KEY")

        if config is None:
            if "model" not in kwargs:
                raise ValueError("model is required")
            model = kwargs.pop("model")
            config = LLMConfig(model=model, **kwargs)
            kwargs = {}

        super().__init__(config, **kwargs)
        # tool call id -> raw model turn that issued it
        self._pending_turns: "OrderedDict[str, types.Content]" = OrderedDict()

    def _get_client(self):
        """Get or create the google-genai client"""
        if self._client is None:
            try:
                from google import genai
            except ImportError:
                raise ImportError(
                    "google-genai package not installed. "
                    "Install with: pip install google-genai"
                )
            if not self.config.api_key:
                raise LLMError(
                    "API key not set. Configure a Google AI API key.", provider=self.provider
                )

            http_options = types.HttpOptions(
                timeout=self.config.timeout * 1000,
                base_url=self.config.base_url,
                headers=self.config.default_headers or None,
            )
            self._client = genai.Client(api_key=self.config.api_key, http_options=http_options)

        return self._client

    def _format_tool(self, tool: Tool) -> types.FunctionDeclaration:
        """Format tool to a Gemini function declaration"""
        return types.FunctionDeclaration(
            name=tool.name,
            description=tool.description,
            parameters_json_schema=tool.parameters,
        )

    async def _call_api(
        self,
        messages: List[Message],
        tools: Optional[List[Any]],
        model: str,
        temperature: float,
        max_tokens: Optional[int],
    ) -> LLMResponse:
        """Make Gemini API call"""
        client = self._get_client()

        system, contents, replayed = self._convert_messages(messages)
        config = types.GenerateContentConfig(
            temperature=temperature,
            max_output_tokens=max_tokens,
            system_instruction=system or None,
            tools=[types.Tool(function_declarations=tools)] if tools else None,
        )

        response = await client.aio.models.generate_content(
            model=model,
            contents=contents,
            config=config,
        )

        # Round trip complete: the signed turns were accepted
        for call_id in replayed:
            self._pending_turns.pop(call_id, None)

        return self._parse_response(response, model)

    # ------------------------------------------------------------------
    # Continuation cache
    # ------------------------------------------------------------------

    def _remember_turn(self, call_ids: List[str], content: types.Content) -> None:
        for call_id in call_ids:
            self._pending_turns[call_id] = content
            self._pending_turns.move_to_end(call_id)
        while len(self._pending_turns) > MAX_PENDING_TURNS:
            self._pending_turns.popitem(last=False)

    @property
    def pending_turn_count(self) -> int:
        return len(self._pending_turns)

    # ------------------------------------------------------------------
    # Payload conversion
    # ------------------------------------------------------------------

    def _convert_messages(self, messages: List[Message]):
        """Return (system_instruction, contents, replayed tool call ids)."""
        system_parts = []
        contents: List[types.Content] = []
        replayed: Set[str] = set()
        call_names: Dict[str, str] = {}
        pending_responses: List[types.Part] = []

        def flush_responses():
            if pending_responses:
                contents.append(types.Content(role="user", parts=list(pending_responses)))
                pending_responses.clear()

        for message in messages:
            if message.role == Role.SYSTEM.value:
                if message.content:
                    system_parts.append(message.content)
                continue

            if message.role == Role.TOOL.value:
                call_id = message.tool_call_id or ""
                response = types.FunctionResponse(
                    id=self._vendor_id(call_id),
                    name=message.name or call_names.get(call_id, ""),
                    response={"result": message.content or ""},
                )
                pending_responses.append(types.Part(function_response=response))
                continue

            flush_responses()

            if message.role == Role.ASSISTANT.value:
                for tc in message.tool_calls or []:
                    call_names[tc.id] = tc.name
                contents.extend(self._assistant_content(message, replayed))
                continue

            parts = self._user_parts(message)
            if parts:
                contents.append(types.Content(role="user", parts=parts))

        flush_responses()
        return "\n\n".join(system_parts), contents, replayed

    def _assistant_content(self, message: Message, replayed: Set[str]) -> List[types.Content]:
        if message.tool_calls:
            raw = self._pending_turns.get(message.tool_calls[0].id)
            if raw is not None:
                replayed.update(tc.id for tc in message.tool_calls)
                return [raw]

        parts: List[types.Part] = []
        if message.content:
            parts.append(types.Part(text=message.content))
        for tc in message.tool_calls or []:
            try:
                args = tc.parse_arguments()
            except ValueError:
                args = {}
            call = types.FunctionCall(id=self._vendor_id(tc.id), name=tc.name, args=args)
            parts.append(types.Part(function_call=call))
        if not parts:
            return []
        return [types.Content(role="model", parts=parts)]

    @staticmethod
    def _vendor_id(call_id: Optional[str]) -> Optional[str]:
        if not call_id or call_id.startswith(GENERATED_ID_PREFIX):
            return None
        return call_id

    @staticmethod
    def _user_parts(message: Message) -> List[types.Part]:
        parts: List[types.Part] = []
        if message.content:
            parts.append(types.Part(text=message.content))
        for media in message.media or []:
            if media.is_image or media.is_audio or media.is_video or media.is_document:
                parts.append(types.Part.from_bytes(
                    data=base64.b64decode(media.base64),
                    mime_type=media.mime_type,
                ))
            else:
                logger.debug(f"Dropping unsupported attachment for Gemini: {media.mime_type}")
        return parts

    def _parse_response(self, response: Any, model: str) -> LLMResponse:
        usage = None
        metadata = getattr(response, "usage_metadata", None)
        if metadata is not None:
            prompt = metadata.prompt_token_count or 0
            completion = metadata.candidates_token_count or 0
            usage = Usage(
                prompt_tokens=prompt,
                completion_tokens=completion,
                total_tokens=metadata.total_token_count or prompt + completion,
            )

        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            return LLMResponse(choices=[], usage=usage, model=model, raw_response=response)

        candidate = candidates[0]
        content = candidate.content
        text_parts = []
        tool_calls = []
        for part in (content.parts if content is not None and content.parts else []):
            if getattr(part, "function_call", None) is not None:
                call = part.function_call
                tool_calls.append(ToolCall(
                    id=call.id or f"{GENERATED_ID_PREFIX}{uuid.uuid4().hex[:12]}",
                    name=call.name,
                    arguments=json.dumps(call.args or {}, ensure_ascii=False),
                ))
            elif getattr(part, "text", None) and not getattr(part, "thought", False):
                text_parts.append(part.text)

        if tool_calls:
            self._remember_turn([tc.id for tc in tool_calls], content)
            finish_reason = FinishReason.TOOL_CALLS
        else:
            finish_reason = self._parse_finish_reason(candidate.finish_reason)

        return LLMResponse(
            choices=[Choice(
                message=Message.assistant("".join(text_parts) or None, tool_calls),
                finish_reason=finish_reason.value,
            )],
            usage=usage,
            id=getattr(response, "response_id", None),
            model=model,
            raw_response=response,
        )

    @staticmethod
    def _parse_finish_reason(reason: Any) -> FinishReason:
        name = getattr(reason, "name", None) or str(reason or "")
        return _FINISH_REASONS.get(name.upper(), FinishReason.OTHER)

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def _translate_error(self, exc: Exception) -> LLMError:
        if isinstance(exc, genai_errors.APIError):
            detail = exc.message or str(exc)
            return self._error_for_status(exc.code or 0, detail)
        if isinstance(exc, httpx.TimeoutException):
            return LLMTimeoutError(
                f"Request timed out after {self.config.timeout}s", provider=self.provider
            )
        if isinstance(exc, httpx.TransportError):
            return LLMConnectionError(
                f"Network error: {self._redact(str(exc))}", provider=self.provider
            )
        return super()._translate_error(exc)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aio.aclose()
        self._client = None
        self._pending_turns.clear()
