"""
agentrun Tool Executor - Resolve, invoke, cap and persist tool calls

Every failure mode of a tool call (unknown tool, malformed arguments,
deadline exceeded, exception inside the tool) is turned into a
ToolExecutionFailure so the model can observe it and self-correct.
Only cancellation propagates.
"""

import asyncio
import inspect
import json
import logging
import time
from typing import List, Optional

from ..message import ToolCall
from ..protocols import MessageRecord, MessageStore
from .models import (
    CONVERSATION_ID_ARG,
    ToolExecutionFailure,
    ToolExecutionResult,
    ToolExecutionSuccess,
    ToolFailure,
    ToolSuccess,
)
from .registry import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_TOOL_TIMEOUT_MS = 120_000
MAX_STORED_RESULT_CHARS = 16_384


def _format_seconds(timeout_ms: int) -> str:
    return f"{timeout_ms / 1000:g}s"


def truncate_for_storage(content: str, max_chars: int = MAX_STORED_RESULT_CHARS) -> str:
    """Cap content kept in storage, noting the original length."""
    if len(content) <= max_chars:
        return content
    return content[:max_chars] + f"\n\n[Truncated: {len(content)} chars total]"


class ToolExecutor:
    """
    Executes model-issued tool calls against a registry.

    Usage:
        executor = ToolExecutor(registry, message_store=store)
        results = await executor.execute_batch("conv-1", response_message.tool_calls)
    """

    def __init__(
        self,
        registry: ToolRegistry,
        message_store: Optional[MessageStore] = None,
        default_timeout_ms: int = DEFAULT_TOOL_TIMEOUT_MS,
        max_stored_result_chars: int = MAX_STORED_RESULT_CHARS,
    ):
        self.registry = registry
        self.message_store = message_store
        self.default_timeout_ms = default_timeout_ms
        self.max_stored_result_chars = max_stored_result_chars

    async def execute(self, conversation_id: str, tool_call: ToolCall) -> ToolExecutionResult:
        """
        Execute one tool call and persist its result.

        Args:
            conversation_id: Conversation the call belongs to
            tool_call: Call issued by the model

        Returns:
            ToolExecutionSuccess with the full, untruncated output, or
            ToolExecutionFailure
        """
        result = await self._run(conversation_id, tool_call)
        await self._persist(conversation_id, result)
        return result

    async def execute_batch(
        self,
        conversation_id: str,
        tool_calls: List[ToolCall],
    ) -> List[ToolExecutionResult]:
        """Execute calls one after another, in the order the model issued them."""
        results = []
        for tool_call in tool_calls:
            results.append(await self.execute(conversation_id, tool_call))
        return results

    async def _run(self, conversation_id: str, tool_call: ToolCall) -> ToolExecutionResult:
        tool = self.registry.lookup(tool_call.name)
        if tool is None:
            logger.warning(f"[ToolExecutor] Tool '{tool_call.name}' not found")
            return ToolExecutionFailure(
                tool_call_id=tool_call.id,
                tool_name=tool_call.name,
                error=f"Tool '{tool_call.name}' not found",
            )

        try:
            arguments = tool_call.parse_arguments()
        except ValueError as e:
            logger.warning(f"[ToolExecutor] Invalid arguments for '{tool_call.name}': {e}")
            return ToolExecutionFailure(
                tool_call_id=tool_call.id,
                tool_name=tool_call.name,
                error=f"Invalid JSON arguments: {e}",
                cause=e,
            )
        arguments[CONVERSATION_ID_ARG] = conversation_id

        timeout_ms = tool.definition.timeout_ms or self.default_timeout_ms
        start = time.monotonic()
        try:
            outcome = await asyncio.wait_for(
                self._invoke(tool.handle, tool_call.name, arguments),
                timeout=timeout_ms / 1000,
            )
        except asyncio.TimeoutError as e:
            logger.warning(
                f"[ToolExecutor] Tool '{tool_call.name}' timed out after {_format_seconds(timeout_ms)}"
            )
            return ToolExecutionFailure(
                tool_call_id=tool_call.id,
                tool_name=tool_call.name,
                error=f"Tool execution timed out ({_format_seconds(timeout_ms)})",
                cause=e,
            )
        except Exception as e:
            logger.error(f"[ToolExecutor] Tool '{tool_call.name}' execution failed: {e}", exc_info=True)
            return ToolExecutionFailure(
                tool_call_id=tool_call.id,
                tool_name=tool_call.name,
                error=f"Unexpected error: {e}",
                cause=e,
            )

        duration_ms = int((time.monotonic() - start) * 1000)
        if isinstance(outcome, ToolFailure):
            logger.info(f"[ToolExecutor] Tool '{tool_call.name}' failed in {duration_ms}ms: {outcome.error}")
            return ToolExecutionFailure(
                tool_call_id=tool_call.id,
                tool_name=tool_call.name,
                error=outcome.error,
                cause=outcome.cause,
            )

        logger.info(f"[ToolExecutor] Tool '{tool_call.name}' succeeded in {duration_ms}ms")
        return ToolExecutionSuccess(
            tool_call_id=tool_call.id,
            tool_name=tool_call.name,
            output=outcome.output,
            metadata=outcome.metadata,
            image_paths=outcome.image_paths,
        )

    @staticmethod
    async def _invoke(handle, name: str, arguments: dict):
        outcome = handle.invoke(name, arguments)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        if isinstance(outcome, (ToolSuccess, ToolFailure)):
            return outcome
        if isinstance(outcome, dict):
            return ToolSuccess(output=json.dumps(outcome, ensure_ascii=False, indent=2))
        return ToolSuccess(output="" if outcome is None else str(outcome))

    async def _persist(self, conversation_id: str, result: ToolExecutionResult) -> None:
        if self.message_store is None:
            return
        if isinstance(result, ToolExecutionSuccess):
            content = result.output
            image_paths = result.image_paths or None
        else:
            content = f"Error: {result.error}"
            image_paths = None
        await self.message_store.insert(MessageRecord(
            conversation_id=conversation_id,
            role="tool",
            content=truncate_for_storage(content, self.max_stored_result_chars),
            tool_call_id=result.tool_call_id,
            tool_name=result.tool_name,
            image_paths=image_paths,
        ))
