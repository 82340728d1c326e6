"""
ReAct loop - Drive model calls and tool calls until a final answer

Each iteration:
1. Fetch the current tool definitions (categories may be activated mid-run)
2. Drain messages injected by the user while the loop was running
3. Trim the working history when it approaches the context window
4. Call the model; recover from context overflow by trimming harder
5. Finish on "stop", or run the requested tools and continue

Provider failures become a user-facing apology and the iteration cap
becomes a continuation hint; neither raises. Malformed model turns raise
ReactLoopError and cancellation propagates.
"""

import json
import logging
from collections import deque
from dataclasses import replace
from typing import Callable, List, Optional

from ..llm.base import BaseLLMClient, FinishReason, LLMResponse, Tool, Usage
from ..llm.errors import ContextOverflowError
from ..message import Message
from ..protocols import MessageRecord, MessageStore
from ..tools.executor import ToolExecutor
from ..tools.models import ToolDefinition, ToolExecutionSuccess
from .context_manager import ContextManager
from .react_config import ReactLoopConfig, ReactLoopResult, ToolCallRecord
from .transcript_repair import repair_transcript

logger = logging.getLogger(__name__)

ToolsProvider = Callable[[], List[ToolDefinition]]

APOLOGY_TEMPLATE = (
    "Sorry, I ran into an issue while processing your request ({error}). "
    "You can try again or ask me to continue."
)
MAX_ITERATIONS_TEMPLATE = (
    "Reached the maximum number of steps ({max_iterations}). "
    "You can send a follow-up message to continue, "
    "or increase the max iterations setting."
)


class ReactLoopError(Exception):
    """The model produced a turn the loop cannot act on"""
    pass


class ReActLoop:
    """
    Iteration engine between one LLM client and one tool executor.

    Usage:
        loop = ReActLoop(llm_client, ToolExecutor(registry, store), message_store=store)
        result = await loop.run(
            messages=[Message.system("You are helpful"), Message.user("Hi")],
            tools_provider=lambda: registry.definitions(active),
            conversation_id="conv-1",
        )
        print(result.text)
    """

    def __init__(
        self,
        llm_client: BaseLLMClient,
        tool_executor: ToolExecutor,
        message_store: Optional[MessageStore] = None,
        config: Optional[ReactLoopConfig] = None,
    ):
        self.llm_client = llm_client
        self.tool_executor = tool_executor
        self.message_store = message_store
        self.config = config or ReactLoopConfig()
        self.last_usage: Optional[Usage] = None
        # deque append/popleft are atomic, so other threads may inject safely
        self._injected: deque = deque()

    def inject_message(self, text: str) -> None:
        """Queue a user message for the next iteration of a running loop."""
        self._injected.append(text)

    def clear_injections(self) -> None:
        self._injected.clear()

    @property
    def has_pending_injections(self) -> bool:
        return bool(self._injected)

    def _drain_injected(self, working: List[Message]) -> int:
        count = 0
        while self._injected:
            text = self._injected.popleft()
            logger.debug(f"[ReAct] Injecting user message: {text[:80]}")
            working.append(Message.user(text))
            count += 1
        return count

    async def run(
        self,
        messages: List[Message],
        tools_provider: ToolsProvider,
        conversation_id: str,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_iterations: Optional[int] = None,
        context_window_tokens: Optional[int] = None,
    ) -> ReactLoopResult:
        """
        Run the loop to completion.

        Args:
            messages: Initial history (system prompt, replayed history, new turn)
            tools_provider: Called every iteration for the visible tool definitions
            conversation_id: Used for persistence and passed to tools
            model: Model override for the client
            temperature: Sampling temperature
            max_iterations: Iteration cap
            context_window_tokens: Window of the model in use

        Returns:
            ReactLoopResult with the final, apology or continuation text

        Raises:
            ReactLoopError: The model returned an unusable turn
        """
        config = replace(
            self.config,
            temperature=self.config.temperature if temperature is None else temperature,
            max_iterations=max_iterations or self.config.max_iterations,
            context_window_tokens=context_window_tokens or self.config.context_window_tokens,
        )
        context = ContextManager(config)
        working = list(messages)
        records: List[ToolCallRecord] = []
        last_known_tokens = 0
        overflow_retries = 0
        iteration = 0

        while iteration < config.max_iterations:
            iteration += 1
            tools = [Tool.from_definition(d) for d in tools_provider()]
            self._drain_injected(working)

            estimate = context.estimate_tokens(working, last_known_tokens)
            if context.should_trim(working, estimate):
                logger.info(
                    f"[ReAct] Estimate {estimate} exceeds "
                    f"{config.trim_threshold:.0%} of {config.context_window_tokens}, trimming"
                )
                context.trim_to_fraction(working, config.trim_threshold)
                last_known_tokens = 0

            logger.debug(
                f"[ReAct] Iteration {iteration}/{config.max_iterations}: "
                f"{len(working)} messages, {len(tools)} tools"
            )
            try:
                response = await self.llm_client.complete(
                    repair_transcript(working),
                    model=model,
                    temperature=config.temperature,
                    max_tokens=config.max_tokens,
                    tools=tools or None,
                )
            except ContextOverflowError as e:
                if iteration > 1 and overflow_retries < config.max_overflow_retries:
                    overflow_retries += 1
                    logger.warning(
                        f"[ReAct] Context overflow, trimming to "
                        f"{config.overflow_trim_target:.0%} and retrying "
                        f"({overflow_retries}/{config.max_overflow_retries})"
                    )
                    context.trim_to_fraction(working, config.overflow_trim_target)
                    last_known_tokens = 0
                    iteration -= 1
                    continue
                return self._degraded(e, iteration, records)
            except Exception as e:
                return self._degraded(e, iteration, records)

            if response.usage:
                self.last_usage = response.usage
                last_known_tokens = response.usage.prompt_tokens + response.usage.completion_tokens

            choice = response.first
            if choice is None:
                raise ReactLoopError("No response from LLM")

            message = choice.message
            finish_reason = choice.finish_reason

            if finish_reason == FinishReason.STOP.value:
                content = (message.content or "").strip()
                if not content:
                    raise ReactLoopError("Empty final response from LLM")
                if self.has_pending_injections:
                    # The user spoke while we were answering: keep going
                    working.append(Message.assistant(message.content))
                    await self._persist(conversation_id, Message.assistant(message.content))
                    continue
                return self._finished(message.content, iteration, response, records)

            if finish_reason == FinishReason.TOOL_CALLS.value:
                if not message.tool_calls:
                    raise ReactLoopError("finish_reason is tool_calls but no tool calls were returned")
                await self._run_tools(conversation_id, message, working, context, records)
                continue

            if message.content and message.content.strip():
                return self._finished(message.content, iteration, response, records)
            raise ReactLoopError(f"Unknown finish_reason: {finish_reason}")

        logger.warning(f"[ReAct] Reached max iterations ({config.max_iterations})")
        return ReactLoopResult(
            text=MAX_ITERATIONS_TEMPLATE.format(max_iterations=config.max_iterations),
            iterations=iteration,
            usage=self.last_usage,
            tool_calls=records,
            exhausted=True,
        )

    async def _run_tools(
        self,
        conversation_id: str,
        message: Message,
        working: List[Message],
        context: ContextManager,
        records: List[ToolCallRecord],
    ) -> None:
        assistant = Message.assistant(message.content, message.tool_calls)
        await self._persist(conversation_id, assistant)
        working.append(assistant)

        names = ", ".join(tc.name for tc in message.tool_calls)
        logger.info(f"[ReAct] Executing {len(message.tool_calls)} tool call(s): {names}")
        results = await self.tool_executor.execute_batch(conversation_id, message.tool_calls)

        for result in results:
            if isinstance(result, ToolExecutionSuccess):
                content = context.truncate_tool_result(result.output)
            else:
                content = f"Error: {result.error}"
            working.append(Message.tool(result.tool_call_id, content, name=result.tool_name))
            records.append(ToolCallRecord(
                name=result.tool_name,
                success=not result.is_error,
                tool_call_id=result.tool_call_id,
            ))

    async def _persist(self, conversation_id: str, message: Message) -> None:
        if self.message_store is None:
            return
        tool_calls_json = None
        if message.tool_calls:
            tool_calls_json = json.dumps([tc.to_dict() for tc in message.tool_calls], ensure_ascii=False)
        await self.message_store.insert(MessageRecord(
            conversation_id=conversation_id,
            role=message.role,
            content=message.content or "",
            tool_calls_json=tool_calls_json,
        ))

    def _finished(
        self,
        text: str,
        iteration: int,
        response: LLMResponse,
        records: List[ToolCallRecord],
    ) -> ReactLoopResult:
        logger.info(f"[ReAct] Finished after {iteration} iteration(s)")
        return ReactLoopResult(
            text=text,
            iterations=iteration,
            usage=response.usage,
            tool_calls=records,
        )

    def _degraded(self, error: Exception, iteration: int, records: List[ToolCallRecord]) -> ReactLoopResult:
        logger.error(f"[ReAct] LLM call failed on iteration {iteration}: {error}")
        return ReactLoopResult(
            text=APOLOGY_TEMPLATE.format(error=error),
            iterations=iteration,
            usage=self.last_usage,
            tool_calls=records,
            degraded=True,
        )
