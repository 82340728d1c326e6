"""
Agent Coordinator - One conversation's history, summary and state machine

State machine:
    IDLE --execute--> THINKING --success--> COMPLETED --execute--> THINKING
                      THINKING --failure--> ERROR
    cancel() forces IDLE; reset() also clears history.

The coordinator wraps ReActLoop with:
- summarization when history approaches the context window
- system prompt shaping for scheduled runs and active summaries
- per-instance meta-tools registered on construction, revoked by cleanup()
"""

import asyncio
import logging
import uuid
from typing import Awaitable, Callable, List, Optional, Set

from ..llm.base import BaseLLMClient
from ..message import MediaData, Message
from ..protocols import META_ROLE, SUMMARY_MARKER, MessageRecord, MessageStore
from ..tools.builtin import (
    ACTIVATE_TOOLS_PLUGIN,
    ACTIVATE_TOOL_NAME,
    DELEGATE_TOOL_NAME,
    SUMMARIZATION_PLUGIN,
    SUMMARIZE_TOOL_NAME,
    ActivateToolsTool,
    SummarizeConversationTool,
)
from ..tools.executor import ToolExecutor
from ..tools.models import CORE_CATEGORY, ToolDefinition
from ..tools.registry import ToolRegistry
from .context_manager import ContextManager, estimate_tokens
from .history import format_transcript
from .models import INTERACTIVE, AgentState, AgentStatus, ExecutionContext
from .prompts import (
    MEMORY_FLUSH_PROMPT,
    NOT_ENOUGH_HISTORY,
    SUMMARIZE_FAILED,
    SUMMARIZE_PROMPT,
    SUMMARIZE_SUCCESS,
    SUMMARIZER_SYSTEM_PROMPT,
    build_system_prompt,
)
from .react_config import ReactLoopConfig
from .react_loop import ReActLoop

logger = logging.getLogger(__name__)

BeforeSummarizeHook = Callable[[str, List[Message]], Awaitable[None]]
StateListener = Callable[[AgentState], None]

SUMMARY_TEMPERATURE = 0.3


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class AgentCoordinator:
    """
    Owns one conversation and drives ReActLoop for it.

    Usage:
        coordinator = AgentCoordinator(
            llm_client=client,
            tool_registry=registry.snapshot(),
            message_store=store,
            conversation_id="conv-1",
        )
        try:
            answer = await coordinator.execute("What is 2+2?", system_prompt="You are helpful")
        finally:
            coordinator.cleanup()
    """

    def __init__(
        self,
        llm_client: BaseLLMClient,
        tool_registry: ToolRegistry,
        message_store: Optional[MessageStore] = None,
        conversation_id: Optional[str] = None,
        context_window: int = 200_000,
        summarization_threshold: float = 0.8,
        tool_filter: Optional[Set[str]] = None,
        on_before_summarize: Optional[BeforeSummarizeHook] = None,
        loop_config: Optional[ReactLoopConfig] = None,
        tool_executor: Optional[ToolExecutor] = None,
    ):
        self.id = uuid.uuid4().hex[:12]
        self.llm_client = llm_client
        self.tool_registry = tool_registry
        self.message_store = message_store
        self.conversation_id = conversation_id or f"conv-{self.id}"
        self.context_window = context_window
        self.summarization_threshold = summarization_threshold
        self.tool_filter = tool_filter
        self.on_before_summarize = on_before_summarize

        self._history: List[Message] = []
        self._summary: Optional[str] = None
        self._last_prompt_tokens = 0
        self._active_categories: Set[str] = set()
        self._last_model: Optional[str] = None

        self._state = AgentState.idle()
        self._listeners: List[StateListener] = []
        self._current_task: Optional[asyncio.Task] = None

        executor = tool_executor or ToolExecutor(tool_registry, message_store)
        self._loop = ReActLoop(
            llm_client,
            executor,
            message_store=message_store,
            config=loop_config,
        )

        self._meta_tool_names: Set[str] = set()
        self._plugin_ids: List[str] = []
        self._register_meta_tools()

    # ------------------------------------------------------------------
    # Meta-tools
    # ------------------------------------------------------------------

    def _register_meta_tools(self) -> None:
        summarize = SummarizeConversationTool(self.force_summarize)
        plugin_id = f"{SUMMARIZATION_PLUGIN}:{self.id}"
        self.tool_registry.register(plugin_id, CORE_CATEGORY, [(summarize.definition, summarize)])
        self._plugin_ids.append(plugin_id)
        self._meta_tool_names.add(summarize.definition.name)

        if self.tool_registry.on_demand_categories():
            activate = ActivateToolsTool(self.tool_registry, self._active_categories)
            plugin_id = f"{ACTIVATE_TOOLS_PLUGIN}:{self.id}"
            self.tool_registry.register(plugin_id, CORE_CATEGORY, [(activate.definition, activate)])
            self._plugin_ids.append(plugin_id)
            self._meta_tool_names.add(activate.definition.name)

    def cleanup(self) -> None:
        """Revoke this coordinator's meta-tools. Safe to call more than once."""
        for plugin_id in self._plugin_ids:
            self.tool_registry.unregister(plugin_id)
        self._plugin_ids = []

    def tool_definitions(self) -> List[ToolDefinition]:
        """Tools the model may call right now."""
        definitions = self.tool_registry.definitions(self._active_categories)
        if self.tool_filter is None:
            return definitions
        return [
            d for d in definitions
            if d.name in self.tool_filter or d.name in self._meta_tool_names
        ]

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> AgentState:
        return self._state

    def add_state_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def remove_state_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _set_state(self, state: AgentState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error(f"[Coordinator] State listener failed: {e}", exc_info=True)

    @property
    def conversation_history(self) -> List[Message]:
        return list(self._history)

    @property
    def conversation_size(self) -> int:
        return len(self._history)

    @property
    def summary(self) -> Optional[str]:
        return self._summary

    @property
    def active_categories(self) -> Set[str]:
        return set(self._active_categories)

    @property
    def last_model(self) -> Optional[str]:
        return self._last_model

    @property
    def last_prompt_tokens(self) -> int:
        return self._last_prompt_tokens

    def seed_history(self, messages: List[Message], summary: Optional[str] = None) -> None:
        """Load replayed history, e.g. after a cold start."""
        self._history = [m.without_media() for m in messages]
        self._summary = summary
        self._last_prompt_tokens = 0

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        user_message: str,
        system_prompt: str = "",
        model: Optional[str] = None,
        max_iterations: Optional[int] = None,
        temperature: Optional[float] = None,
        execution_context: ExecutionContext = INTERACTIVE,
        media: Optional[List[MediaData]] = None,
    ) -> str:
        """
        Run one user turn.

        Args:
            user_message: The user's text
            system_prompt: Base system prompt
            model: Model override for the LLM client
            max_iterations: Iteration cap for the loop
            temperature: Sampling temperature
            execution_context: Interactive or scheduled
            media: Attachments sent with this turn only

        Returns:
            Final answer (or apology / continuation hint from the loop)

        Raises:
            ReactLoopError: The model produced an unusable turn
            asyncio.CancelledError: The execution was cancelled
        """
        current = _current_task()
        previous = self._current_task
        if previous is not None and previous is not current and not previous.done():
            logger.info(f"[Coordinator] Cancelling previous execution for {self.conversation_id}")
            previous.cancel()
        self._current_task = current
        self._last_model = model
        self._set_state(AgentState.thinking())

        try:
            if self._needs_summarization():
                await self.summarize_history()

            user = Message.user(user_message, media=media)
            system = build_system_prompt(
                system_prompt,
                scheduled=execution_context.is_scheduled,
                summary=self._summary,
            )
            messages = [Message.system(system), *self._history, user]
            self._history.append(user.without_media())

            result = await self._loop.run(
                messages,
                tools_provider=self.tool_definitions,
                conversation_id=self.conversation_id,
                model=model,
                temperature=temperature,
                max_iterations=max_iterations,
                context_window_tokens=self.context_window,
            )

            if result.usage:
                self._last_prompt_tokens = result.usage.prompt_tokens + result.usage.completion_tokens
            self._history.append(Message.assistant(result.text))
            self._set_state(AgentState.completed(result.text))
            return result.text
        except asyncio.CancelledError:
            logger.info(f"[Coordinator] Execution cancelled for {self.conversation_id}")
            # A superseding execute() already owns the state
            if self._current_task is current:
                self._set_state(AgentState.idle())
            raise
        except Exception as e:
            logger.error(f"[Coordinator] Execution failed for {self.conversation_id}: {e}", exc_info=True)
            self._set_state(AgentState.error(str(e), e))
            raise
        finally:
            if self._current_task is current:
                self._current_task = None

    def inject_message(self, text: str, queue_if_idle: bool = False) -> bool:
        """
        Feed a user message into the running loop.

        With ``queue_if_idle`` an IDLE coordinator keeps the message for the
        first iteration of its next execution. Returns False when the
        message was refused.
        """
        pending = queue_if_idle and self._state.status == AgentStatus.IDLE
        if not (self._state.is_running or pending):
            return False
        self._loop.inject_message(text)
        return True

    def cancel(self) -> None:
        """Abort any in-flight execution and return to IDLE."""
        task = self._current_task
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()
        self._current_task = None
        self._set_state(AgentState.idle())

    def reset(self) -> None:
        """Cancel and forget the conversation."""
        self.cancel()
        self._history.clear()
        self._loop.clear_injections()
        self._summary = None
        self._last_prompt_tokens = 0

    # ------------------------------------------------------------------
    # Summarization
    # ------------------------------------------------------------------

    def _needs_summarization(self) -> bool:
        estimate = self._last_prompt_tokens or estimate_tokens(self._history)
        threshold = self.summarization_threshold * self.context_window
        return estimate > threshold and len(self._history) > 2

    async def summarize_history(self) -> bool:
        """Compact older history, keeping a recent suffix. Best-effort."""
        await self._flush_memory()
        split = ContextManager.summary_split_index(self._history, self.context_window)
        if split <= 0:
            logger.debug("[Coordinator] Nothing old enough to summarize")
            return False
        return await self._summarize_prefix(split, self._last_model)

    async def force_summarize(self, model: Optional[str] = None) -> str:
        """Summarize everything except the last two messages.

        Uses ``model`` when given, otherwise the model of the last execution.
        """
        if len(self._history) <= 2:
            return NOT_ENOUGH_HISTORY
        await self._flush_memory()
        ok = await self._summarize_prefix(len(self._history) - 2, model or self._last_model)
        return SUMMARIZE_SUCCESS if ok else SUMMARIZE_FAILED

    async def _flush_memory(self) -> None:
        if self.on_before_summarize is None:
            return
        try:
            await self.on_before_summarize(self.conversation_id, list(self._history))
        except Exception as e:
            logger.warning(f"[Coordinator] Memory flush failed: {e}", exc_info=True)

    async def _summarize_prefix(self, split: int, model: Optional[str]) -> bool:
        older = self._history[:split]
        transcript = format_transcript(older)
        if self._summary:
            transcript = f"Earlier summary:\n{self._summary}\n\n{transcript}"

        try:
            response = await self.llm_client.complete(
                [
                    Message.system(SUMMARIZER_SYSTEM_PROMPT),
                    Message.user(SUMMARIZE_PROMPT.format(transcript=transcript)),
                ],
                model=model,
                temperature=SUMMARY_TEMPERATURE,
            )
        except Exception as e:
            logger.warning(f"[Coordinator] Summarization call failed: {e}")
            return False

        text = (response.content or "").strip()
        if not text:
            logger.warning("[Coordinator] Summarization returned empty content")
            return False

        # The loop may have appended while we awaited; drop only what was summarized
        del self._history[:split]
        self._summary = text
        self._last_prompt_tokens = 0
        logger.info(
            f"[Coordinator] Summarized {split} messages for {self.conversation_id}, "
            f"{len(self._history)} kept"
        )

        if self.message_store is not None:
            try:
                await self.message_store.insert(MessageRecord(
                    conversation_id=self.conversation_id,
                    role=META_ROLE,
                    content=text,
                    tool_name=SUMMARY_MARKER,
                ))
            except Exception as e:
                logger.error(f"[Coordinator] Failed to persist summary: {e}", exc_info=True)
        return True


def make_memory_flush(
    llm_client: BaseLLMClient,
    tool_registry: ToolRegistry,
    max_iterations: int = 20,
    temperature: float = 0.3,
) -> BeforeSummarizeHook:
    """
    Build an on_before_summarize hook that lets the model save durable facts.

    The hook runs a short ReAct pass over the history with the registry's
    core tools (memory tools are expected to be among them). Nothing the
    pass says or calls is persisted: it runs inside the outer turn, between
    a stored tool call and its result.
    """

    async def flush(conversation_id: str, messages: List[Message]) -> None:
        transcript = format_transcript(messages)
        if not transcript:
            return
        # Meta-tools would recurse into summarization or spawn sub-agents
        registry = tool_registry.isolated_copy(
            lambda tool: tool.name not in (SUMMARIZE_TOOL_NAME, ACTIVATE_TOOL_NAME, DELEGATE_TOOL_NAME)
        )
        loop = ReActLoop(
            llm_client,
            ToolExecutor(registry),
            config=ReactLoopConfig(max_iterations=max_iterations, temperature=temperature),
        )
        result = await loop.run(
            [
                Message.system("You maintain the user's long-term memory."),
                Message.user(MEMORY_FLUSH_PROMPT.format(transcript=transcript)),
            ],
            tools_provider=lambda: registry.definitions(set()),
            conversation_id=conversation_id,
        )
        logger.info(
            f"[Coordinator] Memory flush for {conversation_id} finished "
            f"after {result.iterations} iteration(s), {len(result.tool_calls)} tool call(s)"
        )

    return flush
