"""
Execution Manager - Single-flight execution per conversation

At most one coordinator and one task are registered for a conversation
id at any time. Starting a new execution for a busy conversation cancels
the running one first. A finished task removes its registration only if
it is still the registered task, so a superseded task finishing late
cannot remove its successor.

Every run, whether it succeeds, fails or is cancelled, ends with the
coordinator's meta-tools revoked and the registration released.
"""

import asyncio
import functools
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from ..config import RuntimeConfig
from ..llm.base import BaseLLMClient
from ..llm.factory import create_llm_client
from ..llm.models import get_context_window
from ..message import MediaData
from ..protocols import (
    META_ROLE,
    STOPPED_MARKER,
    ConversationStore,
    CredentialVault,
    MessageRecord,
    MessageStore,
)
from ..tools.executor import ToolExecutor
from ..tools.registry import ToolRegistry
from .coordinator import AgentCoordinator, make_memory_flush
from .delegate import DelegateAgentTool, register_delegate_tool
from .history import build_history
from .models import INTERACTIVE, AgentState, ExecutionContext
from .react_config import ReactLoopConfig
from .react_loop import APOLOGY_TEMPLATE

logger = logging.getLogger(__name__)

# How long a new run waits for the run it replaced to finish its cleanup
SUPERSEDE_GRACE_SECONDS = 5.0


@dataclass
class _Execution:
    coordinator: AgentCoordinator
    task: Optional[asyncio.Task] = None
    kind: str = "chat"
    started: bool = False


class ExecutionManager:
    """
    Runs conversations on a shared registry and LLM client.

    Usage:
        manager = ExecutionManager(
            tool_registry=registry,
            message_store=store,
            conversation_store=store,
            config=load_config("config.yaml"),
        )
        task = manager.start_execution("conv-1", "Summarize my inbox")
        answer = await task

        manager.inject_message("conv-1", "Only unread ones")
        await manager.cancel_execution("conv-1")
    """

    def __init__(
        self,
        tool_registry: ToolRegistry,
        message_store: Optional[MessageStore] = None,
        conversation_store: Optional[ConversationStore] = None,
        config: Optional[RuntimeConfig] = None,
        llm_client: Optional[BaseLLMClient] = None,
        vault: Optional[CredentialVault] = None,
    ):
        self.tool_registry = tool_registry
        self.message_store = message_store
        self.conversation_store = conversation_store
        self.config = config or RuntimeConfig()
        self.vault = vault
        self._llm_client = llm_client

        self._executions: Dict[str, _Execution] = {}
        self._lock = threading.Lock()

    @property
    def llm_client(self) -> BaseLLMClient:
        if self._llm_client is None:
            self._llm_client = create_llm_client(self.config.llm, self.vault)
        return self._llm_client

    # ------------------------------------------------------------------
    # Starting work
    # ------------------------------------------------------------------

    def start_execution(
        self,
        conversation_id: str,
        user_message: str,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        media: Optional[List[MediaData]] = None,
        execution_context: ExecutionContext = INTERACTIVE,
        max_iterations: Optional[int] = None,
        temperature: Optional[float] = None,
        tool_filter: Optional[Set[str]] = None,
        persist_user_message: bool = True,
    ) -> asyncio.Task:
        """
        Start a chat turn, replacing any execution running for the conversation.

        Args:
            conversation_id: Conversation to run
            user_message: The new user turn
            system_prompt: Overrides the configured system prompt
            model: Overrides the configured model
            media: Attachments for this turn
            execution_context: Interactive or scheduled
            max_iterations: Overrides the configured iteration cap
            temperature: Overrides the configured temperature
            tool_filter: Restrict visible tools to these names
            persist_user_message: Store the user turn; pass False when the
                host already stored it

        Returns:
            Task resolving to the final answer
        """
        agent = self.config.agent
        model = model or self.config.llm.resolved_model

        def run(execution: _Execution, previous: Optional[asyncio.Task]):
            return self._run_chat(
                execution,
                previous,
                user_message=user_message,
                system_prompt=agent.system_prompt if system_prompt is None else system_prompt,
                model=model,
                media=media,
                execution_context=execution_context,
                max_iterations=max_iterations or agent.max_iterations,
                temperature=agent.temperature if temperature is None else temperature,
                persist_user_message=persist_user_message,
            )

        return self._start(conversation_id, "chat", model, tool_filter, run)

    def start_summarization(self, conversation_id: str, model: Optional[str] = None) -> asyncio.Task:
        """Force-summarize a conversation. The task resolves to a status message."""
        model = model or self.config.llm.resolved_model

        def run(execution: _Execution, previous: Optional[asyncio.Task]):
            return self._run_summarize(execution, previous, model)

        return self._start(conversation_id, "summarize", model, None, run)

    def _start(self, conversation_id, kind, model, tool_filter, run) -> asyncio.Task:
        with self._lock:
            previous = self._executions.get(conversation_id)
            if previous is not None:
                logger.info(
                    f"[ExecutionManager] Superseding {previous.kind} execution for {conversation_id}"
                )
                self._stop(previous)

            execution = _Execution(
                coordinator=self._create_coordinator(conversation_id, model, tool_filter),
                kind=kind,
            )
            previous_task = previous.task if previous is not None else None
            execution.task = asyncio.create_task(
                run(execution, previous_task),
                name=f"agentrun-{kind}-{conversation_id}",
            )
            self._executions[conversation_id] = execution

        execution.task.add_done_callback(functools.partial(self._on_done, conversation_id, execution))
        logger.info(f"[ExecutionManager] Started {kind} execution for {conversation_id}")
        return execution.task

    def _create_coordinator(
        self,
        conversation_id: str,
        model: str,
        tool_filter: Optional[Set[str]],
    ) -> AgentCoordinator:
        agent = self.config.agent
        tools = self.config.tools
        # Per-run copy: meta-tools registered by this coordinator stay private to it
        registry = self.tool_registry.snapshot()
        if self.config.agents:
            register_delegate_tool(registry, DelegateAgentTool(
                self.llm_client,
                self.tool_registry,
                self.config.agents,
                message_store=self.message_store,
                model=model,
                max_iterations=agent.max_iterations,
                temperature=agent.temperature,
            ))
        hook = None
        if agent.memory_flush:
            hook = make_memory_flush(self.llm_client, registry)
        return AgentCoordinator(
            llm_client=self.llm_client,
            tool_registry=registry,
            message_store=self.message_store,
            conversation_id=conversation_id,
            context_window=agent.context_window or get_context_window(model),
            summarization_threshold=agent.summarization_threshold,
            tool_filter=tool_filter,
            on_before_summarize=hook,
            loop_config=ReactLoopConfig(
                max_iterations=agent.max_iterations,
                temperature=agent.temperature,
                max_tokens=self.config.llm.max_tokens,
                max_llm_tool_result_chars=tools.max_llm_tool_result_chars,
            ),
            tool_executor=ToolExecutor(
                registry,
                self.message_store,
                default_timeout_ms=tools.default_timeout_ms,
                max_stored_result_chars=tools.max_stored_result_chars,
            ),
        )

    # ------------------------------------------------------------------
    # Job bodies
    # ------------------------------------------------------------------

    async def _run_chat(
        self,
        execution: _Execution,
        previous: Optional[asyncio.Task],
        user_message: str,
        system_prompt: str,
        model: str,
        media: Optional[List[MediaData]],
        execution_context: ExecutionContext,
        max_iterations: int,
        temperature: float,
        persist_user_message: bool,
    ) -> str:
        execution.started = True
        coordinator = execution.coordinator
        conversation_id = coordinator.conversation_id
        try:
            await self._await_previous(previous)
            await self._seed(coordinator, drop_trailing_user=None if persist_user_message else user_message)
            if persist_user_message:
                await self._persist(MessageRecord(
                    conversation_id=conversation_id,
                    role="user",
                    content=user_message,
                    image_paths=[m.file_name or m.mime_type for m in media] if media else None,
                ))

            try:
                text = await coordinator.execute(
                    user_message,
                    system_prompt=system_prompt,
                    model=model,
                    max_iterations=max_iterations,
                    temperature=temperature,
                    execution_context=execution_context,
                    media=media,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await self._persist(MessageRecord(
                    conversation_id=conversation_id,
                    role="assistant",
                    content=APOLOGY_TEMPLATE.format(error=e),
                ))
                raise

            await self._persist(MessageRecord(
                conversation_id=conversation_id, role="assistant", content=text,
            ))
            return text
        except asyncio.CancelledError:
            await self._persist_stopped(conversation_id)
            raise
        finally:
            coordinator.cleanup()

    async def _run_summarize(
        self,
        execution: _Execution,
        previous: Optional[asyncio.Task],
        model: str,
    ) -> str:
        execution.started = True
        coordinator = execution.coordinator
        try:
            await self._await_previous(previous)
            await self._seed(coordinator)
            return await coordinator.force_summarize(model)
        finally:
            coordinator.cleanup()

    @staticmethod
    async def _await_previous(previous: Optional[asyncio.Task]) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait({previous}, timeout=SUPERSEDE_GRACE_SECONDS)

    async def _seed(self, coordinator: AgentCoordinator, drop_trailing_user: Optional[str] = None) -> None:
        if self.conversation_store is None:
            return
        records = await self.conversation_store.get_messages(coordinator.conversation_id)
        messages, summary = build_history(records)
        if (
            drop_trailing_user is not None
            and messages
            and messages[-1].role == "user"
            and messages[-1].content.startswith(drop_trailing_user)
        ):
            messages = messages[:-1]
        coordinator.seed_history(messages, summary)

    async def _persist(self, record: MessageRecord) -> None:
        if self.message_store is not None:
            await self.message_store.insert(record)

    async def _persist_stopped(self, conversation_id: str) -> None:
        try:
            await self._persist(MessageRecord(
                conversation_id=conversation_id,
                role=META_ROLE,
                content="stopped",
                tool_name=STOPPED_MARKER,
            ))
        except Exception as e:
            logger.error(f"[ExecutionManager] Failed to persist stop marker for {conversation_id}: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    @staticmethod
    def _stop(execution: _Execution) -> None:
        execution.coordinator.cleanup()
        execution.coordinator.cancel()
        if execution.task is not None:
            execution.task.cancel()

    def _on_done(self, conversation_id: str, execution: _Execution, task: asyncio.Task) -> None:
        with self._lock:
            current = self._executions.get(conversation_id)
            if current is execution:
                del self._executions[conversation_id]
        # Covers tasks cancelled before their body ever ran
        execution.coordinator.cleanup()

        if task.cancelled():
            logger.info(f"[ExecutionManager] {execution.kind} execution for {conversation_id} cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"[ExecutionManager] {execution.kind} execution for {conversation_id} failed: {error}"
            )
        else:
            logger.info(f"[ExecutionManager] {execution.kind} execution for {conversation_id} finished")

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    async def cancel_execution(self, conversation_id: str) -> bool:
        """
        Cancel the running execution of a conversation.

        The registration is released by the task itself once it unwinds.

        Returns:
            False when nothing was running
        """
        with self._lock:
            execution = self._executions.get(conversation_id)
            if execution is None:
                return False
            started = execution.started
            self._stop(execution)

        if not started:
            # The body never ran, so it cannot record the interruption itself
            await self._persist_stopped(conversation_id)
        logger.info(f"[ExecutionManager] Cancelled execution for {conversation_id}")
        return True

    async def cancel_all(self) -> int:
        count = 0
        for conversation_id in self.active_conversation_ids():
            if await self.cancel_execution(conversation_id):
                count += 1
        return count

    def inject_message(self, conversation_id: str, text: str) -> bool:
        """
        Feed a user message into a conversation's chat execution.

        A run still waiting for its predecessor or loading history keeps the
        message for its first iteration.
        """
        with self._lock:
            execution = self._executions.get(conversation_id)
        if execution is None or execution.kind != "chat":
            return False
        return execution.coordinator.inject_message(text, queue_if_idle=True)

    def get_state(self, conversation_id: str) -> Optional[AgentState]:
        with self._lock:
            execution = self._executions.get(conversation_id)
        return execution.coordinator.state if execution is not None else None

    def get_coordinator(self, conversation_id: str) -> Optional[AgentCoordinator]:
        with self._lock:
            execution = self._executions.get(conversation_id)
        return execution.coordinator if execution is not None else None

    def is_running(self, conversation_id: str) -> bool:
        with self._lock:
            return conversation_id in self._executions

    def active_conversation_ids(self) -> List[str]:
        with self._lock:
            return list(self._executions)

    def has_active_jobs(self) -> bool:
        with self._lock:
            return bool(self._executions)

    async def shutdown(self) -> None:
        """Cancel everything and wait for tasks to unwind."""
        with self._lock:
            tasks = [e.task for e in self._executions.values() if e.task is not None]
        await self.cancel_all()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("[ExecutionManager] Shut down")

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "active": len(self._executions),
                "conversations": {
                    cid: {"kind": e.kind, "state": e.coordinator.state.status.value}
                    for cid, e in self._executions.items()
                },
            }
