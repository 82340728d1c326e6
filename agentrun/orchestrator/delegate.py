"""
Agent delegation - Hand a self-contained task to a named sub-agent

The sub-agent is a fresh AgentCoordinator that:
- sees no parent history, only the task text
- runs on an isolated copy of the registry without the delegation tool
  and without any coordinator meta-tools
- uses a throwaway ``delegate_<name>_<ms>`` conversation, deleted afterwards
- is capped at MAX_DELEGATE_ITERATIONS iterations
"""

import logging
import time
from typing import Any, Dict, List, Optional

from ..config import AgentProfile
from ..llm.base import BaseLLMClient
from ..llm.models import get_context_window
from ..protocols import MessageStore
from ..tools.builtin import ACTIVATE_TOOL_NAME, DELEGATE_TOOL_NAME, SUMMARIZE_TOOL_NAME
from ..tools.models import CORE_CATEGORY, ToolDefinition, ToolFailure, ToolResult, ToolSuccess
from ..tools.registry import ToolRegistry
from .coordinator import AgentCoordinator

logger = logging.getLogger(__name__)

DELEGATE_PLUGIN = "delegate_agent"

DELEGATION_TIMEOUT_MS = 600_000
MAX_DELEGATE_ITERATIONS = 50

# The profile that delegates; never offered as a target
MAIN_PROFILE = "main"

_HIDDEN_FROM_SUB_AGENT = frozenset({DELEGATE_TOOL_NAME, SUMMARIZE_TOOL_NAME, ACTIVATE_TOOL_NAME})


class DelegateAgentTool:
    """
    Tool handle running a task on a sub-agent profile.

    Usage:
        delegate = DelegateAgentTool(client, registry, profiles, message_store=store)
        register_delegate_tool(run_registry, delegate)
    """

    def __init__(
        self,
        llm_client: BaseLLMClient,
        tool_registry: ToolRegistry,
        profiles: List[AgentProfile],
        message_store: Optional[MessageStore] = None,
        model: Optional[str] = None,
        max_iterations: int = MAX_DELEGATE_ITERATIONS,
        temperature: Optional[float] = None,
    ):
        self.llm_client = llm_client
        self.tool_registry = tool_registry
        self.profiles = {p.name: p for p in profiles if p.name != MAIN_PROFILE}
        self.message_store = message_store
        self.model = model
        self.max_iterations = min(max_iterations, MAX_DELEGATE_ITERATIONS)
        self.temperature = temperature

    @property
    def definition(self) -> ToolDefinition:
        names = sorted(self.profiles)
        if names:
            menu = "\n".join(
                f"- {name}: {self.profiles[name].description or 'no description'}" for name in names
            )
        else:
            menu = "(no agent profiles available for delegation)"

        agent_schema: Dict[str, Any] = {
            "type": "string",
            "description": "Name of the agent profile to delegate to",
        }
        if names:
            agent_schema["enum"] = names

        return ToolDefinition(
            name=DELEGATE_TOOL_NAME,
            description=(
                "Delegate a task to a specialized agent profile.\n\n"
                "The sub-agent runs independently with its own system prompt and tools. "
                "It does NOT see the current conversation history, so describe the task "
                "fully in the 'task' parameter.\n\n"
                f"Available agents for delegation:\n{menu}\n\n"
                "Only delegate once per task and use the result directly in your answer."
            ),
            parameters={
                "type": "object",
                "properties": {
                    "agent": agent_schema,
                    "task": {
                        "type": "string",
                        "description": (
                            "Complete description of the task. Be specific, the sub-agent "
                            "has no access to the current conversation."
                        ),
                    },
                },
                "required": ["agent", "task"],
            },
            category=CORE_CATEGORY,
            timeout_ms=DELEGATION_TIMEOUT_MS,
        )

    def child_registry(self, profile: AgentProfile) -> ToolRegistry:
        """Registry the sub-agent runs on."""
        allowed = set(profile.allowed_tools) if profile.allowed_tools is not None else None
        return self.tool_registry.isolated_copy(
            lambda tool: tool.name not in _HIDDEN_FROM_SUB_AGENT
            and (allowed is None or tool.name in allowed)
        )

    async def invoke(self, name: str, arguments: Dict[str, Any]) -> ToolResult:
        agent_name = arguments.get("agent")
        if not agent_name:
            return ToolFailure(error="Missing required field: agent")
        task = arguments.get("task")
        if not task:
            return ToolFailure(error="Missing required field: task")

        profile = self.profiles.get(agent_name)
        if profile is None:
            return ToolFailure(error=f"Agent profile '{agent_name}' not found")

        logger.info(f"[Delegate] Delegating to '{agent_name}': {task[:100]}")
        model = profile.model or self.model
        coordinator = AgentCoordinator(
            llm_client=self.llm_client,
            tool_registry=self.child_registry(profile),
            message_store=self.message_store,
            conversation_id=f"delegate_{agent_name}_{int(time.time() * 1000)}",
            context_window=get_context_window(model or self.llm_client.config.model),
            tool_filter=set(profile.allowed_tools) if profile.allowed_tools is not None else None,
        )
        try:
            text = await coordinator.execute(
                task,
                system_prompt=profile.system_prompt,
                model=model,
                max_iterations=self.max_iterations,
                temperature=self.temperature,
            )
        except Exception as e:
            logger.error(f"[Delegate] Agent '{agent_name}' failed: {e}", exc_info=True)
            return ToolFailure(error=f"Agent '{agent_name}' failed: {e}", cause=e)
        finally:
            coordinator.cleanup()
            await self._discard(coordinator.conversation_id)

        logger.info(f"[Delegate] Agent '{agent_name}' completed")
        return ToolSuccess(output=text)

    async def _discard(self, conversation_id: str) -> None:
        delete = getattr(self.message_store, "delete_conversation", None)
        if delete is None:
            return
        try:
            await delete(conversation_id)
        except Exception as e:
            logger.warning(f"[Delegate] Failed to delete {conversation_id}: {e}")


def register_delegate_tool(registry: ToolRegistry, delegate: DelegateAgentTool) -> None:
    """Expose the delegation tool on a registry, replacing any earlier one."""
    registry.register(DELEGATE_PLUGIN, CORE_CATEGORY, [(delegate.definition, delegate)])
