"""
agentrun Orchestrator

- ReActLoop: reason/act/observe iterations between a model and tools
- AgentCoordinator: one conversation's history, summary and state machine
- DelegateAgentTool: hands a task to a named sub-agent profile
- ExecutionManager: single-flight execution per conversation id

Quick Start:
    from agentrun.orchestrator import ExecutionManager

    manager = ExecutionManager(tool_registry=registry, message_store=store,
                               conversation_store=store, config=config)
    answer = await manager.start_execution("conv-1", "What's on my calendar?")
"""

from .models import INTERACTIVE, AgentState, AgentStatus, ExecutionContext
from .react_config import ReactLoopConfig, ReactLoopResult, ToolCallRecord
from .context_manager import ContextManager, estimate_tokens
from .transcript_repair import repair_transcript
from .react_loop import ReActLoop, ReactLoopError
from .history import build_history
from .coordinator import AgentCoordinator, make_memory_flush
from .delegate import DelegateAgentTool, register_delegate_tool
from .manager import ExecutionManager

__all__ = [
    "INTERACTIVE",
    "AgentState",
    "AgentStatus",
    "ExecutionContext",
    "ReactLoopConfig",
    "ReactLoopResult",
    "ToolCallRecord",
    "ContextManager",
    "estimate_tokens",
    "repair_transcript",
    "ReActLoop",
    "ReactLoopError",
    "build_history",
    "AgentCoordinator",
    "make_memory_flush",
    "DelegateAgentTool",
    "register_delegate_tool",
    "ExecutionManager",
]
