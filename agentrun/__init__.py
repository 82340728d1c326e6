"""
agentrun - Agent orchestration runtime

A host application hands a user message to the runtime; the runtime drives
a language model through a reason/act/observe loop, executes the tools the
model requests, manages the conversation context window and returns one
final answer, while keeping at most one execution alive per conversation.

Key Features:
- ReActLoop with tool execution, mid-run message injection and
  context-overflow recovery
- ToolRegistry with category-gated (on-demand) tools
- AgentCoordinator with history summarization
- Delegation of self-contained tasks to sub-agent profiles
- OpenAI, Anthropic and Gemini adapters behind one canonical contract
- ExecutionManager: single-flight execution per conversation

Quick Start:
    from agentrun import ExecutionManager, RuntimeConfig, ToolRegistry
    from agentrun.stores import InMemoryMessageStore

    store = InMemoryMessageStore()
    manager = ExecutionManager(
        tool_registry=ToolRegistry(),
        message_store=store,
        conversation_store=store,
        config=RuntimeConfig.from_dict({"llm": {"provider": "openai", "api_key": "sk-xxx"}}),
    )
    answer = await manager.start_execution("conv-1", "Hello!")
"""

from .message import MediaData, Message, Role, ToolCall
from .protocols import (
    ConversationStore,
    CredentialVault,
    MessageRecord,
    MessageStore,
    ToolHandle,
)
from .tools import (
    ToolDefinition,
    ToolExecutor,
    ToolFailure,
    ToolRegistry,
    ToolSuccess,
    tool,
)
from .llm import (
    AnthropicClient,
    BaseLLMClient,
    ContextOverflowError,
    GeminiClient,
    LLMConfig,
    LLMError,
    LLMResponse,
    OpenAIClient,
)
from .config import (
    AgentProfile,
    AgentSettings,
    LLMSettings,
    RuntimeConfig,
    ToolSettings,
    load_config,
)
from .orchestrator import (
    AgentCoordinator,
    AgentState,
    AgentStatus,
    DelegateAgentTool,
    ExecutionContext,
    ExecutionManager,
    ReActLoop,
    ReactLoopConfig,
    ReactLoopError,
)

__version__ = "0.1.0"

__all__ = [
    # Messages
    "MediaData",
    "Message",
    "Role",
    "ToolCall",
    # Protocols
    "ConversationStore",
    "CredentialVault",
    "MessageRecord",
    "MessageStore",
    "ToolHandle",
    # Tools
    "ToolDefinition",
    "ToolExecutor",
    "ToolFailure",
    "ToolRegistry",
    "ToolSuccess",
    "tool",
    # LLM
    "AnthropicClient",
    "BaseLLMClient",
    "ContextOverflowError",
    "GeminiClient",
    "LLMConfig",
    "LLMError",
    "LLMResponse",
    "OpenAIClient",
    # Config
    "AgentProfile",
    "AgentSettings",
    "LLMSettings",
    "RuntimeConfig",
    "ToolSettings",
    "load_config",
    # Orchestration
    "AgentCoordinator",
    "AgentState",
    "AgentStatus",
    "DelegateAgentTool",
    "ExecutionContext",
    "ExecutionManager",
    "ReActLoop",
    "ReactLoopConfig",
    "ReactLoopError",
]
