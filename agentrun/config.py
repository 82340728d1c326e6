"""
agentrun configuration - Dataclass settings and YAML loading

Example config.yaml::

    llm:
      provider: anthropic
      model: claude-sonnet-4-5
      api_key: ${ANTHROPIC_API_KEY}
    agent:
      system_prompt: "You are a helpful assistant."
      max_iterations: 50
    tools:
      default_timeout_ms: 60000
    agents:
      - name: researcher
        description: Looks things up on the web
        system_prompt: "You research topics thoroughly."
        allowed_tools: [web_search, web_fetch]
"""

import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .llm.models import LLMProvider


@dataclass
class LLMSettings:
    """
    Which backend to talk to.

    Attributes:
        provider: openai, anthropic or gemini
        model: Model name, provider default when empty
        api_key: Explicit key; otherwise resolved from vault or environment
        base_url: Optional API base URL (OpenAI-compatible servers)
        timeout: Request timeout in seconds
        max_retries: SDK-level retries
        max_tokens: Response token cap, provider default when None
    """
    provider: str = LLMProvider.OPENAI.value
    model: str = ""
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout: int = 120
    max_retries: int = 2
    max_tokens: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LLMSettings":
        """Create from dictionary"""
        provider = data.get("provider", LLMProvider.OPENAI.value)
        LLMProvider(provider)  # validate
        return cls(
            provider=provider,
            model=data.get("model") or "",
            api_key=data.get("api_key"),
            base_url=data.get("base_url"),
            timeout=data.get("timeout", 120),
            max_retries=data.get("max_retries", 2),
            max_tokens=data.get("max_tokens"),
        )

    @property
    def resolved_model(self) -> str:
        return self.model or LLMProvider(self.provider).default_model


@dataclass
class AgentSettings:
    """Defaults applied to each execution."""

    system_prompt: str = "You are a helpful assistant."
    max_iterations: int = 200
    temperature: float = 0.2
    context_window: Optional[int] = None
    """Token budget; looked up from the model catalog when None."""
    summarization_threshold: float = 0.8
    """Summarize history before a turn once usage exceeds this fraction."""
    memory_flush: bool = False
    """Let the model save durable facts with its tools before summarizing."""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentSettings":
        """Create from dictionary"""
        return cls(
            system_prompt=data.get("system_prompt", "You are a helpful assistant."),
            max_iterations=data.get("max_iterations", 200),
            temperature=data.get("temperature", 0.2),
            context_window=data.get("context_window"),
            summarization_threshold=data.get("summarization_threshold", 0.8),
            memory_flush=data.get("memory_flush", False),
        )


@dataclass
class ToolSettings:
    default_timeout_ms: int = 120_000
    """Per-call deadline for tools that declare none."""
    max_stored_result_chars: int = 16_384
    """Cap on tool output kept in the message store."""
    max_llm_tool_result_chars: int = 32_768
    """Cap on tool output sent back to the model."""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolSettings":
        """Create from dictionary"""
        return cls(
            default_timeout_ms=data.get("default_timeout_ms", 120_000),
            max_stored_result_chars=data.get("max_stored_result_chars", 16_384),
            max_llm_tool_result_chars=data.get("max_llm_tool_result_chars", 32_768),
        )


@dataclass
class AgentProfile:
    """
    A named sub-agent that tasks can be delegated to.

    Attributes:
        name: Identifier the model passes to delegate_to_agent
        description: Shown to the model in the delegation menu
        system_prompt: System prompt of the sub-agent
        model: Model override, the delegating run's model when None
        allowed_tools: Tool names the sub-agent may use, all when None
    """
    name: str
    description: str = ""
    system_prompt: str = ""
    model: Optional[str] = None
    allowed_tools: Optional[List[str]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentProfile":
        """Create from dictionary"""
        if not data.get("name"):
            raise ValueError("Agent profile requires a name")
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            system_prompt=data.get("system_prompt", ""),
            model=data.get("model"),
            allowed_tools=data.get("allowed_tools"),
        )


@dataclass
class RuntimeConfig:
    llm: LLMSettings = field(default_factory=LLMSettings)
    agent: AgentSettings = field(default_factory=AgentSettings)
    tools: ToolSettings = field(default_factory=ToolSettings)
    agents: List[AgentProfile] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RuntimeConfig":
        """Create from dictionary"""
        data = data or {}
        return cls(
            llm=LLMSettings.from_dict(data.get("llm") or {}),
            agent=AgentSettings.from_dict(data.get("agent") or {}),
            tools=ToolSettings.from_dict(data.get("tools") or {}),
            agents=[AgentProfile.from_dict(a) for a in data.get("agents") or []],
        )


def _substitute_env(raw: str, source: str) -> str:
    def _replace_env(match):
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            raise ValueError(
                f"Environment variable '{var_name}' not set "
                f"(referenced in config file '{source}')"
            )
        return value

    return re.sub(r"\$\{(\w+)\}", _replace_env, raw)


def load_config(path: str) -> RuntimeConfig:
    """Read a YAML config file with ${VAR} environment variable substitution."""
    try:
        import yaml
    except ImportError:
        raise ImportError(
            "pyyaml is required for config file loading. "
            "Install with: pip install pyyaml"
        )

    with open(path, "r", encoding="utf-8") as f:
        raw = f.read()

    return RuntimeConfig.from_dict(yaml.safe_load(_substitute_env(raw, path)))
