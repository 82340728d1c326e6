"""
agentrun model catalog - Providers, default models and context windows
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

DEFAULT_CONTEXT_WINDOW = 200_000


class LLMProvider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"

    @property
    def default_model(self) -> str:
        return _DEFAULT_MODELS[self]

    @property
    def api_key_name(self) -> str:
        """Credential vault key holding this provider's API key"""
        return f"{self.value}_api_key"

    @property
    def env_var(self) -> str:
        return _PROVIDER_ENV_VARS[self]


@dataclass(frozen=True)
class ModelInfo:
    id: str
    provider: LLMProvider
    context_window: int


_DEFAULT_MODELS: Dict[LLMProvider, str] = {
    LLMProvider.OPENAI: "gpt-4o-mini",
    LLMProvider.ANTHROPIC: "claude-sonnet-4-5",
    LLMProvider.GEMINI: "gemini-2.5-flash",
}

_PROVIDER_ENV_VARS: Dict[LLMProvider, str] = {
    LLMProvider.OPENAI: "OPENAI_API_KEY",
    LLMProvider.ANTHROPIC: "ANTHROPIC_API_KEY",
    LLMProvider.GEMINI: "GOOGLE_API_KEY",
}

KNOWN_MODELS: List[ModelInfo] = [
    ModelInfo("gpt-4.1", LLMProvider.OPENAI, 1_047_576),
    ModelInfo("gpt-4.1-mini", LLMProvider.OPENAI, 1_047_576),
    ModelInfo("gpt-4.1-nano", LLMProvider.OPENAI, 1_047_576),
    ModelInfo("gpt-4o", LLMProvider.OPENAI, 128_000),
    ModelInfo("gpt-4o-mini", LLMProvider.OPENAI, 128_000),
    ModelInfo("claude-sonnet-4-5", LLMProvider.ANTHROPIC, 200_000),
    ModelInfo("claude-opus-4-6", LLMProvider.ANTHROPIC, 200_000),
    ModelInfo("claude-haiku-4-5", LLMProvider.ANTHROPIC, 200_000),
    ModelInfo("gemini-2.5-pro", LLMProvider.GEMINI, 1_048_576),
    ModelInfo("gemini-2.5-flash", LLMProvider.GEMINI, 1_048_576),
    ModelInfo("gemini-3-pro-preview", LLMProvider.GEMINI, 1_048_576),
    ModelInfo("gemini-3-flash-preview", LLMProvider.GEMINI, 1_048_576),
]

_BY_ID: Dict[str, ModelInfo] = {m.id: m for m in KNOWN_MODELS}


def find_model(model_id: str) -> Optional[ModelInfo]:
    return _BY_ID.get(model_id)


def get_context_window(model_id: Optional[str]) -> int:
    """Context window of a model, DEFAULT_CONTEXT_WINDOW when unknown."""
    info = _BY_ID.get(model_id or "")
    return info.context_window if info else DEFAULT_CONTEXT_WINDOW


def models_for(provider: LLMProvider) -> List[ModelInfo]:
    return [m for m in KNOWN_MODELS if m.provider == provider]
