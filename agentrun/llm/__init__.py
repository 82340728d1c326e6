"""
agentrun LLM clients - One canonical contract, three provider adapters

Usage:
    from agentrun.llm import OpenAIClient, LLMConfig

    client = OpenAIClient(config=LLMConfig(model="gpt-4o-mini", api_key="sk-xxx"))
    response = await client.complete([Message.user("Hello!")])
    print(response.content, response.finish_reason)

Build a client from settings with ``agentrun.llm.factory.create_llm_client``.
"""

from .base import BaseLLMClient, Choice, FinishReason, LLMConfig, LLMResponse, Tool, Usage
from .errors import (
    AuthenticationError,
    ContextOverflowError,
    LLMConnectionError,
    LLMError,
    LLMTimeoutError,
    RateLimitError,
    ServiceUnavailableError,
)
from .models import LLMProvider, get_context_window
from .openai_client import OpenAIClient
from .anthropic_client import AnthropicClient
from .gemini_client import GeminiClient

__all__ = [
    "BaseLLMClient",
    "Choice",
    "FinishReason",
    "LLMConfig",
    "LLMResponse",
    "Tool",
    "Usage",
    "AuthenticationError",
    "ContextOverflowError",
    "LLMConnectionError",
    "LLMError",
    "LLMTimeoutError",
    "RateLimitError",
    "ServiceUnavailableError",
    "LLMProvider",
    "get_context_window",
    "OpenAIClient",
    "AnthropicClient",
    "GeminiClient",
]
