"""
LLM client factory - Build the adapter for a configured provider
"""

import logging
import os
from typing import Optional

from ..config import LLMSettings
from ..protocols import CredentialVault
from .anthropic_client import AnthropicClient
from .base import BaseLLMClient, LLMConfig
from .gemini_client import GeminiClient
from .models import LLMProvider
from .openai_client import OpenAIClient

logger = logging.getLogger(__name__)

_CLIENTS = {
    LLMProvider.OPENAI: OpenAIClient,
    LLMProvider.ANTHROPIC: AnthropicClient,
    LLMProvider.GEMINI: GeminiClient,
}


def resolve_api_key(
    provider: LLMProvider,
    explicit: Optional[str] = None,
    vault: Optional[CredentialVault] = None,
) -> Optional[str]:
    """Explicit key first, then the vault, then the provider's env var."""
    if explicit:
        return explicit
    if vault is not None:
        key = vault.get_secret(provider.api_key_name)
        if key:
            return key
    return os.environ.get(provider.env_var)


def create_llm_client(
    settings: LLMSettings,
    vault: Optional[CredentialVault] = None,
) -> BaseLLMClient:
    """
    Create the client for settings.provider.

    Raises:
        ValueError: Unknown provider or no API key found
    """
    provider = LLMProvider(settings.provider)
    api_key = resolve_api_key(provider, settings.api_key, vault)
    if not api_key:
        raise ValueError(
            f"No API key for provider '{provider.value}'. "
            f"Store it under '{provider.api_key_name}' or set {provider.env_var}."
        )

    config = LLMConfig(
        api_key=api_key,
        model=settings.resolved_model,
        base_url=settings.base_url,
        timeout=settings.timeout,
        max_retries=settings.max_retries,
        max_tokens=settings.max_tokens,
    )
    logger.info(f"Creating {provider.value} client for model {config.model}")
    return _CLIENTS[provider](config=config)
