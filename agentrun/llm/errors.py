"""
agentrun LLM errors - Normalized failures raised by every adapter

The ReAct loop branches on ContextOverflowError; everything else is
reported to the user as a graceful apology.
"""

from typing import Optional


class LLMError(Exception):
    """Base class for LLM call failures"""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.status_code = status_code


class ContextOverflowError(LLMError):
    """The request exceeded the model's context window"""
    pass


class AuthenticationError(LLMError):
    """Missing, invalid or unauthorized API key (401/403)"""
    pass


class RateLimitError(LLMError):
    """Provider rate limit hit (429)"""
    pass


class ServiceUnavailableError(LLMError):
    """Provider-side failure (5xx)"""
    pass


class LLMTimeoutError(LLMError):
    """The request did not complete in time"""
    pass


class LLMConnectionError(LLMError):
    """The provider could not be reached"""
    pass
