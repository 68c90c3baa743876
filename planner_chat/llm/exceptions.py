"""
Error types for LLM operations.

This module provides error handling with rich context:
- Provider-specific error information
- Retry guidance for rate limits
- Detection of conversations the provider can no longer accept
"""

from __future__ import annotations


class LLMError(Exception):
    """Base LLM error with rich context."""

    def __init__(
        self,
        message: str,
        provider: str,
        model: str,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.model = model
        self.status_code = status_code
        self.response_data = response_data or {}


class RateLimitError(LLMError):
    """Rate limit error with retry information."""

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class SessionCorruptedError(LLMError):
    """The provider rejected the conversation history as malformed.

    Retrying with the same history will keep failing; the conversation has
    to be reset.
    """
    pass


class ProviderError(LLMError):
    """Provider-specific transport, configuration or payload errors."""
    pass
