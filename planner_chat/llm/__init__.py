"""
LLM integration for the planner chat backend.

This package provides:
- Type-safe dataclass models for replies and tool calls
- An OpenAI-compatible HTTP client
- Error types, including detection of corrupted conversations
"""

from __future__ import annotations

from .client import LLMClient
from .exceptions import LLMError, ProviderError, RateLimitError, SessionCorruptedError
from .models import (
    LLMReply,
    TokenUsage,
    ToolCall,
    ToolFunction,
)

__all__ = [
    # Client
    "LLMClient",
    # Exceptions
    "LLMError",
    # Models
    "LLMReply",
    "ProviderError",
    "RateLimitError",
    "SessionCorruptedError",
    "TokenUsage",
    "ToolCall",
    "ToolFunction",
]
