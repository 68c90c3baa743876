"""In-memory conversation history replayed to the LLM on every request."""

from __future__ import annotations

from .models import ConversationHistory, ConversationTurn, ToolCallRecord, ToolResult

__all__ = ["ConversationHistory", "ConversationTurn", "ToolCallRecord", "ToolResult"]
