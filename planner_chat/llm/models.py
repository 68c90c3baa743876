"""
Core LLM dataclasses for the chat completion exchange.

This module provides the foundational dataclasses for LLM interactions:
- Tool calling support
- Replies with text extraction
- Token usage tracking
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Literal


@dataclass(frozen=True)
class ToolFunction:
    """Tool function invocation requested by the model."""
    name: str
    arguments: str


@dataclass(frozen=True)
class ToolCall:
    """OpenAI-compatible tool call structure."""
    id: str
    type: Literal["function"] = "function"
    function: ToolFunction = field(default_factory=lambda: ToolFunction("", ""))

    @property
    def name(self) -> str:
        return self.function.name

    def parsed_arguments(self) -> dict[str, Any]:
        """Decode the JSON argument string into a flat name->value mapping.

        Raises:
            ValueError: If the arguments are not a JSON object.
        """
        raw = self.function.arguments or "{}"
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(
                f"Invalid JSON in tool call arguments for {self.name}: {e}"
            ) from e
        if not isinstance(parsed, dict):
            raise ValueError(
                f"Tool call arguments for {self.name} must be a JSON object"
            )
        return parsed


@dataclass(frozen=True)
class TokenUsage:
    """Token usage statistics."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


@dataclass(frozen=True)
class LLMReply:
    """One assistant reply from the chat completion endpoint.

    ``content`` is either the aggregated text, a list of typed content parts
    (some providers return those instead of a plain string), or ``None``.
    """
    content: str | list[dict[str, Any]] | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str | None = None
    usage: TokenUsage | None = None
    model: str = ""

    @property
    def text(self) -> str:
        """Aggregated assistant text, falling back to joining text parts."""
        if isinstance(self.content, str):
            return self.content
        if isinstance(self.content, list):
            parts = [
                part["text"]
                for part in self.content
                if isinstance(part, dict)
                and part.get("type") == "text"
                and isinstance(part.get("text"), str)
            ]
            return "\n".join(parts)
        return ""

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)
