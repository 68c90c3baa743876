# planner_chat/history/models.py
from __future__ import annotations

import json
from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

TurnKind = Literal["system", "user", "assistant", "tool_exchange"]


class ToolCallRecord(BaseModel):
    """A tool-call directive as issued by the model."""
    id: str
    name: str
    arguments: str = ""

    def to_openai(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


class ToolResult(BaseModel):
    """Outcome of one directive, tagged with the tool name the model used."""
    tool_call_id: str
    name: str
    result: str | None = None
    error: str | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def payload(self) -> dict[str, str]:
        if self.error is not None:
            return {"error": self.error}
        return {"result": self.result or ""}

    def to_openai(self) -> dict[str, Any]:
        return {
            "role": "tool",
            "tool_call_id": self.tool_call_id,
            "name": self.name,
            "content": json.dumps(self.payload()),
        }


class ConversationTurn(BaseModel):
    """
    One exchange unit: a system instruction, a user message, an assistant
    text reply, or an assistant tool-call directive with its tool outputs.
    """
    kind: TurnKind
    text: str = ""
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)
    results: list[ToolResult] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def system(cls, text: str) -> ConversationTurn:
        return cls(kind="system", text=text)

    @classmethod
    def user(cls, text: str) -> ConversationTurn:
        return cls(kind="user", text=text)

    @classmethod
    def assistant(cls, text: str) -> ConversationTurn:
        return cls(kind="assistant", text=text)

    @classmethod
    def tool_exchange(
        cls,
        text: str,
        tool_calls: list[ToolCallRecord],
        results: list[ToolResult],
    ) -> ConversationTurn:
        return cls(
            kind="tool_exchange", text=text, tool_calls=tool_calls, results=results
        )

    def to_messages(self) -> list[dict[str, Any]]:
        """Render this turn as OpenAI-style chat messages."""
        if self.kind == "tool_exchange":
            answered = {result.tool_call_id for result in self.results}
            messages: list[dict[str, Any]] = [{
                "role": "assistant",
                "content": self.text,
                "tool_calls": [
                    call.to_openai()
                    for call in self.tool_calls
                    if call.id in answered
                ],
            }]
            messages.extend(result.to_openai() for result in self.results)
            return messages
        return [{"role": self.kind, "content": self.text}]


class ConversationHistory:
    """Ordered, append-only sequence of turns for one conversation."""

    def __init__(self, system_prompt: str, acknowledgement: str) -> None:
        self.system_prompt = system_prompt
        self.acknowledgement = acknowledgement
        self._turns: list[ConversationTurn] = []
        self.reset()

    def reset(self) -> None:
        """Discard everything except the seed turns."""
        self._turns = [
            ConversationTurn.system(self.system_prompt),
            ConversationTurn.assistant(self.acknowledgement),
        ]

    @property
    def seed_length(self) -> int:
        return 2

    def append(self, turn: ConversationTurn) -> None:
        self._turns.append(turn)

    def to_messages(self, pending: list[ConversationTurn] | None = None) -> list[dict[str, Any]]:
        """Render the whole history, plus any not-yet-committed turns."""
        messages: list[dict[str, Any]] = []
        for turn in [*self._turns, *(pending or [])]:
            messages.extend(turn.to_messages())
        return messages

    @property
    def turns(self) -> list[ConversationTurn]:
        return list(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[ConversationTurn]:
        return iter(list(self._turns))
