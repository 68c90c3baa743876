"""
Conversation driver for one chat session.

This module owns a single conversation with the LLM, including:
- The seeded, append-only message history
- Tool catalog discovery at session start
- The bounded multi-round tool call loop
- Recovery from conversation state the provider refuses to accept
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Protocol

import structlog

from planner_chat.history.models import (
    ConversationHistory,
    ConversationTurn,
    ToolCallRecord,
    ToolResult,
)
from planner_chat.llm.exceptions import SessionCorruptedError
from planner_chat.llm.models import LLMReply, TokenUsage, ToolCall
from planner_chat.tools.catalog import ToolCatalog
from planner_chat.tools.invoker import ToolInvoker

logger = structlog.get_logger(__name__)

DEFAULT_MAX_TOOL_CALL_ROUNDS = 10

RESET_APOLOGY = (
    "I'm sorry, there was an issue processing your request. I've reset our "
    "conversation context. Could you please repeat your last message?"
)


class ChatModel(Protocol):
    """The part of the LLM client the driver depends on."""

    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMReply: ...


def strip_tool_namespace(name: str) -> str:
    """Drop a provider namespace such as ``default_api:`` from a tool name."""
    if ":" in name:
        return name.split(":", 1)[1]
    return name


def utc_now() -> datetime:
    return datetime.now(UTC)


class ConversationDriver:
    """
    Drives one conversation end-to-end against a remote LLM.

    1. Appends your message and sends the whole history
    2. Runs any tools the model asks for and sends the results back
    3. Stops when the model answers in plain text or the round cap is hit
    4. Returns the assistant's text
    """

    def __init__(
        self,
        session_id: str,
        user_id: str,
        llm_client: ChatModel,
        system_prompt: str,
        acknowledgement: str,
        invoker: ToolInvoker | None = None,
        max_tool_call_rounds: int = DEFAULT_MAX_TOOL_CALL_ROUNDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if max_tool_call_rounds < 1:
            raise ValueError("max_tool_call_rounds must be a positive integer")

        self.session_id = session_id
        self.user_id = user_id
        self.llm_client = llm_client
        self.invoker = invoker
        self.max_tool_call_rounds = max_tool_call_rounds
        self._clock = clock

        self.history = ConversationHistory(system_prompt, acknowledgement)
        self.catalog = ToolCatalog()
        self.round_count = 0
        self.total_usage = TokenUsage()

        self.created_time: datetime = clock()
        self.last_access_time: datetime = self.created_time

        # Serializes respond() so turns from concurrent requests never interleave
        self._lock = asyncio.Lock()
        self._closed = False
        self._log = logger.bind(session_id=session_id, user_id=user_id)

    @property
    def is_busy(self) -> bool:
        """True while a respond() call holds the conversation."""
        return self._lock.locked()

    @property
    def tools_payload(self) -> list[dict[str, Any]]:
        return self.catalog.to_openai_tools()

    def touch(self) -> None:
        self.last_access_time = self._clock()

    async def start(self) -> None:
        """Fetch the tool catalog once; failures leave the driver tool-less."""
        if self.invoker is None:
            self._log.info("Conversation started without tools")
            return

        try:
            descriptors = await self.invoker.list_tools()
        except Exception as e:
            self._log.error("Tool discovery failed, continuing without tools", error=str(e))
            return

        self.catalog = ToolCatalog(descriptors)
        self._log.info(
            "Loaded tools for conversation",
            tool_count=len(self.catalog),
            tools=self.catalog.names(),
        )

    def reset(self) -> None:
        """Start a fresh conversation with the same system instructions."""
        self.history.reset()
        self.round_count = 0
        self._log.info("Conversation history reset")

    async def respond(self, user_text: str) -> str:
        """
        Run one user message through the model, executing tool calls as
        requested, and return the final assistant text.

        Raises:
            LLMError: For provider failures other than a corrupted conversation
        """
        async with self._lock:
            self.touch()
            self.round_count = 0
            try:
                return await self._run_turn(user_text)
            except SessionCorruptedError as e:
                self._log.warning(
                    "Provider rejected conversation state, resetting",
                    error=str(e),
                )
                self.reset()
                return RESET_APOLOGY
            finally:
                self.touch()

    async def _run_turn(self, user_text: str) -> str:
        # Turns are committed only once the whole exchange succeeded
        pending: list[ConversationTurn] = [ConversationTurn.user(user_text)]
        reply = await self._send(pending)

        while self.round_count < self.max_tool_call_rounds:
            if not reply.has_tool_calls:
                break

            self._log.info(
                "Processing tool calls",
                count=len(reply.tool_calls),
                round=self.round_count + 1,
            )
            results = await self._execute_tool_calls(reply.tool_calls)
            if not results:
                self._log.warning(
                    "Tool round produced zero results; stopping further tool processing"
                )
                break

            pending.append(
                ConversationTurn.tool_exchange(
                    reply.text,
                    [
                        ToolCallRecord(
                            id=call.id, name=call.name, arguments=call.function.arguments
                        )
                        for call in reply.tool_calls
                    ],
                    results,
                )
            )
            reply = await self._send(pending)
            self.round_count += 1

        if self.round_count >= self.max_tool_call_rounds and reply.has_tool_calls:
            self._log.warning(
                "Reached maximum tool call rounds, returning current response",
                max_rounds=self.max_tool_call_rounds,
            )

        text = reply.text
        # Unanswered directives are not recorded; the provider would reject them
        pending.append(ConversationTurn.assistant(text))
        for turn in pending:
            self.history.append(turn)
        return text

    async def _send(self, pending: list[ConversationTurn]) -> LLMReply:
        messages = self.history.to_messages(pending)
        reply = await self.llm_client.complete(messages, self.tools_payload or None)
        self.touch()

        if reply.usage:
            self.total_usage = self.total_usage + reply.usage
        self._log.debug(
            "LLM reply received",
            round=self.round_count,
            tool_calls=[call.name for call in reply.tool_calls],
            finish_reason=reply.finish_reason,
            usage=reply.usage,
            model=reply.model,
        )
        return reply

    async def _execute_tool_calls(self, calls: list[ToolCall]) -> list[ToolResult]:
        """Invoke each directive; failures become error-tagged results."""
        results: list[ToolResult] = []
        if self.invoker is None:
            return results

        for call in calls:
            tool_name = strip_tool_namespace(call.name)
            if tool_name != call.name:
                self._log.debug(
                    "Stripped namespace prefix from tool name",
                    original=call.name,
                    stripped=tool_name,
                )
            self._log.info("Model requested tool call", tool=tool_name)

            try:
                arguments = call.parsed_arguments()
                output = await self.invoker.invoke(tool_name, arguments)
            except Exception as e:
                self._log.error("Tool execution failed", tool=call.name, error=str(e))
                results.append(
                    ToolResult(tool_call_id=call.id, name=call.name, error=str(e))
                )
                continue

            results.append(
                ToolResult(tool_call_id=call.id, name=call.name, result=output)
            )

        return results

    async def close(self) -> None:
        """Release the tool connection exactly once."""
        if self._closed:
            return
        self._closed = True
        if self.invoker is not None:
            await self.invoker.dispose()
        self._log.info("Conversation closed")
