"""
Builds a conversation driver and its dedicated tool connection per session.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog

from planner_chat.config import Configuration
from planner_chat.conversation import (
    DEFAULT_MAX_TOOL_CALL_ROUNDS,
    ChatModel,
    ConversationDriver,
    utc_now,
)
from planner_chat.logging_utils import log_operation
from planner_chat.tools.invoker import ToolInvoker

logger = structlog.get_logger(__name__)

InvokerBuilder = Callable[..., ToolInvoker]


class SessionFactory:
    """Creates ConversationDrivers wired to a per-user tool server process."""

    def __init__(
        self,
        llm_client: ChatModel,
        system_prompt: str,
        acknowledgement: str,
        mcp_server_config: dict[str, Any] | None = None,
        mcp_connection_config: dict[str, Any] | None = None,
        max_tool_call_rounds: int = DEFAULT_MAX_TOOL_CALL_ROUNDS,
        invoker_builder: InvokerBuilder = ToolInvoker,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.llm_client = llm_client
        self.system_prompt = system_prompt
        self.acknowledgement = acknowledgement
        self.mcp_server_config = mcp_server_config or {}
        self.mcp_connection_config = mcp_connection_config or {}
        self.max_tool_call_rounds = max_tool_call_rounds
        self._invoker_builder = invoker_builder
        self._clock = clock

    @classmethod
    def from_configuration(
        cls, configuration: Configuration, llm_client: ChatModel
    ) -> SessionFactory:
        return cls(
            llm_client=llm_client,
            system_prompt=configuration.get_system_prompt(),
            acknowledgement=configuration.get_acknowledgement(),
            mcp_server_config=configuration.get_mcp_server_config(),
            mcp_connection_config=configuration.get_mcp_connection_config(),
            max_tool_call_rounds=configuration.get_max_tool_call_rounds(),
        )

    @property
    def tools_enabled(self) -> bool:
        return bool(self.mcp_server_config.get("command"))

    def tool_server_args(self, session_id: str, user_id: str) -> list[str]:
        """Configured args plus the session and user the server acts for."""
        return [
            *self.mcp_server_config.get("args", []),
            "--session-id",
            session_id,
            "--user-id",
            user_id,
        ]

    @log_operation("create_session", bind=("session_id", "user_id"))
    async def create(self, session_id: str, user_id: str) -> ConversationDriver:
        """Build a driver; a tool server that fails to start is left out."""
        log = logger.bind(session_id=session_id, user_id=user_id)
        invoker = None
        if self.tools_enabled:
            invoker = await self._connect_invoker(session_id, user_id, log)

        driver = ConversationDriver(
            session_id=session_id,
            user_id=user_id,
            llm_client=self.llm_client,
            system_prompt=self.system_prompt,
            acknowledgement=self.acknowledgement,
            invoker=invoker,
            max_tool_call_rounds=self.max_tool_call_rounds,
            clock=self._clock,
        )
        try:
            await driver.start()
        except BaseException:
            await driver.close()
            raise

        log.debug("Conversation driver created", has_tools=invoker is not None)
        return driver

    async def _connect_invoker(
        self, session_id: str, user_id: str, log: Any
    ) -> ToolInvoker | None:
        invoker = self._invoker_builder(
            name=f"planner-tools:{session_id}",
            command=self.mcp_server_config["command"],
            args=self.tool_server_args(session_id, user_id),
            env=self.mcp_server_config.get("env", {}),
            connection_config=self.mcp_connection_config,
        )

        log.info("Initializing tool connection")
        try:
            await invoker.initialize()
        except asyncio.CancelledError:
            await invoker.dispose()
            raise
        except Exception as e:
            log.error("Failed to initialize tool connection, continuing without tools", error=str(e))
            await invoker.dispose()
            return None

        log.info("Tool connection initialized")
        return invoker
