"""
MCP tool invoker: one stdio connection to the planner tool server.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
from contextlib import AsyncExitStack
from typing import Any

from mcp import ClientSession, McpError, StdioServerParameters, types
from mcp.client.stdio import stdio_client

from planner_chat.logging_utils import tool_error
from planner_chat.tools.catalog import ToolDescriptor

logger = logging.getLogger(__name__)

CLIENT_NAME = "planner-chat"
CLIENT_VERSION = "0.1.0"


class ToolInvoker:
    """
    MCP client for a single tool server process using the stdio transport.

    Supports configurable connection timeout and retry behavior. Connection
    parameters include:
    - max_reconnect_attempts: Maximum number of connection attempts
    - initial_reconnect_delay: Initial delay between attempts
    - max_reconnect_delay: Maximum delay (with exponential backoff)
    - connection_timeout: Timeout for server initialization
    """

    def __init__(
        self,
        name: str,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        connection_config: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize the invoker without starting the server process.

        Args:
            name: Name for logging and identification
            command: Executable that starts the tool server
            args: Command line arguments for the tool server
            env: Extra environment variables for the tool server
            connection_config: Connection and retry configuration parameters
        """
        connection_config = connection_config or {}
        self.name: str = name
        self.command: str = command
        self.args: list[str] = list(args or [])
        self.env: dict[str, str] = dict(env or {})
        self.session: ClientSession | None = None
        self.exit_stack: AsyncExitStack = AsyncExitStack()
        self._cleanup_lock: asyncio.Lock = asyncio.Lock()
        self._is_connected: bool = False
        self._disposed: bool = False

        self._max_reconnect_attempts: int = connection_config.get(
            "max_reconnect_attempts", 3
        )
        self._initial_reconnect_delay: float = connection_config.get(
            "initial_reconnect_delay", 1.0
        )
        self._max_reconnect_delay: float = connection_config.get(
            "max_reconnect_delay", 10.0
        )
        self._connection_timeout: float = connection_config.get(
            "connection_timeout", 30.0
        )

        logger.debug(
            f"Tool invoker '{name}' configured with: {command} {' '.join(self.args)}"
        )

    def _resolve_command(self) -> str | None:
        """
        Resolve the configured command to an absolute executable path.

        Absolute paths are returned if they exist; anything else is looked up
        on the system PATH.
        """
        if not self.command:
            return None

        if os.path.isabs(self.command):
            return self.command if os.path.exists(self.command) else None

        return shutil.which(self.command)

    async def initialize(self) -> None:
        """
        Start the tool server and complete the MCP handshake, retrying with
        exponential backoff.

        Raises:
            Exception: The last connection error if all attempts fail
        """
        if self._disposed:
            raise RuntimeError(f"Tool invoker '{self.name}' has been disposed")

        delay = self._initial_reconnect_delay
        attempts = 0
        while True:
            try:
                await self._attempt_connection()
                self._is_connected = True
                return
            except Exception as e:
                attempts += 1
                # A failed attempt may leave a half-started process behind
                await self._reset_exit_stack()

                if attempts >= self._max_reconnect_attempts:
                    logger.error(
                        f"Failed to connect to {self.name} after "
                        f"{attempts} attempts: {e}"
                    )
                    raise

                logger.warning(
                    f"Connection attempt {attempts} failed for "
                    f"{self.name}: {e}. Retrying in {delay}s..."
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2, self._max_reconnect_delay)

    async def _attempt_connection(self) -> None:
        """
        Attempt a single connection to the tool server.

        Raises:
            ValueError: If the configured command cannot be resolved
            TimeoutError: If the MCP handshake exceeds connection_timeout
        """
        command = self._resolve_command()
        if not command:
            raise ValueError(f"Command '{self.command}' not found in PATH")

        server_params = StdioServerParameters(
            command=command,
            args=self.args,
            env={**os.environ, **self.env},
        )

        read_stream, write_stream = await self.exit_stack.enter_async_context(
            stdio_client(server_params)
        )

        client_info = types.Implementation(name=CLIENT_NAME, version=CLIENT_VERSION)
        session = await self.exit_stack.enter_async_context(
            ClientSession(read_stream, write_stream, client_info=client_info)
        )
        init_result = await asyncio.wait_for(
            session.initialize(), timeout=self._connection_timeout
        )
        self.session = session

        server_info = init_result.serverInfo
        logger.info(
            f"Tool invoker '{self.name}' connected to "
            f"{server_info.name} {server_info.version}".rstrip()
        )

    async def _reset_exit_stack(self) -> None:
        self.session = None
        try:
            await self.exit_stack.aclose()
        except Exception as e:
            logger.debug(f"Exit stack cleanup issue for {self.name}: {e}")
        self.exit_stack = AsyncExitStack()

    def _require_session(self) -> ClientSession:
        if not self.session or not self._is_connected:
            raise McpError(
                error=types.ErrorData(
                    code=types.INTERNAL_ERROR,
                    message=f"Tool invoker {self.name} not connected",
                )
            )
        return self.session

    async def list_tools(self) -> list[ToolDescriptor]:
        """List the tools exposed by the server."""
        session = self._require_session()

        try:
            result = await session.list_tools()
        except McpError as e:
            logger.error(
                f"MCP error listing tools from {self.name}: {e.error.message}"
            )
            raise
        except Exception as e:
            raise tool_error(e, "list_tools", invoker=self.name) from e

        descriptors = [ToolDescriptor.from_mcp_tool(tool) for tool in result.tools]
        logger.info(
            f"Found {len(descriptors)} tools on {self.name}: "
            f"{', '.join(d.name for d in descriptors)}"
        )
        return descriptors

    async def invoke(self, name: str, arguments: dict[str, Any] | None = None) -> str:
        """
        Call a tool and normalize its result to text.

        Raises:
            McpError: If the call fails or the server reports a tool error
        """
        session = self._require_session()
        logger.debug(f"Calling tool '{name}' on '{self.name}' with {arguments}")

        try:
            result = await session.call_tool(name, arguments or {})
        except McpError as e:
            logger.error(f"MCP error calling tool '{name}': {e.error.message}")
            raise
        except Exception as e:
            raise tool_error(
                e, f"call_tool {name}", invoker=self.name, tool=name
            ) from e

        text = self.result_text(result)
        if result.isError:
            raise McpError(
                error=types.ErrorData(
                    code=types.INTERNAL_ERROR,
                    message=text or f"Tool '{name}' reported an error",
                )
            )

        logger.debug(f"Tool '{name}' executed successfully")
        return text

    @staticmethod
    def result_text(result: types.CallToolResult) -> str:
        """
        Join the text segments of a tool result, or serialize the whole
        result when it carries no text.
        """
        texts: list[str] = []
        for item in result.content:
            if isinstance(item, types.TextContent) and item.text:
                texts.append(item.text)

        aggregated = "\n".join(texts).strip()
        if aggregated:
            return aggregated

        return json.dumps(result.model_dump(mode="json", exclude_none=True))

    async def dispose(self) -> None:
        """Terminate the server process and release the transport once."""
        async with self._cleanup_lock:
            if self._disposed:
                return
            self._disposed = True
            self._is_connected = False

            await self._reset_exit_stack()
            logger.info(f"Tool invoker '{self.name}' disposed")

    @property
    def is_connected(self) -> bool:
        """Check if the invoker is currently connected."""
        return self._is_connected

    async def __aenter__(self) -> ToolInvoker:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.dispose()
