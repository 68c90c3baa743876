"""
Main module: wires configuration, LLM client, sessions and the web server.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import structlog
import uvicorn

from planner_chat.chat_service import ChatService
from planner_chat.config import Configuration
from planner_chat.llm.client import LLMClient
from planner_chat.logging_utils import configure_logging
from planner_chat.server import create_app
from planner_chat.session_factory import SessionFactory
from planner_chat.session_registry import SessionRegistry

logger = structlog.get_logger(__name__)


def build_chat_service(config: Configuration) -> ChatService:
    """Create the chat service and its collaborators from configuration."""
    llm_client = LLMClient(config.get_llm_config(), config.llm_api_key)
    factory = SessionFactory.from_configuration(config, llm_client)
    if not factory.tools_enabled:
        logger.warning("No MCP command configured - running without tools")

    session_config = config.get_session_config()
    registry = SessionRegistry(
        factory.create,
        idle_timeout=timedelta(minutes=session_config["idle_timeout_minutes"]),
        sweep_interval=timedelta(minutes=session_config["sweep_interval_minutes"]),
    )
    return ChatService(registry, llm_client=llm_client)


async def main() -> None:
    """Main entry point - HTTP/WebSocket server with graceful shutdown."""
    config = Configuration()
    configure_logging(config.get_logging_config().get("level", "INFO"))

    service = build_chat_service(config)
    server_config = config.get_server_config()

    # uvicorn installs SIGINT/SIGTERM handlers and runs the app lifespan,
    # which closes every session on shutdown
    server = uvicorn.Server(
        uvicorn.Config(
            create_app(service),
            host=server_config["host"],
            port=server_config["port"],
            log_config=None,
        )
    )
    logger.info("Starting planner chat server", **server_config)
    try:
        await server.serve()
    finally:
        logger.info("Application shutdown complete")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
