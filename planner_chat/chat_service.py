"""
Chat Service for the planner assistant.

This module is the entry point used by the HTTP and WebSocket layers:
- respond: route a message to the session's conversation
- clear_session: drop a conversation so the next message starts fresh
- session_status: report whether a session is live
"""

from __future__ import annotations

import structlog
from pydantic import BaseModel

from planner_chat.logging_utils import operation_context
from planner_chat.session_registry import SessionRegistry

logger = structlog.get_logger(__name__)

GENERIC_ERROR_MESSAGE = "An error occurred while processing your message"


class ChatServiceError(Exception):
    """A chat request failed outside the conversational recovery paths."""

    def __init__(self, message: str = GENERIC_ERROR_MESSAGE) -> None:
        super().__init__(message)
        self.message = message


class SessionStatus(BaseModel):
    session_id: str
    is_active: bool
    active_session_count: int


class ChatService:
    """
    Conversation front door:
    1. Finds or creates the conversation for the session
    2. Lets it answer (running tools as needed)
    3. Hands back the assistant's text
    """

    def __init__(self, registry: SessionRegistry, llm_client=None) -> None:
        self.registry = registry
        self.llm_client = llm_client

    async def start(self) -> None:
        self.registry.start()
        logger.info("Chat service started")

    async def respond(self, session_id: str, user_id: str, message_text: str) -> str:
        """
        Answer a user message in the context of its session.

        Raises:
            ValueError: If session id, user id or message is blank
            ChatServiceError: For any other failure
        """
        if not session_id or not session_id.strip():
            raise ValueError("Session ID cannot be null or empty")
        if not user_id or not user_id.strip():
            raise ValueError("User ID cannot be null or empty")
        if not message_text or not message_text.strip():
            raise ValueError("Message cannot be empty")

        context = {"session_id": session_id, "user_id": user_id}
        try:
            async with operation_context("chat_respond", context=context):
                driver = await self.registry.get_or_create(session_id, user_id)
                return await driver.respond(message_text)
        except Exception as e:
            logger.error(
                "Error processing chat message",
                session_id=session_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise ChatServiceError() from e

    async def clear_session(self, session_id: str) -> None:
        logger.info("Clearing chat session", session_id=session_id)
        await self.registry.remove(session_id)

    def session_status(self, session_id: str) -> SessionStatus:
        return SessionStatus(
            session_id=session_id,
            is_active=self.registry.contains(session_id),
            active_session_count=self.registry.active_count(),
        )

    async def close(self) -> None:
        """Close every session and the LLM client."""
        await self.registry.stop()

        if self.llm_client is not None:
            try:
                await self.llm_client.close()
                logger.info("LLM client closed successfully")
            except Exception as e:
                logger.warning("Error closing LLM client", error=str(e))
