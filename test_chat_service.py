#!/usr/bin/env python3
"""
Tests for the ChatService front door.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from planner_chat.chat_service import GENERIC_ERROR_MESSAGE, ChatService, ChatServiceError
from planner_chat.conversation import RESET_APOLOGY, ConversationDriver
from planner_chat.llm.exceptions import ProviderError, SessionCorruptedError
from planner_chat.llm.models import LLMReply
from planner_chat.session_registry import SessionRegistry


class QueueLLM:
    def __init__(self, *replies):
        self.replies = list(replies)

    async def complete(self, messages, tools=None):
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def make_service(*replies):
    llm = QueueLLM(*replies)

    async def factory(session_id, user_id):
        return ConversationDriver(
            session_id=session_id,
            user_id=user_id,
            llm_client=llm,
            system_prompt="sys",
            acknowledgement="ack",
        )

    return ChatService(SessionRegistry(factory))


@pytest.mark.asyncio
async def test_respond_routes_to_session():
    service = make_service(LLMReply(content="Hi!"), LLMReply(content="Again"))

    assert await service.respond("s1", "u1", "Hello") == "Hi!"
    assert await service.respond("s1", "u1", "Hello again") == "Again"

    driver = service.registry.get("s1")
    assert len(driver.history) == 6
    assert service.registry.active_count() == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "session_id,user_id,text",
    [("", "u1", "hi"), ("s1", " ", "hi"), ("s1", "u1", ""), ("s1", "u1", "   ")],
)
async def test_blank_inputs_rejected(session_id, user_id, text):
    service = make_service()
    with pytest.raises(ValueError):
        await service.respond(session_id, user_id, text)
    assert service.registry.active_count() == 0


@pytest.mark.asyncio
async def test_provider_failure_becomes_generic_error():
    service = make_service(ProviderError("LLM API error 500", provider="gemini", model="m"))

    with pytest.raises(ChatServiceError) as exc_info:
        await service.respond("s1", "u1", "Hello")

    assert exc_info.value.message == GENERIC_ERROR_MESSAGE
    assert isinstance(exc_info.value.__cause__, ProviderError)


@pytest.mark.asyncio
async def test_corrupted_session_answers_with_apology():
    service = make_service(SessionCorruptedError("bad history", provider="gemini", model="m"))
    assert await service.respond("s1", "u1", "Hello") == RESET_APOLOGY


@pytest.mark.asyncio
async def test_clear_session_and_status():
    service = make_service(LLMReply(content="Hi!"))
    await service.respond("s1", "u1", "Hello")

    status = service.session_status("s1")
    assert status.is_active
    assert status.active_session_count == 1

    await service.clear_session("s1")

    status = service.session_status("s1")
    assert status.session_id == "s1"
    assert not status.is_active
    assert status.active_session_count == 0


@pytest.mark.asyncio
async def test_close_stops_registry_and_llm_client():
    registry = Mock()
    registry.stop = AsyncMock()
    llm_client = Mock()
    llm_client.close = AsyncMock()
    service = ChatService(registry, llm_client=llm_client)

    await service.close()

    registry.stop.assert_awaited_once()
    llm_client.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_start_starts_registry_sweep():
    service = make_service()
    await service.start()
    assert service.registry._sweep_task is not None
    await service.close()
    assert service.registry._sweep_task is None
