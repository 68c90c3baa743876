#!/usr/bin/env python3
"""
Tests for the OpenAI-compatible LLM client using an in-process transport.
"""

import json

import httpx
import pytest

from planner_chat.llm import (
    LLMClient,
    ProviderError,
    RateLimitError,
    SessionCorruptedError,
)

CONFIG = {
    "provider": "gemini",
    "base_url": "https://llm.test/v1",
    "model": "gemini-2.5-flash",
    "temperature": 0.2,
    "max_tokens": 1024,
    "top_p": 0.9,
}


def make_client(handler):
    http_client = httpx.AsyncClient(
        base_url=CONFIG["base_url"], transport=httpx.MockTransport(handler)
    )
    return LLMClient(CONFIG, api_key="test-key", http_client=http_client)


def completion(message, finish_reason="stop", usage=None):
    body = {
        "model": "gemini-2.5-flash",
        "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
    }
    if usage:
        body["usage"] = usage
    return httpx.Response(200, json=body)


def test_missing_config_key_rejected():
    config = {k: v for k, v in CONFIG.items() if k != "top_p"}
    with pytest.raises(ValueError, match="top_p"):
        LLMClient(config, api_key="k")


@pytest.mark.asyncio
async def test_sends_history_tools_and_sampling_parameters():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return completion({"role": "assistant", "content": "Hello!"})

    tools = [{"type": "function", "function": {"name": "list_tasks", "parameters": {}}}]
    messages = [{"role": "system", "content": "sys"}, {"role": "user", "content": "hi"}]
    async with make_client(handler) as client:
        reply = await client.complete(messages, tools)

    assert seen["path"] == "/v1/chat/completions"
    body = seen["body"]
    assert body["model"] == "gemini-2.5-flash"
    assert body["messages"] == messages
    assert body["tools"] == tools
    assert body["temperature"] == 0.2
    assert body["max_tokens"] == 1024
    assert body["top_p"] == 0.9
    assert reply.text == "Hello!"
    assert not reply.has_tool_calls


@pytest.mark.asyncio
async def test_tools_omitted_when_empty():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return completion({"role": "assistant", "content": "ok"})

    client = make_client(handler)
    await client.complete([{"role": "user", "content": "hi"}], [])
    await client.close()

    assert "tools" not in seen["body"]


@pytest.mark.asyncio
async def test_parses_tool_calls_and_usage():
    def handler(request):
        return completion(
            {
                "role": "assistant",
                "content": None,
                "tool_calls": [
                    {
                        "id": "call_abc",
                        "type": "function",
                        "function": {"name": "default_api:create_task", "arguments": '{"title": "Buy milk"}'},
                    },
                    {
                        "type": "function",
                        "function": {"name": "list_tasks", "arguments": {"limit": 5}},
                    },
                ],
            },
            finish_reason="tool_calls",
            usage={"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15},
        )

    client = make_client(handler)
    reply = await client.complete([{"role": "user", "content": "Create"}])

    assert reply.text == ""
    assert reply.finish_reason == "tool_calls"
    first, second = reply.tool_calls
    assert first.id == "call_abc"
    assert first.name == "default_api:create_task"
    assert first.parsed_arguments() == {"title": "Buy milk"}
    assert second.id == "call_1"
    assert second.parsed_arguments() == {"limit": 5}
    assert reply.usage.total_tokens == 15


@pytest.mark.asyncio
async def test_rate_limit_carries_retry_after():
    def handler(request):
        return httpx.Response(429, headers={"retry-after": "7"}, json={"error": "slow down"})

    client = make_client(handler)
    with pytest.raises(RateLimitError) as exc_info:
        await client.complete([{"role": "user", "content": "hi"}])

    assert exc_info.value.retry_after == 7.0
    assert exc_info.value.status_code == 429
    assert exc_info.value.provider == "gemini"


@pytest.mark.asyncio
async def test_malformed_history_rejection_is_session_corruption():
    def handler(request):
        return httpx.Response(
            400,
            json={"error": {"message": "* GenerateContentRequest.contents[3].parts[0].data: "
                                       "required oneof field 'data' must have one initialized field"}},
        )

    client = make_client(handler)
    with pytest.raises(SessionCorruptedError) as exc_info:
        await client.complete([{"role": "user", "content": "hi"}])
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_other_http_errors_are_provider_errors():
    def handler(request):
        return httpx.Response(500, text="internal error")

    client = make_client(handler)
    with pytest.raises(ProviderError, match="500"):
        await client.complete([{"role": "user", "content": "hi"}])


@pytest.mark.asyncio
async def test_transport_errors_are_provider_errors():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)
    with pytest.raises(ProviderError, match="HTTP error"):
        await client.complete([{"role": "user", "content": "hi"}])


@pytest.mark.asyncio
async def test_unexpected_body_is_provider_error():
    def handler(request):
        return httpx.Response(200, json={"choices": []})

    client = make_client(handler)
    with pytest.raises(ProviderError, match="Unexpected response format"):
        await client.complete([{"role": "user", "content": "hi"}])
