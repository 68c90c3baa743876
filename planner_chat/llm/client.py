"""
HTTP client for OpenAI-compatible chat completion APIs with tool call support.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from .exceptions import LLMError, ProviderError, RateLimitError, SessionCorruptedError
from .models import LLMReply, TokenUsage, ToolCall, ToolFunction

logger = logging.getLogger(__name__)

# Provider error messages meaning the conversation history itself is malformed.
SESSION_CORRUPTION_MARKERS = (
    "required oneof field 'data' must have one initialized field",
    "must be a response to a preceeding message with 'tool_calls'",
    "must be a response to a preceding message with 'tool_calls'",
    "must be followed by tool messages",
)

HTTP_TOO_MANY_REQUESTS = 429


class LLMClient:
    """HTTP client for LLM API requests with structured tool call support.

    The client is stateless with respect to conversations: every call sends
    the full message history it is given.
    """

    def __init__(
        self,
        config: dict[str, Any],
        api_key: str,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        required_keys = ["base_url", "model", "temperature", "max_tokens", "top_p"]
        for key in required_keys:
            if key not in config:
                raise ValueError(
                    f"Required LLM configuration parameter '{key}' not found. "
                    "All LLM parameters must be explicitly configured."
                )

        self.config: dict[str, Any] = config
        self.provider: str = config.get("provider", "openai")
        self.model: str = config["model"]
        self.client: httpx.AsyncClient = http_client or httpx.AsyncClient(
            base_url=config["base_url"],
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=config.get("timeout", 60.0),
        )

    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMReply:
        """Send the conversation and return the assistant reply.

        Raises:
            SessionCorruptedError: The provider rejected the history as malformed.
            RateLimitError: The provider throttled the request.
            ProviderError: Any other transport, HTTP or payload failure.
        """
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.config["temperature"],
            "max_tokens": self.config["max_tokens"],
            "top_p": self.config["top_p"],
        }
        if tools:
            payload["tools"] = tools

        try:
            response = await self.client.post("/chat/completions", json=payload)
        except httpx.HTTPError as e:
            logger.error(f"HTTP error: {e}")
            raise ProviderError(
                f"HTTP error: {e!s}", provider=self.provider, model=self.model
            ) from e

        if response.is_error:
            raise self._error_from_response(response)

        try:
            result = response.json()
            return self._parse_reply(result)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.error(f"Unexpected response format: {e}")
            raise ProviderError(
                f"Unexpected response format: {e!s}",
                provider=self.provider,
                model=self.model,
                status_code=response.status_code,
            ) from e

    def _error_from_response(self, response: httpx.Response) -> LLMError:
        """Map an HTTP error response onto the LLM error hierarchy."""
        body_text = response.text
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {"error": body}

        common = {
            "provider": self.provider,
            "model": self.model,
            "status_code": response.status_code,
            "response_data": body,
        }

        if response.status_code == HTTP_TOO_MANY_REQUESTS:
            retry_after = response.headers.get("retry-after")
            try:
                retry_seconds = float(retry_after) if retry_after else None
            except ValueError:
                retry_seconds = None
            logger.warning(f"Rate limited by {self.provider}: {body_text}")
            return RateLimitError(
                f"Rate limited: {body_text}", retry_after=retry_seconds, **common
            )

        if response.is_client_error and any(
            marker in body_text for marker in SESSION_CORRUPTION_MARKERS
        ):
            logger.warning(f"Provider rejected conversation state: {body_text}")
            return SessionCorruptedError(
                f"Conversation state rejected: {body_text}", **common
            )

        logger.error(f"LLM API error {response.status_code}: {body_text}")
        return ProviderError(
            f"LLM API error {response.status_code}: {body_text}", **common
        )

    def _parse_reply(self, result: dict[str, Any]) -> LLMReply:
        choice = result["choices"][0]
        message = choice["message"]

        tool_calls = []
        for index, call in enumerate(message.get("tool_calls") or []):
            function = call.get("function") or {}
            arguments = function.get("arguments", "")
            if not isinstance(arguments, str):
                arguments = json.dumps(arguments)
            tool_calls.append(
                ToolCall(
                    id=call.get("id") or f"call_{index}",
                    function=ToolFunction(
                        name=function.get("name", ""), arguments=arguments
                    ),
                )
            )

        usage = None
        if raw_usage := result.get("usage"):
            usage = TokenUsage(
                prompt_tokens=raw_usage.get("prompt_tokens", 0),
                completion_tokens=raw_usage.get("completion_tokens", 0),
                total_tokens=raw_usage.get("total_tokens", 0),
            )

        return LLMReply(
            content=message.get("content"),
            tool_calls=tool_calls,
            finish_reason=choice.get("finish_reason"),
            usage=usage,
            model=result.get("model", self.model),
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
