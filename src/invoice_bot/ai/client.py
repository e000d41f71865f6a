"""AI client abstraction over a streaming model backend."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import anthropic

from invoice_bot.config import AnthropicConfig
from invoice_bot.errors import IntegrationError
from invoice_bot.log import get_logger

logger = get_logger(__name__)

API_NAME = "Anthropic"


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A tool the model asked to run during a generation pass."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


class ModelStream(ABC):
    """An opened generation pass.

    Iterating yields text tokens in arrival order. Once iteration is
    exhausted, ``tool_calls`` lists the calls the model requested.
    """

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[str]: ...

    @property
    @abstractmethod
    def tool_calls(self) -> list[ToolCall]: ...

    async def aclose(self) -> None:
        """Release the underlying connection. Safe to call more than once."""


class AIClient(ABC):
    """Abstract base class for AI backends."""

    @abstractmethod
    async def open_stream(
        self,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str = "",
        max_tokens: int = 4096,
        temperature: float = 0.0,
    ) -> ModelStream:
        """Send the request and return the stream once the provider has accepted it.

        Upstream failures raise ``IntegrationError`` here, before any token is
        produced.
        """
        ...

    async def close(self) -> None:
        """Release backend resources."""


def _integration_error(exc: anthropic.APIError) -> IntegrationError:
    if isinstance(exc, anthropic.RateLimitError):
        message = "Model provider rate limit exceeded"
    elif isinstance(exc, anthropic.APIStatusError):
        message = f"Model provider returned HTTP {exc.status_code}"
    elif isinstance(exc, anthropic.APIConnectionError):
        message = "Could not reach the model provider"
    else:
        message = "Model provider request failed"
    return IntegrationError(message, API_NAME, cause=str(exc))


class AnthropicModelStream(ModelStream):
    """Wraps the SDK's message stream manager for one generation pass."""

    def __init__(self, manager: Any, stream: Any):
        self._manager = manager
        self._stream = stream
        self._tool_calls: list[ToolCall] = []
        self._closed = False

    @property
    def tool_calls(self) -> list[ToolCall]:
        return list(self._tool_calls)

    def __aiter__(self) -> AsyncIterator[str]:
        return self._tokens()

    async def _tokens(self) -> AsyncIterator[str]:
        try:
            async for text in self._stream.text_stream:
                yield text
            message = await self._stream.get_final_message()
        except anthropic.APIError as e:
            raise _integration_error(e) from e
        finally:
            await self.aclose()

        self._tool_calls = [
            ToolCall(id=block.id, name=block.name, arguments=dict(block.input or {}))
            for block in message.content
            if block.type == "tool_use"
        ]
        logger.debug(
            "api_response",
            input_tokens=message.usage.input_tokens,
            output_tokens=message.usage.output_tokens,
            stop_reason=message.stop_reason,
            tool_calls=len(self._tool_calls),
        )

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._manager.__aexit__(None, None, None)


class AnthropicClient(AIClient):
    """Anthropic API backend using the official SDK."""

    def __init__(self, config: AnthropicConfig):
        self._client = anthropic.AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )

    async def open_stream(
        self,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str = "",
        max_tokens: int = 4096,
        temperature: float = 0.0,
    ) -> ModelStream:
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "system": system,
            "messages": messages,
            "temperature": temperature,
        }
        if tools:
            kwargs["tools"] = tools

        logger.debug("api_request", model=model, message_count=len(messages))
        manager = self._client.messages.stream(**kwargs)
        try:
            stream = await manager.__aenter__()
        except anthropic.APIError as e:
            logger.error("api_request_failed", model=model, error=str(e))
            raise _integration_error(e) from e
        return AnthropicModelStream(manager, stream)

    async def close(self) -> None:
        await self._client.close()
