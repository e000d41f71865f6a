"""Chat handler: validates a chat request, opens the model stream, and drives the multiplexer."""

from __future__ import annotations

from typing import Any, AsyncIterator, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from invoice_bot.ai.client import AIClient, ModelStream
from invoice_bot.ai.stream import ERROR_MARKER, multiplex
from invoice_bot.ai.tool_runner import ToolCoordinator, ToolInvocation
from invoice_bot.ai.tools.registry import ToolRegistry
from invoice_bot.config import ChatConfig
from invoice_bot.core.interactions import Interaction, InteractionRegistry
from invoice_bot.core.types import InteractionStatus, ToolOutcome
from invoice_bot.errors import IntegrationError
from invoice_bot.log import bind_interaction, get_logger, unbind_interaction

logger = get_logger(__name__)


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: list[ChatMessage] = Field(min_length=1)
    interaction_id: Optional[str] = Field(default=None, alias="interactionId")


class ChatSession:
    """One streamed chat response bound to its interaction."""

    def __init__(self, interaction: Interaction, model_stream: ModelStream, coordinator: ToolCoordinator):
        self.interaction = interaction
        self._model_stream = model_stream
        self._coordinator = coordinator

    @property
    def interaction_id(self) -> str:
        return self.interaction.id

    def _tools_started(self) -> None:
        self.interaction.status = InteractionStatus.PROCESSING_TOOLS

    def _record(self, invocation: ToolInvocation) -> None:
        if invocation.outcome == ToolOutcome.SUCCESS:
            self.interaction.last_tool_result = invocation.value
        else:
            self.interaction.last_error = invocation.error

    async def body(self) -> AsyncIterator[str]:
        """The response body, chunk by chunk."""
        interaction = self.interaction
        bind_interaction(interaction.id)
        try:
            async for chunk in multiplex(
                self._model_stream,
                self._coordinator,
                on_tools_started=self._tools_started,
                on_invocation=self._record,
            ):
                yield chunk
        except IntegrationError as e:
            logger.error("chat_stream_failed", error=e.message, cause=e.cause)
            interaction.status = InteractionStatus.FAILED
            interaction.last_error = e.message
            yield ERROR_MARKER + e.message
            return
        except Exception:
            interaction.status = InteractionStatus.FAILED
            raise
        finally:
            await self._model_stream.aclose()
            unbind_interaction()

        interaction.status = InteractionStatus.COMPLETED
        logger.info("chat_completed", has_error=interaction.last_error is not None)


class ChatHandler:
    """Handles the flow: request -> interaction -> model stream -> tools -> frames."""

    def __init__(
        self,
        ai_client: AIClient,
        tool_registry: ToolRegistry,
        interactions: InteractionRegistry,
        chat_config: ChatConfig,
    ):
        self._ai_client = ai_client
        self._tool_registry = tool_registry
        self._interactions = interactions
        self._chat_config = chat_config
        self._coordinator = ToolCoordinator(tool_registry, chat_config.tool_timeout_seconds)

    @property
    def coordinator(self) -> ToolCoordinator:
        return self._coordinator

    async def start(self, request: ChatRequest) -> ChatSession:
        """Open the model stream for *request*.

        Raises ``IntegrationError`` when the provider rejects the request, so
        callers can still answer with a JSON error before streaming.
        """
        messages: list[dict[str, Any]] = [m.model_dump() for m in request.messages]
        interaction = self._interactions.get_or_create(request.interaction_id, messages)
        bind_interaction(interaction.id)
        try:
            logger.info("chat_request", message_count=len(messages))
            try:
                model_stream = await self._ai_client.open_stream(
                    system=self._chat_config.system_prompt,
                    messages=messages,
                    tools=self._tool_registry.api_definitions(),
                    model=self._chat_config.model,
                    max_tokens=self._chat_config.max_tokens,
                    temperature=self._chat_config.temperature,
                )
            except IntegrationError as e:
                interaction.status = InteractionStatus.FAILED
                interaction.last_error = e.message
                raise
        finally:
            unbind_interaction()

        interaction.status = InteractionStatus.STREAMING
        interaction.last_error = None
        return ChatSession(interaction, model_stream, self._coordinator)
