"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

import time
from datetime import date
from typing import Callable, Optional

import httpx

from invoice_bot.ai.client import AIClient, AnthropicClient
from invoice_bot.ai.handler import ChatHandler
from invoice_bot.ai.tools.registry import ToolRegistry
from invoice_bot.config import AppConfig
from invoice_bot.core.context import AppContext
from invoice_bot.core.interactions import InteractionRegistry
from invoice_bot.integrations.quickbooks.client import QuickBooksClient
from invoice_bot.integrations.quickbooks.oauth import CredentialManager
from invoice_bot.log import get_logger
from invoice_bot.services.data_source import DataSourceResolver
from invoice_bot.storage.invoice_store import InvoiceStore

logger = get_logger(__name__)


class InvoiceBotApp:
    """Top-level application orchestrator.

    Every collaborator can be injected; anything left out is built from *config*.
    """

    def __init__(
        self,
        config: AppConfig,
        ai_client: Optional[AIClient] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
        today: Callable[[], date] = date.today,
    ):
        self.config = config
        self.context = AppContext(invoices=InvoiceStore(today=today))

        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=config.quickbooks.request_timeout)
        self.credentials = CredentialManager(
            config.quickbooks, self.context.credentials, self.http_client, clock=clock
        )
        self.quickbooks = QuickBooksClient(config.quickbooks, self.http_client, today=today)
        self.resolver = DataSourceResolver(self.context, self.credentials, self.quickbooks)

        self.tool_registry = ToolRegistry()
        self.interactions = InteractionRegistry(config.chat.interaction_retention_seconds, clock=clock)
        self.ai_client = ai_client or self._create_ai_client()
        self.chat_handler = ChatHandler(
            ai_client=self.ai_client,
            tool_registry=self.tool_registry,
            interactions=self.interactions,
            chat_config=config.chat,
        )

    async def start(self) -> None:
        """Initialize all components."""
        if not self.tool_registry.all_tools():
            self.tool_registry.discover_and_register(self.resolver)
        logger.info(
            "invoice_bot_started",
            model=self.config.chat.model,
            tools=len(self.tool_registry.all_tools()),
            quickbooks_configured=self.config.quickbooks.is_configured,
            environment=self.config.quickbooks.environment,
        )

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        self.interactions.close()
        await self.chat_handler.coordinator.drain()
        await self.ai_client.close()
        if self._owns_http_client:
            await self.http_client.aclose()
        logger.info("invoice_bot_stopped")

    def _create_ai_client(self) -> AIClient:
        if not self.config.anthropic:
            raise ValueError("No 'anthropic' section in config")
        return AnthropicClient(self.config.anthropic)
