"""Chooses between live QuickBooks data and the local fallback store for each operation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

import httpx

from invoice_bot.core.context import AppContext
from invoice_bot.core.types import DataSource, InvoiceStatus
from invoice_bot.errors import IntegrationError
from invoice_bot.integrations.quickbooks.client import QuickBooksClient
from invoice_bot.integrations.quickbooks.oauth import CredentialManager
from invoice_bot.log import get_logger
from invoice_bot.storage.models import Invoice, InvoiceChanges, InvoiceDraft

logger = get_logger(__name__)

T = TypeVar("T")

# Failures that mean "the live integration is unusable right now".
LIVE_FAILURES = (IntegrationError, httpx.HTTPError, KeyError, TypeError, ValueError)


@dataclass(frozen=True, slots=True)
class Sourced(Generic[T]):
    value: T
    data_source: DataSource


class DataSourceResolver:
    """Routes invoice operations to QuickBooks when connected, otherwise to the fallback store.

    Live writes are mirrored into the fallback store afterwards so it stays a
    usable cache. The two writes are independent: neither is rolled back if
    the other fails.
    """

    def __init__(
        self,
        context: AppContext,
        credentials: CredentialManager,
        live: QuickBooksClient,
    ):
        self._context = context
        self._credentials = credentials
        self._live = live

    async def get_invoice(self, invoice_id: str) -> Sourced[Optional[Invoice]]:
        live = await self._try_live(
            "get_invoice", lambda creds: self._live.get_invoice(creds, invoice_id)
        )
        if live is not None and live.value is not None:
            return live
        return Sourced(self._context.invoices.find(invoice_id), DataSource.FALLBACK)

    async def list_invoices(self, status: InvoiceStatus | None = None) -> Sourced[list[Invoice]]:
        live = await self._try_live("list_invoices", self._live.list_invoices)
        if live is not None:
            invoices = [inv for inv in live.value if status is None or inv.status == status]
            return Sourced(invoices, DataSource.LIVE)
        return Sourced(self._context.invoices.all(status), DataSource.FALLBACK)

    async def create_invoice(self, draft: InvoiceDraft) -> Sourced[Invoice]:
        live = await self._try_live(
            "create_invoice", lambda creds: self._live.create_invoice(creds, draft)
        )
        if live is not None:
            self._mirror(live.value)
            return live
        return Sourced(self._context.invoices.create(draft), DataSource.FALLBACK)

    async def update_invoice(self, invoice_id: str, changes: InvoiceChanges) -> Sourced[Optional[Invoice]]:
        live = await self._try_live(
            "update_invoice", lambda creds: self._live.update_invoice(creds, invoice_id, changes)
        )
        if live is not None and live.value is not None:
            self._mirror(live.value)
            return live
        return Sourced(self._context.invoices.update(invoice_id, changes), DataSource.FALLBACK)

    async def _try_live(
        self, operation: str, call: Callable[..., Awaitable[T]]
    ) -> Sourced[T] | None:
        """Run *call* against QuickBooks, or return None when the fallback should be used."""
        try:
            available = await self._credentials.ensure_valid_token()
        except LIVE_FAILURES as e:
            logger.warning("token_check_failed", operation=operation, error=str(e))
            available = False
        if not available:
            logger.debug("live_integration_unavailable", operation=operation)
            return None
        try:
            value = await call(self._credentials.credentials)
        except LIVE_FAILURES as e:
            logger.warning("live_integration_failed", operation=operation, error=str(e))
            return None
        return Sourced(value, DataSource.LIVE)

    def _mirror(self, invoice: Invoice) -> None:
        try:
            self._context.invoices.upsert(invoice)
        except Exception as e:
            logger.error("fallback_mirror_failed", invoice_id=invoice.id, error=str(e))
