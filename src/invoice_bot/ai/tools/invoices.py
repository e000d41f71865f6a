"""Invoice tools: lookup, create, update, and status totals."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from invoice_bot.ai.results import InvoiceResult, InvoiceTotalsResult
from invoice_bot.ai.tools.base import Tool
from invoice_bot.core.types import InvoiceStatus
from invoice_bot.errors import ToolExecutionError
from invoice_bot.log import get_logger
from invoice_bot.services.data_source import DataSourceResolver
from invoice_bot.storage.models import InvoiceChanges, InvoiceDraft, LineItem

logger = get_logger(__name__)


class LineItemParams(BaseModel):
    description: str
    quantity: Decimal
    price: Decimal = Field(description="Unit price")

    def to_model(self) -> LineItem:
        return LineItem(description=self.description, quantity=self.quantity, price=self.price)


class GetInvoiceDetailsParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    invoice_id: str = Field(alias="invoiceId", description="The ID of the invoice to retrieve")


class CreateInvoiceParams(BaseModel):
    customer: str = Field(description="Customer name")
    amount: Decimal = Field(description="Total amount of the invoice")
    status: InvoiceStatus = Field(description="Payment status of the invoice")
    items: Optional[list[LineItemParams]] = Field(default=None, description="Line items in the invoice")


class UpdateInvoiceParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    invoice_id: str = Field(alias="invoiceId", description="The ID of the invoice to update")
    status: Optional[InvoiceStatus] = Field(default=None, description="New payment status")
    amount: Optional[Decimal] = Field(default=None, description="New total amount")
    items: Optional[list[LineItemParams]] = Field(default=None, description="Updated line items")


class GetTotalInvoicesParams(BaseModel):
    status: Literal["all", "paid", "pending", "overdue"] = Field(
        description=(
            'Filter invoices by status. Use "all" to count all invoices, "paid" for paid '
            'invoices, "pending" for pending invoices, or "overdue" for overdue invoices.'
        )
    )


class GetInvoiceDetailsTool(Tool):
    params_model = GetInvoiceDetailsParams

    def __init__(self, resolver: DataSourceResolver):
        self._resolver = resolver

    @property
    def name(self) -> str:
        return "getInvoiceDetails"

    @property
    def description(self) -> str:
        return "Get detailed information about a specific invoice"

    async def run(self, params: GetInvoiceDetailsParams, cancel_event: asyncio.Event) -> InvoiceResult:
        found = await self._resolver.get_invoice(params.invoice_id)
        if found.value is None:
            raise ToolExecutionError(
                f"Invoice not found: {params.invoice_id}", self.name, {"invoiceId": params.invoice_id}
            )
        return InvoiceResult(found.value, found.data_source)


class CreateInvoiceTool(Tool):
    params_model = CreateInvoiceParams

    def __init__(self, resolver: DataSourceResolver):
        self._resolver = resolver

    @property
    def name(self) -> str:
        return "createInvoice"

    @property
    def description(self) -> str:
        return "Create a new invoice"

    async def run(self, params: CreateInvoiceParams, cancel_event: asyncio.Event) -> InvoiceResult:
        draft = InvoiceDraft(
            customer=params.customer,
            amount=params.amount,
            status=params.status,
            items=tuple(item.to_model() for item in params.items or ()),
        )
        created = await self._resolver.create_invoice(draft)
        return InvoiceResult(created.value, created.data_source)


class UpdateInvoiceTool(Tool):
    params_model = UpdateInvoiceParams

    def __init__(self, resolver: DataSourceResolver):
        self._resolver = resolver

    @property
    def name(self) -> str:
        return "updateInvoice"

    @property
    def description(self) -> str:
        return "Update an existing invoice"

    async def run(self, params: UpdateInvoiceParams, cancel_event: asyncio.Event) -> InvoiceResult:
        changes = InvoiceChanges(
            status=params.status,
            amount=params.amount,
            items=tuple(item.to_model() for item in params.items) if params.items is not None else None,
        )
        updated = await self._resolver.update_invoice(params.invoice_id, changes)
        if updated.value is None:
            raise ToolExecutionError(
                f"Invoice not found: {params.invoice_id}",
                self.name,
                params.model_dump(mode="json", by_alias=True, exclude_none=True),
            )
        return InvoiceResult(updated.value, updated.data_source)


class GetTotalInvoicesTool(Tool):
    params_model = GetTotalInvoicesParams

    def __init__(self, resolver: DataSourceResolver):
        self._resolver = resolver

    @property
    def name(self) -> str:
        return "getTotalInvoices"

    @property
    def description(self) -> str:
        return "Get the total number of invoices and their cumulative value"

    async def run(self, params: GetTotalInvoicesParams, cancel_event: asyncio.Event) -> InvoiceTotalsResult:
        status = None if params.status == "all" else InvoiceStatus(params.status)
        listed = await self._resolver.list_invoices(status)
        result = InvoiceTotalsResult(params.status, tuple(listed.value), listed.data_source)
        logger.info(
            "invoice_totals",
            status=params.status,
            count=result.count,
            total=str(result.total),
            data_source=listed.data_source.value,
        )
        return result
