"""Closed set of values a tool can return."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, Union

from invoice_bot.core.types import DataSource
from invoice_bot.storage.models import Invoice


@dataclass(frozen=True, slots=True)
class MessageResult:
    """Plain human-readable outcome."""

    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message}


@dataclass(frozen=True, slots=True)
class InvoiceResult:
    """A single invoice, e.g. after a lookup, create or update."""

    invoice: Invoice
    data_source: DataSource
    message: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = {**self.invoice.to_dict(), "dataSource": self.data_source.value}
        if self.message:
            data["message"] = self.message
        return data


@dataclass(frozen=True, slots=True)
class InvoiceTotalsResult:
    """Invoices matching a status filter ("all" or one status) with their count and sum."""

    status: str
    invoices: tuple[Invoice, ...]
    data_source: DataSource

    @property
    def count(self) -> int:
        return len(self.invoices)

    @property
    def total(self) -> Decimal:
        return sum((inv.amount for inv in self.invoices), Decimal("0"))

    @property
    def formatted(self) -> str:
        n = self.count
        verb, noun = ("is", "invoice") if n == 1 else ("are", "invoices")
        label = "total" if self.status == "all" else self.status
        return f"There {verb} {n} {label} {noun} with a total value of ${self.total:,.2f}."

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "total": float(self.total),
            "formatted": self.formatted,
            "status": self.status,
            "dataSource": self.data_source.value,
            "invoices": [inv.to_dict() for inv in self.invoices],
        }


ToolResult = Union[MessageResult, InvoiceResult, InvoiceTotalsResult]
