"""Data models for the invoice store."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from invoice_bot.core.types import InvoiceStatus


@dataclass(frozen=True, slots=True)
class LineItem:
    description: str
    quantity: Decimal
    price: Decimal  # unit price

    @property
    def total(self) -> Decimal:
        return self.quantity * self.price

    def to_dict(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "quantity": float(self.quantity),
            "price": float(self.price),
        }


@dataclass(frozen=True, slots=True)
class Invoice:
    id: str
    customer: str
    amount: Decimal
    date: date
    status: InvoiceStatus
    items: tuple[LineItem, ...] = ()

    def with_changes(self, changes: InvoiceChanges) -> Invoice:
        """Return a copy with every field set in *changes* applied; the id never changes."""
        updates: dict[str, Any] = {}
        if changes.status is not None:
            updates["status"] = changes.status
        if changes.amount is not None:
            updates["amount"] = changes.amount
        if changes.items is not None:
            updates["items"] = tuple(changes.items)
        return replace(self, **updates)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "customer": self.customer,
            "amount": float(self.amount),
            "date": self.date.isoformat(),
            "status": self.status.value,
            "items": [item.to_dict() for item in self.items],
        }


@dataclass(frozen=True, slots=True)
class InvoiceDraft:
    """Fields supplied when creating an invoice; id and date are assigned by the store."""

    customer: str
    amount: Decimal
    status: InvoiceStatus
    items: tuple[LineItem, ...] = ()


@dataclass(frozen=True, slots=True)
class InvoiceChanges:
    status: Optional[InvoiceStatus] = None
    amount: Optional[Decimal] = None
    items: Optional[tuple[LineItem, ...]] = None

    def is_empty(self) -> bool:
        return self.status is None and self.amount is None and self.items is None


@dataclass(frozen=True, slots=True)
class CredentialSet:
    """OAuth2 token state for the accounting integration.

    Access and refresh tokens travel together: a set holds both or neither.
    Instances are replaced wholesale, never edited in place.
    """

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    realm_id: Optional[str] = None
    expires_at: Optional[float] = None  # epoch seconds

    def __post_init__(self) -> None:
        if (self.access_token is None) != (self.refresh_token is None):
            raise ValueError("access_token and refresh_token must be set together")

    @property
    def is_empty(self) -> bool:
        return self.refresh_token is None
