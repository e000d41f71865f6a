"""In-memory invoice store used as the fallback data source and degraded-mode cache."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Callable, Optional

from invoice_bot.core.types import InvoiceStatus
from invoice_bot.log import get_logger
from invoice_bot.storage.models import Invoice, InvoiceChanges, InvoiceDraft

logger = get_logger(__name__)

SEED_INVOICES: tuple[Invoice, ...] = (
    Invoice("INV-2024-001", "Acme Corporation", Decimal("1500.00"), date(2024, 3, 15), InvoiceStatus.PENDING),
    Invoice("INV-2024-002", "TechStart Inc.", Decimal("2750.50"), date(2024, 3, 14), InvoiceStatus.PAID),
    Invoice("INV-2024-003", "Global Solutions", Decimal("950.25"), date(2024, 3, 10), InvoiceStatus.OVERDUE),
    Invoice("INV-2024-004", "Digital Dynamics", Decimal("3200.00"), date(2024, 3, 13), InvoiceStatus.PAID),
    Invoice("INV-2024-005", "Innovation Labs", Decimal("1875.75"), date(2024, 3, 12), InvoiceStatus.PENDING),
)


class InvoiceStore:
    """Insertion-ordered invoices keyed by unique id.

    Not locked: callers that read, await, then write can lose updates when
    two requests touch the same invoice.
    """

    def __init__(
        self,
        invoices: tuple[Invoice, ...] | list[Invoice] = SEED_INVOICES,
        today: Callable[[], date] = date.today,
    ):
        self._invoices: dict[str, Invoice] = {}
        self._today = today
        for invoice in invoices:
            self.insert(invoice)

    def __len__(self) -> int:
        return len(self._invoices)

    def find(self, invoice_id: str) -> Optional[Invoice]:
        return self._invoices.get(invoice_id)

    def all(self, status: InvoiceStatus | None = None) -> list[Invoice]:
        """All invoices in insertion order, optionally filtered by status."""
        if status is None:
            return list(self._invoices.values())
        return [inv for inv in self._invoices.values() if inv.status == status]

    def insert(self, invoice: Invoice) -> Invoice:
        if invoice.id in self._invoices:
            raise ValueError(f"Duplicate invoice id: {invoice.id}")
        self._invoices[invoice.id] = invoice
        return invoice

    def create(self, draft: InvoiceDraft) -> Invoice:
        """Assign an id and today's date to *draft* and store it."""
        invoice = Invoice(
            id=self.next_id(),
            customer=draft.customer,
            amount=draft.amount,
            date=self._today(),
            status=draft.status,
            items=draft.items,
        )
        self.insert(invoice)
        logger.info("fallback_invoice_created", invoice_id=invoice.id)
        return invoice

    def update(self, invoice_id: str, changes: InvoiceChanges) -> Optional[Invoice]:
        """Apply *changes* to an existing invoice. Returns None when the id is unknown."""
        current = self._invoices.get(invoice_id)
        if current is None:
            return None
        updated = current.with_changes(changes)
        self._invoices[invoice_id] = updated
        logger.info("fallback_invoice_updated", invoice_id=invoice_id)
        return updated

    def upsert(self, invoice: Invoice) -> Invoice:
        """Store *invoice* under its own id, replacing any existing copy in place."""
        self._invoices[invoice.id] = invoice
        return invoice

    def next_id(self) -> str:
        year = self._today().year
        seq = len(self._invoices) + 1
        while f"INV-{year}-{seq:03d}" in self._invoices:
            seq += 1
        return f"INV-{year}-{seq:03d}"
