"""Plain-text tables for invoice tool results."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Iterable

from invoice_bot.ai.results import InvoiceResult, InvoiceTotalsResult
from invoice_bot.core.types import STATUS_ORDER
from invoice_bot.storage.models import Invoice

# (header, width) per column; cells are left-aligned, padded to width and
# shortened with an ellipsis when they would touch the next column.
INVOICE_COLUMNS = (("ID", 14), ("Customer", 24), ("Amount", 14), ("Date", 14), ("Status", 8))
LINE_ITEM_COLUMNS = (("Description", 28), ("Qty", 8), ("Unit Price", 14), ("Total", 14))


def format_currency(amount: Decimal) -> str:
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def format_date(value: date) -> str:
    """``Mar 5, 2024`` style, without a leading zero on the day."""
    return f"{value:%b} {value.day}, {value.year}"


def format_quantity(quantity: Decimal) -> str:
    return f"{quantity.normalize():f}" if quantity == quantity.to_integral_value() else str(quantity)


def _cell(text: str, width: int) -> str:
    if len(text) > width - 1:
        text = text[: width - 2] + "…"
    return text.ljust(width)


def _row(cells: Iterable[str], columns: tuple[tuple[str, int], ...]) -> str:
    return "".join(_cell(cell, width) for cell, (_, width) in zip(cells, columns)).rstrip()


def _table(rows: list[list[str]], columns: tuple[tuple[str, int], ...]) -> list[str]:
    header = _row((name for name, _ in columns), columns)
    rule = "-" * sum(width for _, width in columns)
    return [header, rule, *(_row(r, columns) for r in rows)]


def invoice_table(invoices: Iterable[Invoice]) -> list[str]:
    rows = [
        [inv.id, inv.customer, format_currency(inv.amount), format_date(inv.date), inv.status.value]
        for inv in invoices
    ]
    return _table(rows, INVOICE_COLUMNS)


def render_totals(result: InvoiceTotalsResult) -> str:
    label = "All Invoices" if result.status == "all" else f"{result.status.title()} Invoices"
    lines = [
        f"Invoice Summary: {label}",
        f"Count: {result.count}",
        f"Total Value: {format_currency(result.total)}",
        f"Data Source: {result.data_source.value}",
    ]
    if not result.invoices:
        lines += ["", "No invoices found."]
        return "\n".join(lines)

    if result.status != "all":
        lines += ["", *invoice_table(result.invoices)]
        return "\n".join(lines)

    for status in STATUS_ORDER:
        group = [inv for inv in result.invoices if inv.status == status]
        if not group:
            continue
        lines += ["", f"{status.value.title()} Invoices ({len(group)})", *invoice_table(group)]
    return "\n".join(lines)


def render_invoice_detail(result: InvoiceResult) -> str:
    invoice = result.invoice
    lines = [
        f"Invoice ID:  {invoice.id}",
        f"Customer:    {invoice.customer}",
        f"Amount:      {format_currency(invoice.amount)}",
        f"Date:        {format_date(invoice.date)}",
        f"Status:      {invoice.status.value}",
        f"Data Source: {result.data_source.value}",
    ]
    if invoice.items:
        rows = [
            [
                item.description,
                format_quantity(item.quantity),
                format_currency(item.price),
                format_currency(item.total),
            ]
            for item in invoice.items
        ]
        lines += ["", "Line Items", *_table(rows, LINE_ITEM_COLUMNS)]
    return "\n".join(lines)
