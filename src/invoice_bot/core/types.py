"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class InvoiceStatus(StrEnum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


# Fixed display order for grouped invoice tables.
STATUS_ORDER: tuple[InvoiceStatus, ...] = (
    InvoiceStatus.PENDING,
    InvoiceStatus.PAID,
    InvoiceStatus.OVERDUE,
)


class DataSource(StrEnum):
    LIVE = "live"
    FALLBACK = "fallback"


class InteractionStatus(StrEnum):
    CREATED = "created"
    STREAMING = "streaming"
    PROCESSING_TOOLS = "processing_tools"
    COMPLETED = "completed"
    FAILED = "failed"


class ToolOutcome(StrEnum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"
