"""Process-wide state holders, created once at startup and passed to every component."""

from __future__ import annotations

from dataclasses import dataclass, field

from invoice_bot.log import get_logger
from invoice_bot.storage.invoice_store import InvoiceStore
from invoice_bot.storage.models import CredentialSet

logger = get_logger(__name__)


class CredentialStore:
    """Holds the current CredentialSet; every change is a single assignment."""

    def __init__(self) -> None:
        self._credentials = CredentialSet()

    @property
    def current(self) -> CredentialSet:
        return self._credentials

    def replace(self, credentials: CredentialSet) -> None:
        self._credentials = credentials

    def clear(self) -> None:
        self._credentials = CredentialSet()
        logger.info("credentials_cleared")


@dataclass
class AppContext:
    credentials: CredentialStore = field(default_factory=CredentialStore)
    invoices: InvoiceStore = field(default_factory=InvoiceStore)

