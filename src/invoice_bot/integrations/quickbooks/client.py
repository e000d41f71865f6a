"""Awaitable adapter over the QuickBooks Online accounting REST API.

Everything the rest of the app needs from QuickBooks goes through
``QuickBooksClient``; responses are converted to ``Invoice`` models here and
every failure surfaces as ``IntegrationError``.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Callable, Optional

import httpx

from invoice_bot.config import QuickBooksConfig
from invoice_bot.core.types import InvoiceStatus
from invoice_bot.errors import IntegrationError
from invoice_bot.log import get_logger
from invoice_bot.storage.models import CredentialSet, Invoice, InvoiceChanges, InvoiceDraft, LineItem

logger = get_logger(__name__)

API_NAME = "QuickBooks"
BASE_URLS = {
    "sandbox": "https://sandbox-quickbooks.api.intuit.com",
    "production": "https://quickbooks.api.intuit.com",
}
MAX_RESULTS = 1000


def _decimal(value: Any, default: str = "0") -> Decimal:
    if value is None:
        return Decimal(default)
    return Decimal(str(value))


def invoice_from_qbo(data: dict[str, Any], today: date) -> Invoice:
    """Convert a QuickBooks Invoice entity into an Invoice.

    QuickBooks has no status field: a zero balance is paid, an open balance
    past its due date is overdue, anything else is pending.
    """
    balance = _decimal(data.get("Balance"))
    due_date = data.get("DueDate")
    if balance <= 0:
        status = InvoiceStatus.PAID
    elif due_date and date.fromisoformat(due_date) < today:
        status = InvoiceStatus.OVERDUE
    else:
        status = InvoiceStatus.PENDING

    items: list[LineItem] = []
    for line in data.get("Line", []):
        if line.get("DetailType") != "SalesItemLineDetail":
            continue
        detail = line.get("SalesItemLineDetail", {})
        amount = _decimal(line.get("Amount"))
        quantity = _decimal(detail.get("Qty"), "1")
        price = _decimal(detail.get("UnitPrice")) if "UnitPrice" in detail else amount
        description = line.get("Description") or detail.get("ItemRef", {}).get("name", "")
        items.append(LineItem(description=description, quantity=quantity, price=price))

    customer_ref = data.get("CustomerRef", {})
    txn_date = data.get("TxnDate")
    return Invoice(
        id=str(data["Id"]),
        customer=customer_ref.get("name") or str(customer_ref.get("value", "")),
        amount=_decimal(data.get("TotalAmt")),
        date=date.fromisoformat(txn_date) if txn_date else today,
        status=status,
        items=tuple(items),
    )


class QuickBooksClient:
    """Invoice operations against one QuickBooks company (realm)."""

    def __init__(
        self,
        config: QuickBooksConfig,
        http_client: httpx.AsyncClient,
        today: Callable[[], date] = date.today,
    ):
        self._config = config
        self._http = http_client
        self._today = today

    async def get_invoice(self, credentials: CredentialSet, invoice_id: str) -> Optional[Invoice]:
        data = await self._get_invoice_entity(credentials, invoice_id)
        if data is None:
            return None
        return invoice_from_qbo(data, self._today())

    async def list_invoices(self, credentials: CredentialSet) -> list[Invoice]:
        rows = await self._query(credentials, "Invoice", f"select * from Invoice maxresults {MAX_RESULTS}")
        today = self._today()
        return [invoice_from_qbo(row, today) for row in rows]

    async def create_invoice(self, credentials: CredentialSet, draft: InvoiceDraft) -> Invoice:
        customer_id = await self._customer_id(credentials, draft.customer)
        body = {
            "CustomerRef": {"value": customer_id, "name": draft.customer},
            "TxnDate": self._today().isoformat(),
            "Line": self._lines(draft.items, draft.amount),
        }
        created = (await self._request(credentials, "POST", "invoice", json=body))["Invoice"]
        logger.info("quickbooks_invoice_created", invoice_id=created.get("Id"))

        if draft.status == InvoiceStatus.PAID:
            await self._record_payment(credentials, created)
            return await self.get_invoice(credentials, str(created["Id"])) or invoice_from_qbo(created, self._today())
        return invoice_from_qbo(created, self._today())

    async def update_invoice(
        self, credentials: CredentialSet, invoice_id: str, changes: InvoiceChanges
    ) -> Optional[Invoice]:
        current = await self._get_invoice_entity(credentials, invoice_id)
        if current is None:
            return None

        if changes.amount is not None or changes.items is not None:
            items = changes.items if changes.items is not None else ()
            amount = changes.amount if changes.amount is not None else _decimal(current.get("TotalAmt"))
            body = {
                "Id": current["Id"],
                "SyncToken": current["SyncToken"],
                "sparse": True,
                "Line": self._lines(items, amount),
            }
            current = (await self._request(credentials, "POST", "invoice", json=body))["Invoice"]
            logger.info("quickbooks_invoice_updated", invoice_id=invoice_id)

        if changes.status is not None:
            open_balance = _decimal(current.get("Balance")) > 0
            if changes.status == InvoiceStatus.PAID and open_balance:
                await self._record_payment(credentials, current)
                current = await self._get_invoice_entity(credentials, invoice_id) or current
            elif changes.status != InvoiceStatus.PAID and not open_balance:
                raise IntegrationError(
                    f"Invoice {invoice_id} is paid in QuickBooks and cannot be reopened",
                    API_NAME,
                )

        return invoice_from_qbo(current, self._today())

    # ── internals ───────────────────────────────────────────────

    def _lines(self, items: tuple[LineItem, ...], amount: Decimal) -> list[dict[str, Any]]:
        if not items:
            return [
                {
                    "Amount": float(amount),
                    "DetailType": "SalesItemLineDetail",
                    "SalesItemLineDetail": {"ItemRef": {"value": self._config.default_item_id}},
                }
            ]
        return [
            {
                "Amount": float(item.total),
                "Description": item.description,
                "DetailType": "SalesItemLineDetail",
                "SalesItemLineDetail": {
                    "ItemRef": {"value": self._config.default_item_id},
                    "Qty": float(item.quantity),
                    "UnitPrice": float(item.price),
                },
            }
            for item in items
        ]

    async def _record_payment(self, credentials: CredentialSet, invoice: dict[str, Any]) -> None:
        balance = _decimal(invoice.get("Balance"))
        body = {
            "CustomerRef": {"value": invoice["CustomerRef"]["value"]},
            "TotalAmt": float(balance),
            "Line": [
                {
                    "Amount": float(balance),
                    "LinkedTxn": [{"TxnId": str(invoice["Id"]), "TxnType": "Invoice"}],
                }
            ],
        }
        await self._request(credentials, "POST", "payment", json=body)
        logger.info("quickbooks_payment_recorded", invoice_id=invoice["Id"], amount=str(balance))

    async def _customer_id(self, credentials: CredentialSet, name: str) -> str:
        escaped = name.replace("'", "\\'")
        rows = await self._query(
            credentials, "Customer", f"select * from Customer where DisplayName = '{escaped}'"
        )
        if rows:
            return str(rows[0]["Id"])
        created = await self._request(credentials, "POST", "customer", json={"DisplayName": name})
        logger.info("quickbooks_customer_created", customer=name)
        return str(created["Customer"]["Id"])

    async def _get_invoice_entity(self, credentials: CredentialSet, invoice_id: str) -> Optional[dict[str, Any]]:
        safe_id = invoice_id.replace("'", "")
        rows = await self._query(credentials, "Invoice", f"select * from Invoice where Id = '{safe_id}'")
        return rows[0] if rows else None

    async def _query(self, credentials: CredentialSet, entity: str, statement: str) -> list[dict[str, Any]]:
        payload = await self._request(credentials, "GET", "query", params={"query": statement})
        return payload.get("QueryResponse", {}).get(entity, [])

    async def _request(
        self,
        credentials: CredentialSet,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if credentials.access_token is None or credentials.realm_id is None:
            raise IntegrationError("Not authenticated with QuickBooks", API_NAME)

        base = BASE_URLS[self._config.environment]
        url = f"{base}/v3/company/{credentials.realm_id}/{path}"
        query = {"minorversion": self._config.minor_version, **(params or {})}

        try:
            response = await self._http.request(
                method,
                url,
                params=query,
                json=json,
                headers={
                    "Authorization": f"Bearer {credentials.access_token}",
                    "Accept": "application/json",
                },
                timeout=self._config.request_timeout,
            )
        except httpx.HTTPError as e:
            raise IntegrationError("QuickBooks request failed", API_NAME, str(e)) from e

        try:
            payload = response.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            raise IntegrationError(f"Malformed QuickBooks response (HTTP {response.status_code})", API_NAME)

        fault = payload.get("Fault")
        if response.status_code >= 400 or fault:
            errors = (fault or {}).get("Error") or [{}]
            message = errors[0].get("Detail") or errors[0].get("Message") or f"HTTP {response.status_code}"
            raise IntegrationError(message, API_NAME, (fault or {}).get("type"))
        return payload
