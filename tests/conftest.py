from __future__ import annotations

import json
from datetime import date
from typing import Any, AsyncIterator, Callable, Optional

import httpx
import pytest

from invoice_bot.ai.client import AIClient, ModelStream, ToolCall
from invoice_bot.app import InvoiceBotApp
from invoice_bot.config import AppConfig, QuickBooksConfig
from invoice_bot.storage.models import CredentialSet

START_TIME = 1_700_000_000.0
TODAY = date(2024, 3, 20)


class FakeClock:
    """Manually advanced stand-in for time.time."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedModelStream(ModelStream):
    def __init__(
        self,
        tokens: list[str],
        tool_calls: list[ToolCall] | None = None,
        error: Optional[Exception] = None,
    ):
        self._tokens = tokens
        self._tool_calls = tool_calls or []
        self._error = error
        self.closed = False

    @property
    def tool_calls(self) -> list[ToolCall]:
        return list(self._tool_calls)

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        for token in self._tokens:
            yield token
        if self._error is not None:
            raise self._error

    async def aclose(self) -> None:
        self.closed = True


class ScriptedAIClient(AIClient):
    """Replays the same scripted generation pass for every request."""

    def __init__(
        self,
        tokens: list[str] | None = None,
        tool_calls: list[ToolCall] | None = None,
        open_error: Optional[Exception] = None,
        stream_error: Optional[Exception] = None,
    ):
        self.tokens = tokens or []
        self.tool_calls = tool_calls or []
        self.open_error = open_error
        self.stream_error = stream_error
        self.requests: list[dict[str, Any]] = []
        self.streams: list[ScriptedModelStream] = []
        self.closed = False

    async def open_stream(self, system, messages, tools=None, model="", max_tokens=4096, temperature=0.0):
        self.requests.append({"system": system, "messages": messages, "tools": tools, "model": model})
        if self.open_error is not None:
            raise self.open_error
        stream = ScriptedModelStream(self.tokens, self.tool_calls, self.stream_error)
        self.streams.append(stream)
        return stream

    async def close(self) -> None:
        self.closed = True


def mock_http(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def refuse_network(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected network call: {request.method} {request.url}")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        quickbooks=QuickBooksConfig(
            client_id="client-id",
            client_secret="client-secret",
            redirect_uri="http://localhost:3001/callback",
            frontend_url="http://localhost:3000",
        )
    )


@pytest.fixture
def make_bot(config, clock):
    """Build an InvoiceBotApp around a scripted model and a mocked HTTP transport."""

    def _make(
        ai_client: Optional[AIClient] = None,
        handler: Callable[[httpx.Request], httpx.Response] = refuse_network,
    ) -> InvoiceBotApp:
        return InvoiceBotApp(
            config,
            ai_client=ai_client or ScriptedAIClient(tokens=["Hello"]),
            http_client=mock_http(handler),
            clock=clock,
            today=lambda: TODAY,
        )

    return _make


class FakeQuickBooks:
    """In-memory stand-in for the QuickBooks REST endpoints the client uses."""

    def __init__(self, invoices: list[dict[str, Any]] | None = None):
        self.invoices: dict[str, dict[str, Any]] = {str(inv["Id"]): inv for inv in invoices or []}
        self.requests: list[httpx.Request] = []
        self.payments: list[dict[str, Any]] = []
        self.fail_with: Optional[int] = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            return httpx.Response(
                self.fail_with,
                json={"Fault": {"Error": [{"Message": "Service unavailable"}], "type": "SystemFault"}},
            )

        path = request.url.path
        if path.endswith("/query"):
            return self._query(request.url.params["query"])

        body = json.loads(request.content or b"{}")
        if path.endswith("/customer"):
            return httpx.Response(200, json={"Customer": {"Id": "77", "DisplayName": body["DisplayName"]}})
        if path.endswith("/payment"):
            self.payments.append(body)
            invoice_id = body["Line"][0]["LinkedTxn"][0]["TxnId"]
            self.invoices[invoice_id]["Balance"] = 0
            return httpx.Response(200, json={"Payment": {"Id": "p1"}})
        if path.endswith("/invoice"):
            return self._save_invoice(body)
        return httpx.Response(404, json={"Fault": {"Error": [{"Message": "Not found"}]}})

    def _query(self, statement: str) -> httpx.Response:
        if "from Customer" in statement:
            return httpx.Response(200, json={"QueryResponse": {}})
        rows = list(self.invoices.values())
        if "where Id" in statement:
            wanted = statement.rsplit("'", 2)[1]
            rows = [row for row in rows if row["Id"] == wanted]
        return httpx.Response(200, json={"QueryResponse": {"Invoice": rows} if rows else {}})

    def _save_invoice(self, body: dict[str, Any]) -> httpx.Response:
        total = sum(line["Amount"] for line in body["Line"])
        if "Id" in body:
            entity = self.invoices[body["Id"]]
            entity.update(Line=body["Line"], TotalAmt=total, Balance=total)
            entity["SyncToken"] = str(int(entity["SyncToken"]) + 1)
        else:
            new_id = str(100 + len(self.invoices))
            entity = {
                "Id": new_id,
                "SyncToken": "0",
                "CustomerRef": body["CustomerRef"],
                "TxnDate": body["TxnDate"],
                "DueDate": body["TxnDate"],
                "Line": body["Line"],
                "TotalAmt": total,
                "Balance": total,
            }
            self.invoices[new_id] = entity
        return httpx.Response(200, json={"Invoice": entity})


def qbo_invoice(invoice_id: str, customer: str, total: float, balance: float, due: str = "2024-04-01") -> dict:
    return {
        "Id": invoice_id,
        "SyncToken": "0",
        "CustomerRef": {"value": "1", "name": customer},
        "TxnDate": "2024-03-01",
        "DueDate": due,
        "TotalAmt": total,
        "Balance": balance,
        "Line": [
            {
                "Amount": total,
                "Description": "Consulting",
                "DetailType": "SalesItemLineDetail",
                "SalesItemLineDetail": {"ItemRef": {"value": "1"}, "Qty": 1, "UnitPrice": total},
            },
            {"Amount": total, "DetailType": "SubTotalLineDetail", "SubTotalLineDetail": {}},
        ],
    }


def connect(bot: InvoiceBotApp, clock: FakeClock, expires_in: float = 3600) -> None:
    """Install valid QuickBooks credentials without going through OAuth."""
    bot.context.credentials.replace(CredentialSet("access", "refresh", "realm-1", clock() + expires_in))
