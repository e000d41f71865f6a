from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import ScriptedAIClient
from invoice_bot.ai.client import ToolCall
from invoice_bot.api.server import create_app
from invoice_bot.client.demux import SegmentKind, StreamDemultiplexer
from invoice_bot.config import QuickBooksConfig
from invoice_bot.errors import IntegrationError

SHOW_ALL = {"messages": [{"role": "user", "content": "show all invoices"}]}


@pytest.fixture
def client_for(make_bot):
    clients = []

    def _client(**kwargs) -> TestClient:
        client = TestClient(create_app(make_bot(**kwargs)))
        client.__enter__()
        clients.append(client)
        return client

    yield _client
    for client in clients:
        client.__exit__(None, None, None)


def _token_endpoint(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        200, json={"access_token": "access", "refresh_token": "refresh", "expires_in": 3600}
    )


def test_health(client_for) -> None:
    response = client_for().get("/api/test")

    assert response.status_code == 200
    assert response.json() == {"message": "Server is running!"}


def test_show_all_invoices_end_to_end(client_for) -> None:
    model = ScriptedAIClient(
        tokens=["Here is a summary ", "of your invoices."],
        tool_calls=[ToolCall("toolu_1", "getTotalInvoices", {"status": "all"})],
    )
    client = client_for(ai_client=model)

    response = client.post("/api/chat", json=SHOW_ALL)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    demux = StreamDemultiplexer()
    demux.feed(response.content)
    demux.finish()
    assert demux.display_text == "Here is a summary of your invoices."
    assert [s.kind for s in demux.segments] == [SegmentKind.PROCESSING, SegmentKind.RESULT]

    result = demux.segments[1]
    assert result.tool_name == "getTotalInvoices"
    header, *sections = result.text.split("\n\n")
    assert "Count: 5" in header.splitlines()
    tables = []
    for section in sections:
        title, _columns, _rule, *rows = section.splitlines()
        tables.append((title, len(rows)))
    assert tables == [("Pending Invoices (2)", 2), ("Paid Invoices (2)", 2), ("Overdue Invoices (1)", 1)]

    request = model.requests[0]
    assert request["messages"] == SHOW_ALL["messages"]
    assert {tool["name"] for tool in request["tools"]} == {
        "getInvoiceDetails",
        "createInvoice",
        "updateInvoice",
        "getTotalInvoices",
    }
    assert model.streams[0].closed


def test_progress_reports_last_tool_result(client_for) -> None:
    model = ScriptedAIClient(tool_calls=[ToolCall("toolu_1", "getTotalInvoices", {"status": "paid"})])
    client = client_for(ai_client=model)

    response = client.post("/api/chat", json={**SHOW_ALL, "interactionId": "int_fixed"})
    assert response.headers["x-interaction-id"] == "int_fixed"

    progress = client.get("/api/chat/progress/int_fixed").json()
    assert progress["status"] == "completed"
    assert progress["error"] is None
    assert progress["result"]["count"] == 2
    assert progress["result"]["formatted"] == "There are 2 paid invoices with a total value of $5,950.50."


def test_tool_errors_are_in_band(client_for) -> None:
    model = ScriptedAIClient(tool_calls=[ToolCall("toolu_1", "getInvoiceDetails", {"invoiceId": "nope"})])
    client = client_for(ai_client=model)

    response = client.post("/api/chat", json=SHOW_ALL)

    assert response.status_code == 200
    assert response.text.endswith("\n\n[Tool Error]: Invoice not found: nope")
    progress = client.get(f"/api/chat/progress/{response.headers['x-interaction-id']}").json()
    assert progress == {"status": "completed", "result": None, "error": "Invoice not found: nope"}


def test_unknown_interaction(client_for) -> None:
    response = client_for().get("/api/chat/progress/int_missing")

    assert response.status_code == 404
    assert response.json() == {"error": "Interaction not found"}


def test_malformed_chat_request_is_rejected_before_streaming(client_for) -> None:
    model = ScriptedAIClient()
    client = client_for(ai_client=model)

    response = client.post("/api/chat", json={"messages": []})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] is True
    assert body["code"] == "INVALID_ARGUMENT"
    assert body["details"]["invalidArgs"] == ["messages"]
    assert model.requests == []


def test_upstream_failure_before_streaming_is_a_502(client_for) -> None:
    model = ScriptedAIClient(open_error=IntegrationError("Model provider rate limit exceeded", "Anthropic"))
    client = client_for(ai_client=model)

    response = client.post("/api/chat", json={**SHOW_ALL, "interactionId": "int_limited"})

    assert response.status_code == 502
    assert response.json() == {
        "error": True,
        "message": "Model provider rate limit exceeded",
        "code": "API_INTEGRATION_ERROR",
        "details": {"api": "Anthropic", "originalError": None},
    }
    assert client.get("/api/chat/progress/int_limited").json()["status"] == "failed"


def test_upstream_failure_mid_stream_ends_with_error_frame(client_for) -> None:
    model = ScriptedAIClient(
        tokens=["Partial answer"],
        stream_error=IntegrationError("Model provider returned HTTP 529", "Anthropic"),
    )
    client = client_for(ai_client=model)

    response = client.post("/api/chat", json=SHOW_ALL)

    assert response.text == "Partial answer\n\n[Tool Error]: Model provider returned HTTP 529"
    progress = client.get(f"/api/chat/progress/{response.headers['x-interaction-id']}").json()
    assert progress["status"] == "failed"


def test_auth_url(client_for) -> None:
    body = client_for().get("/api/quickbooks/auth").json()

    query = parse_qs(urlparse(body["authUrl"]).query)
    assert query["client_id"] == ["client-id"]
    assert query["scope"] == ["com.intuit.quickbooks.accounting"]


def test_auth_url_requires_credentials(config, client_for) -> None:
    config.quickbooks = QuickBooksConfig()

    response = client_for().get("/api/quickbooks/auth")

    assert response.status_code == 500
    assert set(response.json()) == {"error", "message"}


def test_callback_connects_and_redirects(client_for) -> None:
    client = client_for(handler=_token_endpoint)

    response = client.get(
        "/callback",
        params={"code": "abc", "state": "xyz", "realmId": "realm-42"},
        follow_redirects=False,
    )

    assert response.status_code in (302, 307)
    assert response.headers["location"] == "http://localhost:3000/?connected=true"
    assert client.get("/api/quickbooks/status").json() == {"authenticated": True, "realmId": "realm-42"}

    assert client.post("/api/quickbooks/disconnect").json() == {"success": True}
    assert client.get("/api/quickbooks/status").json() == {"authenticated": False}


def test_callback_relays_provider_error(client_for) -> None:
    response = client_for().get(
        "/callback",
        params={"error": "access_denied", "error_description": "User cancelled"},
        follow_redirects=False,
    )

    location = urlparse(response.headers["location"])
    assert parse_qs(location.query) == {"error": ["access_denied"], "description": ["User cancelled"]}


def test_callback_reports_failed_exchange(client_for) -> None:
    def rejecting(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Code expired"})

    client = client_for(handler=rejecting)

    response = client.get("/callback", params={"code": "old", "realmId": "r"}, follow_redirects=False)

    query = parse_qs(urlparse(response.headers["location"]).query)
    assert query == {"error": ["token_exchange_failed"], "description": ["Code expired"]}
    assert client.get("/api/quickbooks/status").json() == {"authenticated": False}


def test_callback_redirects_on_incomplete_token_response(client_for) -> None:
    def incomplete(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"access_token": "a"})

    client = client_for(handler=incomplete)

    response = client.get(
        "/callback", params={"code": "c", "state": "s", "realmId": "1"}, follow_redirects=False
    )

    assert response.status_code in (302, 307)
    query = parse_qs(urlparse(response.headers["location"]).query)
    assert query["error"] == ["token_exchange_failed"]
    assert "expires_in" in query["description"][0]
    assert client.get("/api/quickbooks/status").json() == {"authenticated": False}


def test_invoice_listing_uses_fallback_when_disconnected(client_for) -> None:
    client = client_for()

    listing = client.get("/api/invoices").json()
    single = client.get("/api/invoices/INV-2024-004").json()

    assert listing["dataSource"] == "fallback"
    assert [inv["id"] for inv in listing["invoices"]] == [f"INV-2024-00{n}" for n in range(1, 6)]
    assert single["customer"] == "Digital Dynamics"
    assert single["amount"] == 3200.0
    assert client.get("/api/invoices/INV-0").status_code == 404


def test_create_invoice_through_the_api(client_for) -> None:
    client = client_for()

    response = client.post(
        "/api/invoices",
        json={
            "customer": "Northwind",
            "amount": 300,
            "status": "pending",
            "items": [{"description": "Audit", "quantity": 3, "price": 100}],
        },
    )

    assert response.status_code == 201
    created = response.json()
    assert created["id"] == "INV-2024-006"
    assert created["date"] == "2024-03-20"
    assert created["items"] == [{"description": "Audit", "quantity": 3.0, "price": 100.0}]
    assert created["dataSource"] == "fallback"
    assert client.get("/api/invoices/INV-2024-006").json()["customer"] == "Northwind"


def test_create_invoice_requires_customer_amount_and_status(client_for) -> None:
    client = client_for()

    missing = client.post("/api/invoices", json={"customer": "Northwind", "amount": 300})
    malformed = client.post("/api/invoices", json={"customer": "N", "amount": "lots", "status": "paid"})

    assert missing.status_code == 400
    assert missing.json() == {"error": "Missing required fields"}
    assert malformed.status_code == 400
    assert malformed.json()["code"] == "INVALID_ARGUMENT"
    assert len(client.get("/api/invoices").json()["invoices"]) == 5


def test_update_invoice_through_the_api(client_for) -> None:
    client = client_for()

    updated = client.put("/api/invoices/INV-2024-003", json={"status": "paid"})
    unchanged = client.put("/api/invoices/INV-2024-001", json={})

    assert updated.status_code == 200
    assert updated.json()["status"] == "paid"
    assert updated.json()["amount"] == 950.25
    assert unchanged.json()["status"] == "pending"
    assert client.put("/api/invoices/INV-0", json={"amount": 5}).status_code == 404
    assert client.put("/api/invoices/INV-0", json={}).json() == {"error": "Invoice not found"}
