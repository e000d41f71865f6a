from __future__ import annotations

import asyncio
import base64
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from conftest import FakeClock, mock_http, refuse_network
from invoice_bot.core.context import CredentialStore
from invoice_bot.errors import IntegrationError
from invoice_bot.integrations.quickbooks.oauth import TOKEN_ENDPOINT, CredentialManager
from invoice_bot.storage.models import CredentialSet


def _manager(config, clock, handler=refuse_network, credentials: CredentialSet | None = None):
    store = CredentialStore()
    if credentials is not None:
        store.replace(credentials)
    return CredentialManager(config.quickbooks, store, mock_http(handler), clock=clock), store


def _token_response(access="new-access", refresh="new-refresh", expires_in=3600):
    def handler(request: httpx.Request) -> httpx.Response:
        handler.requests.append(request)
        return httpx.Response(
            200,
            json={"access_token": access, "refresh_token": refresh, "expires_in": expires_in},
        )

    handler.requests = []
    return handler


def _connected(clock: FakeClock, expires_in: float) -> CredentialSet:
    return CredentialSet("old-access", "old-refresh", "realm-1", clock() + expires_in)


def test_refresh_happens_at_exactly_the_window_boundary(config, clock) -> None:
    handler = _token_response()
    manager, store = _manager(config, clock, handler, _connected(clock, 300))

    assert asyncio.run(manager.ensure_valid_token()) is True

    assert len(handler.requests) == 1
    form = parse_qs(handler.requests[0].content.decode())
    assert form["grant_type"] == ["refresh_token"]
    assert form["refresh_token"] == ["old-refresh"]
    assert store.current.access_token == "new-access"
    assert store.current.refresh_token == "new-refresh"
    assert store.current.realm_id == "realm-1"
    assert store.current.expires_at == clock() + 3600


def test_no_refresh_outside_the_window(config, clock) -> None:
    manager, store = _manager(config, clock, refuse_network, _connected(clock, 301))

    assert asyncio.run(manager.ensure_valid_token()) is True
    assert store.current.access_token == "old-access"


def test_refresh_when_expiry_unknown(config, clock) -> None:
    handler = _token_response()
    manager, _ = _manager(config, clock, handler, CredentialSet("a", "r", "realm-1", None))

    assert asyncio.run(manager.ensure_valid_token()) is True
    assert len(handler.requests) == 1


def test_without_refresh_token_there_is_no_network_call(config, clock) -> None:
    manager, _ = _manager(config, clock)

    assert asyncio.run(manager.ensure_valid_token()) is False


def test_failed_refresh_keeps_tokens(config, clock) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Token expired"})

    original = _connected(clock, 10)
    manager, store = _manager(config, clock, handler, original)

    assert asyncio.run(manager.ensure_valid_token()) is False
    assert store.current is original


def test_exchange_code_installs_credentials(config, clock) -> None:
    handler = _token_response(access="A", refresh="R", expires_in=3600)
    manager, store = _manager(config, clock, handler)

    asyncio.run(manager.exchange_code("auth-code", "realm-9"))

    request = handler.requests[0]
    assert str(request.url) == TOKEN_ENDPOINT
    expected_auth = base64.b64encode(b"client-id:client-secret").decode()
    assert request.headers["authorization"] == f"Basic {expected_auth}"
    form = parse_qs(request.content.decode())
    assert form["grant_type"] == ["authorization_code"]
    assert form["code"] == ["auth-code"]
    assert form["redirect_uri"] == ["http://localhost:3001/callback"]
    assert store.current == CredentialSet("A", "R", "realm-9", clock() + 3600)
    assert manager.is_authenticated()


def test_exchange_code_failure_leaves_state_untouched(config, clock) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Code already used"})

    manager, store = _manager(config, clock, handler)

    with pytest.raises(IntegrationError) as excinfo:
        asyncio.run(manager.exchange_code("stale", "realm-9"))

    assert excinfo.value.message == "Code already used"
    assert excinfo.value.status_code == 502
    assert store.current.is_empty


def test_authorization_url(config, clock) -> None:
    manager, store = _manager(config, clock)

    url = urlparse(manager.authorization_url())
    query = parse_qs(url.query)

    assert f"{url.scheme}://{url.netloc}{url.path}" == "https://appcenter.intuit.com/connect/oauth2"
    assert query["client_id"] == ["client-id"]
    assert query["response_type"] == ["code"]
    assert query["scope"] == ["com.intuit.quickbooks.accounting"]
    assert query["redirect_uri"] == ["http://localhost:3001/callback"]
    assert query["state"][0]
    assert store.current.is_empty


def test_is_authenticated_follows_expiry(config, clock) -> None:
    manager, _ = _manager(config, clock, credentials=_connected(clock, 60))
    assert manager.is_authenticated()

    clock.advance(60)
    assert not manager.is_authenticated()


def test_disconnect_clears_everything(config, clock) -> None:
    manager, store = _manager(config, clock, credentials=_connected(clock, 3600))

    manager.disconnect()

    assert store.current == CredentialSet()
    assert not manager.is_authenticated()


def test_partial_credentials_are_rejected() -> None:
    with pytest.raises(ValueError):
        CredentialSet(access_token="only-access")


@pytest.mark.parametrize(
    "body",
    [
        {"access_token": "new", "refresh_token": "r2"},
        {"access_token": "new", "refresh_token": "r2", "expires_in": "soon"},
        {"access_token": "", "expires_in": 3600},
        ["not", "an", "object"],
    ],
)
def test_malformed_refresh_response_keeps_tokens(config, clock, body) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=body)

    original = _connected(clock, 60)
    manager, store = _manager(config, clock, handler, original)

    assert asyncio.run(manager.ensure_valid_token()) is False
    assert store.current is original


def test_exchange_code_rejects_incomplete_token_response(config, clock) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"access_token": "a", "expires_in": 3600})

    manager, store = _manager(config, clock, handler)

    with pytest.raises(IntegrationError, match="refresh_token"):
        asyncio.run(manager.exchange_code("auth-code", "realm-9"))

    assert store.current.is_empty


def test_exchange_code_rejects_missing_expiry(config, clock) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"access_token": "a", "refresh_token": "r"})

    manager, store = _manager(config, clock, handler)

    with pytest.raises(IntegrationError, match="expires_in"):
        asyncio.run(manager.exchange_code("auth-code", "realm-9"))

    assert store.current.is_empty
