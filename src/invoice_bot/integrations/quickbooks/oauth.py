"""OAuth2 credential lifecycle for the QuickBooks Online integration.

State lives in a ``CredentialStore``; this module only swaps whole
``CredentialSet`` values in and out of it::

    Disconnected --exchange_code--> Connected --(expiry - 5 min)--> NearExpiry
    NearExpiry --refresh ok--> Connected
    any --disconnect--> Disconnected

A failed refresh keeps the old tokens so a later request can retry.
"""

from __future__ import annotations

import secrets
import time
from typing import Callable, Optional
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from invoice_bot.config import QuickBooksConfig
from invoice_bot.core.context import CredentialStore
from invoice_bot.errors import IntegrationError
from invoice_bot.log import get_logger
from invoice_bot.storage.models import CredentialSet

logger = get_logger(__name__)

AUTHORIZATION_ENDPOINT = "https://appcenter.intuit.com/connect/oauth2"
TOKEN_ENDPOINT = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
ACCOUNTING_SCOPE = "com.intuit.quickbooks.accounting"
REFRESH_WINDOW_SECONDS = 5 * 60


class TokenResponse(BaseModel):
    """Body of a successful token endpoint call."""

    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(min_length=1)
    refresh_token: Optional[str] = None
    expires_in: float = Field(gt=0)
    realm_id: Optional[str] = Field(default=None, alias="realmId")


class CredentialManager:
    """Obtains, refreshes, and discards QuickBooks OAuth2 tokens."""

    def __init__(
        self,
        config: QuickBooksConfig,
        store: CredentialStore,
        http_client: httpx.AsyncClient,
        clock: Callable[[], float] = time.time,
    ):
        self._config = config
        self._store = store
        self._http = http_client
        self._clock = clock

    @property
    def credentials(self) -> CredentialSet:
        return self._store.current

    def authorization_url(self) -> str:
        """Build the consent URL. Does not touch stored state."""
        state = secrets.token_urlsafe(12)
        query = urlencode(
            {
                "client_id": self._config.client_id,
                "response_type": "code",
                "scope": ACCOUNTING_SCOPE,
                "redirect_uri": self._config.redirect_uri,
                "state": state,
            }
        )
        logger.debug("authorization_url_built", state=state)
        return f"{AUTHORIZATION_ENDPOINT}?{query}"

    async def exchange_code(self, code: str, realm_id: str | None = None) -> CredentialSet:
        """Trade an authorization code for tokens and install them.

        Raises IntegrationError with the provider's description on failure;
        the stored credentials are left as they were.
        """
        payload = await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self._config.redirect_uri,
            }
        )
        if payload.refresh_token is None:
            raise IntegrationError("Token response has no refresh_token", "QuickBooks OAuth")
        credentials = CredentialSet(
            access_token=payload.access_token,
            refresh_token=payload.refresh_token,
            realm_id=realm_id or payload.realm_id,
            expires_at=self._clock() + payload.expires_in,
        )
        self._store.replace(credentials)
        logger.info("quickbooks_connected", realm_id=credentials.realm_id)
        return credentials

    def is_authenticated(self) -> bool:
        creds = self._store.current
        return (
            creds.access_token is not None
            and creds.refresh_token is not None
            and (creds.expires_at or 0) > self._clock()
        )

    def needs_refresh(self) -> bool:
        expires_at = self._store.current.expires_at
        return expires_at is None or expires_at <= self._clock() + REFRESH_WINDOW_SECONDS

    async def ensure_valid_token(self) -> bool:
        """Return True when a usable access token is stored, refreshing it first if it is near expiry."""
        current = self._store.current
        if current.refresh_token is None:
            return False
        if not self.needs_refresh():
            return True

        try:
            payload = await self._token_request(
                {"grant_type": "refresh_token", "refresh_token": current.refresh_token}
            )
        except (IntegrationError, httpx.HTTPError) as e:
            logger.warning("token_refresh_failed", error=str(e))
            return False

        self._store.replace(
            CredentialSet(
                access_token=payload.access_token,
                refresh_token=payload.refresh_token or current.refresh_token,
                realm_id=current.realm_id,
                expires_at=self._clock() + payload.expires_in,
            )
        )
        logger.info("token_refreshed", realm_id=current.realm_id)
        return True

    def disconnect(self) -> None:
        self._store.clear()
        logger.info("quickbooks_disconnected")

    async def _token_request(self, form: dict[str, str]) -> TokenResponse:
        try:
            response = await self._http.post(
                TOKEN_ENDPOINT,
                data=form,
                auth=httpx.BasicAuth(self._config.client_id, self._config.client_secret),
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise IntegrationError("Token endpoint unreachable", "QuickBooks OAuth", str(e)) from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        if response.status_code != 200:
            description = (
                payload.get("error_description")
                or payload.get("error")
                or f"HTTP {response.status_code}"
            )
            raise IntegrationError(description, "QuickBooks OAuth", payload.get("error"))

        try:
            return TokenResponse.model_validate(payload)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise IntegrationError(
                f"Malformed token response: {fields}", "QuickBooks OAuth", str(e)
            ) from e
