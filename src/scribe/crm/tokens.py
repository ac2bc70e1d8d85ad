"""OAuth access-token lifecycle for CRM credentials.

TokenLifecycle decides whether a stored credential's access token is still
usable and exchanges the refresh token for a new one when it isn't.

Key behaviors:
- Staleness: a null expiry is stale; otherwise stale once ``now`` is within
  the look-ahead buffer (5 minutes) of ``expires_at``. Compared on absolute
  timestamps.
- ensure_valid() re-reads the credential from the store before refreshing,
  so a refresh token already rotated by another task (user request vs.
  scheduled sweep) is not replayed.
- refresh() keeps the old refresh token when the provider omits a new one,
  defaults ``expires_in`` to 7200s, and merges provider extras such as
  Salesforce ``instance_url`` into metadata without dropping other keys.
- The refreshed credential is persisted with one atomic store update.

One TokenLifecycle serves one provider; refreshing another provider's
credential raises InvalidProviderError.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, Field

from src.scribe.config import Settings
from src.scribe.core.monitoring import crm_token_refresh_total
from src.scribe.crm.errors import (
    CRMError,
    InvalidProviderError,
    NoRefreshTokenError,
    TokenRefreshFailedError,
    UpdateFailedError,
)
from src.scribe.crm.http import response_body, send
from src.scribe.crm.schemas import Credential, Provider
from src.scribe.crm.store import CredentialStore

logger = structlog.get_logger(__name__)

# Salesforce refresh responses usually omit expires_in.
DEFAULT_EXPIRES_IN_SECONDS = 7200
DEFAULT_REFRESH_BUFFER = timedelta(minutes=5)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OAuthClientConfig(BaseModel):
    """OAuth app registration used to refresh one provider's tokens.

    Attributes:
        provider: Provider whose credentials this config can refresh.
        token_url: Provider OAuth token endpoint.
        client_id / client_secret: App credentials sent in the form body.
        metadata_fields: Token-response key -> credential metadata key for
            provider extras that must be carried forward (Salesforce
            ``instance_url`` routes every API call to the org's pod).
    """

    provider: Provider
    token_url: str
    client_id: str
    client_secret: str = Field(repr=False)
    metadata_fields: dict[str, str] = Field(default_factory=dict)


def salesforce_oauth_config(settings: Settings) -> OAuthClientConfig:
    return OAuthClientConfig(
        provider=Provider.SALESFORCE,
        token_url=settings.SALESFORCE_TOKEN_URL,
        client_id=settings.SALESFORCE_CLIENT_ID,
        client_secret=settings.SALESFORCE_CLIENT_SECRET,
        metadata_fields={"instance_url": "instance_url"},
    )


def hubspot_oauth_config(settings: Settings) -> OAuthClientConfig:
    return OAuthClientConfig(
        provider=Provider.HUBSPOT,
        token_url=settings.HUBSPOT_TOKEN_URL,
        client_id=settings.HUBSPOT_CLIENT_ID,
        client_secret=settings.HUBSPOT_CLIENT_SECRET,
    )


def as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class TokenLifecycle:
    """Validates and refreshes access tokens for one CRM provider.

    Args:
        oauth: OAuth app configuration for the provider.
        store: Credential store; the only place refreshed tokens are written.
        buffer: Look-ahead before ``expires_at`` during which a token is stale.
        timeout: Token endpoint request timeout in seconds.
        transport: Optional httpx transport (tests inject a MockTransport).
        clock: Returns the current aware UTC time.
    """

    def __init__(
        self,
        oauth: OAuthClientConfig,
        store: CredentialStore,
        *,
        buffer: timedelta = DEFAULT_REFRESH_BUFFER,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._oauth = oauth
        self._store = store
        self._buffer = buffer
        self._timeout = timeout
        self._transport = transport
        self._clock = clock

    @property
    def provider(self) -> Provider:
        return self._oauth.provider

    @property
    def store(self) -> CredentialStore:
        return self._store

    def now(self) -> datetime:
        return self._clock()

    def is_stale(self, credential: Credential, now: datetime | None = None) -> bool:
        """True when the access token must be refreshed before use."""
        if credential.expires_at is None:
            return True
        now = now or self._clock()
        return now >= as_utc(credential.expires_at) - self._buffer

    async def ensure_valid(self, credential: Credential) -> Credential:
        """Return a credential whose access token is usable.

        Fresh credentials come back unchanged with no I/O. Stale ones are
        re-read from the store and refreshed from that copy.
        """
        if not self.is_stale(credential):
            return credential

        logger.info(
            "token.stale",
            provider=credential.provider,
            credential_id=credential.id,
            user_id=credential.user_id,
        )

        fresh = await self._store.get(credential.id)
        if not self.is_stale(fresh):
            logger.info(
                "token.already_rotated",
                provider=fresh.provider,
                credential_id=fresh.id,
            )
            return fresh

        return await self.refresh(fresh)

    async def refresh(self, credential: Credential) -> Credential:
        """Exchange the refresh token for a new access token and persist it.

        Raises:
            InvalidProviderError: Credential belongs to another provider.
            NoRefreshTokenError: No refresh token stored (no network call made).
            TokenRefreshFailedError: Token endpoint returned a non-200 status.
            HttpError: Transport failure or timeout talking to the endpoint.
            UpdateFailedError: The store rejected the refreshed credential.
        """
        if credential.provider != self.provider.value:
            logger.error(
                "token.refresh_invalid_provider",
                provider=credential.provider,
                expected=self.provider.value,
                credential_id=credential.id,
            )
            raise InvalidProviderError(credential.provider, self.provider.value)

        try:
            updated = await self._refresh(credential)
        except CRMError as exc:
            crm_token_refresh_total.labels(
                provider=self.provider.value, outcome=type(exc).__name__
            ).inc()
            raise

        crm_token_refresh_total.labels(provider=self.provider.value, outcome="success").inc()
        logger.info(
            "token.refreshed",
            provider=updated.provider,
            credential_id=updated.id,
            user_id=updated.user_id,
            expires_at=updated.expires_at.isoformat() if updated.expires_at else None,
        )
        return updated

    async def _refresh(self, credential: Credential) -> Credential:
        if not credential.refresh_token:
            logger.error(
                "token.no_refresh_token",
                provider=credential.provider,
                credential_id=credential.id,
            )
            raise NoRefreshTokenError(credential.id)

        payload = await self._request_token(credential)
        changes = self._build_changes(credential, payload, self._clock())

        try:
            return await self._store.update(credential, changes)
        except Exception as exc:
            logger.error(
                "token.persist_failed",
                provider=credential.provider,
                credential_id=credential.id,
                error=str(exc),
            )
            raise UpdateFailedError(exc) from exc

    async def _request_token(self, credential: Credential) -> dict[str, Any]:
        """POST grant_type=refresh_token to the provider token endpoint."""
        response = await send(
            "POST",
            self._oauth.token_url,
            timeout=self._timeout,
            transport=self._transport,
            data={
                "grant_type": "refresh_token",
                "refresh_token": credential.refresh_token,
                "client_id": self._oauth.client_id,
                "client_secret": self._oauth.client_secret,
            },
            headers={"Accept": "application/json"},
        )

        body = response_body(response)
        if response.status_code != 200:
            logger.error(
                "token.refresh_rejected",
                provider=credential.provider,
                credential_id=credential.id,
                status=response.status_code,
                body=body,
            )
            raise TokenRefreshFailedError(response.status_code, body)

        if not isinstance(body, dict) or not body.get("access_token"):
            raise TokenRefreshFailedError(response.status_code, body)

        return body

    def _build_changes(
        self, credential: Credential, payload: Mapping[str, Any], now: datetime
    ) -> dict[str, Any]:
        """Store changes for a successful token response."""
        raw_expires_in = payload.get("expires_in")
        try:
            expires_in = (
                DEFAULT_EXPIRES_IN_SECONDS if raw_expires_in is None else int(raw_expires_in)
            )
        except (TypeError, ValueError):
            expires_in = DEFAULT_EXPIRES_IN_SECONDS

        changes: dict[str, Any] = {
            "access_token": payload["access_token"],
            "refresh_token": payload.get("refresh_token") or credential.refresh_token,
            "expires_at": now + timedelta(seconds=expires_in),
        }

        if self._oauth.metadata_fields:
            metadata = dict(credential.metadata)
            for response_key, metadata_key in self._oauth.metadata_fields.items():
                value = payload.get(response_key)
                if value:
                    metadata[metadata_key] = value
            changes["metadata"] = metadata

        return changes
