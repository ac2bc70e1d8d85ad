"""Typed error taxonomy for CRM token and contact operations.

Every failure in TokenLifecycle and the contact clients is raised as a
subclass of CRMError so the calling layer can tell apart:
- auth/token problems (``requires_reauth``) -- prompt the user to reconnect
- transport problems (HttpError) -- provider unreachable or timed out
- missing records (NotFoundError)
"""

from __future__ import annotations

from typing import Any


class CRMError(Exception):
    """Base class for all CRM integration errors."""

    requires_reauth: bool = False


class NoRefreshTokenError(CRMError):
    """The credential carries no (or an empty) refresh token."""

    requires_reauth = True

    def __init__(self, credential_id: str) -> None:
        self.credential_id = credential_id
        super().__init__(f"Credential {credential_id} has no refresh token")


class InvalidProviderError(CRMError):
    """Refresh requested for a credential whose provider has no refresh wiring here."""

    def __init__(self, provider: str, expected: str) -> None:
        self.provider = provider
        self.expected = expected
        super().__init__(f"Cannot refresh {provider!r} credential with {expected!r} token manager")


class TokenRefreshFailedError(CRMError):
    """The provider token endpoint rejected the refresh request."""

    requires_reauth = True

    def __init__(self, status: int, body: Any) -> None:
        self.status = status
        self.body = body
        super().__init__(f"Token refresh failed: {status} - {body!r}")


class HttpError(CRMError):
    """Transport-level failure (connection error, timeout, invalid response)."""

    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(f"HTTP error: {type(cause).__name__}: {cause}")


class NotFoundError(CRMError):
    """The provider reports no matching record."""

    def __init__(self, resource: str, identifier: str) -> None:
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} {identifier} not found")


class ApiError(CRMError):
    """Non-2xx provider response that is not a token expiry."""

    def __init__(self, status: int, body: Any) -> None:
        self.status = status
        self.body = body
        super().__init__(f"API error: {status} - {body!r}")


class TokenExpiredError(ApiError):
    """401/403 whose body says the access token is invalid or expired.

    Raised by the contact clients so the auth-retry path can force one
    refresh; re-raised unchanged if the retried call fails the same way.
    """

    requires_reauth = True


class UpdateFailedError(CRMError):
    """Persisting a refreshed credential to the store failed."""

    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(f"Failed to persist refreshed credential: {cause}")


class UnsupportedProviderError(CRMError):
    """Operation requested against a provider with no client implementation."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Unsupported CRM provider: {provider!r}")
