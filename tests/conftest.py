"""Shared test fixtures for CRM token and contact tests.

Provides:
- InMemoryCredentialStore: dict-backed CredentialStore double that records
  reads and writes and can be told to fail updates
- A fixed clock (``now``) so staleness checks are deterministic
- ``make_credential`` factory for HubSpot / Salesforce credentials
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from src.scribe.crm.errors import NotFoundError
from src.scribe.crm.schemas import Credential
from src.scribe.crm.store import CredentialStore

NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


class InMemoryCredentialStore(CredentialStore):
    """Credential store double with call recording."""

    def __init__(self, credentials: list[Credential] | None = None) -> None:
        self._rows: dict[str, Credential] = {c.id: c for c in credentials or []}
        self.get_calls: list[str] = []
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self.fail_updates_with: Exception | None = None
        self.fail_list_with: Exception | None = None

    def put(self, credential: Credential) -> None:
        self._rows[credential.id] = credential

    def current(self, credential_id: str) -> Credential:
        return self._rows[credential_id]

    async def get(self, credential_id: str) -> Credential:
        self.get_calls.append(credential_id)
        try:
            return self._rows[credential_id]
        except KeyError:
            raise NotFoundError("credential", credential_id) from None

    async def update(self, credential: Credential, changes: Mapping[str, Any]) -> Credential:
        if self.fail_updates_with is not None:
            raise self.fail_updates_with
        if credential.id not in self._rows:
            raise NotFoundError("credential", credential.id)
        updated = self._rows[credential.id].model_copy(update=dict(changes))
        self._rows[credential.id] = updated
        self.updates.append((credential.id, dict(changes)))
        return updated

    async def list_by_provider(self, provider: str) -> list[Credential]:
        if self.fail_list_with is not None:
            raise self.fail_list_with
        return [c for c in self._rows.values() if c.provider == provider]


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock(now) -> Callable[[], datetime]:
    return lambda: now


@pytest.fixture
def store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def make_credential(store, now) -> Callable[..., Credential]:
    """Build a credential, store it, and return it.

    Defaults to a HubSpot credential that expires in one hour.
    """

    def _make(**overrides: Any) -> Credential:
        defaults: dict[str, Any] = {
            "id": "cred-1",
            "user_id": "user-42",
            "provider": "hubspot",
            "access_token": "access-old",
            "refresh_token": "refresh-old",
            "expires_at": now + timedelta(hours=1),
            "uid": "portal-9001",
            "email": "rep@example.com",
            "metadata": {},
        }
        defaults.update(overrides)
        credential = Credential(**defaults)
        store.put(credential)
        return credential

    return _make
