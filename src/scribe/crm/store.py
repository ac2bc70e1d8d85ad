"""Credential store -- the single source of truth for stored OAuth tokens.

Provides:
- CredentialStore: Narrow async interface (get / update / list_by_provider)
  used by TokenLifecycle and RefreshSweep.
- SqlCredentialStore: SQLAlchemy implementation over ``user_credentials``
  using the session_factory callable pattern.

``update`` must be atomic per call: the SQL store issues a single
``UPDATE ... RETURNING`` so no other caller can observe a partial change.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, Callable, Mapping
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.scribe.crm.errors import NotFoundError
from src.scribe.crm.models import UserCredentialModel
from src.scribe.crm.schemas import Credential

logger = structlog.get_logger(__name__)

# Credential attribute -> model attribute for columns a refresh may change.
_UPDATABLE_COLUMNS: dict[str, str] = {
    "access_token": "access_token",
    "refresh_token": "refresh_token",
    "expires_at": "expires_at",
    "metadata": "metadata_json",
}


class CredentialStore(ABC):
    """Abstract access to persisted credentials."""

    @abstractmethod
    async def get(self, credential_id: str) -> Credential:
        """Fetch the current stored credential. Raises NotFoundError if absent."""
        ...

    @abstractmethod
    async def update(self, credential: Credential, changes: Mapping[str, Any]) -> Credential:
        """Atomically apply ``changes`` and return the stored result."""
        ...

    @abstractmethod
    async def list_by_provider(self, provider: str) -> list[Credential]:
        """List every stored credential for a provider."""
        ...


# ── Serialization Helpers ───────────────────────────────────────────────────


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_id(credential_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(credential_id)
    except ValueError as exc:
        raise NotFoundError("credential", credential_id) from exc


def _model_to_credential(model: UserCredentialModel) -> Credential:
    """Convert UserCredentialModel to Credential schema."""
    return Credential(
        id=str(model.id),
        user_id=model.user_id,
        provider=model.provider,
        uid=model.uid,
        email=model.email,
        access_token=model.access_token,
        refresh_token=model.refresh_token,
        expires_at=_as_utc(model.expires_at),
        metadata=dict(model.metadata_json or {}),
    )


# ── SQL Store ───────────────────────────────────────────────────────────────


class SqlCredentialStore(CredentialStore):
    """Credential store backed by the ``user_credentials`` table.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def get(self, credential_id: str) -> Credential:
        async for session in self._session_factory():
            stmt = select(UserCredentialModel).where(
                UserCredentialModel.id == _parse_id(credential_id),
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                raise NotFoundError("credential", credential_id)
            return _model_to_credential(model)
        raise RuntimeError("session_factory yielded no session")

    async def update(self, credential: Credential, changes: Mapping[str, Any]) -> Credential:
        unknown = set(changes) - set(_UPDATABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Unsupported credential changes: {sorted(unknown)}")

        values = {
            getattr(UserCredentialModel, _UPDATABLE_COLUMNS[key]): value
            for key, value in changes.items()
        }

        async for session in self._session_factory():
            stmt = (
                update(UserCredentialModel)
                .where(UserCredentialModel.id == _parse_id(credential.id))
                .values(values)
                .returning(UserCredentialModel)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                await session.rollback()
                raise NotFoundError("credential", credential.id)
            await session.commit()
            logger.debug(
                "credential_store.updated",
                credential_id=credential.id,
                fields=sorted(changes),
            )
            return _model_to_credential(model)
        raise RuntimeError("session_factory yielded no session")

    async def list_by_provider(self, provider: str) -> list[Credential]:
        async for session in self._session_factory():
            stmt = select(UserCredentialModel).where(
                UserCredentialModel.provider == provider,
            )
            result = await session.execute(stmt)
            return [_model_to_credential(m) for m in result.scalars().all()]
        raise RuntimeError("session_factory yielded no session")
