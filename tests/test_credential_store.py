"""Unit tests for SqlCredentialStore with a mocked AsyncSession.

Verifies model <-> Credential conversion, single-statement updates, and
commit/rollback behavior without a real database.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from src.scribe.crm.errors import NotFoundError
from src.scribe.crm.models import UserCredentialModel
from src.scribe.crm.schemas import Credential
from src.scribe.crm.store import SqlCredentialStore

CRED_ID = uuid.UUID("7d4f1c6e-3a2b-4c1d-9e8f-0a1b2c3d4e5f")


# ── Helpers ────────────────────────────────────────────────────────────────


def _make_model(**overrides) -> UserCredentialModel:
    defaults = {
        "id": CRED_ID,
        "user_id": "user-42",
        "provider": "salesforce",
        "uid": "005xx",
        "email": "rep@example.com",
        "access_token": "access-old",
        "refresh_token": "refresh-old",
        "expires_at": datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc),
        "metadata_json": {"instance_url": "https://acme.my.salesforce.com"},
    }
    defaults.update(overrides)
    return UserCredentialModel(**defaults)


def _result(model=None, models=None) -> MagicMock:
    result = MagicMock()
    result.scalar_one_or_none.return_value = model
    result.scalars.return_value.all.return_value = models or []
    return result


@pytest.fixture
def session():
    session = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def sql_store(session):
    async def session_factory():
        yield session

    return SqlCredentialStore(session_factory)


# ── Reads ──────────────────────────────────────────────────────────────────


class TestGet:
    async def test_get_converts_model(self, sql_store, session):
        session.execute.return_value = _result(_make_model())

        cred = await sql_store.get(str(CRED_ID))

        assert isinstance(cred, Credential)
        assert cred.id == str(CRED_ID)
        assert cred.provider == "salesforce"
        assert cred.metadata == {"instance_url": "https://acme.my.salesforce.com"}
        assert cred.expires_at.tzinfo is not None

    async def test_naive_expiry_read_back_as_utc(self, sql_store, session):
        session.execute.return_value = _result(_make_model(expires_at=datetime(2026, 3, 2, 10, 0)))

        cred = await sql_store.get(str(CRED_ID))

        assert cred.expires_at == datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)

    async def test_missing_row_raises_not_found(self, sql_store, session):
        session.execute.return_value = _result(None)

        with pytest.raises(NotFoundError):
            await sql_store.get(str(CRED_ID))

    async def test_malformed_id_raises_not_found(self, sql_store, session):
        with pytest.raises(NotFoundError):
            await sql_store.get("not-a-uuid")

        session.execute.assert_not_awaited()

    async def test_list_by_provider(self, sql_store, session):
        session.execute.return_value = _result(
            models=[_make_model(), _make_model(id=uuid.uuid4(), metadata_json=None)]
        )

        creds = await sql_store.list_by_provider("salesforce")

        assert len(creds) == 2
        assert creds[1].metadata == {}


# ── Writes ─────────────────────────────────────────────────────────────────


class TestUpdate:
    async def test_update_is_one_statement_then_commit(self, sql_store, session):
        new_expiry = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
        session.execute.return_value = _result(
            _make_model(access_token="access-new", expires_at=new_expiry)
        )
        cred = Credential(id=str(CRED_ID), user_id="user-42", provider="salesforce", access_token="access-old")

        updated = await sql_store.update(
            cred,
            {
                "access_token": "access-new",
                "expires_at": new_expiry,
                "metadata": {"instance_url": "https://acme.my.salesforce.com"},
            },
        )

        session.execute.assert_awaited_once()
        session.commit.assert_awaited_once()
        session.rollback.assert_not_awaited()
        assert updated.access_token == "access-new"
        assert updated.expires_at == new_expiry

        statement = session.execute.await_args.args[0]
        sql = str(statement.compile(dialect=postgresql.dialect()))
        assert sql.startswith("UPDATE user_credentials SET")
        assert "metadata=" in sql
        assert "RETURNING" in sql

    async def test_update_missing_row_rolls_back(self, sql_store, session):
        session.execute.return_value = _result(None)
        cred = Credential(id=str(CRED_ID), user_id="user-42", provider="hubspot", access_token="a")

        with pytest.raises(NotFoundError):
            await sql_store.update(cred, {"access_token": "access-new"})

        session.rollback.assert_awaited_once()
        session.commit.assert_not_awaited()

    async def test_update_rejects_unknown_columns(self, sql_store, session):
        cred = Credential(id=str(CRED_ID), user_id="user-42", provider="hubspot", access_token="a")

        with pytest.raises(ValueError, match="provider"):
            await sql_store.update(cred, {"provider": "salesforce"})

        session.execute.assert_not_awaited()

    async def test_database_errors_propagate(self, sql_store, session):
        session.execute.side_effect = RuntimeError("connection reset")
        cred = Credential(id=str(CRED_ID), user_id="user-42", provider="hubspot", access_token="a")

        with pytest.raises(RuntimeError):
            await sql_store.update(cred, {"expires_at": datetime.now(timezone.utc) + timedelta(hours=2)})
