"""Salesforce contact client (REST API, SOSL search / SOQL lookup).

Every call is routed to the org's ``instance_url`` kept in credential
metadata (refreshed alongside the token), falling back to the login host.

- Search: GET {instance}/services/data/{version}/search?q=FIND {...}
- Get:    GET {instance}/services/data/{version}/query?q=SELECT ... LIMIT 1
- Update: PATCH {instance}/services/data/{version}/sobjects/Contact/{id};
  Salesforce answers 204 No Content, so the contact is re-fetched.

Expired sessions come back as 401 with a list body carrying
``errorCode`` INVALID_SESSION_ID / EXPIRED_ACCESS_TOKEN.
"""

from __future__ import annotations

from typing import Any

import httpx

from src.scribe.crm.client import OAUTH_TOKEN_ERRORS, SEARCH_LIMIT, ContactClient
from src.scribe.crm.errors import NotFoundError
from src.scribe.crm.field_mapping import FieldMapper
from src.scribe.crm.schemas import ContactRecord, Credential, Provider
from src.scribe.crm.tokens import TokenLifecycle

SALESFORCE_LOGIN_URL = "https://login.salesforce.com"
SALESFORCE_API_VERSION = "v59.0"

SALESFORCE_TOKEN_ERROR_CODES: frozenset[str] = frozenset(
    {"INVALID_SESSION_ID", "EXPIRED_ACCESS_TOKEN"}
)


def _soql_literal(value: str) -> str:
    """Escape a value for use inside a single-quoted SOQL string literal."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


class SalesforceContactClient(ContactClient):
    """Contact operations against a Salesforce org."""

    provider = Provider.SALESFORCE

    def __init__(
        self,
        tokens: TokenLifecycle,
        mapper: FieldMapper | None = None,
        *,
        default_instance_url: str = SALESFORCE_LOGIN_URL,
        api_version: str = SALESFORCE_API_VERSION,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(tokens, mapper, timeout=timeout, transport=transport)
        self._default_instance_url = default_instance_url
        self._api_version = api_version

    def _api_url(self, credential: Credential, path: str) -> str:
        instance_url = credential.metadata.get("instance_url") or self._default_instance_url
        return f"{instance_url.rstrip('/')}/services/data/{self._api_version}{path}"

    @property
    def _select_fields(self) -> str:
        return ", ".join(["Id", *self.mapper.wire_fields])

    async def _search(self, credential: Credential, escaped_query: str) -> list[ContactRecord]:
        sosl = (
            f"FIND {{{escaped_query}*}} IN NAME FIELDS "
            f"RETURNING Contact({self._select_fields}) "
            f"LIMIT {SEARCH_LIMIT}"
        )
        body = await self._request(
            credential,
            "GET",
            self._api_url(credential, "/search"),
            "search_contacts",
            params={"q": sosl},
        )
        records = body.get("searchRecords") if isinstance(body, dict) else None
        return [self._from_salesforce(r) for r in records or [] if r.get("Id")]

    async def _get(self, credential: Credential, contact_id: str) -> ContactRecord:
        soql = (
            f"SELECT {self._select_fields} FROM Contact "
            f"WHERE Id = '{_soql_literal(contact_id)}' LIMIT 1"
        )
        body = await self._request(
            credential,
            "GET",
            self._api_url(credential, "/query"),
            "get_contact",
            params={"q": soql},
        )
        records = body.get("records") if isinstance(body, dict) else None
        if not records:
            raise NotFoundError("contact", contact_id)
        return self._from_salesforce(records[0])

    async def _update(
        self, credential: Credential, contact_id: str, wire_updates: dict[str, Any]
    ) -> ContactRecord | None:
        body = await self._request(
            credential,
            "PATCH",
            self._api_url(credential, f"/sobjects/Contact/{contact_id}"),
            "update_contact",
            not_found_id=contact_id,
            json=wire_updates,
        )
        if isinstance(body, dict) and body.get("Id"):
            return self._from_salesforce(body)
        return None

    def _is_token_error(self, body: Any) -> bool:
        if isinstance(body, list):
            return any(
                isinstance(error, dict)
                and error.get("errorCode") in SALESFORCE_TOKEN_ERROR_CODES
                for error in body
            )
        if isinstance(body, dict):
            return body.get("error") in OAUTH_TOKEN_ERRORS
        return False

    def _from_salesforce(self, record: dict[str, Any]) -> ContactRecord:
        return self._to_record(record["Id"], record)
