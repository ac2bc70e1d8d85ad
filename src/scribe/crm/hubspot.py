"""HubSpot contact client (CRM v3 objects API).

- Search: POST /crm/v3/objects/contacts/search with a free-text ``query``
- Get:    GET  /crm/v3/objects/contacts/{id}?properties=...
- Update: PATCH /crm/v3/objects/contacts/{id} with {"properties": {...}};
  the echo holds only the written properties, so the contact is re-fetched.

Expired/invalid tokens come back as 401 with ``category`` set to
EXPIRED_AUTHENTICATION or INVALID_AUTHENTICATION; scope problems
(MISSING_SCOPES) are plain API errors.
"""

from __future__ import annotations

from typing import Any

import httpx

from src.scribe.crm.client import OAUTH_TOKEN_ERRORS, SEARCH_LIMIT, ContactClient
from src.scribe.crm.errors import NotFoundError
from src.scribe.crm.field_mapping import FieldMapper
from src.scribe.crm.schemas import ContactRecord, Credential, Provider
from src.scribe.crm.tokens import TokenLifecycle

HUBSPOT_API_BASE = "https://api.hubapi.com"

HUBSPOT_TOKEN_ERROR_CATEGORIES: frozenset[str] = frozenset(
    {"EXPIRED_AUTHENTICATION", "INVALID_AUTHENTICATION"}
)


class HubSpotContactClient(ContactClient):
    """Contact operations against a HubSpot portal."""

    provider = Provider.HUBSPOT

    def __init__(
        self,
        tokens: TokenLifecycle,
        mapper: FieldMapper | None = None,
        *,
        base_url: str = HUBSPOT_API_BASE,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(tokens, mapper, timeout=timeout, transport=transport)
        self._base_url = base_url.rstrip("/")

    def _contacts_url(self, suffix: str = "") -> str:
        return f"{self._base_url}/crm/v3/objects/contacts{suffix}"

    async def _search(self, credential: Credential, escaped_query: str) -> list[ContactRecord]:
        body = await self._request(
            credential,
            "POST",
            self._contacts_url("/search"),
            "search_contacts",
            json={
                "query": escaped_query,
                "limit": SEARCH_LIMIT,
                "properties": self.mapper.wire_fields,
            },
        )
        results = body.get("results") if isinstance(body, dict) else None
        return [self._from_hubspot(obj) for obj in results or [] if obj.get("id")]

    async def _get(self, credential: Credential, contact_id: str) -> ContactRecord:
        body = await self._request(
            credential,
            "GET",
            self._contacts_url(f"/{contact_id}"),
            "get_contact",
            not_found_id=contact_id,
            params={"properties": ",".join(self.mapper.wire_fields)},
        )
        if not isinstance(body, dict) or not body.get("id"):
            raise NotFoundError("contact", contact_id)
        return self._from_hubspot(body)

    async def _update(
        self, credential: Credential, contact_id: str, wire_updates: dict[str, Any]
    ) -> ContactRecord | None:
        await self._request(
            credential,
            "PATCH",
            self._contacts_url(f"/{contact_id}"),
            "update_contact",
            not_found_id=contact_id,
            json={"properties": wire_updates},
        )
        # The PATCH echo only carries written and system properties.
        return None

    def _is_token_error(self, body: Any) -> bool:
        if not isinstance(body, dict):
            return False
        return (
            body.get("category") in HUBSPOT_TOKEN_ERROR_CATEGORIES
            or body.get("error") in OAUTH_TOKEN_ERRORS
        )

    def _from_hubspot(self, obj: dict[str, Any]) -> ContactRecord:
        return self._to_record(obj["id"], obj.get("properties") or {})
