"""Contact client abstract base class -- one concrete client per CRM provider.

Every provider client implements the same four public operations:
- search_contacts: free-text search, at most SEARCH_LIMIT results
- get_contact: fetch by provider id (NotFoundError when absent)
- update_contact: canonical field map -> provider write, returns current state
- apply_updates: approved FieldUpdate list -> update_contact, or NO_UPDATES

Subclasses only supply the wire format (_search/_get/_update) and the
provider's token-error classification (_is_token_error). Everything else --
token validation, the single forced-refresh retry, field mapping, error
taxonomy, metrics -- lives here.

Auth retry protocol:
1. ensure_valid() before the first call.
2. A 401/403 classified as an expired/invalid token raises TokenExpiredError;
   the token is force-refreshed and the call retried exactly once.
3. Any other 401/403 is a plain ApiError and is not retried. A second
   TokenExpiredError after the refresh is re-raised unchanged.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any, ClassVar, TypeVar

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from src.scribe.core.monitoring import track_crm_call
from src.scribe.crm.errors import ApiError, NotFoundError, TokenExpiredError
from src.scribe.crm.field_mapping import FieldMapper, mapper_for
from src.scribe.crm.http import response_body, send
from src.scribe.crm.schemas import (
    ContactRecord,
    Credential,
    FieldUpdate,
    Provider,
    UpdateOutcome,
)
from src.scribe.crm.tokens import TokenLifecycle

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SEARCH_LIMIT = 10

# Reserved by SOSL/Lucene-style search syntaxes. Backslash must come first
# so escapes added for later characters are not escaped again.
SEARCH_SPECIAL_CHARS: tuple[str, ...] = (
    "\\", "?", "&", "|", "!", "{", "}", "[", "]", "(", ")", "^", "~", ":", '"', "'",
)

# OAuth-style error codes meaning the access token is dead.
OAUTH_TOKEN_ERRORS: frozenset[str] = frozenset({"invalid_grant", "expired_token"})


def escape_search_query(query: str) -> str:
    """Backslash-escape search-language metacharacters."""
    for char in SEARCH_SPECIAL_CHARS:
        query = query.replace(char, f"\\{char}")
    return query


class ContactClient(ABC):
    """Provider-agnostic contact operations with automatic token refresh.

    Args:
        tokens: TokenLifecycle for this client's provider.
        mapper: Field mapper; defaults to the provider's standard mapping.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests inject a MockTransport).
    """

    provider: ClassVar[Provider]

    def __init__(
        self,
        tokens: TokenLifecycle,
        mapper: FieldMapper | None = None,
        *,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if tokens.provider != self.provider:
            raise ValueError(
                f"{type(self).__name__} needs a {self.provider.value} TokenLifecycle, "
                f"got {tokens.provider.value}"
            )
        self._tokens = tokens
        self._mapper = mapper or mapper_for(self.provider)
        self._timeout = timeout
        self._transport = transport

    @property
    def mapper(self) -> FieldMapper:
        return self._mapper

    # ── Public operations ──────────────────────────────────────────────────

    async def search_contacts(self, credential: Credential, query: str) -> list[ContactRecord]:
        """Free-text contact search; an empty result is an empty list."""
        return await self._with_token_refresh(
            credential,
            "search_contacts",
            lambda cred: self._search(cred, escape_search_query(query)),
        )

    async def get_contact(self, credential: Credential, contact_id: str) -> ContactRecord:
        """Fetch one contact by provider id."""
        return await self._with_token_refresh(
            credential,
            "get_contact",
            lambda cred: self._get(cred, contact_id),
        )

    async def update_contact(
        self,
        credential: Credential,
        contact_id: str,
        updates: Mapping[str, Any],
    ) -> ContactRecord:
        """Write canonical field updates and return the contact's current state.

        Fields without a writable provider mapping are dropped. When the
        provider acknowledges without a representation the contact is
        re-fetched once before returning.
        """
        wire_updates = self._mapper.to_provider(updates)
        dropped = sorted(set(updates) - self._mapper.writable_fields)
        if dropped:
            logger.debug(
                "crm.update_fields_dropped",
                provider=self.provider.value,
                contact_id=contact_id,
                fields=dropped,
            )

        if not wire_updates:
            logger.info(
                "crm.update_nothing_writable",
                provider=self.provider.value,
                contact_id=contact_id,
            )
            return await self.get_contact(credential, contact_id)

        async def write(cred: Credential) -> ContactRecord:
            record = await self._update(cred, contact_id, wire_updates)
            if record is None:
                record = await self._get(cred, contact_id)
            return record

        record = await self._with_token_refresh(credential, "update_contact", write)
        logger.info(
            "crm.contact_updated",
            provider=self.provider.value,
            contact_id=contact_id,
            fields=sorted(wire_updates),
        )
        return record

    async def apply_updates(
        self,
        credential: Credential,
        contact_id: str,
        updates: Sequence[FieldUpdate],
    ) -> ContactRecord | UpdateOutcome:
        """Apply the approved subset of field updates as one write.

        Only entries with ``apply`` set are used; on duplicate fields the
        last entry wins. Returns UpdateOutcome.NO_UPDATES (not an error)
        when nothing is approved.
        """
        updates_map: dict[str, Any] = {}
        for update in updates:
            if update.apply:
                updates_map[update.field] = update.new_value

        if not updates_map:
            return UpdateOutcome.NO_UPDATES

        return await self.update_contact(credential, contact_id, updates_map)

    # ── Provider hooks ─────────────────────────────────────────────────────

    @abstractmethod
    async def _search(self, credential: Credential, escaped_query: str) -> list[ContactRecord]:
        """Run the provider search with an already-escaped query."""
        ...

    @abstractmethod
    async def _get(self, credential: Credential, contact_id: str) -> ContactRecord:
        """Fetch one contact; raise NotFoundError when absent."""
        ...

    @abstractmethod
    async def _update(
        self, credential: Credential, contact_id: str, wire_updates: dict[str, Any]
    ) -> ContactRecord | None:
        """Write provider fields; None when the response carries no representation."""
        ...

    @abstractmethod
    def _is_token_error(self, body: Any) -> bool:
        """Whether a 401/403 body means the access token is invalid or expired."""
        ...

    # ── Shared plumbing ────────────────────────────────────────────────────

    async def _with_token_refresh(
        self,
        credential: Credential,
        operation: str,
        call: Callable[[Credential], Awaitable[T]],
    ) -> T:
        """Run ``call`` with a valid token, force-refreshing at most once."""
        current = await self._tokens.ensure_valid(credential)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(2),
            retry=retry_if_exception_type(TokenExpiredError),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.info(
                            "crm.token_rejected_refreshing",
                            provider=self.provider.value,
                            operation=operation,
                            credential_id=current.id,
                        )
                        current = await self._tokens.refresh(current)
                    return await call(current)
        except TokenExpiredError as exc:
            logger.error(
                "crm.token_rejected_after_refresh",
                provider=self.provider.value,
                operation=operation,
                credential_id=current.id,
                status=exc.status,
            )
            raise
        raise AssertionError("unreachable")  # pragma: no cover

    async def _request(
        self,
        credential: Credential,
        method: str,
        url: str,
        operation: str,
        *,
        not_found_id: str | None = None,
        **kwargs: Any,
    ) -> Any:
        """Authorized, timed, metered request; returns the decoded 2xx body.

        Status classification happens inside the metered block so failed
        calls are counted under their error class. With ``not_found_id``
        a 404 raises NotFoundError for that contact.
        """
        headers = {
            "Authorization": f"Bearer {credential.access_token}",
            "Accept": "application/json",
        }
        async with track_crm_call(self.provider.value, operation):
            response = await send(
                method,
                url,
                timeout=self._timeout,
                transport=self._transport,
                headers=headers,
                **kwargs,
            )
            if not_found_id is not None and response.status_code == 404:
                raise NotFoundError("contact", not_found_id)
            return self._check(response)

    def _check(self, response: httpx.Response) -> Any:
        """Return the decoded body of a 2xx response; raise the typed error otherwise."""
        body = response_body(response)
        if response.is_success:
            return body

        status = response.status_code
        if status in (401, 403) and self._is_token_error(body):
            raise TokenExpiredError(status, body)

        logger.warning(
            "crm.api_error",
            provider=self.provider.value,
            status=status,
            body=body,
        )
        raise ApiError(status, body)

    def _to_record(self, contact_id: Any, raw_fields: Mapping[str, Any]) -> ContactRecord:
        return ContactRecord(id=str(contact_id), **self._mapper.to_canonical(raw_fields))
