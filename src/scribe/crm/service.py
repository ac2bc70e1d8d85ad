"""CRM service -- provider dispatch for contact operations and suggestion flows.

Callers (chat, meeting follow-ups) hold a Credential and don't care which
CRM it belongs to. CRMService resolves the credential's provider tag to the
wired ContactClient and exposes:
- search_contacts / get_contact / update_contact / apply_updates
- reconcile_suggestions: fetch the live contact, then SuggestionReconciler.merge
- format_contact_context: contact rendered as prompt lines for the AI layer

build_crm_service() and build_refresh_sweeps() wire both providers from Settings.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import timedelta
from typing import Any

import httpx
import structlog

from src.scribe.config import Settings, get_settings
from src.scribe.crm.client import ContactClient
from src.scribe.crm.errors import UnsupportedProviderError
from src.scribe.crm.hubspot import HubSpotContactClient
from src.scribe.crm.salesforce import SalesforceContactClient
from src.scribe.crm.schemas import (
    ContactRecord,
    Credential,
    FieldUpdate,
    Provider,
    UpdateOutcome,
)
from src.scribe.crm.store import CredentialStore
from src.scribe.crm.suggestions import SuggestionReconciler
from src.scribe.crm.sweep import RefreshSweep
from src.scribe.crm.tokens import (
    TokenLifecycle,
    hubspot_oauth_config,
    salesforce_oauth_config,
)

logger = structlog.get_logger(__name__)

NO_CONTACT_DATA = "No contact data available."


def format_contact_context(contact: ContactRecord | None) -> str:
    """Render non-empty contact fields as "- field: value" lines."""
    if contact is None:
        return NO_CONTACT_DATA

    lines = [
        f"- {field}: {value}"
        for field, value in contact.model_dump(exclude={"display_name"}).items()
        if value is not None and value != ""
    ]
    return "\n".join(lines) if lines else NO_CONTACT_DATA


class CRMService:
    """Dispatches contact operations to the client for a credential's provider.

    Args:
        clients: One ContactClient per supported provider.
        reconciler: Suggestion reconciler (strict equality by default).
    """

    def __init__(
        self,
        clients: Sequence[ContactClient],
        reconciler: SuggestionReconciler | None = None,
    ) -> None:
        self._clients: dict[Provider, ContactClient] = {c.provider: c for c in clients}
        self._reconciler = reconciler or SuggestionReconciler()

    @property
    def providers(self) -> list[Provider]:
        return list(self._clients)

    def client_for(self, credential: Credential) -> ContactClient:
        """Resolve the contact client for a credential's provider tag."""
        try:
            provider = Provider(credential.provider)
        except ValueError:
            provider = None

        client = self._clients.get(provider) if provider is not None else None
        if client is None:
            logger.warning(
                "crm.unsupported_provider",
                provider=credential.provider,
                credential_id=credential.id,
            )
            raise UnsupportedProviderError(credential.provider)
        return client

    async def search_contacts(self, credential: Credential, query: str) -> list[ContactRecord]:
        return await self.client_for(credential).search_contacts(credential, query)

    async def get_contact(self, credential: Credential, contact_id: str) -> ContactRecord:
        return await self.client_for(credential).get_contact(credential, contact_id)

    async def update_contact(
        self, credential: Credential, contact_id: str, updates: Mapping[str, Any]
    ) -> ContactRecord:
        return await self.client_for(credential).update_contact(credential, contact_id, updates)

    async def apply_updates(
        self, credential: Credential, contact_id: str, updates: Sequence[FieldUpdate]
    ) -> ContactRecord | UpdateOutcome:
        return await self.client_for(credential).apply_updates(credential, contact_id, updates)

    async def reconcile_suggestions(
        self,
        credential: Credential,
        contact_id: str,
        suggestions: Sequence[FieldUpdate],
    ) -> list[FieldUpdate]:
        """Diff proposed updates against the contact as it is in the CRM right now."""
        if not suggestions:
            return []
        contact = await self.get_contact(credential, contact_id)
        return self._reconciler.merge(suggestions, contact)


def build_token_lifecycles(
    settings: Settings,
    store: CredentialStore,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[Provider, TokenLifecycle]:
    """One TokenLifecycle per provider, configured from settings."""
    buffer = timedelta(seconds=settings.TOKEN_REFRESH_BUFFER_SECONDS)
    return {
        Provider.HUBSPOT: TokenLifecycle(
            hubspot_oauth_config(settings),
            store,
            buffer=buffer,
            timeout=settings.CRM_HTTP_TIMEOUT,
            transport=transport,
        ),
        Provider.SALESFORCE: TokenLifecycle(
            salesforce_oauth_config(settings),
            store,
            buffer=buffer,
            timeout=settings.CRM_HTTP_TIMEOUT,
            transport=transport,
        ),
    }


def build_refresh_sweeps(
    settings: Settings,
    store: CredentialStore,
    providers: Sequence[Provider] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[RefreshSweep]:
    """RefreshSweeps for the given providers (all of them by default)."""
    lifecycles = build_token_lifecycles(settings, store, transport)
    window = timedelta(seconds=settings.TOKEN_SWEEP_WINDOW_SECONDS)
    return [
        RefreshSweep(lifecycles[provider], store, window=window)
        for provider in (providers or list(Provider))
    ]


def build_crm_service(
    settings: Settings | None,
    store: CredentialStore,
    transport: httpx.AsyncBaseTransport | None = None,
) -> CRMService:
    """Wire HubSpot and Salesforce clients over a shared credential store."""
    settings = settings or get_settings()
    lifecycles = build_token_lifecycles(settings, store, transport)

    clients: list[ContactClient] = [
        HubSpotContactClient(
            lifecycles[Provider.HUBSPOT],
            base_url=settings.HUBSPOT_API_BASE_URL,
            timeout=settings.CRM_HTTP_TIMEOUT,
            transport=transport,
        ),
        SalesforceContactClient(
            lifecycles[Provider.SALESFORCE],
            default_instance_url=settings.SALESFORCE_DEFAULT_INSTANCE_URL,
            api_version=settings.SALESFORCE_API_VERSION,
            timeout=settings.CRM_HTTP_TIMEOUT,
            transport=transport,
        ),
    ]
    return CRMService(clients)
