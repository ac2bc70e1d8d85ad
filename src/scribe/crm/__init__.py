"""CRM integration layer -- contact access and OAuth token upkeep per provider.

Provides abstract ContactClient interface with concrete implementations:
- HubSpotContactClient: CRM v3 objects API
- SalesforceContactClient: REST API with SOSL search / SOQL lookup
- TokenLifecycle: Staleness checks and refresh-token exchange, persisted via CredentialStore
- SuggestionReconciler: Filters proposed field updates down to real changes
- RefreshSweep / TokenRefreshScheduler: Proactive background token refresh
- CRMService: Dispatches operations to the client for a credential's provider

Architecture: the credential store is the single owner of tokens. Clients
borrow credential snapshots and hand every refresh back to the store.
"""

from src.scribe.crm.client import ContactClient, escape_search_query
from src.scribe.crm.errors import (
    ApiError,
    CRMError,
    HttpError,
    InvalidProviderError,
    NoRefreshTokenError,
    NotFoundError,
    TokenExpiredError,
    TokenRefreshFailedError,
    UnsupportedProviderError,
    UpdateFailedError,
)
from src.scribe.crm.field_mapping import FieldMapper, mapper_for
from src.scribe.crm.hubspot import HubSpotContactClient
from src.scribe.crm.salesforce import SalesforceContactClient
from src.scribe.crm.schemas import (
    ContactRecord,
    Credential,
    FieldUpdate,
    Provider,
    SweepResult,
    UpdateOutcome,
)
from src.scribe.crm.service import CRMService, build_crm_service, format_contact_context
from src.scribe.crm.store import CredentialStore, SqlCredentialStore
from src.scribe.crm.suggestions import SuggestionReconciler, merge_with_contact
from src.scribe.crm.sweep import RefreshSweep, TokenRefreshScheduler
from src.scribe.crm.tokens import TokenLifecycle

__all__ = [
    "ContactClient",
    "HubSpotContactClient",
    "SalesforceContactClient",
    "escape_search_query",
    "TokenLifecycle",
    "CredentialStore",
    "SqlCredentialStore",
    "FieldMapper",
    "mapper_for",
    "SuggestionReconciler",
    "merge_with_contact",
    "RefreshSweep",
    "TokenRefreshScheduler",
    "CRMService",
    "build_crm_service",
    "format_contact_context",
    "Provider",
    "Credential",
    "ContactRecord",
    "FieldUpdate",
    "UpdateOutcome",
    "SweepResult",
    "CRMError",
    "ApiError",
    "HttpError",
    "InvalidProviderError",
    "NoRefreshTokenError",
    "NotFoundError",
    "TokenExpiredError",
    "TokenRefreshFailedError",
    "UnsupportedProviderError",
    "UpdateFailedError",
]
