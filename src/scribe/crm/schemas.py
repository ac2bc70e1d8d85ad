"""Pydantic schemas for CRM credentials, contacts and field suggestions.

Defines:
- Provider: Known CRM providers (credential ``provider`` tag values)
- Credential: One user's OAuth authorization against one provider
- ContactRecord: Canonical, provider-agnostic contact
- FieldUpdate: A single proposed change to a canonical contact field
- UpdateOutcome: Distinguished "no updates performed" marker
- SweepResult: Per-run counts of the proactive token refresh sweep
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field


# ── Enums ───────────────────────────────────────────────────────────────────


class Provider(str, Enum):
    """CRM providers with a contact client and token refresh implementation."""

    HUBSPOT = "hubspot"
    SALESFORCE = "salesforce"


class UpdateOutcome(str, Enum):
    """Non-record result of ``apply_updates``; not an error."""

    NO_UPDATES = "no_updates"


# ── Credentials ─────────────────────────────────────────────────────────────


class Credential(BaseModel):
    """A user's stored OAuth credential for one CRM provider.

    Owned by the credential store; instances held elsewhere are borrowed
    snapshots and are never mutated in place (the model is frozen).
    ``provider`` stays a plain string so credentials for providers this
    package does not implement can still be loaded and rejected cleanly.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    provider: str
    access_token: str = Field(repr=False)
    refresh_token: str | None = Field(default=None, repr=False)
    expires_at: datetime | None = None
    uid: str | None = None
    email: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


# ── Contacts ────────────────────────────────────────────────────────────────


class ContactRecord(BaseModel):
    """Canonical contact built fresh from every successful provider fetch.

    Every canonical field is optional; None means the provider returned no
    value for it.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    salutation: str | None = None
    firstname: str | None = None
    lastname: str | None = None
    email: str | None = None
    phone: str | None = None
    homephone: str | None = None
    mobilephone: str | None = None
    otherphone: str | None = None
    fax: str | None = None
    jobtitle: str | None = None
    department: str | None = None
    birthdate: str | None = None
    assistant: str | None = None
    assistantphone: str | None = None
    leadsource: str | None = None
    description: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    country: str | None = None
    otherstreet: str | None = None
    othercity: str | None = None
    otherstate: str | None = None
    otherzip: str | None = None
    othercountry: str | None = None
    company: str | None = None
    website: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def display_name(self) -> str:
        """First + last name, trimmed; falls back to email (or "")."""
        name = f"{self.firstname or ''} {self.lastname or ''}".strip()
        return name or (self.email or "")

    def value_of(self, field: str) -> Any:
        """Return the current value of a canonical field (None when unknown)."""
        if field == "id" or field not in type(self).model_fields:
            return None
        return getattr(self, field)

    def canonical_values(self) -> dict[str, Any]:
        """Canonical field -> value, excluding the id and derived display name."""
        return self.model_dump(exclude={"id", "display_name"})


# ── Suggestions ─────────────────────────────────────────────────────────────


class FieldUpdate(BaseModel):
    """A proposed change to one canonical contact field.

    ``current_value`` supplied by the proposer is not trusted; the
    reconciler overwrites it from the live record.
    """

    field: str
    label: str = ""
    current_value: Any = None
    new_value: Any = None
    context: str = ""
    apply: bool = False
    has_change: bool = False


# ── Sweep ───────────────────────────────────────────────────────────────────


class SweepResult(BaseModel):
    """Outcome counts for one refresh sweep over a provider's credentials."""

    provider: str
    checked: int = 0
    refreshed: int = 0
    failed: int = 0
