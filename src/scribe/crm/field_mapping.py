"""Canonical <-> provider field mappings for CRM contacts.

Defines:
- FIELD_LABELS: Human-readable labels for canonical contact fields.
- SALESFORCE_CONTACT_FIELDS / HUBSPOT_CONTACT_PROPERTIES: canonical field ->
  provider wire name. Dotted wire names address related objects
  (e.g. Salesforce ``Account.Name``).
- FieldMapper: Stateless two-way mapper used by the contact clients on
  read (provider -> canonical) and write (canonical -> provider).
- mapper_for(): Provider -> FieldMapper lookup.

Unmapped fields are dropped silently in both directions. Read-only fields
(relationship lookups, provider-computed properties) are readable but never
written.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from src.scribe.crm.errors import UnsupportedProviderError
from src.scribe.crm.schemas import Provider


# ── Labels ─────────────────────────────────────────────────────────────────

FIELD_LABELS: dict[str, str] = {
    "salutation": "Salutation",
    "firstname": "First Name",
    "lastname": "Last Name",
    "email": "Email",
    "phone": "Phone",
    "homephone": "Home Phone",
    "mobilephone": "Mobile Phone",
    "otherphone": "Other Phone",
    "fax": "Fax",
    "jobtitle": "Job Title",
    "department": "Department",
    "birthdate": "Birthdate",
    "assistant": "Assistant",
    "assistantphone": "Assistant Phone",
    "leadsource": "Lead Source",
    "description": "Description",
    "address": "Mailing Street",
    "city": "Mailing City",
    "state": "Mailing State",
    "zip": "Mailing Zip",
    "country": "Mailing Country",
    "otherstreet": "Other Street",
    "othercity": "Other City",
    "otherstate": "Other State",
    "otherzip": "Other Zip",
    "othercountry": "Other Country",
    "company": "Company",
    "website": "Website",
}


def label_for(field: str) -> str:
    """Return the human-readable label for a canonical field."""
    return FIELD_LABELS.get(field, field.replace("_", " ").title())


# ── Provider Mappings ──────────────────────────────────────────────────────

SALESFORCE_CONTACT_FIELDS: dict[str, str] = {
    "salutation": "Salutation",
    "firstname": "FirstName",
    "lastname": "LastName",
    "email": "Email",
    "phone": "Phone",
    "homephone": "HomePhone",
    "mobilephone": "MobilePhone",
    "otherphone": "OtherPhone",
    "fax": "Fax",
    "jobtitle": "Title",
    "department": "Department",
    "birthdate": "Birthdate",
    "assistant": "AssistantName",
    "assistantphone": "AssistantPhone",
    "leadsource": "LeadSource",
    "description": "Description",
    "address": "MailingStreet",
    "city": "MailingCity",
    "state": "MailingState",
    "zip": "MailingPostalCode",
    "country": "MailingCountry",
    "otherstreet": "OtherStreet",
    "othercity": "OtherCity",
    "otherstate": "OtherState",
    "otherzip": "OtherPostalCode",
    "othercountry": "OtherCountry",
    "company": "Account.Name",
}

# Company lives on the related Account; writing it means editing the Account.
SALESFORCE_READ_ONLY: frozenset[str] = frozenset({"company"})

HUBSPOT_CONTACT_PROPERTIES: dict[str, str] = {
    "salutation": "salutation",
    "firstname": "firstname",
    "lastname": "lastname",
    "email": "email",
    "phone": "phone",
    "mobilephone": "mobilephone",
    "fax": "fax",
    "jobtitle": "jobtitle",
    "birthdate": "date_of_birth",
    "leadsource": "hs_analytics_source",
    "address": "address",
    "city": "city",
    "state": "state",
    "zip": "zip",
    "country": "country",
    "company": "company",
    "website": "website",
}

# Calculated by HubSpot analytics; rejected on write.
HUBSPOT_READ_ONLY: frozenset[str] = frozenset({"leadsource"})


# ── Mapper ─────────────────────────────────────────────────────────────────


class FieldMapper:
    """Two-way canonical/provider field mapping for one provider.

    Args:
        provider: Provider the mapping belongs to.
        fields: Canonical field name -> provider wire name (read direction).
        read_only: Canonical fields excluded from the write direction.
    """

    def __init__(
        self,
        provider: Provider,
        fields: Mapping[str, str],
        read_only: frozenset[str] = frozenset(),
    ) -> None:
        self.provider = provider
        self._read = dict(fields)
        self._write = {k: v for k, v in self._read.items() if k not in read_only}
        self._reverse = {v: k for k, v in self._read.items()}

    @property
    def wire_fields(self) -> list[str]:
        """Provider field names to request on reads, in mapping order."""
        return list(self._read.values())

    @property
    def writable_fields(self) -> frozenset[str]:
        """Canonical fields that may be sent to the provider."""
        return frozenset(self._write)

    def provider_name(self, field: str) -> str | None:
        """Write-direction lookup; None for unmapped or read-only fields."""
        return self._write.get(field)

    def canonical_name(self, wire_name: str) -> str | None:
        """Read-direction lookup; None for provider fields we don't model."""
        return self._reverse.get(wire_name)

    def to_provider(self, updates: Mapping[str, Any]) -> dict[str, Any]:
        """Translate canonical updates to provider field names, dropping unmapped ones."""
        return {
            self._write[field]: value
            for field, value in updates.items()
            if field in self._write
        }

    def to_canonical(self, raw: Mapping[str, Any]) -> dict[str, Any]:
        """Extract canonical field values from a raw provider object.

        Absent or null provider values are left out; scalars are stringified.
        """
        result: dict[str, Any] = {}
        for field, path in self._read.items():
            value = _resolve(raw, path)
            if value is None or isinstance(value, (dict, list)):
                continue
            result[field] = value if isinstance(value, str) else str(value)
        return result


def _resolve(raw: Mapping[str, Any], path: str) -> Any:
    """Walk a dotted path (``Account.Name``) through nested dicts."""
    current: Any = raw
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


SALESFORCE_MAPPER = FieldMapper(
    Provider.SALESFORCE, SALESFORCE_CONTACT_FIELDS, SALESFORCE_READ_ONLY
)
HUBSPOT_MAPPER = FieldMapper(Provider.HUBSPOT, HUBSPOT_CONTACT_PROPERTIES, HUBSPOT_READ_ONLY)

_MAPPERS: dict[Provider, FieldMapper] = {
    Provider.SALESFORCE: SALESFORCE_MAPPER,
    Provider.HUBSPOT: HUBSPOT_MAPPER,
}


def mapper_for(provider: str) -> FieldMapper:
    """Return the FieldMapper for a provider tag."""
    try:
        return _MAPPERS[Provider(provider)]
    except ValueError as exc:
        raise UnsupportedProviderError(provider) from exc
