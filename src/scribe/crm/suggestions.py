"""Reconcile proposed contact field updates against live CRM data.

The suggestion producer (AI layer) proposes FieldUpdates without reliable
knowledge of what the CRM currently holds. SuggestionReconciler looks up
each field's live value, drops proposals that would not change anything,
and marks the survivors as changed and approved for this stage.

Equality is strict by default: None equals only None, so an empty string
proposed over a missing value still counts as a change. Fields listed in
``blank_equivalent_fields`` treat None, "" and whitespace-only strings as
the same value.
"""

from __future__ import annotations

from collections.abc import Collection, Sequence
from typing import Any

import structlog

from src.scribe.crm.field_mapping import FIELD_LABELS, label_for
from src.scribe.crm.schemas import ContactRecord, FieldUpdate

logger = structlog.get_logger(__name__)

ALL_FIELDS: frozenset[str] = frozenset(FIELD_LABELS)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class SuggestionReconciler:
    """Filters FieldUpdates down to genuine changes against a live contact.

    Args:
        blank_equivalent_fields: Canonical fields for which None and blank
            strings compare equal (pass ALL_FIELDS to apply everywhere).
    """

    def __init__(self, blank_equivalent_fields: Collection[str] = frozenset()) -> None:
        self._blank_equivalent = frozenset(blank_equivalent_fields)

    def values_equal(self, field: str, current: Any, proposed: Any) -> bool:
        if field in self._blank_equivalent and _is_blank(current) and _is_blank(proposed):
            return True
        return current == proposed

    def merge(
        self,
        suggestions: Sequence[FieldUpdate],
        live_contact: ContactRecord,
    ) -> list[FieldUpdate]:
        """Return only suggestions that change the live contact.

        ``current_value`` is always taken from ``live_contact``; survivors
        get ``has_change`` and ``apply`` set. Missing labels are filled in.
        """
        merged: list[FieldUpdate] = []
        for suggestion in suggestions:
            current = live_contact.value_of(suggestion.field)
            if self.values_equal(suggestion.field, current, suggestion.new_value):
                continue
            merged.append(
                suggestion.model_copy(
                    update={
                        "current_value": current,
                        "has_change": True,
                        "apply": True,
                        "label": suggestion.label or label_for(suggestion.field),
                    }
                )
            )

        logger.debug(
            "suggestions.merged",
            contact_id=live_contact.id,
            proposed=len(suggestions),
            changed=len(merged),
        )
        return merged


def merge_with_contact(
    suggestions: Sequence[FieldUpdate], live_contact: ContactRecord
) -> list[FieldUpdate]:
    """Reconcile with the default strict equality."""
    return SuggestionReconciler().merge(suggestions, live_contact)
