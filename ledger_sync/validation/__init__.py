"""Validation package."""

from ledger_sync.validation.validator import (
    CARD_METHODS,
    method_requires_card,
    validate_filters,
    validate_new_entry,
    validate_page_size,
    validate_update,
    validate_upload,
)

__all__ = [
    "CARD_METHODS",
    "method_requires_card",
    "validate_filters",
    "validate_new_entry",
    "validate_page_size",
    "validate_update",
    "validate_upload",
]
