"""
Input Validation

DESIGN DECISION: The pydantic models enforce structure (types, required
fields, amount range). The checks here are the business rules that span
more than one field, run before anything touches a backend:

- Card payment methods need a funding instrument (card_id)
- A date filter range must not be inverted
- Attachments must respect the size limit and the accepted MIME types

Each function returns None when the input is acceptable, or a LedgerError
with code `validation` describing every issue found.

IMPORTANT: Validation NEVER silently fixes issues. It reports them.
"""

from typing import Optional

from ledger_sync.config.settings import LedgerSettings
from ledger_sync.models.entry import EntryUpdate, FilterSpec, NewEntry
from ledger_sync.models.result import ErrorCode, LedgerError


# Payment methods that are always tied to a card
CARD_METHODS = frozenset({"credit_card", "debit_card"})


def method_requires_card(method_id: Optional[str]) -> bool:
    return method_id in CARD_METHODS


def _issues_to_error(issues: list[str]) -> Optional[LedgerError]:
    if not issues:
        return None
    return LedgerError(ErrorCode.VALIDATION, "; ".join(issues))


def validate_filters(filters: FilterSpec) -> Optional[LedgerError]:
    """Reject an inverted date range."""
    issues = []
    if (
        filters.start_date is not None
        and filters.end_date is not None
        and filters.start_date > filters.end_date
    ):
        issues.append(
            f"start_date {filters.start_date.isoformat()} is after "
            f"end_date {filters.end_date.isoformat()}"
        )
    return _issues_to_error(issues)


def validate_page_size(page_size: int) -> Optional[LedgerError]:
    if page_size < 1:
        return LedgerError(ErrorCode.VALIDATION, f"page_size must be at least 1, got {page_size}")
    return None


def validate_new_entry(draft: NewEntry) -> Optional[LedgerError]:
    """
    Business rules for a draft about to be inserted.

    Card methods must carry a card_id.
    """
    issues = []

    if method_requires_card(draft.method_id) and not draft.card_id:
        issues.append(f"method {draft.method_id} requires a card_id")

    return _issues_to_error(issues)


def validate_update(update: EntryUpdate) -> Optional[LedgerError]:
    """
    Business rules for a partial update.

    Only fields present in the update are checked; the stored entry is
    not consulted.
    """
    issues = []
    fields = update.model_fields_set

    if "method_id" in fields and method_requires_card(update.method_id):
        if "card_id" in fields and not update.card_id:
            issues.append(f"method {update.method_id} requires a card_id")

    return _issues_to_error(issues)


def validate_upload(
    size: int,
    mime_type: str,
    settings: LedgerSettings,
) -> Optional[LedgerError]:
    """
    Check an attachment against the configured limits.

    Checks:
    - Non-empty and not larger than max_attachment_size_mb
    - MIME type in allowed_attachment_types
    """
    issues = []

    if size <= 0:
        issues.append("attachment is empty")
    elif size > settings.max_attachment_size_bytes:
        issues.append(
            f"attachment is {size} bytes; the limit is "
            f"{settings.max_attachment_size_mb}MB"
        )

    if mime_type.lower() not in settings.allowed_types_list:
        issues.append(
            f"unsupported type {mime_type}; accepted: "
            f"{', '.join(settings.allowed_types_list)}"
        )

    return _issues_to_error(issues)
