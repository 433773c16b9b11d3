"""
Core Data Models for Ledger Sync

These models define the strict schemas for everything that flows between
the list UI, the aggregate view and the backends. They are designed to:
1. Enforce type safety at runtime
2. Keep money exact (integer minor units, never floats)
3. Be serializable for storage, cursors and logging

DESIGN DECISION: The sign of a ledger entry is carried by `kind`, never by
the amount. Amounts are strict non-negative integers in minor units
(cents), so 15.00 is stored as 1500 and a float is rejected outright.
"""

import base64
import binascii
import json
from datetime import date, datetime
from enum import Enum
from typing import Callable, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)


# Largest amount accepted: 9,999,999.99 in major units
MAX_AMOUNT_MINOR = 999_999_999

# Fixed predicate order; composed queries stay stable and cacheable
FILTER_ORDER = ("kind", "category_id", "method_id", "card_id", "start_date", "end_date")


# =============================================================================
# ENUMS
# =============================================================================

class EntryKind(str, Enum):
    """Direction of a ledger entry."""
    INCOME = "income"
    EXPENSE = "expense"


# =============================================================================
# ATTACHMENTS
# =============================================================================

def is_temporary_path(path: str, marker: str = "temp_") -> bool:
    """True if any segment of an object path carries the temporary marker."""
    return any(segment.startswith(marker) for segment in path.split("/"))


class Attachment(BaseModel):
    """
    A receipt or document bound to a ledger entry.

    `path` is the object-store handle; `url` is the delivery URL. A staged
    attachment lives under a placeholder owner segment (e.g. temp_1700000000000)
    until it is committed under the real entry id.
    """
    model_config = ConfigDict(frozen=True)

    url: str = Field(..., description="Delivery URL of the stored object")
    path: str = Field(..., min_length=1, description="Object-store key")
    name: str = Field(..., min_length=1, description="Original file name")
    mime_type: str = Field(..., description="MIME type, e.g. image/jpeg")
    size: int = Field(..., ge=0, description="Size in bytes")
    uploaded_at: datetime = Field(..., description="When the object was written")

    def is_temporary(self, marker: str = "temp_") -> bool:
        return is_temporary_path(self.path, marker)


class UploadProgress(BaseModel):
    """One advisory progress report from an in-flight upload."""
    model_config = ConfigDict(frozen=True)

    bytes_transferred: int = Field(ge=0)
    total_bytes: int = Field(ge=0)

    @property
    def fraction(self) -> float:
        if self.total_bytes == 0:
            return 1.0
        return min(1.0, self.bytes_transferred / self.total_bytes)


# =============================================================================
# LEDGER ENTRIES
# =============================================================================

class NewEntry(BaseModel):
    """
    A client-side draft. It has no id and no timestamps; both are assigned
    by the collection backend on insert.

    The attachment, if any, is usually a staged (temporary) one.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    occurred_on: date
    kind: EntryKind
    amount: int = Field(..., strict=True, ge=0, le=MAX_AMOUNT_MINOR)
    category_id: str = Field(..., min_length=1)
    method_id: str = Field(..., min_length=1)
    card_id: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=500)
    tags: list[str] = Field(default_factory=list)
    attachment: Optional[Attachment] = None


class LedgerEntry(NewEntry):
    """A committed entry as stored in the remote collection."""

    id: str = Field(..., min_length=1, description="Backend-assigned identifier")
    created_at: datetime
    updated_at: datetime


# Fields that can never be cleared by a partial update
REQUIRED_ENTRY_FIELDS = ("occurred_on", "kind", "amount", "category_id", "method_id")


class EntryUpdate(BaseModel):
    """
    Partial merge applied to an existing entry.

    Only explicitly-set fields are written. A field explicitly set to None
    is cleared server side, so `EntryUpdate(attachment=None)` removes the
    attachment while `EntryUpdate()` leaves it untouched.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    occurred_on: Optional[date] = None
    kind: Optional[EntryKind] = None
    amount: Optional[int] = Field(default=None, strict=True, ge=0, le=MAX_AMOUNT_MINOR)
    category_id: Optional[str] = Field(default=None, min_length=1)
    method_id: Optional[str] = Field(default=None, min_length=1)
    card_id: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=500)
    tags: Optional[list[str]] = None
    attachment: Optional[Attachment] = None

    @model_validator(mode='after')
    def validate_required_not_cleared(self) -> 'EntryUpdate':
        for name in REQUIRED_ENTRY_FIELDS:
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be removed from an entry")
        return self

    def changes(self) -> dict:
        """Explicitly-set fields only; None values mean 'delete this field'."""
        return {name: getattr(self, name) for name in self.model_fields_set}

    @property
    def touches_attachment(self) -> bool:
        return "attachment" in self.model_fields_set

    @property
    def is_empty(self) -> bool:
        return not self.model_fields_set


def ledger_sort_key(entry: LedgerEntry) -> tuple[date, str]:
    """Feed order key: sort with reverse=True for date desc, id desc on ties."""
    return (entry.occurred_on, entry.id)


# =============================================================================
# FILTERS AND PAGINATION
# =============================================================================

class FilterSpec(BaseModel):
    """
    Predicates narrowing the paginated view (never the aggregate view).

    A missing field means "no constraint". Two FilterSpecs compare equal
    iff they constrain the same fields to the same values.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    kind: Optional[EntryKind] = None
    category_id: Optional[str] = None
    method_id: Optional[str] = None
    card_id: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @field_validator('kind', mode='before')
    @classmethod
    def all_kinds_means_no_filter(cls, v):
        # list UIs offer an "all types" option
        if v == "all":
            return None
        return v

    @field_validator('category_id', 'method_id', 'card_id', mode='before')
    @classmethod
    def blank_means_no_filter(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def is_empty(self) -> bool:
        return all(getattr(self, name) is None for name in FILTER_ORDER)

    def signature(self) -> str:
        """Deterministic string of the active predicates, in application order."""
        parts = []
        for name in FILTER_ORDER:
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, date):
                value = value.isoformat()
            parts.append(f"{name}={value}")
        return "&".join(parts)

    def predicates(self) -> list[tuple[str, Callable[[LedgerEntry], bool]]]:
        """The active predicates, in the fixed application order."""
        checks: list[tuple[str, Callable[[LedgerEntry], bool]]] = []
        if self.kind is not None:
            checks.append(("kind", lambda e: e.kind == self.kind))
        if self.category_id is not None:
            checks.append(("category_id", lambda e: e.category_id == self.category_id))
        if self.method_id is not None:
            checks.append(("method_id", lambda e: e.method_id == self.method_id))
        if self.card_id is not None:
            checks.append(("card_id", lambda e: e.card_id == self.card_id))
        if self.start_date is not None:
            checks.append(("start_date", lambda e: e.occurred_on >= self.start_date))
        if self.end_date is not None:
            checks.append(("end_date", lambda e: e.occurred_on <= self.end_date))
        return checks

    def matches(self, entry: LedgerEntry) -> bool:
        return all(check(entry) for _, check in self.predicates())


class PageCursor(BaseModel):
    """
    Opaque continuation token: the position of the last entry of a page.

    Serializable via encode()/decode() so a feed can be resumed later.
    """
    model_config = ConfigDict(frozen=True)

    occurred_on: date
    id: str

    @classmethod
    def after(cls, entry: LedgerEntry) -> "PageCursor":
        return cls(occurred_on=entry.occurred_on, id=entry.id)

    def precedes(self, entry: LedgerEntry) -> bool:
        """True if `entry` comes strictly after this cursor in feed order."""
        return ledger_sort_key(entry) < (self.occurred_on, self.id)

    def encode(self) -> str:
        raw = json.dumps({"d": self.occurred_on.isoformat(), "i": self.id}, separators=(",", ":"))
        return base64.urlsafe_b64encode(raw.encode()).decode()

    @classmethod
    def decode(cls, token: str) -> "PageCursor":
        try:
            payload = json.loads(base64.urlsafe_b64decode(token.encode()))
            return cls(occurred_on=date.fromisoformat(payload["d"]), id=payload["i"])
        except (binascii.Error, ValueError, KeyError, TypeError) as e:
            raise ValueError(f"Malformed page cursor: {token!r}") from e


class Page(BaseModel):
    """One page of the filtered feed."""

    entries: list[LedgerEntry] = Field(default_factory=list)
    next_cursor: Optional[PageCursor] = None
    has_more: bool = False


# =============================================================================
# AGGREGATES
# =============================================================================

class AggregateTotals(BaseModel):
    """Totals over the entire, unfiltered entry set, in minor units."""
    model_config = ConfigDict(frozen=True)

    income: int = Field(default=0, ge=0)
    expense: int = Field(default=0, ge=0)

    @computed_field
    @property
    def balance(self) -> int:
        return self.income - self.expense


class CategorySummary(BaseModel):
    """Per-category share of the full entry set."""

    category_id: str
    total: int
    count: int
    percentage: float


class MonthSummary(BaseModel):
    """Per-month income/expense roll-up of the full entry set."""

    month: str = Field(..., description="YYYY-MM")
    income: int = 0
    expense: int = 0
    count: int = 0

    @computed_field
    @property
    def balance(self) -> int:
        return self.income - self.expense


class LedgerSnapshot(BaseModel):
    """The full entry set and the totals derived from it."""

    entries: list[LedgerEntry] = Field(default_factory=list)
    totals: AggregateTotals = Field(default_factory=AggregateTotals)
    truncated: bool = Field(
        default=False,
        description="True if the fetch hit the aggregate cap"
    )
