"""
Result Types

DESIGN DECISION: Every component boundary (accessor, stager, commit
coordinator, orchestrator) returns a closed, tagged result instead of
raising. Callers branch on `is_ok` (or `isinstance(result, Ok)`) and
always get a typed `LedgerError` on the failure side.

Backends still raise the StorageError hierarchy internally; translation
to LedgerError happens once, at the boundary (see ledger_sync.errors).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class ErrorCode(str, Enum):
    """Closed error taxonomy surfaced to callers."""
    UNAUTHENTICATED = "unauthenticated"
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    VALIDATION = "validation"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


# Friendly text for the presentation layer
_USER_MESSAGES = {
    ErrorCode.UNAUTHENTICATED: "Please sign in to continue.",
    ErrorCode.PERMISSION_DENIED: "You don't have permission for this operation.",
    ErrorCode.NOT_FOUND: "The requested record was not found.",
    ErrorCode.TRANSIENT: "Service temporarily unavailable. Check your connection and try again.",
    ErrorCode.VALIDATION: "Some of the provided values are invalid.",
    ErrorCode.CANCELLED: "Upload cancelled.",
    ErrorCode.INTERNAL: "Something went wrong. Please try again.",
}


@dataclass(frozen=True)
class LedgerError:
    """A translated failure: taxonomy code plus a developer-facing message."""

    code: ErrorCode
    message: str = ""

    @property
    def user_message(self) -> str:
        return _USER_MESSAGES[self.code]

    @property
    def is_retryable(self) -> bool:
        return self.code == ErrorCode.TRANSIENT

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}" if self.message else self.code.value


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Success variant carrying the payload."""

    value: T

    @property
    def is_ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    """Failure variant carrying a LedgerError."""

    error: LedgerError

    @property
    def is_ok(self) -> bool:
        return False

    @property
    def code(self) -> ErrorCode:
        return self.error.code

    @classmethod
    def of(cls, code: ErrorCode, message: str = "") -> "Err":
        return cls(LedgerError(code, message))


Result = Union[Ok[T], Err]


def unauthenticated() -> Err:
    """The failure every operation returns when no caller identity exists."""
    return Err.of(ErrorCode.UNAUTHENTICATED, "No caller identity")
