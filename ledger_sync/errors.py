"""
Error Translation

Low-level backend failures are translated into the LedgerError taxonomy
exactly once, at the component boundary. Nothing above the accessor,
stager or commit coordinator ever sees a gspread, cloudinary or pydantic
exception.
"""

import gspread
import pydantic
from cloudinary import exceptions as cloudinary_exceptions

from ledger_sync.models.result import Err, ErrorCode, LedgerError
from ledger_sync.services.storage.interface import (
    NotFoundError,
    PayloadValidationError,
    PermissionDeniedError,
    StorageError,
    TransientError,
    UnauthenticatedError,
    UploadCancelledError,
)


# HTTP status -> taxonomy, for backends that surface raw status codes
_STATUS_CODES = {
    400: ErrorCode.VALIDATION,
    401: ErrorCode.UNAUTHENTICATED,
    403: ErrorCode.PERMISSION_DENIED,
    404: ErrorCode.NOT_FOUND,
    408: ErrorCode.TRANSIENT,
    409: ErrorCode.TRANSIENT,
    420: ErrorCode.TRANSIENT,
    429: ErrorCode.TRANSIENT,
}

_STORAGE_ERRORS = {
    ErrorCode.UNAUTHENTICATED: UnauthenticatedError,
    ErrorCode.PERMISSION_DENIED: PermissionDeniedError,
    ErrorCode.NOT_FOUND: NotFoundError,
    ErrorCode.TRANSIENT: TransientError,
    ErrorCode.VALIDATION: PayloadValidationError,
    ErrorCode.CANCELLED: UploadCancelledError,
}

_CLOUDINARY_ERRORS = (
    (cloudinary_exceptions.NotFound, ErrorCode.NOT_FOUND),
    (cloudinary_exceptions.AuthorizationRequired, ErrorCode.UNAUTHENTICATED),
    (cloudinary_exceptions.NotAllowed, ErrorCode.PERMISSION_DENIED),
    (cloudinary_exceptions.BadRequest, ErrorCode.VALIDATION),
    (cloudinary_exceptions.RateLimited, ErrorCode.TRANSIENT),
)


def code_for_status(status: int) -> ErrorCode:
    """Map an HTTP status to the taxonomy; 5xx is transient."""
    if status >= 500:
        return ErrorCode.TRANSIENT
    return _STATUS_CODES.get(status, ErrorCode.INTERNAL)


def translate_exception(exc: BaseException) -> LedgerError:
    """
    Translate any backend exception into a LedgerError.

    Order matters: our own StorageError subclasses carry their code
    directly; library exceptions are classified after that.
    """
    if isinstance(exc, StorageError):
        return LedgerError(exc.code, str(exc))

    if isinstance(exc, pydantic.ValidationError):
        return LedgerError(ErrorCode.VALIDATION, str(exc))

    if isinstance(exc, gspread.exceptions.APIError):
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None) or getattr(exc, "code", 500)
        return LedgerError(code_for_status(int(status)), str(exc))

    if isinstance(exc, (gspread.SpreadsheetNotFound, gspread.WorksheetNotFound)):
        return LedgerError(ErrorCode.NOT_FOUND, str(exc))

    for exc_type, code in _CLOUDINARY_ERRORS:
        if isinstance(exc, exc_type):
            return LedgerError(code, str(exc))

    if isinstance(exc, (ConnectionError, TimeoutError)):
        return LedgerError(ErrorCode.TRANSIENT, str(exc))

    if isinstance(exc, ValueError):
        return LedgerError(ErrorCode.VALIDATION, str(exc))

    return LedgerError(ErrorCode.INTERNAL, f"{type(exc).__name__}: {exc}")


def to_err(exc: BaseException) -> Err:
    """Shorthand for wrapping a translated exception in the failure variant."""
    return Err(translate_exception(exc))


def storage_error_for(exc: BaseException) -> StorageError:
    """
    Classify a library exception as the matching StorageError subclass.

    Backends use this to raise typed errors (so retries can target
    TransientError) without losing the original cause.
    """
    if isinstance(exc, StorageError):
        return exc
    error = translate_exception(exc)
    return _STORAGE_ERRORS.get(error.code, StorageError)(error.message)
