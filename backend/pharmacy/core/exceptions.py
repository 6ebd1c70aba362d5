"""
Domain errors raised by the services and mapped to HTTP responses in main.py.

Every error carries a machine-readable `kind`, an HTTP status and optional
details (offending field, drug, line index). Internal failures are logged in
full and returned to the client with a generic message.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import status

logger = logging.getLogger(__name__)


class PharmacyError(Exception):
    """Base class for every error a core operation can report."""

    kind = "error"
    status_code = status.HTTP_400_BAD_REQUEST
    retryable = False

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        body = {"success": False, "error": self.kind, "message": self.message}
        body.update(self.details)
        if self.retryable:
            body["retryable"] = True
        return body


class ValidationError(PharmacyError):
    """Malformed or missing fields, non-future expiry, empty basket."""

    kind = "validation_error"


class NotFoundError(PharmacyError):
    """Resource not resolvable under the caller's pharmacy.

    Same response whether the row does not exist or belongs to another tenant.
    """

    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class DrugNotFoundError(NotFoundError):
    def __init__(self, drug_id: int, line: Optional[int] = None):
        details: Dict[str, Any] = {"drug_id": drug_id}
        if line is not None:
            details["line"] = line
        super().__init__(f"Drug not found: {drug_id}", **details)


class DuplicateBatchError(PharmacyError):
    kind = "duplicate_batch"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, batch_no: str):
        super().__init__(
            "Drug with this batch number already exists in your pharmacy",
            batch_no=batch_no,
        )


class InsufficientStockError(PharmacyError):
    kind = "insufficient_stock"

    def __init__(self, drug_name: str, available: int, requested: int,
                 drug_id: Optional[int] = None, line: Optional[int] = None):
        details: Dict[str, Any] = {
            "drug": drug_name,
            "available": available,
            "requested": requested,
        }
        if drug_id is not None:
            details["drug_id"] = drug_id
        if line is not None:
            details["line"] = line
        super().__init__(
            f"Insufficient stock for {drug_name}. Available: {available}, Requested: {requested}",
            **details,
        )


class ConflictError(PharmacyError):
    """Unique field already taken (username, email) or illegal state change."""

    kind = "conflict"
    status_code = status.HTTP_409_CONFLICT


class UnauthorizedError(PharmacyError):
    """Missing, invalid or deactivated caller identity.

    Same response for wrong password, unknown user, etc.
    """

    kind = "unauthorized"
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Authentication failed", reason: str = ""):
        if reason:
            logger.warning(f"Unauthorized access attempt: {reason}")
        super().__init__(message)


class ForbiddenError(PharmacyError):
    kind = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, reason: str = ""):
        logger.warning(f"Forbidden access: {reason}")
        super().__init__("Access denied")


class StorageFailure(PharmacyError):
    """Persistence unavailable or a write could not be committed. Safe to retry."""

    kind = "storage_failure"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True

    def __init__(self, original_error: Optional[Exception] = None):
        if original_error is not None:
            logger.error(
                f"Storage failure: {type(original_error).__name__}: {original_error}",
                exc_info=original_error,
            )
        super().__init__("The data store is temporarily unavailable. Please try again.")
