"""
Error taxonomy for inventory operations and its HTTP translation.

SECURITY PRINCIPLE: Don't expose internal details to callers.
Validation, permission and precondition errors carry a specific, safe message.
Internal errors are logged with the original exception and surfaced with a
generic message only.

Every error has a stable `kind` that callers can rely on:
    unauthenticated, invalid_argument, not_found, permission_denied,
    failed_precondition, internal, unimplemented
"""
import logging
from typing import Optional

from fastapi import status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class InventoryError(Exception):
    """Base class for errors surfaced to callers with a documented kind."""

    kind: str = "internal"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class UnauthenticatedError(InventoryError):
    kind = "unauthenticated"
    status_code = status.HTTP_401_UNAUTHORIZED


class InvalidArgumentError(InventoryError):
    kind = "invalid_argument"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(InventoryError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class PermissionDeniedError(InventoryError):
    kind = "permission_denied"
    status_code = status.HTTP_403_FORBIDDEN


class FailedPreconditionError(InventoryError):
    """
    Operation rejected because current state does not allow it.
    Examples: "Not enough inventory. Requested: 5, Available: 2"
    """

    kind = "failed_precondition"
    status_code = status.HTTP_409_CONFLICT


class InternalError(InventoryError):
    kind = "internal"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class UnimplementedError(InventoryError):
    """Reserved for configurations this service does not support. Nothing raises it today."""

    kind = "unimplemented"
    status_code = status.HTTP_501_NOT_IMPLEMENTED


# Storage-level violations. These never reach callers verbatim; the engine
# converts them into InternalError.


class ConcurrencyConflictError(Exception):
    """Optimistic transaction kept losing the race after all retry attempts."""

    def __init__(self, attempts: int):
        super().__init__(f"Transaction aborted after {attempts} conflicting attempts")
        self.attempts = attempts


class ImmutabilityViolationError(Exception):
    """Attempt to modify or delete an append-only record."""

    entity_type: str = "record"

    def __init__(self, entity_id: Optional[str], reason: str):
        super().__init__(f"{self.entity_type} {entity_id}: {reason}")
        self.entity_id = entity_id
        self.reason = reason


class LedgerImmutabilityError(ImmutabilityViolationError):
    entity_type = "SupplyTransaction"


class AuditImmutabilityError(ImmutabilityViolationError):
    entity_type = "AuditLog"


def error_response(error: InventoryError) -> JSONResponse:
    """
    Build the JSON error body for a domain error.

    Internal errors are logged here as well; their message is already generic.
    """
    if isinstance(error, InternalError):
        logger.error(f"Internal error surfaced to caller: {error.message}")
    elif isinstance(error, (PermissionDeniedError, UnauthenticatedError)):
        logger.warning(f"{error.kind}: {error.message}")
    else:
        logger.info(f"{error.kind}: {error.message}")

    return JSONResponse(status_code=error.status_code, content={"error": error.to_dict()})


def internal_error(original_error: Exception, message: str = "An internal error occurred") -> InternalError:
    """
    Generic internal error - logs actual error internally, hides it from the caller.

    SECURITY: Never expose stack traces, SQL errors, or internal paths.
    """
    logger.error(
        f"Internal error: {type(original_error).__name__}: {original_error}",
        exc_info=original_error,
    )
    return InternalError(message)
