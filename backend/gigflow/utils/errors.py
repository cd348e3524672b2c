from typing import Dict, Optional
from fastapi import HTTPException, status
import logging

logger = logging.getLogger(__name__)


def error_response(
    message: str,
    field_errors: Dict[str, str],
    code: int = status.HTTP_422_UNPROCESSABLE_ENTITY,
    error_code: str = "validation_error",
) -> HTTPException:
    """Return an HTTPException with a consistent structure and log details."""
    logger.warning("%s %s", message, field_errors)
    detail = {"message": message, "code": error_code, "field_errors": field_errors}
    return HTTPException(status_code=code, detail=detail)


class BookingFlowError(Exception):
    """Base for every expected failure of the booking flow.

    Subclasses fix a stable ``code`` and the HTTP status the API layer maps
    them to.
    """

    code = "booking_flow_error"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, field_errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        self.field_errors = field_errors or {}

    def to_detail(self) -> dict:
        return {"message": self.message, "code": self.code, "field_errors": self.field_errors}


class ValidationError(BookingFlowError):
    code = "validation_error"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class NotFoundError(BookingFlowError):
    code = "not_found"
    http_status = status.HTTP_404_NOT_FOUND


class AuthorizationError(BookingFlowError):
    code = "forbidden"
    http_status = status.HTTP_403_FORBIDDEN


class ConflictError(BookingFlowError):
    code = "conflict"
    http_status = status.HTTP_409_CONFLICT


class ConcurrencyError(ConflictError):
    code = "concurrent_modification"


class StateError(BookingFlowError):
    code = "invalid_state"
    http_status = status.HTTP_409_CONFLICT


class LimitExceededError(BookingFlowError):
    code = "limit_exceeded"
    http_status = status.HTTP_409_CONFLICT


class DeadlineExceededError(BookingFlowError):
    code = "deadline_exceeded"
    http_status = status.HTTP_410_GONE


class EscrowIntegrityError(BookingFlowError):
    """Ledger invariant broken. Needs manual reconciliation."""

    code = "escrow_integrity"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR


class GatewayUnavailableError(BookingFlowError):
    code = "gateway_unavailable"
    http_status = status.HTTP_502_BAD_GATEWAY
