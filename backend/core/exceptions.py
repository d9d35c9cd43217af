"""
Custom exception handlers for consistent API error responses.

Business-rule rejections (validation, illegal transitions, double payment)
are permanent: retrying the same request will fail the same way. Anything
flagged ``retryable`` is an infrastructure condition the client may retry.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class APIError(HTTPException):
    """Base API error with consistent structure"""

    retryable = False

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class NotFoundError(APIError):
    """Resource not found error"""

    def __init__(
        self, detail: str = "Resource not found", error_code: str = "NOT_FOUND"
    ):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND, detail=detail, error_code=error_code
        )


class ValidationError(APIError):
    """Validation error"""

    def __init__(
        self, detail: str = "Validation failed", error_code: str = "VALIDATION_ERROR"
    ):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code=error_code,
        )


class InvalidTableError(ValidationError):
    """Table id outside the configured range"""

    def __init__(self, table_id: Any, table_count: int):
        super().__init__(
            detail=f"Invalid table {table_id!r}. Must be between 1 and {table_count}",
            error_code="INVALID_TABLE",
        )
        self.table_id = table_id


class AuthenticationError(APIError):
    """Authentication error"""

    def __init__(
        self, detail: str = "Authentication failed", error_code: str = "AUTH_FAILED"
    ):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code=error_code,
        )


class ConflictError(APIError):
    """Resource conflict error"""

    def __init__(self, detail: str = "Resource conflict", error_code: str = "CONFLICT"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT, detail=detail, error_code=error_code
        )


class InvalidTransitionError(ConflictError):
    """Illegal state change requested for an order or table"""

    def __init__(self, entity: str, current: str, requested: str, reason: str = ""):
        detail = f"Cannot transition {entity} from {current} to {requested}"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(detail=detail, error_code="INVALID_TRANSITION")
        self.current = current
        self.requested = requested


class AlreadyPaidError(ConflictError):
    """A second payment was attempted for an order that is already paid"""

    def __init__(self, order_id: int):
        super().__init__(
            detail=f"Order {order_id} is already paid", error_code="ALREADY_PAID"
        )
        self.order_id = order_id


class ServiceUnavailableError(APIError):
    """Storage or upstream temporarily unavailable"""

    retryable = True

    def __init__(
        self,
        detail: str = "Server is waking up, please retry shortly",
        error_code: str = "SERVICE_UNAVAILABLE",
    ):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            error_code=error_code,
            headers={"Retry-After": "5"},
        )


@dataclass
class ReconciliationWarning:
    """
    Non-fatal outcome of a payment: the order is paid but its daybook entry
    could not be written. Returned to the caller instead of raised.
    """

    order_id: int
    detail: str
    error_code: str = "RECONCILIATION_PENDING"
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "detail": self.detail,
            "error_code": self.error_code,
            **self.context,
        }


def _error_body(request: Request, detail: Any, error_code: Optional[str], retryable: bool):
    return {
        "detail": detail,
        "error_code": error_code,
        "retryable": retryable,
        "path": str(request.url.path),
    }


async def handle_key_error(request: Request, exc: KeyError) -> JSONResponse:
    """Convert KeyError to consistent API response"""
    logger.warning(f"KeyError at {request.url.path}: {str(exc)}")
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content=_error_body(request, f"Resource not found: {str(exc)}", "NOT_FOUND", False),
    )


async def handle_value_error(request: Request, exc: ValueError) -> JSONResponse:
    """Convert ValueError to consistent API response"""
    logger.warning(f"ValueError at {request.url.path}: {str(exc)}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body(request, str(exc), "VALIDATION_ERROR", False),
    )


async def handle_api_error(request: Request, exc: APIError) -> JSONResponse:
    """Handle custom API errors"""
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code} at {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, exc.detail, exc.error_code, exc.retryable),
        headers=exc.headers,
    )


def register_exception_handlers(app):
    """Register all exception handlers with the FastAPI app"""
    app.add_exception_handler(KeyError, handle_key_error)
    app.add_exception_handler(ValueError, handle_value_error)
    app.add_exception_handler(APIError, handle_api_error)
