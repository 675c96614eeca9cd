"""
Standardized Error Handling for the Notary API.

Provides consistent error responses across all endpoints.
All errors return JSON with standard structure.
"""

import logging
import traceback
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from notary.core.rate_limit import rate_limit_exceeded_handler

logger = logging.getLogger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================

class NotaryError(Exception):
    """Base exception for Notary-specific errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "notary_error",
        status_code: int = 500,
        details: list[dict] | None = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class NotFoundError(NotaryError):
    """Resource not found."""

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} '{identifier}' not found"
        super().__init__(
            message=message,
            error_code="not_found",
            status_code=404,
        )


class ValidationError(NotaryError):
    """Malformed input rejected before any external call."""

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
        error_code: str = "validation_error",
        status_code: int = 422,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details=details,
        )


class InvalidTransitionError(ValidationError):
    """Requested workflow state change is not an allowed edge."""

    def __init__(self, current: str, requested: str, allowed: list[str]):
        allowed_text = ", ".join(allowed) or "none, this is a terminal state"
        super().__init__(
            message=f"Invalid state transition: {current} -> {requested}. Allowed: [{allowed_text}]",
            details=[{"current_state": current, "requested_state": requested, "allowed": allowed}],
            error_code="invalid_transition",
            status_code=400,
        )
        self.current = current
        self.requested = requested


class ConflictError(NotaryError):
    """Resource conflict (e.g., duplicate)."""

    def __init__(self, message: str = "Resource conflict"):
        super().__init__(
            message=message,
            error_code="conflict",
            status_code=409,
        )


class ExternalLedgerError(NotaryError):
    """The public ledger or one of its services refused or failed a request."""

    def __init__(
        self,
        message: str,
        error_code: str = "ledger_error",
        status_code: int = 502,
        payload: Any = None,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
        )
        # Raw ledger response kept for audit; never rendered to clients
        self.payload = payload


class AccountNotFoundError(ExternalLedgerError):
    """The ledger reports no such account."""

    def __init__(self, public_key: str):
        super().__init__(
            message=f"Account '{public_key}' not found on ledger",
            error_code="account_not_found",
            status_code=404,
        )


class FundingFailedError(ExternalLedgerError):
    """The test-network funding service did not credit the account."""

    def __init__(self, message: str = "Funding service unavailable", payload: Any = None):
        super().__init__(
            message=message,
            error_code="funding_failed",
            status_code=502,
            payload=payload,
        )


class LedgerUnavailableError(ExternalLedgerError):
    """Transport failure or 5xx from the ledger after retries."""

    def __init__(self, message: str = "Ledger is temporarily unavailable"):
        super().__init__(
            message=message,
            error_code="ledger_unavailable",
            status_code=503,
        )


class AnchorFailedError(ExternalLedgerError):
    """Submission of an anchoring transaction was rejected or failed."""

    def __init__(
        self,
        message: str = "Transaction failed",
        payload: Any = None,
        error_code: str = "anchor_failed",
        status_code: int = 502,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            payload=payload,
        )


class InsufficientFundsError(AnchorFailedError):
    """Source account cannot cover the fee or payment."""

    def __init__(self, payload: Any = None):
        super().__init__(
            message="Insufficient funds",
            payload=payload,
            error_code="insufficient_funds",
            status_code=402,
        )


# =============================================================================
# Exception Handlers
# =============================================================================

def get_request_id(request: Request) -> Optional[str]:
    """Extract request ID from request."""
    return getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")


async def notary_error_handler(request: Request, exc: NotaryError) -> JSONResponse:
    """Handle Notary-specific exceptions."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "NotaryError: %s - %s",
        exc.error_code,
        exc.message,
        extra={"error_code": exc.error_code, "path": request.url.path},
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error_code,
            "message": exc.message,
            "details": exc.details,
            "request_id": get_request_id(request),
        },
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle standard HTTP exceptions."""
    # Map status codes to error codes
    error_codes = {
        400: "bad_request",
        404: "not_found",
        405: "method_not_allowed",
        409: "conflict",
        422: "validation_error",
        429: "rate_limit_exceeded",
        500: "internal_error",
        502: "bad_gateway",
        503: "service_unavailable",
    }

    error_code = error_codes.get(exc.status_code, "error")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": error_code,
            "message": str(exc.detail) if exc.detail else f"HTTP {exc.status_code}",
            "request_id": get_request_id(request),
        },
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle Pydantic validation errors."""
    details = []
    for error in exc.errors():
        details.append({
            "loc": [str(part) for part in error.get("loc", [])],
            "msg": error.get("msg", ""),
            "type": error.get("type", ""),
        })

    logger.info(
        "Validation error on %s: %d issues",
        request.url.path,
        len(details),
    )

    return JSONResponse(
        status_code=422,
        content={
            "error": "validation_error",
            "message": "Request validation failed",
            "details": details,
            "request_id": get_request_id(request),
        },
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.error(
        "Unhandled exception on %s: %s",
        request.url.path,
        str(exc),
        exc_info=True,
        extra={
            "path": request.url.path,
            "method": request.method,
            "traceback": traceback.format_exc(),
        },
    )

    # Don't expose internal details
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred",
            "request_id": get_request_id(request),
        },
    )


# =============================================================================
# Setup Function
# =============================================================================

def setup_exception_handlers(app: FastAPI) -> None:
    """
    Register all exception handlers with the FastAPI app.

    Call during app initialization:
        setup_exception_handlers(app)
    """
    app.add_exception_handler(NotaryError, notary_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, generic_exception_handler)


__all__ = [
    "NotaryError",
    "NotFoundError",
    "ValidationError",
    "InvalidTransitionError",
    "ConflictError",
    "ExternalLedgerError",
    "AccountNotFoundError",
    "FundingFailedError",
    "LedgerUnavailableError",
    "AnchorFailedError",
    "InsufficientFundsError",
    "setup_exception_handlers",
]
