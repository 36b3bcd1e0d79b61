"""
Domain exceptions and global exception handlers for the FastAPI application.

Every error response follows a consistent JSON structure::

    {
        "error": true,
        "message": "<human-readable description>"
    }

The service layer raises the domain exceptions defined here without importing
FastAPI, so the confirmation workflow stays framework-agnostic and can be
driven from scripts or tests directly.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from investment_platform.core.resilience import CircuitBreakerError

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────────────────────
# Domain exceptions  (raised by service layer, caught by handlers below)
# ────────────────────────────────────────────────────────────────────────────


class AppException(Exception):
    """Base exception for all application-level errors."""

    def __init__(self, status_code: int, message: str, details: Any = None):
        self.status_code = status_code
        self.message = message
        self.details = details
        super().__init__(message)


class NotFoundException(AppException):
    """Investment, transaction or opportunity not found (404)."""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            status_code=404,
            message=f"{resource} with id '{identifier}' not found",
        )


class InvalidStateException(AppException):
    """
    A state precondition was violated (409).

    Raised when confirming or cancelling a non-pending investment, or when the
    opportunity is not accepting confirmations.  Not retried automatically:
    the same call will keep failing until the state changes.
    """

    def __init__(self, message: str):
        super().__init__(status_code=409, message=message)


class LedgerFailure(AppException):
    """
    A load-bearing write failed after the investment status was flipped (500).

    No compensating rollback is attempted, so the records touched so far stay
    as written and must be reconciled by an operator.  ``details`` names the
    investment and the step that failed.
    """

    def __init__(self, investment_id: Any, step: str, reason: str):
        super().__init__(
            status_code=500,
            message=(
                f"Investment '{investment_id}' changed status but the '{step}' "
                f"step failed: {reason}. Manual reconciliation required."
            ),
            details={
                "investment_id": str(investment_id),
                "step": step,
                "reconciliation_required": True,
            },
        )
        self.investment_id = investment_id
        self.step = step


class DeadlineExceededException(AppException):
    """The caller's deadline expired before any write was made (504)."""

    def __init__(self, operation: str, timeout: float):
        super().__init__(
            status_code=504,
            message=f"{operation} did not complete within {timeout:.1f}s",
        )


# ────────────────────────────────────────────────────────────────────────────
# FastAPI exception handler registration
# ────────────────────────────────────────────────────────────────────────────


def add_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI application instance."""

    @app.exception_handler(AppException)
    async def app_exception_handler(
        request: Request, exc: AppException
    ) -> JSONResponse:
        """Handle domain-specific exceptions raised by the service layer."""
        content = {"error": True, "message": exc.message}
        if exc.details is not None:
            content["details"] = exc.details
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(CircuitBreakerError)
    async def circuit_breaker_handler(
        request: Request, exc: CircuitBreakerError
    ) -> JSONResponse:
        """Database circuit is open: fail fast with 503 and a retry hint."""
        return JSONResponse(
            status_code=503,
            headers={"Retry-After": str(max(int(exc.retry_after), 1))},
            content={
                "error": True,
                "message": "Service temporarily unavailable: database circuit is open",
            },
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        """Handle standard HTTP exceptions (e.g. 404 from path-not-found)."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": True, "message": exc.detail},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Return 422 with one entry per invalid field."""
        errors = []
        for err in exc.errors():
            loc = " -> ".join(str(part) for part in err["loc"])
            errors.append({"field": loc, "message": err["msg"]})
        return JSONResponse(
            status_code=422,
            content={"error": True, "message": "Validation failed", "details": errors},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Catch-all for unexpected exceptions."""
        logger.exception(
            "Unhandled exception on %s %s", request.method, request.url.path
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": True,
                "message": "Internal Server Error. Please contact support.",
            },
        )
