"""Global exception handlers for FastAPI."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from auth.exceptions import AuthError
from core.exceptions import (
    BillingError,
    ValidationError,
    AuthorizationError,
    NotFoundError,
    ConflictError,
    GatewayError,
    PersistenceError,
)

logger = logging.getLogger(__name__)

# Most specific first; lookup walks this in order
_BILLING_ERROR_MAP: list[tuple[type[BillingError], int, str]] = [
    (ValidationError, 400, ErrorCodes.VALIDATION_ERROR),
    (AuthorizationError, 403, ErrorCodes.AUTHORIZATION_DENIED),
    (NotFoundError, 404, ErrorCodes.NOT_FOUND),
    (ConflictError, 400, ErrorCodes.INVALID_STATUS_TRANSITION),
    (GatewayError, 500, ErrorCodes.PAYMENT_GATEWAY_ERROR),
    (PersistenceError, 500, ErrorCodes.INTERNAL_ERROR),
]


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _format_validation_errors(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        location = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    return "; ".join(parts) or "Invalid request"


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(BillingError)
    async def billing_error_handler(request: Request, exc: BillingError):
        status_code, code = 500, ErrorCodes.INTERNAL_ERROR
        for error_type, mapped_status, mapped_code in _BILLING_ERROR_MAP:
            if isinstance(exc, error_type):
                status_code, code = mapped_status, mapped_code
                break

        message = str(exc) or "Request failed"
        if status_code >= 500:
            logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {message}")
            if isinstance(exc, PersistenceError):
                message = "An internal error occurred"

        return JSONResponse(
            status_code=status_code,
            content=error_response(code, message, _request_id(request)).model_dump(mode="json"),
        )

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        return JSONResponse(
            status_code=401,
            content=error_response(
                ErrorCodes.NOT_AUTHENTICATED, "Authentication required", _request_id(request)
            ).model_dump(mode="json"),
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(
            status_code=400,
            content=error_response(
                ErrorCodes.INVALID_REQUEST, str(exc), _request_id(request)
            ).model_dump(mode="json"),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content=error_response(
                ErrorCodes.VALIDATION_ERROR,
                _format_validation_errors(exc),
                _request_id(request),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return JSONResponse(
            status_code=500,
            content=error_response(
                ErrorCodes.INTERNAL_ERROR,
                "An internal error occurred",
                _request_id(request),
            ).model_dump(mode="json"),
        )
