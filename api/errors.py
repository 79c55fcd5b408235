"""Global exception handlers for FastAPI."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from core.exceptions import (
    ConflictError,
    ExternalFailureError,
    InvalidInputError,
    InvalidStateError,
    InvoicingError,
    NotFoundError,
)

logger = logging.getLogger(__name__)

# HTTP status per business failure class
STATUS_CODES: dict[type[InvoicingError], int] = {
    NotFoundError: 404,
    InvalidInputError: 400,
    ConflictError: 409,
    InvalidStateError: 422,
    ExternalFailureError: 502,
}


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def status_code_for(exc: InvoicingError) -> int:
    """HTTP status for a business failure; unknown subclasses are 400."""
    for exc_class in type(exc).__mro__:
        if exc_class in STATUS_CODES:
            return STATUS_CODES[exc_class]
    return 400


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(InvoicingError)
    async def invoicing_error_handler(request: Request, exc: InvoicingError):
        status_code = status_code_for(exc)
        if status_code >= 500:
            logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
        else:
            logger.info(f"{exc.code} on {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=status_code,
            content=error_response(
                exc.code,
                exc.message,
                field=exc.field,
                details=exc.details,
                request_id=_request_id(request),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(
            status_code=400,
            content=error_response(
                ErrorCodes.INVALID_REQUEST,
                str(exc),
                request_id=_request_id(request),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content=error_response(
                ErrorCodes.VALIDATION_ERROR,
                str(exc.errors()),
                request_id=_request_id(request),
            ).model_dump(mode="json"),
        )

    # Payloads inside POST /actions are validated by the handlers, not FastAPI
    @app.exception_handler(ValidationError)
    async def model_validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=422,
            content=error_response(
                ErrorCodes.VALIDATION_ERROR,
                str(exc.errors(include_url=False)),
                request_id=_request_id(request),
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
                request_id=_request_id(request),
            ).model_dump(mode="json"),
        )
