"""
Error Handler Middleware
FastAPI exception handlers for structured error responses.
"""

import logging
from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from pricewatch.errors import (
    PriceWatchError, ValidationError, create_structured_error_response, http_status_for,
    sanitize_error_message
)

logger = logging.getLogger(__name__)


def _body(error: str, message: str, details, request: Request) -> dict:
    return {
        "error": error,
        "message": message,
        "details": details,
        "path": str(request.url.path),
        "method": request.method
    }


async def pricewatch_exception_handler(request: Request, exc: PriceWatchError) -> JSONResponse:
    """Handle PriceWatchError exceptions with structured responses."""
    status_code = http_status_for(exc)

    # user input problems are expected, everything else is worth an error line
    log = logger.info if isinstance(exc, ValidationError) else logger.error
    log(f"PriceWatchError: {exc.error_code} - {sanitize_error_message(exc.message)}", extra={
        "error_code": exc.error_code,
        "path": str(request.url.path),
        "method": request.method
    })

    return JSONResponse(
        status_code=status_code,
        content=_body(exc.error_code, sanitize_error_message(exc.message), exc.details, request)
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTPException with structured responses."""
    logger.warning(f"HTTPException: {exc.status_code} - {exc.detail}", extra={
        "status_code": exc.status_code,
        "path": str(request.url.path),
        "method": request.method
    })

    return JSONResponse(
        status_code=exc.status_code,
        content=_body("HTTP_ERROR", sanitize_error_message(str(exc.detail)), {}, request)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors with structured responses."""
    logger.warning(f"RequestValidationError: {len(exc.errors())} errors", extra={
        "path": str(request.url.path),
        "method": request.method
    })

    return JSONResponse(
        status_code=422,
        content=_body("VALIDATION_ERROR", "Request validation failed",
                      {"validation_errors": [e.get("msg") for e in exc.errors()]}, request)
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions with structured responses."""
    logger.error(f"Unexpected error: {exc}", exc_info=True, extra={
        "path": str(request.url.path),
        "method": request.method
    })

    structured_error = create_structured_error_response(exc)

    return JSONResponse(
        status_code=500,
        content=_body("INTERNAL_ERROR", "An unexpected error occurred", structured_error["details"], request)
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PriceWatchError, pricewatch_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
