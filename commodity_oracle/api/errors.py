"""
Translation of domain exceptions into HTTP responses.
"""
import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from commodity_oracle.exceptions import (
    OracleError,
    PriceLookupError,
    StorageUnavailableError,
    ValidationError,
)

logger = structlog.get_logger()

STORAGE_RETRY_AFTER_SECONDS = 5


def _body(exc: Exception) -> dict:
    return {
        "error": type(exc).__name__,
        "detail": str(exc),
        "retryable": getattr(exc, "retryable", False),
    }


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content=_body(exc))


async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "RequestValidationError", "detail": jsonable_encoder(exc.errors()), "retryable": False},
    )


async def price_lookup_error_handler(request: Request, exc: PriceLookupError) -> JSONResponse:
    logger.warning("Price lookup failed", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=502, content=_body(exc))


async def storage_unavailable_handler(request: Request, exc: StorageUnavailableError) -> JSONResponse:
    logger.error("Storage unavailable", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=503,
        content=_body(exc),
        headers={"Retry-After": str(STORAGE_RETRY_AFTER_SECONDS)},
    )


async def oracle_error_handler(request: Request, exc: OracleError) -> JSONResponse:
    logger.error("Upstream error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=502, content=_body(exc))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(PriceLookupError, price_lookup_error_handler)
    app.add_exception_handler(StorageUnavailableError, storage_unavailable_handler)
    app.add_exception_handler(OracleError, oracle_error_handler)
