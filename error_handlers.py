"""Global exception handlers for the grocery API.

Invariants:
    - StoreError -> its own status and {success: false, message, code} envelope
    - RequestValidationError / pydantic ValidationError -> 400 with field-level errors
    - Unknown routes -> 404 "Route <path> not found"
    - Driver errors -> duplicate key is a 400 DUPLICATE_FIELD naming the field, anything else a 503
    - Exception (catch-all) -> 500 "Server error", never leaks internal details
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from errors import DatabaseError, DuplicateFieldError, StoreError

logger = logging.getLogger(__name__)

_LOCATIONS = ("body", "query", "path", "header", "cookie")

FIELD_LABELS = {
    "email": "Email",
    "phone": "Phone number",
    "name": "Category name",
    "orderNumber": "Order number",
    "transactionId": "Transaction id",
}


def duplicate_field_label(exc: DuplicateKeyError) -> str:
    """Human label for the unique field a DuplicateKeyError reports."""
    key_value = (exc.details or {}).get("keyValue") or {}
    for field in key_value:
        return FIELD_LABELS.get(field, field)
    message = str(exc)
    for field, label in FIELD_LABELS.items():
        if f"{field}_1" in message or f"'{field}'" in message:
            return label
    return "Value"


def register_error_handlers(app: FastAPI) -> None:
    """Register all global error handlers on the FastAPI app."""
    _register_store_error_handler(app)
    _register_validation_error_handlers(app)
    _register_http_error_handler(app)
    _register_database_error_handlers(app)
    _register_generic_error_handler(app)


def _register_store_error_handler(app: FastAPI) -> None:

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        log = logger.error if exc.http_status >= 500 else logger.info
        log(
            f"StoreError: {exc.message}",
            extra={"error_code": exc.code, "path": request.url.path},
        )
        return JSONResponse(status_code=exc.http_status, content=exc.to_response())


def _register_validation_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_validation_response(exc.errors()),
        )

    @app.exception_handler(PydanticValidationError)
    async def model_validation_handler(request: Request, exc: PydanticValidationError):
        logger.warning(f"Model validation error on {request.url.path}: {exc.errors()}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_validation_response(exc.errors()),
        )


def _register_http_error_handler(app: FastAPI) -> None:

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == status.HTTP_404_NOT_FOUND and exc.detail == "Not Found":
            message = f"Route {request.url.path} not found"
        else:
            message = str(exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": message, "code": f"HTTP_{exc.status_code}"},
            headers=getattr(exc, "headers", None),
        )


def _register_database_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(DuplicateKeyError)
    async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
        error = DuplicateFieldError(duplicate_field_label(exc))
        logger.warning(
            f"Duplicate key on {request.url.path}: {error.field}",
            extra={"error_code": error.code, "path": request.url.path},
        )
        return JSONResponse(status_code=error.http_status, content=error.to_response())

    @app.exception_handler(PyMongoError)
    async def database_error_handler(request: Request, exc: PyMongoError):
        error = DatabaseError("operation")
        logger.error(
            f"Database error on {request.url.path}: {exc}",
            extra={"error_code": error.code, "path": request.url.path},
            exc_info=True,
        )
        return JSONResponse(status_code=error.http_status, content=error.to_response())


def _register_generic_error_handler(app: FastAPI) -> None:

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        """Catch-all, never leaks internal details."""
        logger.error(
            f"Unhandled exception on {request.url.path}: {exc}",
            extra={"error_code": "INTERNAL_ERROR", "path": request.url.path},
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "message": "Server error", "code": "INTERNAL_ERROR"},
        )


def _field_name(loc) -> str:
    parts = [str(p) for p in loc]
    if len(parts) > 1 and parts[0] in _LOCATIONS:
        parts = parts[1:]
    return ".".join(parts)


def _validation_response(errors) -> dict:
    return {
        "success": False,
        "message": "Validation failed",
        "code": "VALIDATION_ERROR",
        "errors": [
            {"field": _field_name(e["loc"]), "message": e["msg"], "type": e["type"]}
            for e in errors
        ],
    }
