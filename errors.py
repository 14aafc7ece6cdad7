"""
Error taxonomy for the API.

Every failure a handler can report is one of the classes below. Handlers raise,
and `register_exception_handlers` turns each class into the JSON envelope
`{"success": false, "message": ..., "error": <kind>}` with the class's status code.
"""
import logging
import os

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code = 500
    kind = "unexpected"

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_body(self) -> dict:
        return {"success": False, "message": self.message, "error": self.kind, **self.extra}


class ValidationFailed(AppError):
    status_code = 400
    kind = "validation"


class AuthenticationFailed(AppError):
    status_code = 401
    kind = "authentication"


class PermissionDenied(AppError):
    status_code = 403
    kind = "authorization"


class NotFound(AppError):
    status_code = 404
    kind = "not_found"


class Conflict(AppError):
    status_code = 409
    kind = "conflict"


class PayloadTooLarge(AppError):
    status_code = 413
    kind = "payload_too_large"


class InvalidCart(AppError):
    status_code = 422
    kind = "invalid_cart"


class PaymentFailed(AppError):
    """The gateway declined the charge or could not be reached."""
    status_code = 402
    kind = "upstream_failure"


class OrderNotRecorded(AppError):
    """The charge went through but the order could not be written.

    Money has moved without an order record; the transaction id travels with
    the error so the charge can be reconciled by hand.
    """
    status_code = 500
    kind = "partial_failure"


def _is_development() -> bool:
    return os.getenv("ENVIRONMENT", "production").lower() == "development"


async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", message)
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": message, "error": "validation"},
    )


async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Internal server error",
            "error": str(exc) if _is_development() else "unexpected",
        },
    )


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
