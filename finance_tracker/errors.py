"""Application error taxonomy and the handlers that turn it into JSON responses.

Every error body has the shape ``{"error": str}``; validation failures add
``{"details": [{"field": ..., "message": ...}]}``. Server-side failures get a
generic message and are logged with their traceback.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

GENERIC_MESSAGE = "Internal server error"


class AppError(Exception):
    status_code = 500
    message = GENERIC_MESSAGE

    def __init__(self, message: str | None = None, details: list | None = None):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = details

    def to_body(self) -> dict:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(AppError):
    status_code = 400
    message = "Validation failed"


class AuthenticationError(AppError):
    status_code = 401
    message = "Authentication required"


class AuthorizationError(AppError):
    status_code = 403
    message = "Insufficient permissions"


class NotFoundError(AppError):
    status_code = 404
    message = "Not found"


class ConflictError(AppError):
    status_code = 400
    message = "Already exists"


class RateLimitError(AppError):
    status_code = 429
    message = "Too many requests, please try again later"

    def __init__(self, message: str | None = None, retry_after: int = 1):
        super().__init__(message)
        self.retry_after = retry_after

    def to_body(self) -> dict:
        return {"error": self.message, "retryAfter": self.retry_after}


class DependencyError(AppError):
    """A backing store could not serve the request. Clients only see the generic message."""

    status_code = 500


def _field_name(loc) -> str:
    # drop the leading "body"/"query"/"path" segment
    parts = [str(p) for p in loc[1:]] if len(loc) > 1 else [str(p) for p in loc]
    return ".".join(parts)


def validation_details(errors) -> list[dict]:
    return [{"field": _field_name(e.get("loc", ())), "message": e.get("msg", "")} for e in errors]


async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse({"error": GENERIC_MESSAGE}, status_code=exc.status_code)
    headers = None
    if isinstance(exc, RateLimitError):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(exc.to_body(), status_code=exc.status_code, headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        {"error": "Validation failed", "details": validation_details(exc.errors())},
        status_code=400,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    if exc.status_code == 404 and detail == "Not Found":
        detail = "Route not found"
    return JSONResponse({"error": str(detail)}, status_code=exc.status_code, headers=getattr(exc, "headers", None))


async def pool_timeout_handler(request: Request, exc: PoolTimeoutError):
    logger.warning("database pool exhausted on %s %s", request.method, request.url.path)
    return JSONResponse(
        {"error": "Service temporarily unavailable, please retry"},
        status_code=503,
        headers={"Retry-After": "1"},
    )


async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("database error on %s %s", request.method, request.url.path)
    return await app_error_handler(request, DependencyError(f"database failure: {type(exc).__name__}"))


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"error": GENERIC_MESSAGE}, status_code=500)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(PoolTimeoutError, pool_timeout_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
