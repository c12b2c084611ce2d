"""Error taxonomy and its HTTP rendering.

Learn: Services raise these domain errors; one exception handler in
main.py turns them into JSON responses of the shape
{"error": "...", "details": [{"path": ..., "message": ...}]}.
Route handlers never build error responses by hand.

Expected authentication outcomes (bad token, wrong password) are NOT
exceptions inside the auth layer, they are results (see auth.jwt and
auth.dependencies). The HTTP edge raises AuthenticationError once it has
decided to reject.
"""

import asyncio
from typing import Any, Awaitable, Optional, TypeVar

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.exc import TimeoutError as StoreTimeout
from starlette.exceptions import HTTPException

logger = structlog.get_logger()

T = TypeVar("T")


class AppError(Exception):
    """Base class for errors rendered as JSON responses."""

    status_code = 500
    message = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[list[dict[str, str]]] = None,
        extra: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        self.message = message or self.message
        self.details = details or []
        self.extra = extra or {}
        self.headers = headers
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        if self.details:
            body["details"] = self.details
        body.update(self.extra)
        return body


class ValidationFailed(AppError):
    status_code = 400
    message = "Validation failed"

    @classmethod
    def on(cls, path: str, message: str) -> "ValidationFailed":
        return cls(details=[{"path": path, "message": message}])


class Conflict(AppError):
    status_code = 400
    message = "Conflict"


class DuplicateEmail(Conflict):
    message = "Email already registered"

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message,
            details=[{"path": "email", "message": "Email already registered"}],
        )


class DuplicateWallet(Conflict):
    message = "Wallet already registered"

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message,
            details=[
                {"path": "walletAddress", "message": "Wallet already registered"}
            ],
        )


class WalletAlreadyLinked(Conflict):
    message = "Wallet is linked to another account"

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message,
            details=[
                {
                    "path": "walletAddress",
                    "message": "Wallet is linked to another account",
                }
            ],
        )


class AuthenticationError(AppError):
    status_code = 401
    message = "Invalid credentials"

    def __init__(self, message: Optional[str] = None, **kwargs):
        kwargs.setdefault("headers", {"WWW-Authenticate": "Bearer"})
        super().__init__(message, **kwargs)


class AuthorizationError(AppError):
    status_code = 403
    message = "Unauthorized access"


class NotFound(AppError):
    status_code = 404
    message = "Not found"


class ServiceError(AppError):
    status_code = 500
    message = "Internal server error"


class ServiceUnavailable(ServiceError):
    status_code = 503
    message = "Service temporarily unavailable"


async def bounded(awaitable: Awaitable[T], timeout: float, operation: str) -> T:
    """Await with a deadline; expiry surfaces as ServiceUnavailable."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("peerhire.timeout", operation=operation, timeout=timeout)
        raise ServiceUnavailable()


# ─── HTTP rendering ──────────────────────────────────────


def _loc_to_path(loc: tuple) -> str:
    # ("body", "profile", "hourlyRate") -> "profile.hourlyRate"
    parts = [str(p) for p in loc if p not in ("body", "query", "path", "header")]
    return ".".join(parts) or "body"


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "peerhire.service_error",
            path=request.url.path,
            error_type=type(exc).__name__,
            cause=repr(exc.__cause__) if exc.__cause__ else None,
        )
    return JSONResponse(
        status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers
    )


async def _validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    details = [
        {"path": _loc_to_path(tuple(err.get("loc", ()))), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400, content={"error": "Validation failed", "details": details}
    )


async def _http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def _store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    # Never echo driver messages, they can contain SQL and parameters
    timed_out = isinstance(exc, StoreTimeout) or isinstance(
        getattr(exc, "orig", None), TimeoutError
    )
    error = ServiceUnavailable() if timed_out else ServiceError()
    logger.error(
        "peerhire.store_error",
        path=request.url.path,
        error_type=type(exc).__name__,
        timed_out=timed_out,
    )
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


async def _timeout_handler(request: Request, exc: TimeoutError) -> JSONResponse:
    logger.warning("peerhire.timeout", path=request.url.path)
    error = ServiceUnavailable()
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def install_error_handlers(app: FastAPI) -> None:
    """Register JSON renderers for the error taxonomy."""
    app.add_exception_handler(AppError, _app_error_handler)
    app.add_exception_handler(SQLAlchemyError, _store_error_handler)
    app.add_exception_handler(TimeoutError, _timeout_handler)
    app.add_exception_handler(RequestValidationError, _validation_handler)
    app.add_exception_handler(HTTPException, _http_exception_handler)
