import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .settings import settings

logger = logging.getLogger(__name__)


class AppError(Exception):
    """An expected failure with a user-facing message and a stable status code."""

    def __init__(self, message: str, status_code: int = 500, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class ValidationError(AppError):
    def __init__(self, message: str, code: str = "VALIDATION_ERROR"):
        super().__init__(message, status.HTTP_400_BAD_REQUEST, code)


class AuthenticationError(AppError):
    def __init__(self, message: str = "Authentication failed", code: str = "AUTHENTICATION_ERROR"):
        super().__init__(message, status.HTTP_401_UNAUTHORIZED, code)


class AuthorizationError(AppError):
    def __init__(self, message: str = "Access denied"):
        super().__init__(message, status.HTTP_403_FORBIDDEN, "AUTHORIZATION_ERROR")


class NotFoundError(AppError):
    def __init__(self, message: str = "Resource not found", code: str = "NOT_FOUND"):
        super().__init__(message, status.HTTP_404_NOT_FOUND, code)


class ConflictError(AppError):
    def __init__(self, message: str = "Resource conflict", code: str = "CONFLICT"):
        super().__init__(message, status.HTTP_409_CONFLICT, code)


def error_body(message: str, status_code: int, code: Optional[str] = None, details: Any = None) -> Dict[str, Any]:
    error: Dict[str, Any] = {"message": message, "statusCode": status_code}
    if code:
        error["code"] = code
    if details is not None and settings.DEBUG:
        error["details"] = details
    return {"success": False, "error": error}


def _log(request: Request, exc: Exception, status_code: int) -> None:
    if status_code < 500:
        logger.warning(f"Client error {status_code} on {request.method} {request.url.path}: {exc}")
    else:
        logger.error(f"Server error on {request.method} {request.url.path}: {exc}", exc_info=exc)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    _log(request, exc, exc.status_code)
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.message, exc.status_code, exc.code),
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    _log(request, exc, exc.status_code)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail), exc.status_code),
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    _log(request, exc, status.HTTP_400_BAD_REQUEST)
    errors = {".".join(str(part) for part in err["loc"]): err["msg"] for err in exc.errors()}
    content = error_body("Invalid data provided", status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR")
    content["error"]["fields"] = errors
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=content)


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    _log(request, exc, status.HTTP_409_CONFLICT)
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=error_body("A record with this information already exists", status.HTTP_409_CONFLICT, "CONFLICT", str(exc.orig)),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors."""
    _log(request, exc, status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(
            "Internal server error",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "INTERNAL_ERROR",
            "".join(traceback.format_exception(exc)),
        ),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
