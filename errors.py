"""Application error taxonomy and the FastAPI handlers that render it.

Every error leaving the API has the same JSON envelope:

    {"error": "NOT_FOUND", "message": "...", "status": 404, "errors": [...]}

`errors` is only present when there are field-level details.
"""
import logging
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ConfigurationError(RuntimeError):
    """Raised at startup when required settings are missing or invalid."""


class AppError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"
    default_message = "Server error occurred."

    def __init__(self, message: Optional[str] = None, errors: Optional[List[str]] = None):
        self.message = message or self.default_message
        self.errors = errors or []
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"
    default_message = "Validation failed."


class AuthenticationError(AppError):
    status_code = 401
    code = "UNAUTHORIZED"
    default_message = "Invalid username or password."


class InvalidTokenError(AuthenticationError):
    # the refresh endpoint answers a bad access token with 400
    status_code = 400
    code = "INVALID_TOKEN"
    default_message = "Invalid access token."


class UserNotFoundError(AuthenticationError):
    code = "USER_NOT_FOUND"
    default_message = "User not found."


class InvalidRefreshTokenError(AuthenticationError):
    code = "INVALID_REFRESH_TOKEN"
    default_message = "Invalid refresh token."


class ExpiredRefreshTokenError(InvalidRefreshTokenError):
    code = "EXPIRED_REFRESH_TOKEN"
    default_message = "Expired refresh token."


class AuthorizationError(AppError):
    status_code = 403
    code = "FORBIDDEN"
    default_message = "Not enough permissions."


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Resource not found."


class InternalError(AppError):
    pass


def error_response(code: str, message: str, status: int, errors: Optional[list] = None, headers=None):
    payload = {"error": code, "message": message, "status": status}
    if errors:
        payload["errors"] = errors
    return JSONResponse(payload, status_code=status, headers=headers)


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, err: AppError):
        if err.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, err.message)
        headers = None
        if isinstance(err, AuthenticationError) and err.status_code == 401:
            headers = {"WWW-Authenticate": "Bearer"}
        return error_response(err.code, err.message, err.status_code, err.errors, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, err: RequestValidationError):
        details = []
        for item in err.errors():
            loc = ".".join(str(p) for p in item.get("loc", ()) if p not in ("body", "query", "path"))
            details.append(f"{loc}: {item.get('msg')}" if loc else str(item.get("msg")))
        return error_response("VALIDATION_ERROR", "Validation failed.", 400, details)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, err: StarletteHTTPException):
        codes = {400: "BAD_REQUEST", 401: "UNAUTHORIZED", 403: "FORBIDDEN", 404: "NOT_FOUND", 405: "METHOD_NOT_ALLOWED"}
        return error_response(codes.get(err.status_code, "HTTP_ERROR"), str(err.detail), err.status_code,
                              headers=getattr(err, "headers", None))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, err: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return error_response("INTERNAL_ERROR", "Server error occurred.", 500)
