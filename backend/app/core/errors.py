"""Application error taxonomy.

Services raise these; ``app.main`` renders them as ``{"detail", "code"}``
responses. Store and cache transport errors never carry driver text to the
client.
"""

from fastapi import Request
from fastapi.responses import JSONResponse


class AppError(Exception):
    status_code = 500
    code = "internal_error"
    default_detail = "Internal error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class InvalidCredentials(AppError):
    status_code = 401
    code = "invalid_credentials"
    default_detail = "Invalid credentials"


class InvalidToken(AppError):
    # expired, malformed, revoked and unknown tokens all look the same
    status_code = 401
    code = "invalid_token"
    default_detail = "Invalid token"


class Unauthorized(AppError):
    status_code = 401
    code = "unauthorized"
    default_detail = "Missing token"


class Forbidden(AppError):
    status_code = 403
    code = "forbidden"
    default_detail = "Insufficient permissions"


class InvalidInput(AppError):
    status_code = 422
    code = "invalid_input"
    default_detail = "Invalid input"


class NotFound(AppError):
    status_code = 404
    code = "not_found"
    default_detail = "Not found"


class Conflict(AppError):
    status_code = 409
    code = "conflict"
    default_detail = "Conflict"


class CapacityExceeded(AppError):
    status_code = 409
    code = "capacity_exceeded"
    default_detail = "Cycle is full"


class TooManyAttempts(AppError):
    status_code = 429
    code = "too_many_attempts"
    default_detail = "Too many failed attempts"


class StoreUnavailable(AppError):
    status_code = 503
    code = "store_unavailable"
    default_detail = "Service temporarily unavailable, retry later"


class CacheUnavailable(AppError):
    """Raised inside the cache layer only; always swallowed there."""

    status_code = 503
    code = "cache_unavailable"
    default_detail = "Cache unavailable"


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    headers = {}
    if isinstance(exc, StoreUnavailable):
        headers["Retry-After"] = "1"
    if exc.status_code == 401:
        headers["WWW-Authenticate"] = "Bearer"
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.code},
        headers=headers or None,
    )
