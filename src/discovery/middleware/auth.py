"""Shared-secret guard for event ingestion and index administration."""

import secrets
from collections.abc import Awaitable, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

API_KEY_HEADER = "X-API-Key"

# Search and health probes stay open; these paths change or expose index state.
PROTECTED_PREFIXES: tuple[str, ...] = (
    "/api/v1/events",
    "/api/v1/index",
)


def _reject(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"detail": {"message": message, "retryable": False}},
        headers={"WWW-Authenticate": API_KEY_HEADER},
    )


class APIKeyMiddleware(BaseHTTPMiddleware):
    """Requires the configured key on event and index routes."""

    def __init__(self, app: Callable[..., Awaitable[Response]], api_key: str) -> None:
        """Initialize middleware.

        Args:
            app: ASGI application.
            api_key: Key callers must send in the X-API-Key header.
        """
        super().__init__(app)  # type: ignore[arg-type]
        self._api_key = api_key.encode()

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        if not request.url.path.startswith(PROTECTED_PREFIXES):
            return await call_next(request)

        provided = request.headers.get(API_KEY_HEADER)
        if not provided:
            return _reject(f"Missing {API_KEY_HEADER} header")
        if not secrets.compare_digest(provided.encode(), self._api_key):
            return _reject("Invalid API key")
        return await call_next(request)
