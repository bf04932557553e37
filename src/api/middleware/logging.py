"""Request logging middleware: request ids, client origin and per-status log levels."""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()

REQUEST_ID_HEADER = "X-Request-ID"
# Probed by orchestrators every few seconds
QUIET_PATHS = frozenset({"/health", "/ready"})


def client_origin(request: Request) -> str:
    """Network origin of the caller, preferring the first forwarded hop."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _log_method(path: str, status_code: int):
    if status_code >= 500:
        return logger.error
    if status_code >= 400:
        return logger.warning
    if path in QUIET_PATHS:
        return logger.debug
    return logger.info


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """Propagates the caller's request id and logs every request with its origin.

    The id is bound to structlog's context so that decision, audit and
    approval logs emitted while serving the request carry it too.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        origin = client_origin(request)
        structlog.contextvars.bind_contextvars(request_id=request_id, client_ip=origin)

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id", "client_ip")

        _log_method(request.url.path, response.status_code)(
            "http_request",
            request_id=request_id,
            client_ip=origin,
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
