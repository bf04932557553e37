"""Global exception handling."""

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse

from src.domains.risk.errors import ConflictError, InternalError, ValidationError

logger = structlog.get_logger()


def _body(error: str, message: str, request_id: str, **extra) -> dict:
    return {"error": error, "message": message, "request_id": request_id, **extra}


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")

    if isinstance(exc, ValidationError):
        logger.warning("validation_failed", request_id=request_id, error=str(exc))
        return JSONResponse(
            status_code=400,
            content=_body("bad_request", str(exc), request_id, details=exc.errors),
        )

    if isinstance(exc, ValueError):
        logger.warning("bad_request", request_id=request_id, error=str(exc))
        return JSONResponse(status_code=400, content=_body("bad_request", str(exc), request_id))

    if isinstance(exc, PermissionError):
        logger.warning("forbidden", request_id=request_id, error=str(exc))
        return JSONResponse(status_code=403, content=_body("forbidden", str(exc), request_id))

    if isinstance(exc, LookupError):
        logger.warning("not_found", request_id=request_id, error=str(exc))
        return JSONResponse(status_code=404, content=_body("not_found", str(exc), request_id))

    if isinstance(exc, ConflictError):
        logger.warning("conflict", request_id=request_id, error=str(exc))
        return JSONResponse(status_code=409, content=_body("conflict", str(exc), request_id))

    if isinstance(exc, InternalError):
        logger.error("internal_error", request_id=request_id, error=str(exc))
    else:
        logger.exception("unhandled_exception", request_id=request_id, error=str(exc))
    return JSONResponse(
        status_code=500,
        content=_body("internal_server_error", "An unexpected error occurred", request_id),
    )
