"""
Maps logistics domain errors onto HTTP responses.

NotFoundError → 404, ConflictError and InvalidTransitionError → 409,
InvalidInputError and any other LogisticsError → 422.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from core.errors import ConflictError, InvalidInputError, InvalidTransitionError, LogisticsError, NotFoundError

logger = structlog.get_logger()

STATUS_BY_ERROR: list[tuple[type[LogisticsError], int]] = [
    (NotFoundError, 404),
    (ConflictError, 409),
    (InvalidTransitionError, 409),
    (InvalidInputError, 422),
]


def status_for(exc: LogisticsError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 422


async def logistics_error_handler(request: Request, exc: LogisticsError) -> JSONResponse:
    status_code = status_for(exc)
    logger.info(
        "api.logistics_error",
        path=request.url.path,
        error=type(exc).__name__,
        status_code=status_code,
        detail=str(exc),
    )
    content: dict = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, InvalidTransitionError):
        content["current_status"] = exc.current
        content["requested_status"] = exc.requested
    return JSONResponse(status_code=status_code, content=content)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LogisticsError, logistics_error_handler)
