"""
Global exception handler for the FastAPI application.

Unhandled exceptions are logged with an error id and request context, and
the client receives a JSON body carrying the same id.
"""

import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    error_id = uuid.uuid4().hex[:12]
    logger.error(
        "Unhandled exception [%s] in %s %s: %s",
        error_id,
        request.method,
        request.url.path,
        exc,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": {"code": "internal_error", "message": "Internal server error"},
            "error_id": error_id,
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(Exception, global_exception_handler)
