"""Map domain errors onto HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tally.core.errors import (
    NotFoundError,
    ResolutionAmbiguityError,
    TallyError,
    UpstreamError,
)

logger = logging.getLogger(__name__)


def status_for(error: TallyError) -> int:
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, ResolutionAmbiguityError):
        return 409
    if isinstance(error, UpstreamError):
        return 503
    return 400


async def _tally_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, TallyError)
    status = status_for(exc)
    if status >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"detail": exc.public_message})


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TallyError, _tally_error_handler)
