"""FastAPI application factory."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from . import __version__
from .config import configure_logging, get_settings
from .database import init_database
from .exceptions import DataValidationError, NotFoundError, ServiceError
from .routes import api_router

logger = logging.getLogger(__name__)


def _error_status(exc: ServiceError) -> int:
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, DataValidationError):
        # notices are not failures: the client may show them and carry on
        if exc.is_informational:
            return status.HTTP_409_CONFLICT
        return 422
    return status.HTTP_400_BAD_REQUEST


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    code = _error_status(exc)
    logger.warning("%s %s rejected (%d): %s", request.method, request.url.path, code, exc)
    return JSONResponse(status_code=code, content={"detail": [message.as_dict() for message in exc.messages]})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = get_settings()
    configure_logging(settings.log_level)
    init_database()

    app = FastAPI(title=settings.app_name, version=__version__)
    app.add_exception_handler(ServiceError, service_error_handler)

    @app.get("/health", tags=["system"])
    def health_check() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(api_router)
    return app
