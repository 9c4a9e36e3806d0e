"""FastAPI application factory for the webhook management API."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from leadhooks import __version__
from leadhooks.config import Settings
from leadhooks.exceptions import LeadhooksError, NotFoundError, ValidationError
from leadhooks.logging import configure_from_settings, get_logger
from leadhooks.service import WebhookService

from .router import router, set_service

logger = get_logger(__name__)

# Anything not listed is a server-side failure
ERROR_STATUS: dict[type[LeadhooksError], int] = {
    ValidationError: 400,
    NotFoundError: 404,
}


def _status_for(exc: LeadhooksError) -> int:
    for error_type, status_code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return status_code
    return 500


async def _handle_leadhooks_error(request: Request, exc: LeadhooksError) -> JSONResponse:
    status_code = _status_for(exc)
    log = logger.error if status_code >= 500 else logger.info
    log(
        "Request failed",
        status_code=status_code,
        code=exc.code,
        error=exc.message,
        method=request.method,
        path=request.url.path,
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def _lifespan_for(settings: Settings | None):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app_settings = settings or Settings()
        configure_from_settings(app_settings)

        service = WebhookService.create(app_settings)
        await service.initialize()
        await service.start_worker()
        set_service(service)
        logger.info(
            "Webhook API ready",
            env=app_settings.env,
            storage="sql" if app_settings.uses_database else "memory",
            retry_worker=app_settings.retry_worker_enabled,
        )
        try:
            yield
        finally:
            set_service(None)
            await service.close()
            logger.info("Webhook API stopped")

    return lifespan


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the API application.

    The service is created in the lifespan, so ``settings`` (or the
    ``LEADHOOKS_`` environment) is only consulted when the app starts.
    Serve it with ``uvicorn --factory leadhooks.api:create_app``.
    """
    app = FastAPI(
        title="Leadhooks",
        description="Outbound webhooks for CRM lead events.",
        version=__version__,
        lifespan=_lifespan_for(settings),
    )
    app.add_exception_handler(LeadhooksError, _handle_leadhooks_error)  # type: ignore[arg-type]
    app.include_router(router, prefix="/api/v1")
    return app
