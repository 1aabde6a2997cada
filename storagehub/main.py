"""HTTP service exposing the upload queue."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from storagehub.api.files import router as files_router
from storagehub.api.health import router as health_router
from storagehub.api.sync import router as sync_router
from storagehub.config import VERSION, Settings
from storagehub.exceptions import RecordStoreError
from storagehub.hub import StorageHub

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        stream=sys.stdout,
        force=True,
    )
    # Per-request and per-statement logs only in debug
    noisy = logging.INFO if debug else logging.WARNING
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(noisy)
    logging.getLogger("sqlalchemy.engine").setLevel(noisy)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Open the upload queue on startup and drain the running cycle on shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime()
    _configure_logging(settings.debug)
    logger.info("Starting StorageHub %s (endpoint=%s)", VERSION, settings.api_base_url)

    hub = StorageHub(settings)
    try:
        await hub.open()
    except Exception as exc:
        logger.critical("Cannot open upload queue at %s: %s", settings.database_url, exc)
        raise
    app.state.hub = hub

    # Files left over from the previous run
    hub.trigger_sync()

    yield

    try:
        await hub.close()
    except Exception as exc:
        logger.error("Upload queue did not shut down cleanly: %s", exc, exc_info=True)


def _describe(request: Request) -> str:
    return f"{request.method} {request.url.path}"


async def _invalid_request(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, RequestValidationError)
    errors = [
        {
            "field": str(err["loc"][-1]) if err.get("loc") else "unknown",
            "message": err.get("msg", "Invalid value"),
        }
        for err in exc.errors()
    ]
    logger.warning("Rejected %s: %s", _describe(request), errors)
    return JSONResponse(status_code=422, content={"detail": errors})


async def _queue_unavailable(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Upload queue failure during %s: %s", _describe(request), exc, exc_info=exc)
    return JSONResponse(
        status_code=503, content={"detail": "Upload queue temporarily unavailable"}
    )


async def _invalid_value(request: Request, exc: Exception) -> JSONResponse:
    logger.warning("Invalid value in %s: %s", _describe(request), exc)
    return JSONResponse(status_code=422, content={"detail": str(exc) or "Invalid value"})


async def _local_file_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error("File access failed during %s: %s", _describe(request), exc, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Local file could not be read"})


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application. Settings are read from the environment when omitted."""
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="StorageHub",
        description="Resumable background uploads to object storage",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    app.state.settings = settings

    for router in (health_router, files_router, sync_router):
        app.include_router(router)

    app.add_exception_handler(RequestValidationError, _invalid_request)
    app.add_exception_handler(RecordStoreError, _queue_unavailable)
    app.add_exception_handler(ValueError, _invalid_value)
    app.add_exception_handler(OSError, _local_file_error)

    return app


app = create_app()


def cli_entry() -> None:
    """Run the HTTP service with uvicorn."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run("storagehub.main:app", host=settings.host, port=settings.port)
