from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from billsync.modules.billing.api.v1.billing import router as billing_router
from billsync.shared.core.config import get_settings, reload_settings_from_environment
from billsync.shared.core.exceptions import BillsyncException
from billsync.shared.core.http import close_http_client, init_http_client
from billsync.shared.core.logging import setup_logging
from billsync.shared.db.session import dispose_db_runtime

setup_logging()
logger = structlog.get_logger()
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    global settings
    settings = reload_settings_from_environment()
    logger.info("app_starting", app_name=settings.APP_NAME, environment=settings.ENVIRONMENT)

    await init_http_client()

    yield

    logger.info("app_shutting_down")

    # Close HTTP pool first (prevents new provider calls while shutting down)
    await close_http_client()

    await dispose_db_runtime()
    logger.info("db_engine_disposed")


billsync_app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    lifespan=lifespan,
)
# Uvicorn looks for 'app' by default.
app: FastAPI = billsync_app

__all__ = ["app", "billsync_app", "lifespan"]


@billsync_app.exception_handler(BillsyncException)
async def billsync_exception_handler(
    request: Request, exc: BillsyncException
) -> JSONResponse:
    """Handle custom application exceptions."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "request_failed",
        path=request.url.path,
        code=exc.code,
        status_code=exc.status_code,
        error=exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "code": exc.code},
    )


@billsync_app.get("/health", tags=["Lifecycle"])
async def health() -> dict[str, Any]:
    return {"status": "ok"}


billsync_app.include_router(billing_router, prefix="/api/v1/billing")
