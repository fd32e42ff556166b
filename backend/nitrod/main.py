from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from nitrod.config import get_settings, validate_config_on_startup
from nitrod.database import init_store
from nitrod.exceptions import NitroError
from nitrod.routers import apply, audit, databases, system


logger = logging.getLogger(__name__)


settings = get_settings()

ERROR_STATUS = {
    "connectivity": 503,
    "rejection": 502,
    "execution": 500,
    "partial_provision": 500,
    "io": 500,
    "protocol": 400,
    "not_found": 404,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Validate settings and prepare the audit store before serving."""
    validate_config_on_startup(settings)

    init_store(settings.sqlite_db_path)
    logger.info("nitrod %s ready, Caddy admin at %s", settings.version, settings.caddy_admin_url)

    yield


app = FastAPI(
    title="nitrod",
    version=settings.version,
    lifespan=lifespan,
)

app.include_router(system.router)
app.include_router(apply.router)
app.include_router(databases.router)
app.include_router(audit.router)


@app.exception_handler(NitroError)
async def nitro_error_handler(request: Request, exc: NitroError):
    """Report control-plane failures with a status derived from their kind."""
    status_code = ERROR_STATUS.get(exc.error_type, 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed ({exc.error_type}): {exc}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected ({exc.error_type}): {exc}")
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": str(exc),
            "code": "internal",
            "error_type": exc.error_type,
        },
    )
