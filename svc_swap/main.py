from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import FastAPI

from svc_swap.api import build_router
from svc_swap.api.deps import drain_background_work
from svc_swap.api.errors import install_exception_handlers
from svc_swap.config import settings
from svc_swap.db import close_pool, get_pool
from svc_swap.logging import configure_logging
from svc_swap.middleware import RequestIdMiddleware
from svc_swap.services.rate_limiter import rate_limiter, run_sweeper

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(
        title="Face Swap Studio",
        version=settings.SERVICE_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.add_middleware(RequestIdMiddleware)
    install_exception_handlers(app)
    app.include_router(build_router())

    sweeper_stop = asyncio.Event()
    sweeper: Optional[asyncio.Task] = None

    @app.on_event("startup")
    async def startup():
        nonlocal sweeper
        await get_pool()
        sweeper_stop.clear()
        sweeper = asyncio.create_task(run_sweeper(rate_limiter, settings.RATE_LIMIT_SWEEP_SECONDS, sweeper_stop))
        logger.info("service_started", extra={"service": settings.SERVICE_NAME, "provider": settings.FACE_SWAP_PROVIDER})

    @app.on_event("shutdown")
    async def shutdown():
        sweeper_stop.set()
        if sweeper is not None:
            await sweeper
        await drain_background_work()
        await close_pool()

    @app.get("/")
    async def root():
        return {"service": settings.SERVICE_NAME, "status": "ok", "version": settings.SERVICE_VERSION}

    return app


# uvicorn svc_swap.main:app
app = create_app()
