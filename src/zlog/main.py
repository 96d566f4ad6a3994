# src/zlog/main.py
"""Main entry point for the zlog application."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from zlog.api.v1 import (
    categories_router,
    federation_router,
    posts_router,
    subscriptions_router,
)
from zlog.core.settings import settings
from zlog.services.dispatcher import WebhookDispatcher
from zlog.services.federation_client import get_federation_client
from zlog.services.notifier import build_notifier
from zlog.services.sync_worker import SyncWorker

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="zlog API",
    description="Self-hosted blog with cross-instance category federation",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(federation_router, prefix="/api")
app.include_router(categories_router, prefix="/api/v1")
app.include_router(posts_router, prefix="/api/v1")
app.include_router(subscriptions_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    notifier = build_notifier()
    dispatcher = WebhookDispatcher()
    await dispatcher.start()

    worker = SyncWorker(notifier=notifier)
    if settings.federation_sync_enabled:
        await worker.start()
    else:
        logger.info("Federation sync disabled; remote categories will not be pulled")

    app.state.notifier = notifier
    app.state.dispatcher = dispatcher
    app.state.sync_worker = worker


@app.on_event("shutdown")
async def on_shutdown() -> None:
    worker: SyncWorker | None = getattr(app.state, "sync_worker", None)
    if worker:
        await worker.stop()
    dispatcher: WebhookDispatcher | None = getattr(app.state, "dispatcher", None)
    if dispatcher:
        await dispatcher.stop()
    await get_federation_client().close()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/api/federation/status")
async def federation_status() -> dict[str, object]:
    """Return delivery and request counters of the federation subsystem."""
    dispatcher: WebhookDispatcher | None = getattr(app.state, "dispatcher", None)
    worker: SyncWorker | None = getattr(app.state, "sync_worker", None)
    return {
        "dispatch": dispatcher.get_metrics() if dispatcher else None,
        "client": get_federation_client().get_metrics(),
        "sync": {
            "enabled": settings.federation_sync_enabled,
            "running": bool(worker and worker.running),
        },
    }


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.blog_title,
        "version": settings.app_version,
        "site_url": settings.site_url,
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("zlog.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
