from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from listing_review.container import build_container
from listing_review.core.config import Settings, settings as default_settings
from listing_review.modules.reviews.router import router as reviews_router
from listing_review.worker import make_job_handler

logger = structlog.get_logger()


def create_app(settings: Settings | None = None, container: Any = None) -> FastAPI:
    """Build the HTTP app. ``container`` replaces the wired one (tests)."""
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Starting Listing Review API")
        if container is not None:
            yield
            logger.info("Shutting down Listing Review API")
            return

        # The in-memory queue only reaches workers of this process
        in_process = settings.queue_provider == "memory"
        app.state.container = build_container(settings, with_pipeline=in_process)
        worker = None
        if in_process:
            worker = app.state.container.queue.create_worker(
                make_job_handler(app.state.container.pipeline)
            )
        try:
            yield
        finally:
            logger.info("Shutting down Listing Review API")
            if worker is not None:
                await worker.close()
            await app.state.container.close()

    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/api/docs",
        openapi_url="/api/openapi.json",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(reviews_router, prefix=settings.api_prefix)
    if container is not None:
        app.state.container = container

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
