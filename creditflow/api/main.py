#!/usr/bin/env python3
"""
Creditflow API
==============

FastAPI app for submitting credit applications and watching their
progress, plus operator endpoints for the outbox.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..core.config import PipelineConfig
from ..core.observability import configure_logging, init_metrics, init_tracing
from ..core.outbox.lifecycle import outbox_lifespan
from ..core.pipeline import Pipeline, build_pipeline
from .routers import admin_router, applications_router
from .shared.middleware import TraceMiddleware, register_error_handlers
from .shared.routers import health_router

logger = logging.getLogger(__name__)

API_HOST = os.environ.get("API_HOST", "0.0.0.0")
API_PORT = int(os.environ.get("API_PORT", "9300"))


def init_observability(config: PipelineConfig) -> None:
    configure_logging(config.log_level, config.log_structured, f"{config.service_name}-api")
    init_tracing(f"{config.service_name}-api", otlp_endpoint=config.otlp_endpoint)
    init_metrics(f"{config.service_name}-api", otlp_endpoint=config.otlp_endpoint)


def create_app(pipeline: Optional[Pipeline] = None) -> FastAPI:
    """
    Build the API.

    With no pipeline, the lifespan builds one from the environment, runs
    the outbox publisher alongside the app (unless disabled) and closes
    everything on shutdown. A pipeline passed in is used as-is and its
    lifecycle stays with the caller.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if pipeline is not None:
            yield
            return

        config = PipelineConfig()
        init_observability(config)
        owned = await build_pipeline(config)
        app.state.pipeline = owned
        try:
            async with outbox_lifespan(owned.publisher, config):
                yield
        finally:
            await owned.close()
            logger.info("Pipeline closed")

    app = FastAPI(
        title="Creditflow API",
        description="Credit application pipeline",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.pipeline = pipeline

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(TraceMiddleware)

    register_error_handlers(app)

    app.include_router(health_router)
    app.include_router(applications_router)
    app.include_router(admin_router)

    return app


app = create_app()


def main():
    import uvicorn
    uvicorn.run(
        "creditflow.api.main:app",
        host=API_HOST,
        port=API_PORT,
        log_config=None,
    )


if __name__ == "__main__":
    main()
