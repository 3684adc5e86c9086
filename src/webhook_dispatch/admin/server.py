from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from loguru import logger

from webhook_dispatch.admin.routes import router
from webhook_dispatch.common.config import ServiceConfig
from webhook_dispatch.common.log import configure_logging
from webhook_dispatch.common.metrics import metrics, start_metrics_server
from webhook_dispatch.dispatcher.dispatcher import WebhookDispatcher, create_dispatcher


def create_app(
    config: ServiceConfig, dispatcher: Optional[WebhookDispatcher] = None
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(config.log_level)

        # Start metrics server if enabled
        if config.metrics.enabled:
            start_metrics_server(config.metrics.port, config.metrics.host)
            logger.info(
                f"Metrics server started on {config.metrics.host}:{config.metrics.port}"
            )

        metrics.up.labels(component="dispatcher").set(1)
        logger.info(f"Webhook Dispatch started on {config.host}:{config.port}")
        logger.info(f"Endpoint registry: {config.registry_type.value}")

        try:
            yield
        finally:
            await app.state.dispatcher.close()
            metrics.up.labels(component="dispatcher").set(0)
            logger.info("Webhook Dispatch shutting down")

    app = FastAPI(
        title="Webhook Dispatch",
        description="Registers tenant webhook endpoints and delivers domain events to them",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.dispatcher = dispatcher or create_dispatcher(config)
    app.include_router(router)

    return app


def run_server(config: ServiceConfig):
    app = create_app(config)

    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level="info",
    )
