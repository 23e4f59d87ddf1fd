"""Application factory for the FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers and
the long-lived scheduler) so tests can build isolated instances.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from genbatch.adapters.generation.base import AbstractGenerationClient
from genbatch.adapters.generation.factory import create_generation_client
from genbatch.api.routes import health_router, tasks_router
from genbatch.core.config import Settings, load_settings
from genbatch.core.exception_handlers import setup_exception_handlers
from genbatch.core.logging import configure_logging
from genbatch.core.middleware import request_id_middleware
from genbatch.core.openapi import apply_openapi_customizations
from genbatch.services.image_service import ImageGenerationService
from genbatch.services.scheduler import CategoryScheduler
from genbatch.services.speech_service import SpeechGenerationService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    scheduler: CategoryScheduler = app.state.scheduler
    logger.info(
        "app.startup",
        extra={"categories": sorted(category.value for category in scheduler.limiters)},
    )
    try:
        yield
    finally:
        await app.state.generation_client.aclose()
        dropped = scheduler.registry.clear_completed()
        logger.info(
            "app.shutdown",
            extra={
                "cleared_completed": dropped,
                "in_flight": scheduler.registry.stats().in_flight,
            },
        )


def create_app(
    settings: Settings | None = None,
    *,
    generation_client: AbstractGenerationClient | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        settings: Validated settings; loaded from the environment when omitted.
        generation_client: Optional client override (tests inject fakes here).

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.

    Raises:
        ConfigurationAppError: If no client is given and the provider
            configuration is incomplete.
    """
    settings = settings or load_settings()

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    client = generation_client or create_generation_client(settings.provider)
    scheduler = CategoryScheduler.from_settings(settings.rate_limit)

    app = FastAPI(
        title="GenBatch API",
        description=(
            "Batch image and speech generation against a remote provider. "
            "Tasks are submitted without blocking, paced per category by an "
            "adaptive rate limiter that backs off on provider throttling, and "
            "collected through a barrier endpoint. Requires X-API-Key."
        ),
        version="0.1.0",
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.generation_client = client
    app.state.scheduler = scheduler
    app.state.image_service = ImageGenerationService(client, output_dir=settings.app.output_dir)
    app.state.speech_service = SpeechGenerationService(client, output_dir=settings.app.output_dir)

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(tasks_router, prefix="/v1")
    app.include_router(health_router)

    # OpenAPI customizations (security scheme, tags, exemptions)
    apply_openapi_customizations(app)

    return app
