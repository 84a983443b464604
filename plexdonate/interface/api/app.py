"""FastAPI application."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import logfire
from dishka import AsyncContainer
from fastapi import FastAPI

from plexdonate.application.service import Sweeper
from plexdonate.config import Settings, SweeperSettings
from plexdonate.interface.api.middleware import RateLimitMiddleware
from plexdonate.interface.api.routes import health, webhooks
from plexdonate.util.di.container import create_container, setup_di
from plexdonate.util.observability import (
    SERVICE_VERSION,
    instrument_fastapi,
    instrument_httpx,
)


def build_lifespan(container: AsyncContainer):
    """Lifespan that runs the sweeper and closes the container on shutdown."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        sweeper_settings = await container.get(SweeperSettings)
        sweeper: Sweeper | None = None
        if sweeper_settings.enabled:
            sweeper = Sweeper(container, sweeper_settings)
            sweeper.start()
        app.state.sweeper = sweeper
        try:
            yield
        finally:
            if sweeper is not None:
                await sweeper.stop()
            await container.close()
            logfire.info("Application shut down")

    return lifespan


def create_app(
    container: AsyncContainer | None = None, settings: Settings | None = None
) -> FastAPI:
    """Create FastAPI application.

    Note: Logfire should be configured before calling this function.
    In production, start_app.py handles this.
    In tests, pass a container built from mock providers.

    Args:
        container: DI container; the production container when omitted
        settings: Settings for middleware; loaded from the environment when omitted
    """
    settings = settings or Settings()
    container = container or create_container()

    # Logfire must be configured before instrumentation
    instrument_httpx()

    app_instance = FastAPI(
        title="Plex Donate",
        description="Keeps Plex library access in step with donor subscriptions",
        version=SERVICE_VERSION,
        lifespan=build_lifespan(container),
    )

    instrument_fastapi(app_instance)

    app_instance.add_middleware(
        RateLimitMiddleware,
        requests_per_minute=settings.rate_limit.requests_per_minute,
        enabled=settings.rate_limit.enabled,
    )

    setup_di(app_instance, container)

    app_instance.include_router(health.router)
    app_instance.include_router(webhooks.router)

    return app_instance


# Create app instance for uvicorn
# Note: Logfire must be configured before this module is imported
# In production: start_app.py handles this
app = create_app()
