#!/usr/bin/env python3
"""Migrate the store, then start the FastAPI application."""

import sys

import logfire
import uvicorn

from plexdonate.config import Settings
from plexdonate.persistence.migrations import run_migrations
from plexdonate.util.logging import setup_logging
from plexdonate.util.observability import configure_logfire


def main() -> int:
    """Start the application and log any startup errors to Logfire."""
    settings = Settings()

    setup_logging(settings)
    # Configure Logfire early to catch startup errors
    configure_logfire(settings)

    try:
        logfire.info("Applying database migrations")
        run_migrations(settings)

        logfire.info("Starting FastAPI application", host=settings.host, port=settings.port)
        uvicorn.run(
            "plexdonate.interface.api.app:app",
            host=settings.host,
            port=settings.port,
            log_level=(settings.log_level or "info").lower(),
            # Bounded drain of in-flight webhooks on shutdown
            timeout_graceful_shutdown=int(settings.sweeper.shutdown_grace_seconds),
        )

        return 0

    except Exception as e:
        logfire.error(
            "Application startup failed",
            error=str(e),
            error_type=type(e).__name__,
            _exc_info=sys.exc_info(),
        )
        # Re-raise so the container fails properly
        raise


if __name__ == "__main__":
    sys.exit(main())
