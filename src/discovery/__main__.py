"""Entry point for the discovery API server."""

import asyncio
import contextlib
import sys

import structlog
import uvicorn

from discovery.app import create_app
from discovery.config import Settings
from discovery.logging import configure_logging

logger = structlog.get_logger()


async def serve(settings: Settings) -> None:
    """Run uvicorn until it receives SIGTERM/SIGINT.

    In-flight requests get shutdown_timeout seconds to finish; the app
    lifespan then stops sync workers and closes the index store.

    Args:
        settings: Server configuration.
    """
    app = create_app(settings)
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_level="warning",
        access_log=False,
        timeout_graceful_shutdown=int(settings.shutdown_timeout),
    )
    server = uvicorn.Server(config)
    await server.serve()
    logger.info("server_stopped")


def main() -> None:
    """Entry point for python -m discovery."""
    settings = Settings()
    configure_logging(debug=settings.debug)

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(serve(settings))

    sys.exit(0)


if __name__ == "__main__":
    main()
