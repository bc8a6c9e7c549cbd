"""FastAPI application factory and lifespan management."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from discovery.config import Settings
from discovery.events import EventBus
from discovery.middleware.auth import APIKeyMiddleware
from discovery.middleware.logging import RequestLoggingMiddleware
from discovery.routes import events, health, index, search
from discovery.search import SearchEngine, SearchFacade
from discovery.store import IndexStore
from discovery.sync import ProjectionSynchronizer, start_sync_workers

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifecycle events.

    Opens the index store, wires the synchronizer to the event bus through
    one worker per partition, and builds the search facade. On shutdown the
    workers are cancelled before the store is closed.

    Args:
        app: FastAPI application instance.

    Yields:
        None during application runtime.
    """
    settings: Settings = app.state.settings
    logger.info("api_startup", host=settings.host, port=settings.port)

    store = IndexStore(
        settings.database_path,
        reader_pool_size=settings.reader_pool_size,
        busy_timeout=settings.busy_timeout,
    )
    store.initialize()
    logger.info("index_store_ready", rows=store.count_rows())

    event_bus = EventBus(
        partitions=settings.bus_partitions,
        queue_size=settings.bus_queue_size,
    )
    synchronizer = ProjectionSynchronizer(store)
    search_facade = SearchFacade(
        SearchEngine(store),
        max_radius_km=settings.max_radius_km,
        max_page_size=settings.max_page_size,
        query_timeout=settings.query_timeout,
        retry_attempts=settings.search_retry_attempts,
        count_failure_policy=settings.count_failure_policy,
    )

    sync_tasks = start_sync_workers(
        event_bus,
        synchronizer,
        redelivery_delay=settings.redelivery_delay,
        max_attempts=settings.max_delivery_attempts,
    )
    logger.info("sync_workers_started", partitions=event_bus.partition_count)

    app.state.index_store = store
    app.state.event_bus = event_bus
    app.state.synchronizer = synchronizer
    app.state.search_facade = search_facade
    app.state.sync_tasks = sync_tasks

    try:
        yield
    finally:
        for task in sync_tasks:
            task.cancel()
        results = await asyncio.gather(*sync_tasks, return_exceptions=True)
        for task, result in zip(sync_tasks, results):
            if isinstance(result, Exception):
                logger.error("sync_worker_crashed", worker=task.get_name(), error=str(result))

        await event_bus.close()
        store.close()
        logger.info("api_shutdown")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Factory function to create configured FastAPI application.

    Args:
        settings: Configuration instance. Creates default if None.

    Returns:
        Configured FastAPI application.
    """
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="Provider Discovery Index",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/api/v1/docs" if settings.debug else None,
        redoc_url=None,
        openapi_url="/api/v1/openapi.json" if settings.debug else None,
    )
    app.state.settings = settings

    app.add_middleware(RequestLoggingMiddleware)
    if settings.key:
        app.add_middleware(APIKeyMiddleware, api_key=settings.key)

    app.include_router(health.router, prefix="/api/v1")
    app.include_router(search.router, prefix="/api/v1")
    app.include_router(events.router, prefix="/api/v1")
    app.include_router(index.router, prefix="/api/v1")

    return app
