"""Index administration endpoints: stats, lookup and rebuild."""

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Body, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, TypeAdapter, ValidationError

from discovery.errors import InfrastructureError
from discovery.events.types import ProviderEvent
from discovery.models import SearchableProvider

if TYPE_CHECKING:
    from discovery.events.bus import EventBus
    from discovery.store import IndexStore
    from discovery.sync import ProjectionSynchronizer

logger = structlog.get_logger()

router = APIRouter(prefix="/index", tags=["index"])

_events_adapter: TypeAdapter[list[ProviderEvent]] = TypeAdapter(list[ProviderEvent])


class IndexStats(BaseModel):
    """Snapshot of index and synchronization state.

    Attributes:
        total_rows: Rows in the index, active or not.
        active_rows: Rows visible to search.
        backlog: Events queued or awaiting redelivery.
        published: Events accepted by the bus since startup.
        redelivered: Redeliveries scheduled since startup.
        applied: Events applied by the synchronizer.
        stale_dropped: Events dropped as older than the applied state.
        conflicts: Creations that found the row already present.
        not_indexed: Mutations deferred because the row did not exist yet.
        rejected: Events refused for violating row invariants.
        last_applied_at: When the last event was applied.
        last_lag_seconds: Registry-to-index delay of the last applied event.
    """

    total_rows: int
    active_rows: int
    backlog: int
    published: int
    redelivered: int
    applied: int
    stale_dropped: int
    conflicts: int
    not_indexed: int
    rejected: int
    last_applied_at: datetime | None = None
    last_lag_seconds: float | None = None


class RebuildSummary(BaseModel):
    """Outcome counts of a full rebuild."""

    applied: int
    already_applied: int
    noop: int
    stale: int
    skipped: int


def _unavailable(e: InfrastructureError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"message": str(e), "retryable": True},
    )


@router.get("/stats", response_model=IndexStats)
async def index_stats(request: Request) -> IndexStats:
    """Report index size, bus backlog and synchronizer counters.

    The lag figures describe the staleness window between a registry change
    and its visibility in search.
    """
    store: IndexStore = request.app.state.index_store
    bus: EventBus = request.app.state.event_bus
    synchronizer: ProjectionSynchronizer = request.app.state.synchronizer

    try:
        total = await asyncio.to_thread(store.count_rows)
        active = await asyncio.to_thread(store.count_rows, True)
    except InfrastructureError as e:
        raise _unavailable(e) from e

    return IndexStats(
        total_rows=total,
        active_rows=active,
        backlog=bus.backlog,
        published=bus.published_events,
        redelivered=bus.redelivered_events,
        **synchronizer.stats.as_dict(),
    )


@router.get("/providers/{provider_id}", response_model=SearchableProvider)
async def get_indexed_provider(request: Request, provider_id: UUID) -> SearchableProvider:
    """Return the index row projected for a provider.

    Raises:
        HTTPException: 404 if the provider has no row.
    """
    store: IndexStore = request.app.state.index_store
    try:
        provider = await asyncio.to_thread(store.get_by_provider_id, provider_id)
    except InfrastructureError as e:
        raise _unavailable(e) from e
    if provider is None:
        raise HTTPException(status_code=404, detail="Provider is not indexed")
    return provider


@router.post("/rebuild", response_model=RebuildSummary)
async def rebuild_index(
    request: Request, payload: list[dict[str, Any]] = Body(...)
) -> RebuildSummary:
    """Discard the index and replay a full event history into it.

    Args:
        request: FastAPI request (provides access to app state).
        payload: Every lifecycle event of the registry, in any order.

    Returns:
        Outcome counts of the replay.
    """
    try:
        events = _events_adapter.validate_python(payload)
    except ValidationError as e:
        raise RequestValidationError(e.errors(include_url=False)) from e

    synchronizer: ProjectionSynchronizer = request.app.state.synchronizer
    try:
        summary = await asyncio.to_thread(synchronizer.rebuild, events)
    except InfrastructureError as e:
        raise _unavailable(e) from e

    logger.info("index_rebuilt", events=len(events))
    return RebuildSummary(**summary)
