"""Ingestion endpoints for provider lifecycle events."""

from typing import TYPE_CHECKING, Any

import structlog
from fastapi import APIRouter, Body, Request, status
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, TypeAdapter, ValidationError

from discovery.events.types import ProviderEvent, provider_event_adapter

if TYPE_CHECKING:
    from discovery.events.bus import EventBus

logger = structlog.get_logger()

router = APIRouter(prefix="/events", tags=["events"])

_batch_adapter: TypeAdapter[list[ProviderEvent]] = TypeAdapter(list[ProviderEvent])


def _parse(adapter: TypeAdapter[Any], payload: object) -> Any:
    try:
        return adapter.validate_python(payload)
    except ValidationError as e:
        raise RequestValidationError(e.errors(include_url=False)) from e


class EventAccepted(BaseModel):
    """Acknowledgement for queued events.

    Attributes:
        accepted: Number of events queued.
        partitions: Partition each event was routed to, in request order.
    """

    accepted: int
    partitions: list[int]


@router.post(
    "",
    response_model=EventAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Publish one provider lifecycle event",
)
async def publish_event(
    request: Request, payload: dict[str, Any] = Body(...)
) -> EventAccepted:
    """Queue an event for projection into the index.

    The event is applied asynchronously; search results reflect it once
    the partition worker has processed it.

    Args:
        request: FastAPI request (provides access to app state).
        payload: Provider lifecycle event as JSON.

    Returns:
        Acknowledgement with the event's partition.
    """
    event = _parse(provider_event_adapter, payload)
    bus: EventBus = request.app.state.event_bus
    partition = await bus.publish(event)
    logger.debug(
        "event_published",
        provider_id=str(event.provider_id),
        sequence=event.sequence,
        event_type=event.type.value,
        partition=partition,
    )
    return EventAccepted(accepted=1, partitions=[partition])


@router.post(
    "/batch",
    response_model=EventAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Publish several provider lifecycle events",
)
async def publish_events(
    request: Request, payload: list[dict[str, Any]] = Body(...)
) -> EventAccepted:
    """Queue a batch of events, in order, for projection into the index.

    Args:
        request: FastAPI request (provides access to app state).
        payload: Provider lifecycle events as a JSON array.

    Returns:
        Acknowledgement with each event's partition.
    """
    events = _parse(_batch_adapter, payload)
    bus: EventBus = request.app.state.event_bus
    partitions = [await bus.publish(event) for event in events]
    logger.info("event_batch_published", count=len(partitions))
    return EventAccepted(accepted=len(partitions), partitions=partitions)
