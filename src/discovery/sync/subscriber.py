"""Event bus consumers that keep the discovery index in sync."""

import asyncio

import structlog

from discovery.errors import DiscoveryError, InvalidEventError
from discovery.events.bus import EventBus
from discovery.sync.synchronizer import ProjectionSynchronizer

logger = structlog.get_logger()


async def run_partition_worker(
    event_bus: EventBus,
    partition: int,
    synchronizer: ProjectionSynchronizer,
    redelivery_delay: float = 0.5,
    max_attempts: int = 5,
) -> None:
    """Consume one bus partition and apply its events to the index.

    Runs as a long-lived asyncio task. Retryable failures are handed back
    to the bus for redelivery until max_attempts is reached. Invalid events
    are dropped, and an unexpected error is logged and the event skipped.

    Args:
        event_bus: Application event bus instance.
        partition: Partition this worker owns.
        synchronizer: Synchronizer applying events to the index.
        redelivery_delay: Seconds before a failed event is redelivered.
        max_attempts: Deliveries attempted before an event is abandoned.
    """
    logger.info("sync_worker_started", partition=partition)

    try:
        async for delivery in event_bus.consume(partition):
            event = delivery.event
            try:
                await asyncio.to_thread(synchronizer.apply, event)
            except InvalidEventError:
                continue
            except DiscoveryError as e:
                if not e.retryable or delivery.attempt >= max_attempts:
                    logger.error(
                        "event_abandoned",
                        provider_id=str(event.provider_id),
                        sequence=event.sequence,
                        event_type=event.type.value,
                        attempts=delivery.attempt,
                        error=str(e),
                    )
                    continue
                event_bus.redeliver(delivery, redelivery_delay * delivery.attempt)
            except Exception:
                # One broken event must not stop the partition.
                logger.exception(
                    "event_apply_crashed",
                    provider_id=str(event.provider_id),
                    sequence=event.sequence,
                    event_type=event.type.value,
                    attempts=delivery.attempt,
                )
    except asyncio.CancelledError:
        logger.info("sync_worker_stopped", partition=partition)
        raise


def start_sync_workers(
    event_bus: EventBus,
    synchronizer: ProjectionSynchronizer,
    redelivery_delay: float = 0.5,
    max_attempts: int = 5,
) -> list[asyncio.Task[None]]:
    """Start one worker task per bus partition.

    Returns:
        The running worker tasks.
    """
    return [
        asyncio.create_task(
            run_partition_worker(
                event_bus,
                partition,
                synchronizer,
                redelivery_delay=redelivery_delay,
                max_attempts=max_attempts,
            ),
            name=f"sync-worker-{partition}",
        )
        for partition in range(event_bus.partition_count)
    ]
