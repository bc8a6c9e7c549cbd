"""In-process partitioned event bus for provider lifecycle events."""
import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass
from uuid import UUID

import structlog

from discovery.events.types import ProviderEvent

logger = structlog.get_logger()


@dataclass(frozen=True)
class Delivery:
    """One delivery attempt of an event.

    Attributes:
        event: The provider lifecycle event.
        attempt: 1 for the first delivery, incremented on each redelivery.
    """

    event: ProviderEvent
    attempt: int = 1


class EventBus:
    """Async event bus partitioned by provider identity.

    Every event of a given provider lands in the same partition, and each
    partition has exactly one consumer, so events of one provider are
    applied by a single writer. Delivery is at-least-once: a consumer may
    hand an event back for redelivery, which re-enqueues it after a delay
    and possibly behind newer events of the same provider.

    Attributes:
        partitions: Number of partitions.
        queue_size: Maximum pending deliveries per partition.
    """

    def __init__(self, partitions: int = 4, queue_size: int = 1000) -> None:
        """Initialize event bus.

        Args:
            partitions: Number of independent partitions.
            queue_size: Maximum items per partition queue; publishers wait
                when a partition is full.
        """
        self._queues: list[asyncio.Queue[Delivery]] = [
            asyncio.Queue(maxsize=queue_size) for _ in range(max(1, partitions))
        ]
        self._claimed: set[int] = set()
        self._pending: set[asyncio.Task[None]] = set()
        self._published = 0
        self._redelivered = 0

    @property
    def partition_count(self) -> int:
        return len(self._queues)

    @property
    def backlog(self) -> int:
        """Deliveries waiting in partition queues or scheduled for redelivery."""
        return sum(q.qsize() for q in self._queues) + len(self._pending)

    @property
    def published_events(self) -> int:
        return self._published

    @property
    def redelivered_events(self) -> int:
        return self._redelivered

    def partition_for(self, provider_id: UUID) -> int:
        return provider_id.int % len(self._queues)

    async def publish(self, event: ProviderEvent) -> int:
        """Enqueue an event on its provider's partition.

        Args:
            event: Provider lifecycle event.

        Returns:
            Index of the partition the event was routed to.
        """
        partition = self.partition_for(event.provider_id)
        await self._queues[partition].put(Delivery(event))
        self._published += 1
        return partition

    def redeliver(self, delivery: Delivery, delay: float) -> None:
        """Schedule another delivery attempt after a delay.

        Args:
            delivery: The delivery that could not be applied.
            delay: Seconds to wait before re-enqueueing.
        """

        async def requeue() -> None:
            await asyncio.sleep(delay)
            partition = self.partition_for(delivery.event.provider_id)
            await self._queues[partition].put(
                Delivery(delivery.event, attempt=delivery.attempt + 1)
            )

        task = asyncio.create_task(requeue())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        self._redelivered += 1

    async def consume(self, partition: int) -> AsyncIterator[Delivery]:
        """Iterate over deliveries of one partition.

        Args:
            partition: Partition index to consume.

        Yields:
            Deliveries in enqueue order.

        Raises:
            ValueError: If the partition already has a consumer.
        """
        if partition in self._claimed:
            raise ValueError(f"Partition {partition} already has a consumer")
        self._claimed.add(partition)
        queue = self._queues[partition]
        try:
            while True:
                delivery = await queue.get()
                try:
                    yield delivery
                finally:
                    queue.task_done()
        finally:
            self._claimed.discard(partition)
            logger.debug("partition_consumer_released", partition=partition)

    async def drain(self) -> None:
        """Wait until every published event, including redeliveries, is handled."""
        while True:
            await asyncio.gather(*(q.join() for q in self._queues))
            if not self._pending:
                return
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        """Cancel scheduled redeliveries."""
        for task in list(self._pending):
            task.cancel()
        await asyncio.gather(*list(self._pending), return_exceptions=True)
        logger.info(
            "event_bus_closed",
            published=self._published,
            redelivered=self._redelivered,
            backlog=self.backlog,
        )
