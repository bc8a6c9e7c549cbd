"""Projection of provider lifecycle events onto the discovery index."""

import threading
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from enum import Enum

import structlog

from discovery.errors import (
    ConflictError,
    InvalidEventError,
    ProviderNotIndexedError,
    StaleEventError,
)
from discovery.events.types import (
    EventType,
    ProviderActivated,
    ProviderDeactivated,
    ProviderDeleted,
    ProviderEvent,
    ProviderLocationChanged,
    ProviderProfileUpdated,
    ProviderRatingChanged,
    ProviderServiceAdded,
    ProviderServiceRemoved,
    ProviderTierChanged,
)
from discovery.models import SearchableProvider
from discovery.store import IndexSession, IndexStore

logger = structlog.get_logger()


class ApplyOutcome(str, Enum):
    """Result of applying one event to the index."""

    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    NOOP = "noop"
    STALE = "stale"


@dataclass
class SyncStats:
    """Synchronizer counters exposed for observability.

    Attributes:
        applied: Events that changed (or confirmed) index state.
        stale_dropped: Events dropped by the sequence gate.
        conflicts: Creations that found the row already present.
        not_indexed: Mutations deferred because the row did not exist yet.
        rejected: Events refused for violating row invariants.
        last_applied_at: Wall-clock time of the last applied event.
        last_lag_seconds: Delay between the registry change and its
            application to the index, for the last applied event.
    """

    applied: int = 0
    stale_dropped: int = 0
    conflicts: int = 0
    not_indexed: int = 0
    rejected: int = 0
    last_applied_at: datetime | None = None
    last_lag_seconds: float | None = None

    def as_dict(self) -> dict[str, object]:
        return asdict(self)


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=UTC)


class ProjectionSynchronizer:
    """Applies provider lifecycle events as idempotent index mutations.

    Each event runs in its own unit of work. The first statement of that
    unit compare-and-sets the provider's last applied sequence, so an event
    that is not strictly newer than what the index already reflects is
    discarded without touching the row. This makes redelivery, reordering
    and full replay safe.
    """

    def __init__(self, store: IndexStore) -> None:
        """Initialize synchronizer.

        Args:
            store: Index store to project into.
        """
        self._store = store
        self._stats = SyncStats()
        self._stats_lock = threading.Lock()
        self._handlers: dict[
            EventType, Callable[[IndexSession, ProviderEvent], ApplyOutcome]
        ] = {
            EventType.ACTIVATED: self._on_activated,
            EventType.PROFILE_UPDATED: self._on_profile_updated,
            EventType.LOCATION_CHANGED: self._on_location_changed,
            EventType.SERVICE_ADDED: self._on_service_added,
            EventType.SERVICE_REMOVED: self._on_service_removed,
            EventType.RATING_CHANGED: self._on_rating_changed,
            EventType.TIER_CHANGED: self._on_tier_changed,
            EventType.DEACTIVATED: self._on_deactivated,
            EventType.DELETED: self._on_deleted,
        }

    @property
    def stats(self) -> SyncStats:
        with self._stats_lock:
            return SyncStats(**asdict(self._stats))

    def _count(self, field: str) -> None:
        with self._stats_lock:
            setattr(self._stats, field, getattr(self._stats, field) + 1)

    def apply(self, event: ProviderEvent) -> ApplyOutcome:
        """Apply one event inside a single commit.

        Args:
            event: Provider lifecycle event.

        Returns:
            What the event did to the index.

        Raises:
            ProviderNotIndexedError: If a mutation targets a provider with
                no row yet (retryable; the sequence is not advanced).
            InvalidEventError: If the event would break a row invariant.
            InfrastructureError: If the store fails.
        """
        handler = self._handlers[event.type]
        log = logger.bind(
            provider_id=str(event.provider_id),
            sequence=event.sequence,
            event_type=event.type.value,
        )

        try:
            with self._store.unit_of_work() as session:
                if not session.advance_sequence(event.provider_id, event.sequence):
                    raise StaleEventError(
                        event.provider_id,
                        event.sequence,
                        session.last_sequence(event.provider_id) or 0,
                    )
                try:
                    outcome = handler(session, event)
                except ValueError as e:
                    raise InvalidEventError(str(e), event.provider_id) from e
        except StaleEventError as e:
            self._count("stale_dropped")
            log.debug("stale_event_dropped", last_sequence=e.last_sequence)
            return ApplyOutcome.STALE
        except ProviderNotIndexedError:
            self._count("not_indexed")
            log.info("event_for_unindexed_provider")
            raise
        except InvalidEventError as e:
            self._count("rejected")
            log.warning("event_rejected", reason=str(e))
            raise

        applied_at = datetime.now(UTC)
        lag = (applied_at - _aware(event.occurred_at)).total_seconds()
        with self._stats_lock:
            self._stats.applied += 1
            self._stats.last_applied_at = applied_at
            self._stats.last_lag_seconds = max(0.0, lag)
        log.debug("event_applied", outcome=outcome.value, lag_seconds=round(lag, 3))
        return outcome

    def replay(self, events: Iterable[ProviderEvent]) -> dict[str, int]:
        """Apply a batch of events, tolerating per-event failures.

        Events are ordered by provider and sequence first, so an unordered
        dump of the registry's event log replays correctly.

        Args:
            events: Events to apply.

        Returns:
            Number of events per outcome, plus "skipped" for events that
            could not be applied.
        """
        summary: dict[str, int] = {outcome.value: 0 for outcome in ApplyOutcome}
        summary["skipped"] = 0
        ordered = sorted(events, key=lambda e: (str(e.provider_id), e.sequence))
        for event in ordered:
            try:
                outcome = self.apply(event)
            except (ProviderNotIndexedError, InvalidEventError):
                summary["skipped"] += 1
                continue
            summary[outcome.value] += 1

        logger.info("events_replayed", total=len(ordered), **summary)
        return summary

    def rebuild(self, events: Iterable[ProviderEvent]) -> dict[str, int]:
        """Discard the index and rebuild it from a full event history."""
        self._store.clear()
        return self.replay(events)

    def _require(self, session: IndexSession, event: ProviderEvent) -> SearchableProvider:
        provider = session.get_by_provider_id(event.provider_id)
        if provider is None:
            raise ProviderNotIndexedError(event.provider_id)
        return provider

    def _on_activated(self, session: IndexSession, event: ProviderActivated) -> ApplyOutcome:
        existing = session.get_by_provider_id(event.provider_id)
        if existing is not None:
            # Optional fields absent from the payload keep their indexed value.
            supplied = event.model_fields_set
            existing.update_basic_info(
                name=event.name,
                description=event.description if "description" in supplied else existing.description,
                city=event.city if "city" in supplied else existing.city,
                state=event.state if "state" in supplied else existing.state,
            )
            existing.update_location(event.location)
            if "tier" in supplied:
                existing.update_subscription_tier(event.tier)
            existing.activate()
            session.update(existing)
            return ApplyOutcome.APPLIED

        provider = SearchableProvider.create(
            provider_id=event.provider_id,
            name=event.name,
            location=event.location,
            subscription_tier=event.tier,
            description=event.description,
            city=event.city,
            state=event.state,
        )
        try:
            session.add(provider)
        except ConflictError:
            self._count("conflicts")
            logger.debug("provider_already_indexed", provider_id=str(event.provider_id))
            return ApplyOutcome.ALREADY_APPLIED
        return ApplyOutcome.APPLIED

    def _on_profile_updated(
        self, session: IndexSession, event: ProviderProfileUpdated
    ) -> ApplyOutcome:
        provider = self._require(session, event)
        supplied = event.model_fields_set
        provider.update_basic_info(
            name=event.name if event.name is not None else provider.name,
            description=event.description if "description" in supplied else provider.description,
            city=event.city if "city" in supplied else provider.city,
            state=event.state if "state" in supplied else provider.state,
        )
        session.update(provider)
        return ApplyOutcome.APPLIED

    def _on_location_changed(
        self, session: IndexSession, event: ProviderLocationChanged
    ) -> ApplyOutcome:
        provider = self._require(session, event)
        provider.update_location(event.location)
        session.update(provider)
        return ApplyOutcome.APPLIED

    def _on_service_added(self, session: IndexSession, event: ProviderServiceAdded) -> ApplyOutcome:
        provider = self._require(session, event)
        provider.add_service(event.service_id)
        session.update(provider)
        return ApplyOutcome.APPLIED

    def _on_service_removed(
        self, session: IndexSession, event: ProviderServiceRemoved
    ) -> ApplyOutcome:
        provider = self._require(session, event)
        provider.remove_service(event.service_id)
        session.update(provider)
        return ApplyOutcome.APPLIED

    def _on_rating_changed(
        self, session: IndexSession, event: ProviderRatingChanged
    ) -> ApplyOutcome:
        provider = self._require(session, event)
        provider.update_rating(event.average_rating, event.total_reviews)
        session.update(provider)
        return ApplyOutcome.APPLIED

    def _on_tier_changed(self, session: IndexSession, event: ProviderTierChanged) -> ApplyOutcome:
        provider = self._require(session, event)
        provider.update_subscription_tier(event.new_tier)
        session.update(provider)
        return ApplyOutcome.APPLIED

    def _on_deactivated(self, session: IndexSession, event: ProviderDeactivated) -> ApplyOutcome:
        provider = session.get_by_provider_id(event.provider_id)
        if provider is None:
            return ApplyOutcome.NOOP
        provider.deactivate()
        session.update(provider)
        return ApplyOutcome.APPLIED

    def _on_deleted(self, session: IndexSession, event: ProviderDeleted) -> ApplyOutcome:
        provider = session.get_by_provider_id(event.provider_id)
        if provider is None:
            return ApplyOutcome.NOOP
        session.delete(provider)
        return ApplyOutcome.APPLIED
