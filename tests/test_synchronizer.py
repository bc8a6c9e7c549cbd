"""Projection synchronizer tests: idempotence, ordering and edge policies."""

import uuid
from decimal import Decimal

import pytest

from conftest import ORIGIN, point_at
from discovery.errors import InvalidEventError, ProviderNotIndexedError
from discovery.events import (
    ProviderActivated,
    ProviderDeactivated,
    ProviderDeleted,
    ProviderLocationChanged,
    ProviderProfileUpdated,
    ProviderRatingChanged,
    ProviderServiceAdded,
    ProviderServiceRemoved,
    ProviderTierChanged,
)
from discovery.models import SubscriptionTier
from discovery.store import IndexStore
from discovery.sync import ApplyOutcome, ProjectionSynchronizer


def _activated(provider_id: uuid.UUID, sequence: int = 1, **fields: object) -> ProviderActivated:
    payload: dict[str, object] = {"name": "João Pereira", "location": ORIGIN}
    payload.update(fields)
    return ProviderActivated(provider_id=provider_id, sequence=sequence, **payload)  # type: ignore[arg-type]


def test_activation_creates_row(
    store: IndexStore, synchronizer: ProjectionSynchronizer
) -> None:
    provider_id = uuid.uuid4()

    outcome = synchronizer.apply(
        _activated(provider_id, tier="gold", city="Campinas", description="Eletricista")
    )

    assert outcome is ApplyOutcome.APPLIED
    row = store.get_by_provider_id(provider_id)
    assert row is not None
    assert row.is_active is True
    assert row.subscription_tier is SubscriptionTier.GOLD
    assert row.city == "Campinas"
    assert row.average_rating == Decimal("0.00")
    assert synchronizer.stats.applied == 1
    assert synchronizer.stats.last_lag_seconds is not None


def test_redelivered_event_is_idempotent(
    store: IndexStore, synchronizer: ProjectionSynchronizer
) -> None:
    """Applying the same event twice leaves the same state as once."""
    provider_id = uuid.uuid4()
    service_id = uuid.uuid4()
    synchronizer.apply(_activated(provider_id))
    added = ProviderServiceAdded(provider_id=provider_id, sequence=2, service_id=service_id)

    assert synchronizer.apply(added) is ApplyOutcome.APPLIED
    before = store.get_by_provider_id(provider_id)
    assert synchronizer.apply(added) is ApplyOutcome.STALE

    assert store.get_by_provider_id(provider_id) == before
    assert synchronizer.stats.stale_dropped == 1


def test_older_event_does_not_overwrite_newer(
    store: IndexStore, synchronizer: ProjectionSynchronizer
) -> None:
    """Applying N then N-1 leaves the state produced by N."""
    provider_id = uuid.uuid4()
    synchronizer.apply(_activated(provider_id))
    newer = ProviderLocationChanged(
        provider_id=provider_id, sequence=3, location=point_at(ORIGIN, 10.0)
    )
    older = ProviderLocationChanged(
        provider_id=provider_id, sequence=2, location=point_at(ORIGIN, 2.0)
    )

    synchronizer.apply(newer)
    assert synchronizer.apply(older) is ApplyOutcome.STALE

    row = store.get_by_provider_id(provider_id)
    assert row is not None
    assert row.location == newer.location


def test_mutation_before_activation_is_retryable(
    store: IndexStore, synchronizer: ProjectionSynchronizer
) -> None:
    """A mutation that overtakes its activation is deferred, not dropped."""
    provider_id = uuid.uuid4()
    rating = ProviderRatingChanged(
        provider_id=provider_id, sequence=2, average_rating=Decimal("4.8"), total_reviews=9
    )

    with pytest.raises(ProviderNotIndexedError) as exc_info:
        synchronizer.apply(rating)
    assert exc_info.value.retryable is True
    assert synchronizer.stats.not_indexed == 1

    synchronizer.apply(_activated(provider_id, sequence=1))
    assert synchronizer.apply(rating) is ApplyOutcome.APPLIED

    row = store.get_by_provider_id(provider_id)
    assert row is not None
    assert row.average_rating == Decimal("4.80")
    assert row.total_reviews == 9


def test_invalid_rating_is_rejected(
    store: IndexStore, synchronizer: ProjectionSynchronizer
) -> None:
    provider_id = uuid.uuid4()
    synchronizer.apply(_activated(provider_id))

    with pytest.raises(InvalidEventError):
        synchronizer.apply(
            ProviderRatingChanged(
                provider_id=provider_id,
                sequence=2,
                average_rating=Decimal("7.5"),
                total_reviews=3,
            )
        )

    row = store.get_by_provider_id(provider_id)
    assert row is not None
    assert row.average_rating == Decimal("0.00")
    assert synchronizer.stats.rejected == 1


def test_rejected_event_does_not_advance_sequence(
    store: IndexStore, synchronizer: ProjectionSynchronizer
) -> None:
    provider_id = uuid.uuid4()
    synchronizer.apply(_activated(provider_id))
    with pytest.raises(InvalidEventError):
        synchronizer.apply(
            ProviderRatingChanged(
                provider_id=provider_id, sequence=2, average_rating=Decimal("4"), total_reviews=-1
            )
        )

    with store.unit_of_work() as session:
        assert session.last_sequence(provider_id) == 1


def test_deactivation_hides_and_keeps_row(
    store: IndexStore, synchronizer: ProjectionSynchronizer
) -> None:
    provider_id = uuid.uuid4()
    synchronizer.apply(_activated(provider_id))

    synchronizer.apply(ProviderDeactivated(provider_id=provider_id, sequence=2))

    row = store.get_by_provider_id(provider_id)
    assert row is not None
    assert row.is_active is False
    assert store.count_rows(active_only=True) == 0


def test_reactivation_refreshes_row(
    store: IndexStore, synchronizer: ProjectionSynchronizer
) -> None:
    """A later activation reactivates the same row with the new profile."""
    provider_id = uuid.uuid4()
    synchronizer.apply(_activated(provider_id))
    first_row = store.get_by_provider_id(provider_id)
    synchronizer.apply(ProviderDeactivated(provider_id=provider_id, sequence=2))

    synchronizer.apply(
        _activated(provider_id, sequence=3, name="João P.", tier=SubscriptionTier.PLATINUM)
    )

    row = store.get_by_provider_id(provider_id)
    assert row is not None and first_row is not None
    assert row.id == first_row.id
    assert row.is_active is True
    assert row.name == "João P."
    assert row.subscription_tier is SubscriptionTier.PLATINUM
    assert store.count_rows() == 1


def test_reactivation_keeps_fields_it_does_not_carry(
    store: IndexStore, synchronizer: ProjectionSynchronizer
) -> None:
    """Re-activating with only name and location keeps tier and locality."""
    provider_id = uuid.uuid4()
    synchronizer.apply(
        _activated(provider_id, city="Campinas", state="SP", description="Pintor")
    )
    synchronizer.apply(ProviderTierChanged(provider_id=provider_id, sequence=2, new_tier="GOLD"))
    synchronizer.apply(ProviderDeactivated(provider_id=provider_id, sequence=3))

    moved = point_at(ORIGIN, 4.0)
    synchronizer.apply(
        ProviderActivated(provider_id=provider_id, sequence=4, name="João P.", location=moved)
    )

    row = store.get_by_provider_id(provider_id)
    assert row is not None
    assert row.is_active is True
    assert row.name == "João P."
    assert row.location == moved
    assert row.subscription_tier is SubscriptionTier.GOLD
    assert row.city == "Campinas"
    assert row.state == "SP"
    assert row.description == "Pintor"


def test_reactivation_clears_explicitly_nulled_fields(
    store: IndexStore, synchronizer: ProjectionSynchronizer
) -> None:
    provider_id = uuid.uuid4()
    synchronizer.apply(_activated(provider_id, city="Campinas"))
    synchronizer.apply(ProviderDeactivated(provider_id=provider_id, sequence=2))

    synchronizer.apply(_activated(provider_id, sequence=3, city=None, tier="FREE"))

    row = store.get_by_provider_id(provider_id)
    assert row is not None
    assert row.city is None
    assert row.subscription_tier is SubscriptionTier.FREE


def test_deactivation_of_unknown_provider_blocks_late_activation(
    store: IndexStore, synchronizer: ProjectionSynchronizer
) -> None:
    """A deactivation that wins the race prevents the older activation from resurrecting the row."""
    provider_id = uuid.uuid4()

    outcome = synchronizer.apply(ProviderDeactivated(provider_id=provider_id, sequence=2))
    assert outcome is ApplyOutcome.NOOP

    assert synchronizer.apply(_activated(provider_id, sequence=1)) is ApplyOutcome.STALE
    assert store.get_by_provider_id(provider_id) is None


def test_delete_removes_row(
    store: IndexStore, synchronizer: ProjectionSynchronizer
) -> None:
    provider_id = uuid.uuid4()
    synchronizer.apply(_activated(provider_id))

    assert (
        synchronizer.apply(ProviderDeleted(provider_id=provider_id, sequence=2))
        is ApplyOutcome.APPLIED
    )
    assert store.get_by_provider_id(provider_id) is None
    assert (
        synchronizer.apply(ProviderDeleted(provider_id=provider_id, sequence=3))
        is ApplyOutcome.NOOP
    )


def test_service_add_and_remove(
    store: IndexStore, synchronizer: ProjectionSynchronizer
) -> None:
    provider_id = uuid.uuid4()
    plumbing, painting = uuid.uuid4(), uuid.uuid4()
    synchronizer.apply(_activated(provider_id))

    synchronizer.apply(ProviderServiceAdded(provider_id=provider_id, sequence=2, service_id=plumbing))
    synchronizer.apply(ProviderServiceAdded(provider_id=provider_id, sequence=3, service_id=painting))
    synchronizer.apply(
        ProviderServiceRemoved(provider_id=provider_id, sequence=4, service_id=plumbing)
    )

    row = store.get_by_provider_id(provider_id)
    assert row is not None
    assert row.service_ids == frozenset({painting})


def test_profile_update_keeps_omitted_fields(
    store: IndexStore, synchronizer: ProjectionSynchronizer
) -> None:
    provider_id = uuid.uuid4()
    synchronizer.apply(_activated(provider_id, city="Campinas", state="SP"))

    synchronizer.apply(
        ProviderProfileUpdated(provider_id=provider_id, sequence=2, name="Novo Nome", city=None)
    )

    row = store.get_by_provider_id(provider_id)
    assert row is not None
    assert row.name == "Novo Nome"
    assert row.city is None
    assert row.state == "SP"


def test_tier_change(store: IndexStore, synchronizer: ProjectionSynchronizer) -> None:
    provider_id = uuid.uuid4()
    synchronizer.apply(_activated(provider_id))

    synchronizer.apply(ProviderTierChanged(provider_id=provider_id, sequence=2, new_tier="STANDARD"))

    row = store.get_by_provider_id(provider_id)
    assert row is not None
    assert row.subscription_tier is SubscriptionTier.STANDARD


def test_replay_accepts_unordered_history(
    store: IndexStore, synchronizer: ProjectionSynchronizer
) -> None:
    provider_id = uuid.uuid4()
    history = [
        ProviderTierChanged(provider_id=provider_id, sequence=3, new_tier="GOLD"),
        ProviderRatingChanged(
            provider_id=provider_id, sequence=2, average_rating=Decimal("3.9"), total_reviews=4
        ),
        _activated(provider_id, sequence=1),
        ProviderRatingChanged(
            provider_id=uuid.uuid4(), sequence=1, average_rating=Decimal("4"), total_reviews=1
        ),
    ]

    summary = synchronizer.replay(history)

    assert summary["applied"] == 3
    assert summary["skipped"] == 1
    row = store.get_by_provider_id(provider_id)
    assert row is not None
    assert row.subscription_tier is SubscriptionTier.GOLD
    assert row.average_rating == Decimal("3.90")


def test_replay_twice_changes_nothing(
    store: IndexStore, synchronizer: ProjectionSynchronizer
) -> None:
    provider_id = uuid.uuid4()
    history = [
        _activated(provider_id, sequence=1),
        ProviderTierChanged(provider_id=provider_id, sequence=2, new_tier="GOLD"),
    ]
    synchronizer.replay(history)
    before = store.get_by_provider_id(provider_id)

    summary = synchronizer.replay(history)

    assert summary["stale"] == 2
    assert store.get_by_provider_id(provider_id) == before


def test_rebuild_discards_previous_state(
    store: IndexStore, synchronizer: ProjectionSynchronizer
) -> None:
    orphan = uuid.uuid4()
    synchronizer.apply(_activated(orphan))
    provider_id = uuid.uuid4()

    summary = synchronizer.rebuild([_activated(provider_id, sequence=1)])

    assert summary["applied"] == 1
    assert store.get_by_provider_id(orphan) is None
    assert store.get_by_provider_id(provider_id) is not None
