"""Provider lifecycle events consumed by the projection synchronizer."""
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from discovery.geo import GeoPoint
from discovery.models import SubscriptionTier


class EventType(str, Enum):
    """Provider lifecycle event types."""

    ACTIVATED = "provider.activated"
    PROFILE_UPDATED = "provider.profile_updated"
    LOCATION_CHANGED = "provider.location_changed"
    SERVICE_ADDED = "provider.service_added"
    SERVICE_REMOVED = "provider.service_removed"
    RATING_CHANGED = "provider.rating_changed"
    TIER_CHANGED = "provider.tier_changed"
    DEACTIVATED = "provider.deactivated"
    DELETED = "provider.deleted"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def parse_tier(value: object) -> SubscriptionTier:
    """Accept tiers by name or ordinal."""
    if isinstance(value, (str, int)):
        return SubscriptionTier.parse(value)
    raise ValueError(f"Unknown subscription tier: {value!r}")


class ProviderEventBase(BaseModel):
    """Fields common to every provider lifecycle event.

    Attributes:
        provider_id: Identity of the authoritative provider.
        sequence: Per-provider monotonic sequence number.
        occurred_at: When the change happened in the registry (UTC).
    """

    provider_id: UUID = Field(description="Authoritative provider identity")
    sequence: int = Field(ge=0, description="Per-provider monotonic sequence")
    occurred_at: datetime = Field(
        default_factory=_utcnow, description="Registry change timestamp (UTC)"
    )


class ProviderActivated(ProviderEventBase):
    type: Literal[EventType.ACTIVATED] = EventType.ACTIVATED
    name: str = Field(min_length=1)
    location: GeoPoint
    tier: SubscriptionTier = SubscriptionTier.FREE
    description: str | None = None
    city: str | None = None
    state: str | None = None

    @field_validator("tier", mode="before")
    @classmethod
    def _parse_tier(cls, value: object) -> SubscriptionTier:
        return parse_tier(value)


class ProviderProfileUpdated(ProviderEventBase):
    """Profile edit; fields absent from the payload keep their indexed value."""

    type: Literal[EventType.PROFILE_UPDATED] = EventType.PROFILE_UPDATED
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    city: str | None = None
    state: str | None = None


class ProviderLocationChanged(ProviderEventBase):
    type: Literal[EventType.LOCATION_CHANGED] = EventType.LOCATION_CHANGED
    location: GeoPoint


class ProviderServiceAdded(ProviderEventBase):
    type: Literal[EventType.SERVICE_ADDED] = EventType.SERVICE_ADDED
    service_id: UUID


class ProviderServiceRemoved(ProviderEventBase):
    type: Literal[EventType.SERVICE_REMOVED] = EventType.SERVICE_REMOVED
    service_id: UUID


class ProviderRatingChanged(ProviderEventBase):
    """Recomputed rating aggregate. Range is enforced again before writing."""

    type: Literal[EventType.RATING_CHANGED] = EventType.RATING_CHANGED
    average_rating: Decimal
    total_reviews: int


class ProviderTierChanged(ProviderEventBase):
    type: Literal[EventType.TIER_CHANGED] = EventType.TIER_CHANGED
    new_tier: SubscriptionTier

    @field_validator("new_tier", mode="before")
    @classmethod
    def _parse_tier(cls, value: object) -> SubscriptionTier:
        return parse_tier(value)


class ProviderDeactivated(ProviderEventBase):
    type: Literal[EventType.DEACTIVATED] = EventType.DEACTIVATED


class ProviderDeleted(ProviderEventBase):
    type: Literal[EventType.DELETED] = EventType.DELETED


ProviderEvent = Annotated[
    Union[
        ProviderActivated,
        ProviderProfileUpdated,
        ProviderLocationChanged,
        ProviderServiceAdded,
        ProviderServiceRemoved,
        ProviderRatingChanged,
        ProviderTierChanged,
        ProviderDeactivated,
        ProviderDeleted,
    ],
    Field(discriminator="type"),
]

provider_event_adapter: TypeAdapter[ProviderEvent] = TypeAdapter(ProviderEvent)
