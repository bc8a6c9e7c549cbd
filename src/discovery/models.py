"""Index row model for provider discovery."""

import uuid
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import IntEnum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from discovery.geo import GeoPoint

RATING_QUANTUM = Decimal("0.01")
MAX_RATING = Decimal("5")


class SubscriptionTier(IntEnum):
    """Ordered subscription category, the dominant ranking signal."""

    FREE = 0
    STANDARD = 1
    GOLD = 2
    PLATINUM = 3

    @classmethod
    def parse(cls, value: "str | int | SubscriptionTier") -> "SubscriptionTier":
        """Resolve a tier from its name or ordinal.

        Args:
            value: Tier name (case-insensitive), ordinal, or tier.

        Returns:
            Matching subscription tier.

        Raises:
            ValueError: If the value names no known tier.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().upper()
            if key in cls.__members__:
                return cls[key]
            if key.isdigit():
                return cls(int(key))
            raise ValueError(f"Unknown subscription tier: {value!r}")
        return cls(value)


def quantize_rating(value: Decimal | float | int | str) -> Decimal:
    """Normalize a rating to two decimal places."""
    return Decimal(str(value)).quantize(RATING_QUANTUM, rounding=ROUND_HALF_UP)


def _now() -> datetime:
    return datetime.now(UTC)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


class SearchableProvider(BaseModel):
    """Denormalized projection of one provider used for discovery queries.

    `provider_id` is a lookup key into the authoritative registry. Nothing
    here owns or manages the lifecycle of the provider itself.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: UUID = Field(default_factory=uuid.uuid4)
    provider_id: UUID
    name: str = Field(min_length=1)
    description: str | None = None
    location: GeoPoint
    subscription_tier: SubscriptionTier = SubscriptionTier.FREE
    average_rating: Decimal = Field(default=Decimal("0.00"), ge=0, le=MAX_RATING)
    total_reviews: int = Field(default=0, ge=0)
    service_ids: frozenset[UUID] = frozenset()
    city: str | None = None
    state: str | None = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("Provider name cannot be empty")
        return stripped

    @field_validator("average_rating", mode="before")
    @classmethod
    def _quantize(cls, value: Decimal | float | int | str) -> Decimal:
        return quantize_rating(value)

    @classmethod
    def create(
        cls,
        provider_id: UUID,
        name: str,
        location: GeoPoint,
        subscription_tier: SubscriptionTier = SubscriptionTier.FREE,
        description: str | None = None,
        city: str | None = None,
        state: str | None = None,
    ) -> "SearchableProvider":
        """Create a new active index row for a provider.

        Args:
            provider_id: Identity of the authoritative provider.
            name: Display name, must be non-empty.
            location: Provider coordinates.
            subscription_tier: Initial ranking tier.
            description: Optional bio shown in results.
            city: Optional city label.
            state: Optional state label.

        Returns:
            New searchable provider with zero rating and no services.
        """
        return cls(
            provider_id=provider_id,
            name=name,
            location=location,
            subscription_tier=subscription_tier,
            description=_clean(description),
            city=_clean(city),
            state=_clean(state),
        )

    def _touch(self) -> None:
        self.updated_at = _now()

    def update_basic_info(
        self,
        name: str,
        description: str | None,
        city: str | None,
        state: str | None,
    ) -> None:
        """Replace display name and locality labels."""
        self.name = name
        self.description = _clean(description)
        self.city = _clean(city)
        self.state = _clean(state)
        self._touch()

    def update_location(self, location: GeoPoint) -> None:
        self.location = location
        self._touch()

    def update_rating(self, average_rating: Decimal, total_reviews: int) -> None:
        """Set rating aggregate after checking its invariants.

        Raises:
            ValueError: If rating is outside [0, 5] or reviews are negative.
        """
        rating = quantize_rating(average_rating)
        if rating < 0 or rating > MAX_RATING:
            raise ValueError("Rating must be between 0 and 5")
        if total_reviews < 0:
            raise ValueError("Total reviews cannot be negative")

        self.average_rating = rating
        self.total_reviews = total_reviews
        self._touch()

    def update_subscription_tier(self, tier: SubscriptionTier) -> None:
        self.subscription_tier = tier
        self._touch()

    def update_services(self, service_ids: frozenset[UUID] | set[UUID]) -> None:
        self.service_ids = frozenset(service_ids)
        self._touch()

    def add_service(self, service_id: UUID) -> None:
        if service_id in self.service_ids:
            return
        self.update_services(self.service_ids | {service_id})

    def remove_service(self, service_id: UUID) -> None:
        if service_id not in self.service_ids:
            return
        self.update_services(self.service_ids - {service_id})

    def activate(self) -> None:
        if self.is_active:
            return
        self.is_active = True
        self._touch()

    def deactivate(self) -> None:
        if not self.is_active:
            return
        self.is_active = False
        self._touch()

    def distance_to_km(self, point: GeoPoint) -> float:
        """Great-circle distance from this provider to a point in kilometres."""
        return self.location.distance_to_km(point)
