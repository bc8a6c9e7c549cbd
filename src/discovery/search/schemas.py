"""Search inputs, internal outcomes and API response schemas."""

from dataclasses import dataclass, replace
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from discovery.geo import GeoPoint
from discovery.models import SearchableProvider, SubscriptionTier


@dataclass(frozen=True)
class SearchQuery:
    """Validated search request handed to the ranking engine.

    Attributes:
        origin: Point distances are measured from.
        radius_km: Inclusive search radius; zero or less matches nothing.
        service_ids: Required service overlap, if given and non-empty.
        min_rating: Inclusive rating floor, if given.
        tiers: Allowed subscription tiers, if given and non-empty.
        skip: Ranked rows to skip.
        take: Maximum rows to return; zero asks for the count only.
    """

    origin: GeoPoint
    radius_km: float
    service_ids: frozenset[UUID] | None = None
    min_rating: Decimal | None = None
    tiers: frozenset[SubscriptionTier] | None = None
    skip: int = 0
    take: int = 20

    def clamped(self) -> "SearchQuery":
        return replace(self, skip=max(0, self.skip), take=max(0, self.take))


@dataclass(frozen=True)
class RankedProvider:
    """A matching row paired with its distance from the query origin."""

    provider: SearchableProvider
    distance_km: float


@dataclass(frozen=True)
class SearchOutcome:
    items: list[RankedProvider]
    total_count: int


class ProviderSummary(BaseModel):
    """Provider as shown in search results."""

    provider_id: UUID
    name: str
    description: str | None = None
    location: GeoPoint
    subscription_tier: str = Field(description="Tier name, e.g. GOLD")
    average_rating: float
    total_reviews: int
    service_ids: list[UUID]
    city: str | None = None
    state: str | None = None
    distance_km: float = Field(description="Distance from the query origin")

    @classmethod
    def from_ranked(cls, ranked: RankedProvider) -> "ProviderSummary":
        provider = ranked.provider
        return cls(
            provider_id=provider.provider_id,
            name=provider.name,
            description=provider.description,
            location=provider.location,
            subscription_tier=provider.subscription_tier.name,
            average_rating=float(provider.average_rating),
            total_reviews=provider.total_reviews,
            service_ids=sorted(provider.service_ids),
            city=provider.city,
            state=provider.state,
            distance_km=ranked.distance_km,
        )


class SearchResult(BaseModel):
    """Paginated search response envelope.

    Attributes:
        items: Ranked providers for the requested page.
        distances_km: Distance of each item, in the same order.
        total_count: Matches across all pages, or None when the count was
            omitted after a count query failure.
        count_exact: False when total_count was omitted.
        skip: Number of results skipped.
        take: Maximum results per page.
    """

    items: list[ProviderSummary]
    distances_km: list[float]
    total_count: int | None
    count_exact: bool = True
    skip: int
    take: int
