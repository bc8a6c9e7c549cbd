"""Search facade: the validated entry point for provider discovery."""

import asyncio
import math
import threading
import time
from collections.abc import Iterable
from decimal import Decimal, InvalidOperation
from typing import Literal
from uuid import UUID

import structlog
from pydantic import ValidationError

from discovery.errors import (
    CountUnavailableError,
    InfrastructureError,
    SearchTimeoutError,
    SearchValidationError,
)
from discovery.geo import GeoPoint
from discovery.models import MAX_RATING, SubscriptionTier
from discovery.search.engine import SearchEngine
from discovery.search.schemas import (
    ProviderSummary,
    RankedProvider,
    SearchQuery,
    SearchResult,
)

logger = structlog.get_logger()

CountFailurePolicy = Literal["fail", "omit"]


class SearchFacade:
    """Validates search input, runs the engine and shapes the result.

    Callers get either a complete result or an exception from the
    discovery error taxonomy. The one deliberate exception is the "omit"
    count policy, which returns the page without a total and marks the
    result with count_exact=False.
    """

    def __init__(
        self,
        engine: SearchEngine,
        max_radius_km: float = 500.0,
        max_page_size: int = 100,
        query_timeout: float = 5.0,
        retry_attempts: int = 1,
        count_failure_policy: CountFailurePolicy = "fail",
    ) -> None:
        """Initialize facade.

        Args:
            engine: Ranking engine to delegate to.
            max_radius_km: Largest accepted search radius.
            max_page_size: Largest accepted page size.
            query_timeout: Seconds allowed for data and count queries together.
            retry_attempts: Extra attempts after a retryable storage failure.
            count_failure_policy: "fail" to surface a count failure, "omit"
                to return the page with total_count=None.
        """
        self._engine = engine
        self._max_radius_km = max_radius_km
        self._max_page_size = max_page_size
        self._query_timeout = query_timeout
        self._retry_attempts = retry_attempts
        self._count_failure_policy = count_failure_policy

    def build_query(
        self,
        latitude: float,
        longitude: float,
        radius_km: float,
        service_ids: Iterable[UUID] | None = None,
        min_rating: Decimal | float | str | None = None,
        tiers: Iterable[str | int | SubscriptionTier] | None = None,
        skip: int = 0,
        take: int = 20,
    ) -> SearchQuery:
        """Validate raw input into an engine query.

        A radius of zero or less is accepted and yields an empty result.

        Raises:
            SearchValidationError: If any input is malformed or out of bounds.
        """
        try:
            origin = GeoPoint(latitude=latitude, longitude=longitude)
        except ValidationError as e:
            field = str(e.errors()[0]["loc"][0]) if e.errors() else None
            if field == "latitude":
                raise SearchValidationError("Latitude must be between -90 and 90", field) from e
            raise SearchValidationError("Longitude must be between -180 and 180", field) from e

        if math.isnan(radius_km) or math.isinf(radius_km):
            raise SearchValidationError("Radius must be a finite number", "radius_km")
        if radius_km > self._max_radius_km:
            raise SearchValidationError(
                f"Radius cannot exceed {self._max_radius_km:g} km", "radius_km"
            )

        rating: Decimal | None = None
        if min_rating is not None:
            try:
                rating = Decimal(str(min_rating))
            except InvalidOperation as e:
                raise SearchValidationError("Minimum rating must be a number", "min_rating") from e
            if not rating.is_finite() or rating < 0 or rating > MAX_RATING:
                raise SearchValidationError("Minimum rating must be between 0 and 5", "min_rating")

        tier_set: frozenset[SubscriptionTier] | None = None
        if tiers is not None:
            try:
                tier_set = frozenset(SubscriptionTier.parse(t) for t in tiers)
            except ValueError as e:
                raise SearchValidationError(str(e), "tiers") from e

        if skip < 0:
            raise SearchValidationError("Skip cannot be negative", "skip")
        if take < 0:
            raise SearchValidationError("Take cannot be negative", "take")
        if take > self._max_page_size:
            raise SearchValidationError(
                f"Take cannot exceed {self._max_page_size}", "take"
            )

        return SearchQuery(
            origin=origin,
            radius_km=radius_km,
            service_ids=frozenset(service_ids) if service_ids is not None else None,
            min_rating=rating,
            tiers=tier_set,
            skip=skip,
            take=take,
        )

    async def search(
        self,
        latitude: float,
        longitude: float,
        radius_km: float,
        service_ids: Iterable[UUID] | None = None,
        min_rating: Decimal | float | str | None = None,
        tiers: Iterable[str | int | SubscriptionTier] | None = None,
        skip: int = 0,
        take: int = 20,
    ) -> SearchResult:
        """Search for active providers near a point.

        Cancelling the awaiting task aborts the running SQLite statement.

        Args:
            latitude: Origin latitude in degrees.
            longitude: Origin longitude in degrees.
            radius_km: Inclusive search radius in kilometres.
            service_ids: Match providers offering any of these services.
            min_rating: Minimum average rating, inclusive.
            tiers: Allowed subscription tiers by name or ordinal.
            skip: Ranked results to skip.
            take: Page size; zero returns only the total.

        Returns:
            Ranked page with distances and total count.

        Raises:
            SearchValidationError: If input is invalid.
            InfrastructureError: If storage fails after retrying.
        """
        query = self.build_query(
            latitude, longitude, radius_km, service_ids, min_rating, tiers, skip, take
        )
        deadline = time.monotonic() + self._query_timeout
        cancel = threading.Event()
        attempt = 0

        while True:
            attempt += 1
            try:
                outcome = await asyncio.to_thread(
                    self._engine.search, query, deadline=deadline, cancel=cancel
                )
                return self._to_result(outcome.items, outcome.total_count, query)
            except asyncio.CancelledError:
                cancel.set()
                logger.info("search_cancelled")
                raise
            except CountUnavailableError as e:
                if self._count_failure_policy == "omit":
                    logger.warning("search_count_omitted", error=str(e))
                    return self._to_result(e.items, None, query)  # type: ignore[arg-type]
                if not self._should_retry(e, attempt, deadline):
                    logger.error("search_failed", error=str(e), attempts=attempt)
                    raise
            except InfrastructureError as e:
                if not self._should_retry(e, attempt, deadline):
                    logger.error("search_failed", error=str(e), attempts=attempt)
                    raise
            logger.warning("search_retrying", attempt=attempt)

    def _should_retry(self, error: InfrastructureError, attempt: int, deadline: float) -> bool:
        if isinstance(error, SearchTimeoutError):
            return False
        return attempt <= self._retry_attempts and time.monotonic() < deadline

    @staticmethod
    def _to_result(
        items: list[RankedProvider], total: int | None, query: SearchQuery
    ) -> SearchResult:
        return SearchResult(
            items=[ProviderSummary.from_ranked(item) for item in items],
            distances_km=[item.distance_km for item in items],
            total_count=total,
            count_exact=total is not None,
            skip=query.skip,
            take=query.take,
        )
