"""Ranking engine executing planned searches against the index store."""

import threading

import structlog

from discovery.errors import CountUnavailableError, InfrastructureError
from discovery.search.planner import plan_search
from discovery.search.schemas import RankedProvider, SearchOutcome, SearchQuery
from discovery.store import IndexStore, row_to_provider

logger = structlog.get_logger()


class SearchEngine:
    """Runs ranked radius searches.

    Stateless apart from the store reference, so one instance serves any
    number of concurrent callers.
    """

    def __init__(self, store: IndexStore) -> None:
        self._store = store

    def search(
        self,
        query: SearchQuery,
        *,
        deadline: float | None = None,
        cancel: threading.Event | None = None,
    ) -> SearchOutcome:
        """Find active providers within radius, ranked and paginated.

        Rows are ordered by tier, then rating (both descending), then
        distance ascending. Paging happens in SQL after the full sort. The
        total comes from a second query over the same predicate; each read
        is consistent on its own but the two are not joined in one snapshot.

        Args:
            query: Search input. Negative skip/take are clamped to zero.
            deadline: time.monotonic() value shared by both queries.
            cancel: Event that aborts the in-flight query when set.

        Returns:
            Ranked page and total match count.

        Raises:
            CountUnavailableError: If the count fails after the page was read.
            SearchCancelledError: If cancelled.
            InfrastructureError: If the store fails or the deadline passes.
        """
        if query.radius_km <= 0:
            return SearchOutcome(items=[], total_count=0)

        query = query.clamped()
        plan = plan_search(query)

        items: list[RankedProvider] = []
        if query.take > 0:
            rows = self._store.read(
                plan.data_sql, plan.data_params, deadline=deadline, cancel=cancel
            )
            items = [
                RankedProvider(provider=row_to_provider(row), distance_km=row["distance_km"])
                for row in rows
            ]

        try:
            count_rows = self._store.read(
                plan.count_sql, plan.count_params, deadline=deadline, cancel=cancel
            )
        except InfrastructureError as e:
            if query.take == 0:
                raise
            logger.warning("search_count_failed", error=str(e), page_size=len(items))
            raise CountUnavailableError(f"Count query failed: {e}", list(items)) from e

        total = count_rows[0][0]
        logger.debug(
            "search_executed",
            radius_km=query.radius_km,
            returned=len(items),
            total=total,
        )
        return SearchOutcome(items=items, total_count=total)
