"""Ranked radius search over the provider discovery index."""

from discovery.search.engine import SearchEngine
from discovery.search.facade import SearchFacade
from discovery.search.planner import SearchPlan, build_predicate, plan_search
from discovery.search.schemas import (
    ProviderSummary,
    RankedProvider,
    SearchOutcome,
    SearchQuery,
    SearchResult,
)

__all__ = [
    "ProviderSummary",
    "RankedProvider",
    "SearchEngine",
    "SearchFacade",
    "SearchOutcome",
    "SearchPlan",
    "SearchQuery",
    "SearchResult",
    "build_predicate",
    "plan_search",
]
