"""Search facade tests: validation, retry policy, count policy and cancellation."""

import asyncio
import threading
import uuid
from typing import Any

import pytest

from conftest import ORIGIN, ProviderFactory
from discovery.errors import (
    CountUnavailableError,
    InfrastructureError,
    SearchCancelledError,
    SearchTimeoutError,
    SearchValidationError,
)
from discovery.models import SearchableProvider, SubscriptionTier
from discovery.search import SearchEngine, SearchFacade
from discovery.search.schemas import RankedProvider, SearchOutcome, SearchQuery
from discovery.store import IndexStore


class ScriptedEngine:
    """Engine stand-in that raises or returns the scripted results in order."""

    def __init__(self, *script: Exception | SearchOutcome) -> None:
        self.script = list(script)
        self.calls = 0

    def search(self, query: SearchQuery, **kwargs: Any) -> SearchOutcome:
        step = self.script[min(self.calls, len(self.script) - 1)]
        self.calls += 1
        if isinstance(step, Exception):
            raise step
        return step


class BlockingEngine:
    """Engine stand-in that runs until its cancel token is set."""

    def __init__(self) -> None:
        self.started = threading.Event()
        self.cancelled = threading.Event()

    def search(
        self, query: SearchQuery, *, deadline: float, cancel: threading.Event
    ) -> SearchOutcome:
        self.started.set()
        if cancel.wait(timeout=5.0):
            self.cancelled.set()
            raise SearchCancelledError("Search was cancelled")
        return SearchOutcome(items=[], total_count=0)


def _ranked() -> RankedProvider:
    provider = SearchableProvider.create(
        provider_id=uuid.uuid4(),
        name="Carla Souza",
        location=ORIGIN,
        subscription_tier=SubscriptionTier.STANDARD,
    )
    return RankedProvider(provider=provider, distance_km=1.5)


def _search(facade: SearchFacade, **overrides: Any) -> Any:
    params: dict[str, Any] = {
        "latitude": ORIGIN.latitude,
        "longitude": ORIGIN.longitude,
        "radius_km": 10.0,
    }
    params.update(overrides)
    return asyncio.run(facade.search(**params))


@pytest.mark.parametrize(
    ("overrides", "field", "message"),
    [
        ({"latitude": 90.1}, "latitude", "Latitude must be between -90 and 90"),
        ({"latitude": -91.0}, "latitude", "Latitude must be between -90 and 90"),
        ({"longitude": 180.5}, "longitude", "Longitude must be between -180 and 180"),
        ({"radius_km": 500.1}, "radius_km", "Radius cannot exceed 500 km"),
        ({"radius_km": float("nan")}, "radius_km", "Radius must be a finite number"),
        ({"min_rating": -0.1}, "min_rating", "Minimum rating must be between 0 and 5"),
        ({"min_rating": 5.01}, "min_rating", "Minimum rating must be between 0 and 5"),
        ({"tiers": ["DIAMOND"]}, "tiers", "Unknown subscription tier"),
        ({"skip": -1}, "skip", "Skip cannot be negative"),
        ({"take": -1}, "take", "Take cannot be negative"),
        ({"take": 101}, "take", "Take cannot exceed 100"),
    ],
)
def test_invalid_input_rejected(overrides: dict[str, Any], field: str, message: str) -> None:
    engine = ScriptedEngine(SearchOutcome(items=[], total_count=0))
    facade = SearchFacade(engine)  # type: ignore[arg-type]

    with pytest.raises(SearchValidationError, match=message) as exc_info:
        _search(facade, **overrides)

    assert exc_info.value.field == field
    assert engine.calls == 0


def test_boundary_values_accepted() -> None:
    engine = ScriptedEngine(SearchOutcome(items=[], total_count=0))
    facade = SearchFacade(engine)  # type: ignore[arg-type]

    query = facade.build_query(90.0, -180.0, 500.0, min_rating=5, tiers=["gold", 3], take=100)

    assert query.radius_km == 500.0
    assert query.tiers == frozenset({SubscriptionTier.GOLD, SubscriptionTier.PLATINUM})


@pytest.mark.parametrize("radius", [0.0, -1.0])
def test_non_positive_radius_returns_empty(store: IndexStore, radius: float) -> None:
    facade = SearchFacade(SearchEngine(store))

    result = _search(facade, radius_km=radius)

    assert result.items == []
    assert result.total_count == 0
    assert result.count_exact is True


def test_result_shape(store: IndexStore, providers: ProviderFactory) -> None:
    gold = providers.add(2.0, tier=SubscriptionTier.GOLD, rating="4.25")
    providers.add(1.0)
    facade = SearchFacade(SearchEngine(store))

    result = _search(facade, take=1)

    assert result.total_count == 2
    assert result.skip == 0
    assert result.take == 1
    assert len(result.items) == 1
    item = result.items[0]
    assert item.provider_id == gold
    assert item.subscription_tier == "GOLD"
    assert item.average_rating == 4.25
    assert result.distances_km == [item.distance_km]
    assert item.distance_km == pytest.approx(2.0, abs=1e-6)


def test_retries_once_on_transient_failure() -> None:
    engine = ScriptedEngine(
        InfrastructureError("database is locked"),
        SearchOutcome(items=[_ranked()], total_count=1),
    )
    facade = SearchFacade(engine, retry_attempts=1)  # type: ignore[arg-type]

    result = _search(facade)

    assert engine.calls == 2
    assert result.total_count == 1


def test_gives_up_after_retry() -> None:
    engine = ScriptedEngine(InfrastructureError("database is locked"))
    facade = SearchFacade(engine, retry_attempts=1)  # type: ignore[arg-type]

    with pytest.raises(InfrastructureError):
        _search(facade)

    assert engine.calls == 2


def test_timeout_is_not_retried() -> None:
    engine = ScriptedEngine(SearchTimeoutError("Search exceeded its deadline"))
    facade = SearchFacade(engine, retry_attempts=3)  # type: ignore[arg-type]

    with pytest.raises(SearchTimeoutError):
        _search(facade)

    assert engine.calls == 1


def test_count_failure_fails_by_default() -> None:
    """The default policy never returns a page with a wrong total."""
    engine = ScriptedEngine(CountUnavailableError("count failed", [_ranked()]))
    facade = SearchFacade(engine, retry_attempts=0)  # type: ignore[arg-type]

    with pytest.raises(CountUnavailableError):
        _search(facade)


def test_count_failure_omitted_when_configured() -> None:
    engine = ScriptedEngine(CountUnavailableError("count failed", [_ranked()]))
    facade = SearchFacade(engine, count_failure_policy="omit")  # type: ignore[arg-type]

    result = _search(facade)

    assert engine.calls == 1
    assert len(result.items) == 1
    assert result.total_count is None
    assert result.count_exact is False


def test_cancelling_caller_aborts_engine() -> None:
    """Cancelling the awaiting task sets the engine's cancel token."""
    engine = BlockingEngine()
    facade = SearchFacade(engine)  # type: ignore[arg-type]

    async def scenario() -> None:
        task = asyncio.create_task(
            facade.search(ORIGIN.latitude, ORIGIN.longitude, 10.0)
        )
        await asyncio.to_thread(engine.started.wait, 5.0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    assert engine.cancelled.wait(timeout=5.0)
