"""Pytest configuration and fixtures."""

import math
import sys
import uuid
from collections.abc import Iterator
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from fastapi.testclient import TestClient

from discovery.app import create_app
from discovery.config import Settings
from discovery.events import ProviderActivated, ProviderRatingChanged
from discovery.geo import EARTH_RADIUS_KM, GeoPoint
from discovery.models import SubscriptionTier
from discovery.store import IndexStore
from discovery.sync import ProjectionSynchronizer

ORIGIN = GeoPoint(latitude=-23.5505, longitude=-46.6333)


def point_at(origin: GeoPoint, distance_km: float, bearing_deg: float = 0.0) -> GeoPoint:
    """Destination point on the same sphere the index measures on."""
    delta = distance_km / EARTH_RADIUS_KM
    theta = math.radians(bearing_deg)
    phi1 = math.radians(origin.latitude)
    lambda1 = math.radians(origin.longitude)

    phi2 = math.asin(
        math.sin(phi1) * math.cos(delta)
        + math.cos(phi1) * math.sin(delta) * math.cos(theta)
    )
    lambda2 = lambda1 + math.atan2(
        math.sin(theta) * math.sin(delta) * math.cos(phi1),
        math.cos(delta) - math.sin(phi1) * math.sin(phi2),
    )
    lon = (math.degrees(lambda2) + 540.0) % 360.0 - 180.0
    return GeoPoint(latitude=math.degrees(phi2), longitude=lon)


class ProviderFactory:
    """Indexes providers through the synchronizer, as production does."""

    def __init__(self, synchronizer: ProjectionSynchronizer) -> None:
        self.synchronizer = synchronizer

    def add(
        self,
        distance_km: float,
        tier: SubscriptionTier = SubscriptionTier.FREE,
        rating: str = "0",
        bearing_deg: float = 0.0,
        name: str | None = None,
        origin: GeoPoint = ORIGIN,
    ) -> uuid.UUID:
        provider_id = uuid.uuid4()
        self.synchronizer.apply(
            ProviderActivated(
                provider_id=provider_id,
                sequence=1,
                name=name or f"Provider {provider_id.hex[:6]}",
                location=point_at(origin, distance_km, bearing_deg),
                tier=tier,
            )
        )
        if rating != "0":
            self.synchronizer.apply(
                ProviderRatingChanged(
                    provider_id=provider_id,
                    sequence=2,
                    average_rating=rating,
                    total_reviews=10,
                )
            )
        return provider_id


@pytest.fixture
def store(tmp_path: Path) -> Iterator[IndexStore]:
    """Initialized index store backed by a temporary SQLite file."""
    index_store = IndexStore(str(tmp_path / "index.db"), reader_pool_size=2)
    index_store.initialize()
    yield index_store
    index_store.close()


@pytest.fixture
def synchronizer(store: IndexStore) -> ProjectionSynchronizer:
    return ProjectionSynchronizer(store)


@pytest.fixture
def providers(synchronizer: ProjectionSynchronizer) -> ProviderFactory:
    return ProviderFactory(synchronizer)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Create test settings."""
    return Settings(
        host="127.0.0.1",
        port=8000,
        debug=True,
        database_path=str(tmp_path / "api.db"),
        bus_partitions=2,
        redelivery_delay=0.01,
    )


@pytest.fixture
def client(settings: Settings) -> Iterator[TestClient]:
    """Create test client with configured app and running lifespan."""
    app = create_app(settings)
    with TestClient(app) as test_client:
        yield test_client
