"""SQLite schema and row mapping for the provider index."""

import sqlite3
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from discovery.geo import GeoPoint
from discovery.models import SearchableProvider, SubscriptionTier

SCHEMA_VERSION = 1

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS searchable_providers (
        id TEXT PRIMARY KEY,
        provider_id TEXT NOT NULL,
        name TEXT NOT NULL CHECK (length(name) > 0),
        description TEXT,
        latitude REAL NOT NULL CHECK (latitude BETWEEN -90 AND 90),
        longitude REAL NOT NULL CHECK (longitude BETWEEN -180 AND 180),
        subscription_tier INTEGER NOT NULL,
        average_rating_centi INTEGER NOT NULL DEFAULT 0
            CHECK (average_rating_centi BETWEEN 0 AND 500),
        total_reviews INTEGER NOT NULL DEFAULT 0 CHECK (total_reviews >= 0),
        city TEXT,
        state TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS ux_searchable_providers_provider_id
        ON searchable_providers (provider_id)
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_searchable_providers_is_active
        ON searchable_providers (is_active)
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_searchable_providers_location
        ON searchable_providers (latitude, longitude)
    """,
    """
    CREATE TABLE IF NOT EXISTS provider_services (
        row_id TEXT NOT NULL
            REFERENCES searchable_providers (id) ON DELETE CASCADE,
        service_id TEXT NOT NULL,
        PRIMARY KEY (row_id, service_id)
    ) WITHOUT ROWID
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_provider_services_service_id
        ON provider_services (service_id)
    """,
    """
    CREATE TABLE IF NOT EXISTS provider_sequences (
        provider_id TEXT PRIMARY KEY,
        last_sequence INTEGER NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
)

# Column list shared by every read of a provider row. The table must be
# aliased as `p`.
PROVIDER_COLUMNS = """
    p.id, p.provider_id, p.name, p.description, p.latitude, p.longitude,
    p.subscription_tier, p.average_rating_centi, p.total_reviews,
    p.city, p.state, p.is_active, p.created_at, p.updated_at,
    (
        SELECT group_concat(ps.service_id, ',')
        FROM provider_services ps
        WHERE ps.row_id = p.id
    ) AS service_ids
"""


def rating_to_centi(rating: Decimal) -> int:
    """Store ratings as integer hundredths so comparisons stay exact."""
    return int(rating * 100)


def centi_to_rating(centi: int) -> Decimal:
    return (Decimal(centi) / 100).quantize(Decimal("0.01"))


def provider_to_params(provider: SearchableProvider) -> dict[str, object]:
    """Flatten a provider into named SQL parameters."""
    return {
        "id": str(provider.id),
        "provider_id": str(provider.provider_id),
        "name": provider.name,
        "description": provider.description,
        "latitude": provider.location.latitude,
        "longitude": provider.location.longitude,
        "subscription_tier": int(provider.subscription_tier),
        "average_rating_centi": rating_to_centi(provider.average_rating),
        "total_reviews": provider.total_reviews,
        "city": provider.city,
        "state": provider.state,
        "is_active": 1 if provider.is_active else 0,
        "created_at": provider.created_at.isoformat(),
        "updated_at": provider.updated_at.isoformat(),
    }


def row_to_provider(row: sqlite3.Row) -> SearchableProvider:
    """Rebuild a provider from a row selected with PROVIDER_COLUMNS."""
    raw_services = row["service_ids"]
    service_ids = (
        frozenset(UUID(s) for s in raw_services.split(",")) if raw_services else frozenset()
    )
    return SearchableProvider(
        id=UUID(row["id"]),
        provider_id=UUID(row["provider_id"]),
        name=row["name"],
        description=row["description"],
        location=GeoPoint(latitude=row["latitude"], longitude=row["longitude"]),
        subscription_tier=SubscriptionTier(row["subscription_tier"]),
        average_rating=centi_to_rating(row["average_rating_centi"]),
        total_reviews=row["total_reviews"],
        service_ids=service_ids,
        city=row["city"],
        state=row["state"],
        is_active=bool(row["is_active"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )
