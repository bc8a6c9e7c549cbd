"""Service configuration loaded from environment variables."""
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Discovery service configuration loaded from environment variables.

    Attributes:
        host: Bind address for the API server.
        port: Port number for the API server.
        debug: Enable debug logging and API documentation.
        shutdown_timeout: Seconds to wait for graceful shutdown.
        key: API key required on event ingestion and index admin routes.
        database_path: SQLite database file for the index.
        reader_pool_size: Pooled reader connections used by searches.
        busy_timeout: Seconds SQLite waits on a locked database.
        max_radius_km: Largest accepted search radius.
        default_page_size: Page size when the caller gives none.
        max_page_size: Largest accepted page size.
        query_timeout: Seconds allowed for one search (data and count).
        search_retry_attempts: Extra attempts after a retryable storage failure.
        count_failure_policy: "fail" or "omit" when the count query fails
            after the page was read.
        bus_partitions: Event bus partitions, one sync worker each.
        bus_queue_size: Maximum pending events per partition.
        redelivery_delay: Base seconds before a failed event is redelivered.
        max_delivery_attempts: Deliveries before an event is abandoned.
    """

    model_config = SettingsConfigDict(
        env_prefix="DISCOVERY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False
    shutdown_timeout: float = 30.0
    key: str = ""

    database_path: str = "discovery.db"
    reader_pool_size: int = Field(default=4, ge=1)
    busy_timeout: float = 5.0

    max_radius_km: float = Field(default=500.0, gt=0)
    default_page_size: int = Field(default=20, ge=1)
    max_page_size: int = Field(default=100, ge=1)
    query_timeout: float = Field(default=5.0, gt=0)
    search_retry_attempts: int = Field(default=1, ge=0)
    count_failure_policy: Literal["fail", "omit"] = "fail"

    bus_partitions: int = Field(default=4, ge=1)
    bus_queue_size: int = Field(default=1000, ge=1)
    redelivery_delay: float = Field(default=0.5, ge=0)
    max_delivery_attempts: int = Field(default=5, ge=1)
