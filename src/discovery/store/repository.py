"""SQLite-backed storage for searchable provider rows."""

import contextlib
import os
import queue
import sqlite3
import tempfile
import threading
import time
from collections.abc import Iterator, Mapping, Sequence
from datetime import UTC, datetime
from uuid import UUID

import structlog

from discovery.errors import (
    ConflictError,
    InfrastructureError,
    SearchCancelledError,
    SearchTimeoutError,
)
from discovery.geo import haversine_km
from discovery.models import SearchableProvider
from discovery.store.schema import (
    PROVIDER_COLUMNS,
    SCHEMA_STATEMENTS,
    SCHEMA_VERSION,
    provider_to_params,
    row_to_provider,
)

logger = structlog.get_logger()

# SQLite VM instructions between deadline/cancellation checks
_PROGRESS_STEPS = 1000

_SELECT_BY_ID = f"SELECT {PROVIDER_COLUMNS} FROM searchable_providers p WHERE p.id = ?"
_SELECT_BY_PROVIDER_ID = (
    f"SELECT {PROVIDER_COLUMNS} FROM searchable_providers p WHERE p.provider_id = ?"
)


@contextlib.contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    """Translate raw SQLite failures into InfrastructureError."""
    try:
        yield
    except sqlite3.Error as e:
        logger.error("index_store_error", operation=operation, error=str(e))
        raise InfrastructureError(f"Index store {operation} failed: {e}") from e


class IndexSession:
    """Mutation scope bound to one write transaction.

    Obtained from IndexStore.unit_of_work(); every change made through a
    session is committed together or not at all.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def get_by_id(self, row_id: UUID) -> SearchableProvider | None:
        row = self._conn.execute(_SELECT_BY_ID, (str(row_id),)).fetchone()
        return row_to_provider(row) if row else None

    def get_by_provider_id(self, provider_id: UUID) -> SearchableProvider | None:
        row = self._conn.execute(_SELECT_BY_PROVIDER_ID, (str(provider_id),)).fetchone()
        return row_to_provider(row) if row else None

    def add(self, provider: SearchableProvider) -> None:
        """Insert a new row.

        Args:
            provider: Row to insert.

        Raises:
            ConflictError: If the provider is already indexed.
        """
        params = provider_to_params(provider)
        try:
            self._conn.execute(
                """
                INSERT INTO searchable_providers (
                    id, provider_id, name, description, latitude, longitude,
                    subscription_tier, average_rating_centi, total_reviews,
                    city, state, is_active, created_at, updated_at
                ) VALUES (
                    :id, :provider_id, :name, :description, :latitude, :longitude,
                    :subscription_tier, :average_rating_centi, :total_reviews,
                    :city, :state, :is_active, :created_at, :updated_at
                )
                """,
                params,
            )
        except sqlite3.IntegrityError as e:
            if "provider_id" in str(e):
                raise ConflictError(provider.provider_id) from e
            raise
        self._write_services(provider)

    def update(self, provider: SearchableProvider) -> None:
        self._conn.execute(
            """
            UPDATE searchable_providers SET
                name = :name,
                description = :description,
                latitude = :latitude,
                longitude = :longitude,
                subscription_tier = :subscription_tier,
                average_rating_centi = :average_rating_centi,
                total_reviews = :total_reviews,
                city = :city,
                state = :state,
                is_active = :is_active,
                updated_at = :updated_at
            WHERE id = :id
            """,
            provider_to_params(provider),
        )
        self._conn.execute(
            "DELETE FROM provider_services WHERE row_id = ?", (str(provider.id),)
        )
        self._write_services(provider)

    def delete(self, provider: SearchableProvider) -> None:
        # Only the index row goes; the authoritative provider is never touched.
        self._conn.execute(
            "DELETE FROM searchable_providers WHERE id = ?", (str(provider.id),)
        )

    def last_sequence(self, provider_id: UUID) -> int | None:
        row = self._conn.execute(
            "SELECT last_sequence FROM provider_sequences WHERE provider_id = ?",
            (str(provider_id),),
        ).fetchone()
        return row[0] if row else None

    def advance_sequence(self, provider_id: UUID, sequence: int) -> bool:
        """Compare-and-set the last applied sequence for a provider.

        Args:
            provider_id: Provider the event belongs to.
            sequence: Sequence number of the event being applied.

        Returns:
            True if the sequence was newer and has been recorded, False if
            an equal or newer sequence was already applied.
        """
        now = datetime.now(UTC).isoformat()
        cur = self._conn.execute(
            """
            UPDATE provider_sequences
            SET last_sequence = ?, updated_at = ?
            WHERE provider_id = ? AND last_sequence < ?
            """,
            (sequence, now, str(provider_id), sequence),
        )
        if cur.rowcount == 1:
            return True
        if self.last_sequence(provider_id) is not None:
            return False
        self._conn.execute(
            "INSERT INTO provider_sequences (provider_id, last_sequence, updated_at) "
            "VALUES (?, ?, ?)",
            (str(provider_id), sequence, now),
        )
        return True

    def purge(self) -> None:
        self._conn.execute("DELETE FROM provider_services")
        self._conn.execute("DELETE FROM searchable_providers")
        self._conn.execute("DELETE FROM provider_sequences")

    def _write_services(self, provider: SearchableProvider) -> None:
        self._conn.executemany(
            "INSERT INTO provider_services (row_id, service_id) VALUES (?, ?)",
            [(str(provider.id), str(sid)) for sid in sorted(provider.service_ids)],
        )


class IndexStore:
    """Durable SQLite store for the provider discovery index.

    A single writer connection, serialized by a lock, handles all
    mutations. Reads go through a pool of separate connections; with the
    database in WAL mode they never wait on the writer.
    """

    def __init__(self, path: str, reader_pool_size: int = 4, busy_timeout: float = 5.0) -> None:
        """Initialize store (call initialize() before use).

        Args:
            path: Database file path, or ":memory:" for a throwaway store kept
                in a temporary directory until close().
            reader_pool_size: Number of pooled reader connections.
            busy_timeout: Seconds SQLite waits on a locked database.
        """
        # Throwaway stores still use a WAL file so readers never block on the writer.
        self._scratch: tempfile.TemporaryDirectory[str] | None = None
        if path == ":memory:":
            self._scratch = tempfile.TemporaryDirectory(prefix="discovery-")
            path = os.path.join(self._scratch.name, "index.db")
        self._path = path
        self._pool_size = max(1, reader_pool_size)
        self._busy_timeout = busy_timeout
        self._writer: sqlite3.Connection | None = None
        self._readers: queue.LifoQueue[sqlite3.Connection] = queue.LifoQueue()
        self._all_readers: list[sqlite3.Connection] = []
        self._lock = threading.Lock()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self._path,
            timeout=self._busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.create_function("haversine_km", 4, haversine_km, deterministic=True)
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def initialize(self) -> None:
        """Open connections and create the schema if needed."""
        with _storage_errors("initialize"):
            self._writer = self._connect()
            self._writer.execute("PRAGMA journal_mode = WAL")
            self._writer.execute("PRAGMA synchronous = NORMAL")
            for statement in SCHEMA_STATEMENTS:
                self._writer.execute(statement)
            self._writer.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")

            for _ in range(self._pool_size):
                reader = self._connect()
                self._all_readers.append(reader)
                self._readers.put(reader)

        logger.info("index_store_initialized", readers=self._pool_size)

    @contextlib.contextmanager
    def unit_of_work(self) -> Iterator[IndexSession]:
        """Open a write transaction that commits on clean exit.

        Yields:
            Session whose mutations are committed atomically.

        Raises:
            InfrastructureError: If the storage fails.
        """
        with self._lock:
            if self._writer is None:
                raise InfrastructureError("Index store is not initialized")
            conn = self._writer
            with _storage_errors("begin"):
                conn.execute("BEGIN IMMEDIATE")
            try:
                with _storage_errors("write"):
                    yield IndexSession(conn)
            except BaseException:
                with contextlib.suppress(sqlite3.Error):
                    conn.execute("ROLLBACK")
                raise
            with _storage_errors("commit"):
                conn.execute("COMMIT")

    @contextlib.contextmanager
    def _reader(self, deadline: float | None) -> Iterator[sqlite3.Connection]:
        if not self._all_readers:
            raise InfrastructureError("Index store is not initialized")
        wait = None if deadline is None else max(0.0, deadline - time.monotonic())
        try:
            conn = self._readers.get(timeout=wait)
        except queue.Empty as e:
            raise SearchTimeoutError("No index reader available before deadline") from e
        try:
            yield conn
        finally:
            self._readers.put(conn)

    def read(
        self,
        sql: str,
        params: Mapping[str, object] | Sequence[object] = (),
        *,
        deadline: float | None = None,
        cancel: threading.Event | None = None,
    ) -> list[sqlite3.Row]:
        """Run a read-only query on a pooled reader connection.

        The running statement is aborted as soon as the cancel token is set
        or the deadline passes.

        Args:
            sql: SELECT statement.
            params: Statement parameters.
            deadline: time.monotonic() value after which the query aborts.
            cancel: Event that aborts the query when set.

        Returns:
            All result rows.

        Raises:
            SearchCancelledError: If cancelled before or during the query.
            SearchTimeoutError: If the deadline passed.
            InfrastructureError: On any other storage failure.
        """

        def should_abort() -> bool:
            if cancel is not None and cancel.is_set():
                return True
            return deadline is not None and time.monotonic() >= deadline

        def raise_abort() -> None:
            if cancel is not None and cancel.is_set():
                raise SearchCancelledError("Search was cancelled")
            raise SearchTimeoutError("Search exceeded its deadline")

        if should_abort():
            raise_abort()

        with self._reader(deadline) as conn:
            conn.set_progress_handler(lambda: 1 if should_abort() else 0, _PROGRESS_STEPS)
            try:
                return conn.execute(sql, params).fetchall()
            except sqlite3.OperationalError as e:
                if should_abort():
                    raise_abort()
                logger.error("index_read_failed", error=str(e))
                raise InfrastructureError(f"Index read failed: {e}") from e
            except sqlite3.Error as e:
                logger.error("index_read_failed", error=str(e))
                raise InfrastructureError(f"Index read failed: {e}") from e
            finally:
                conn.set_progress_handler(None, 0)

    def get_by_provider_id(self, provider_id: UUID) -> SearchableProvider | None:
        rows = self.read(_SELECT_BY_PROVIDER_ID, (str(provider_id),))
        return row_to_provider(rows[0]) if rows else None

    def get_by_id(self, row_id: UUID) -> SearchableProvider | None:
        rows = self.read(_SELECT_BY_ID, (str(row_id),))
        return row_to_provider(rows[0]) if rows else None

    def count_rows(self, active_only: bool = False) -> int:
        sql = "SELECT COUNT(*) FROM searchable_providers"
        if active_only:
            sql += " WHERE is_active = 1"
        return self.read(sql)[0][0]

    def clear(self) -> None:
        """Remove every row and sequence record, ahead of a full rebuild."""
        with self.unit_of_work() as session:
            session.purge()
        logger.info("index_store_cleared")

    def ping(self) -> bool:
        try:
            self.read("SELECT 1")
        except InfrastructureError:
            return False
        return True

    def close(self) -> None:
        """Close all connections."""
        with self._lock:
            for conn in self._all_readers:
                conn.close()
            self._all_readers.clear()
            self._readers = queue.LifoQueue()
            if self._writer is not None:
                self._writer.close()
                self._writer = None
            if self._scratch is not None:
                self._scratch.cleanup()
                self._scratch = None
        logger.info("index_store_closed")
