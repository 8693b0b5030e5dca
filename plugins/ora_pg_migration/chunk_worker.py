"""
Chunk Worker Module

Copies one chunk (one row range of one table) from Oracle to PostgreSQL:

    PENDING -> EXTRACTING -> STREAMING -> COMPLETED
                   \\             \\
                    +-> FAILED <---+

- EXTRACTING: borrow one Oracle and one PostgreSQL connection, run the
  chunk query bound to (start, end) with a large fetch batch
- STREAMING: a producer thread fetches and encodes rows into the bridge
  while this thread runs COPY FROM STDIN reading from it
- COMPLETED: cursor exhausted, COPY finished, target committed

Any failure ends in FAILED. Connections are always returned to their pools,
the target transaction is rolled back, and the failure is reported in the
ChunkResult rather than raised.
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional
import logging
import threading
import time

from psycopg2 import sql

from ora_pg_migration.bridge import StreamingBridge
from ora_pg_migration.config import CopySettings
from ora_pg_migration.errors import (
    BridgeAborted,
    ChunkError,
    EncodeError,
    ExtractionError,
    IngestionError,
)
from ora_pg_migration.partitioner import ChunkSpec
from ora_pg_migration.pools import fetch_numbers_as_decimal
from ora_pg_migration.row_encoder import RowEncoder

logger = logging.getLogger(__name__)

PENDING = 'pending'
EXTRACTING = 'extracting'
STREAMING = 'streaming'
COMPLETED = 'completed'
FAILED = 'failed'

_TRANSITIONS = {
    PENDING: (EXTRACTING, FAILED),
    EXTRACTING: (STREAMING, FAILED),
    STREAMING: (COMPLETED, FAILED),
    COMPLETED: (),
    FAILED: (),
}

COPY_OPTIONS = "FORMAT csv, DELIMITER ',', QUOTE '\"', NULL '', ENCODING 'UTF8'"


@dataclass
class ChunkResult:
    """Outcome of one chunk."""

    table: str
    target_table: str
    start: int
    end: int
    index: int
    total: int
    state: str
    rows_copied: int = 0
    elapsed_seconds: float = 0.0
    error_type: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.state == COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def build_copy_sql(schema_name: str, table_name: str, columns) -> sql.Composed:
    """COPY statement for the chunk's target table and projected columns."""
    quoted_columns = sql.SQL(', ').join([sql.Identifier(col.name) for col in columns])
    return sql.SQL('COPY {}.{} ({}) FROM STDIN WITH (' + COPY_OPTIONS + ')').format(
        sql.Identifier(schema_name),
        sql.Identifier(table_name),
        quoted_columns,
    )


class ChunkWorker:
    """Extract one chunk from Oracle and bulk-load it into PostgreSQL."""

    def __init__(self, chunk: ChunkSpec, source_pool, target_pool, settings: CopySettings):
        """
        Args:
            chunk: Planned chunk (consumed once)
            source_pool: OracleConnectionPool (or compatible acquire/release object)
            target_pool: PostgresConnectionPool (or compatible acquire/release object)
            settings: Shared read-only copy settings
        """
        self.chunk = chunk
        self.source_pool = source_pool
        self.target_pool = target_pool
        self.settings = settings

        self.state = PENDING
        self.rows_copied = 0

        self._lock = threading.Lock()
        self._bridge: Optional[StreamingBridge] = None
        self._source_conn = None
        self._target_conn = None
        self._cancelled = threading.Event()

    def _transition(self, new_state: str) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid chunk state transition {self.state} -> {new_state}")
        logger.debug(f"{self.chunk.describe()}: {self.state} -> {new_state}")
        self.state = new_state

    def _tag(self, error: ChunkError) -> ChunkError:
        """Attach this chunk's identity to an error raised below the worker."""
        if error.table is None:
            error.table = self.chunk.qualified_name
            error.start = self.chunk.start
            error.end = self.chunk.end
        return error

    def _identity(self) -> Dict[str, Any]:
        return {'table': self.chunk.qualified_name, 'start': self.chunk.start, 'end': self.chunk.end}

    def run(self) -> ChunkResult:
        """Copy the chunk. Never raises for chunk-level failures."""
        chunk = self.chunk
        start_time = time.time()
        logger.info(f"Task started: {chunk.describe()} ({chunk.strategy})")

        error: Optional[BaseException] = None
        try:
            self._copy()
            self._transition(COMPLETED)
        except Exception as e:
            # ChunkError or not, a failure is scoped to this chunk
            error = e

        elapsed = time.time() - start_time

        if error is not None:
            if self.state not in (COMPLETED, FAILED):
                self._transition(FAILED)
            logger.error(f"Task failed: {chunk.describe()}: {type(error).__name__}: {error}")
            return ChunkResult(
                table=chunk.qualified_name,
                target_table=chunk.target_table,
                start=chunk.start,
                end=chunk.end,
                index=chunk.index,
                total=chunk.total,
                state=FAILED,
                rows_copied=0,
                elapsed_seconds=elapsed,
                error_type=type(error).__name__,
                error=str(error),
            )

        rows_per_second = self.rows_copied / elapsed if elapsed > 0 else 0
        logger.info(
            f"Task completed: {chunk.describe()} -> {self.rows_copied:,} rows "
            f"in {elapsed:.2f}s ({rows_per_second:,.0f} rows/sec)"
        )
        return ChunkResult(
            table=chunk.qualified_name,
            target_table=chunk.target_table,
            start=chunk.start,
            end=chunk.end,
            index=chunk.index,
            total=chunk.total,
            state=COMPLETED,
            rows_copied=self.rows_copied,
            elapsed_seconds=elapsed,
        )

    def cancel(self) -> None:
        """
        Interrupt a running chunk from another thread.

        Stops the bridge and asks both drivers to cancel their in-flight call,
        so a stuck fetch or COPY cannot hold a pool slot indefinitely.
        """
        self._cancelled.set()
        with self._lock:
            bridge, source_conn, target_conn = self._bridge, self._source_conn, self._target_conn

        if bridge is not None:
            bridge.cancel()
        for conn, name in ((source_conn, 'Oracle'), (target_conn, 'PostgreSQL')):
            if conn is None:
                continue
            try:
                conn.cancel()
            except Exception as e:
                logger.warning(f"{self.chunk.describe()}: could not cancel {name} call: {e}")

    def _copy(self) -> None:
        if self._cancelled.is_set():
            raise ExtractionError("cancelled before start", **self._identity())

        try:
            source_conn = self.source_pool.acquire()
        except Exception as e:
            raise ExtractionError(f"could not acquire source connection: {e}", **self._identity()) from e

        try:
            try:
                target_conn = self.target_pool.acquire()
            except Exception as e:
                raise IngestionError(
                    f"could not acquire target connection: {e}", **self._identity()
                ) from e

            with self._lock:
                self._source_conn, self._target_conn = source_conn, target_conn
            try:
                self._transition(EXTRACTING)
                self._stream(source_conn, target_conn)
            finally:
                with self._lock:
                    self._source_conn = self._target_conn = None
                self.target_pool.release(target_conn)
        finally:
            self.source_pool.release(source_conn)

    def _stream(self, source_conn, target_conn) -> None:
        chunk = self.chunk
        settings = self.settings

        cursor = source_conn.cursor()
        try:
            cursor.arraysize = settings.fetch_size
            cursor.prefetchrows = settings.fetch_size
            cursor.outputtypehandler = fetch_numbers_as_decimal
            try:
                cursor.execute(chunk.query, chunk.parameters)
            except Exception as e:
                raise ExtractionError(f"query failed: {e}", **self._identity()) from e

            bridge = StreamingBridge(
                capacity=settings.bridge_capacity,
                block_size=settings.bridge_block_size,
            )
            with self._lock:
                self._bridge = bridge
            encoder = RowEncoder(chunk.columns, lob_max_bytes=settings.lob_max_bytes)

            producer = threading.Thread(
                target=self._produce,
                args=(cursor, encoder, bridge),
                name=f"producer-{chunk.table_name}-{chunk.index}",
                daemon=True,
            )

            self._transition(STREAMING)
            producer.start()
            try:
                self._load(target_conn, bridge)
            except Exception as e:
                bridge.cancel()
                producer.join()
                if bridge.failed:
                    raise self._producer_error(bridge.error) from e
                raise IngestionError(f"COPY failed: {e}", **self._identity()) from e

            producer.join()
            if bridge.failed:
                raise self._producer_error(bridge.error)
        finally:
            with self._lock:
                self._bridge = None
            try:
                cursor.close()
            except Exception as e:
                logger.debug(f"Ignoring error while closing source cursor: {e}")

    def _produce(self, cursor, encoder: RowEncoder, bridge: StreamingBridge) -> None:
        """Producer thread: fetch, encode and write rows until the cursor is exhausted."""
        produced = 0
        try:
            rows = iter(cursor)
            while True:
                try:
                    row = next(rows)
                except StopIteration:
                    break
                except Exception as e:
                    raise ExtractionError(
                        f"fetch failed after {produced:,} rows: {e}", **self._identity()
                    ) from e

                try:
                    record = encoder.encode(row)
                except EncodeError as e:
                    logger.error(
                        f"{self.chunk.describe()}: cannot encode row {self.chunk.start + produced:,}: {e}"
                    )
                    raise self._tag(e)

                bridge.write(record)
                produced += 1

            bridge.close()
            self.rows_copied = produced
        except BridgeAborted:
            # Consumer side already failed and cancelled the stream
            logger.debug(f"{self.chunk.describe()}: producer stopped after consumer cancel")
        except Exception as e:
            bridge.abort(e)

    def _producer_error(self, error: Optional[BaseException]) -> ChunkError:
        if isinstance(error, ChunkError):
            return self._tag(error)
        return ExtractionError(f"producer failed: {error}", **self._identity())

    def _load(self, target_conn, bridge: StreamingBridge) -> None:
        """Consumer: COPY the bridge contents into the target table and commit."""
        chunk = self.chunk
        copy_sql = build_copy_sql(self.settings.target_schema, chunk.target_table, chunk.columns)

        with target_conn.cursor() as cursor:
            cursor.execute("SET statement_timeout = 0")
            cursor.copy_expert(copy_sql, bridge.reader(), size=self.settings.bridge_block_size)
        target_conn.commit()
