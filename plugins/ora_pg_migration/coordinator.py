"""
Copy Coordinator Module

Runs a whole copy: for every table in input order it reads metadata, plans
chunks and submits one ChunkWorker per chunk to a single thread pool shared
by all tables, so at most `workers` chunks run at once across the run.

Failures stay local:
- metadata or planning failure skips that table, the run continues
- a failed chunk never cancels its siblings or other tables
- nothing is retried; the summary lists what failed so an operator can
  re-run those ranges
"""

from concurrent.futures import ThreadPoolExecutor, Future, wait
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Iterable, List, Optional, Tuple
import logging
import time

from psycopg2 import sql

from ora_pg_migration.chunk_worker import ChunkResult, ChunkWorker, FAILED
from ora_pg_migration.config import CopySettings
from ora_pg_migration.errors import MetadataError, PartitionError
from ora_pg_migration.metadata import MetadataReader, TableSpec
from ora_pg_migration.partitioner import ChunkSpec, plan
from ora_pg_migration.table_config import format_table_entry, parse_table_entry

logger = logging.getLogger(__name__)

PLANNED = 'planned'
SKIPPED_EMPTY = 'skipped_empty'
SKIPPED_ERROR = 'skipped_error'


@dataclass
class TableOutcome:
    """What happened to one table entry during planning."""

    table: str
    status: str
    owner: Optional[str] = None
    source_table: Optional[str] = None
    target_table: Optional[str] = None
    row_count: Optional[int] = None
    strategy: Optional[str] = None
    chunks: int = 0
    error: Optional[str] = None


@dataclass
class MigrationSummary:
    """Aggregate result of one copy run."""

    tables_attempted: int = 0
    tables_processed: int = 0
    tables_skipped: int = 0
    chunks_completed: int = 0
    chunks_failed: int = 0
    rows_copied: int = 0
    elapsed_seconds: float = 0.0
    tables: List[TableOutcome] = field(default_factory=list)
    chunks: List[ChunkResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.chunks_failed == 0 and not any(t.status == SKIPPED_ERROR for t in self.tables)

    @property
    def failed_chunks(self) -> List[ChunkResult]:
        return [c for c in self.chunks if not c.succeeded]

    def add_table(self, outcome: TableOutcome) -> None:
        self.tables.append(outcome)
        if outcome.status == PLANNED:
            self.tables_processed += 1
        else:
            self.tables_skipped += 1

    def add_chunk(self, result: ChunkResult) -> None:
        self.chunks.append(result)
        if result.succeeded:
            self.chunks_completed += 1
            self.rows_copied += result.rows_copied
        else:
            self.chunks_failed += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tables_attempted': self.tables_attempted,
            'tables_processed': self.tables_processed,
            'tables_skipped': self.tables_skipped,
            'chunks_completed': self.chunks_completed,
            'chunks_failed': self.chunks_failed,
            'rows_copied': self.rows_copied,
            'elapsed_time_seconds': self.elapsed_seconds,
            'success': self.success,
            'tables': [asdict(t) for t in self.tables],
            'chunks': [c.to_dict() for c in self.chunks],
        }


class Coordinator:
    """Plan every table and run its chunks on a bounded worker pool."""

    def __init__(
        self,
        source_pool,
        target_pool,
        settings: CopySettings,
        metadata_reader: MetadataReader,
    ):
        """
        Args:
            source_pool: Oracle pool shared by all chunk workers
            target_pool: PostgreSQL pool shared by all chunk workers
            settings: Copy settings
            metadata_reader: Reader for table metadata (usually backed by source_pool)
        """
        self.source_pool = source_pool
        self.target_pool = target_pool
        self.settings = settings
        self.metadata_reader = metadata_reader

    def run(self, tables: Iterable[str], worker_count: Optional[int] = None) -> MigrationSummary:
        """
        Copy all tables and wait for every chunk to finish.

        Args:
            tables: Table entries ('OWNER.TABLE' or 'TABLE') in processing order
            worker_count: Concurrent chunk limit (defaults to settings.workers)

        Returns:
            MigrationSummary, also when chunks or tables failed
        """
        workers = worker_count if worker_count is not None else self.settings.workers
        if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
            raise ValueError(f"Worker count must be a positive integer (got {workers!r})")

        start_time = time.time()
        summary = MigrationSummary()
        submitted: List[Tuple[Future, ChunkWorker]] = []

        logger.info(f"Starting copy run with {workers} worker(s)")

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='chunk') as executor:
            for entry in tables:
                summary.tables_attempted += 1
                outcome, chunks = self._plan_table(entry, workers)
                summary.add_table(outcome)

                for chunk in chunks:
                    worker = ChunkWorker(chunk, self.source_pool, self.target_pool, self.settings)
                    submitted.append((executor.submit(worker.run), worker))

            self._wait(submitted)

        for future, worker in submitted:
            summary.add_chunk(self._collect(future, worker))

        summary.elapsed_seconds = time.time() - start_time

        logger.info(
            f"Copy run finished in {summary.elapsed_seconds:.2f}s: "
            f"{summary.tables_processed}/{summary.tables_attempted} tables processed, "
            f"{summary.tables_skipped} skipped, {summary.chunks_completed} chunks completed, "
            f"{summary.chunks_failed} failed, {summary.rows_copied:,} rows copied"
        )
        for failed in summary.failed_chunks:
            logger.error(
                f"Failed chunk: {failed.table} [{failed.start:,}-{failed.end:,}] "
                f"{failed.error_type}: {failed.error}"
            )

        return summary

    def _plan_table(self, entry: str, workers: int) -> Tuple[TableOutcome, List[ChunkSpec]]:
        try:
            owner, table_name = parse_table_entry(entry)
        except ValueError as e:
            logger.warning(f"Skipping table entry {entry!r}: {e}")
            return TableOutcome(table=str(entry), status=SKIPPED_ERROR, error=str(e)), []

        name = format_table_entry(owner, table_name)

        try:
            spec = self.metadata_reader.describe_table(owner, table_name)
        except MetadataError as e:
            logger.warning(f"Skipping table {name}: metadata lookup failed: {e}")
            return TableOutcome(table=name, status=SKIPPED_ERROR, error=str(e)), []

        name = spec.qualified_name

        if spec.row_count == 0:
            logger.info(f"Table {name} is empty. Skipping...")
            return TableOutcome(
                table=name,
                status=SKIPPED_EMPTY,
                target_table=spec.target_table,
                row_count=0,
            ), []

        try:
            chunks = plan(spec, workers, strict_key_ranges=self.settings.strict_key_ranges)
        except PartitionError as e:
            logger.warning(f"Skipping table {name}: cannot partition: {e}")
            return TableOutcome(
                table=name,
                status=SKIPPED_ERROR,
                target_table=spec.target_table,
                row_count=spec.row_count,
                error=str(e),
            ), []

        if self.settings.truncate_target:
            try:
                self._truncate_target(spec)
            except Exception as e:
                logger.warning(f"Skipping table {name}: could not truncate target: {e}")
                return TableOutcome(
                    table=name,
                    status=SKIPPED_ERROR,
                    target_table=spec.target_table,
                    row_count=spec.row_count,
                    error=f"truncate failed: {e}",
                ), []

        logger.info(f"Processing table: {name} ({spec.row_count:,} rows, {len(chunks)} chunks)")
        return TableOutcome(
            table=name,
            status=PLANNED,
            owner=spec.owner,
            source_table=spec.table_name,
            target_table=spec.target_table,
            row_count=spec.row_count,
            strategy=chunks[0].strategy,
            chunks=len(chunks),
        ), chunks

    def _truncate_target(self, spec: TableSpec) -> None:
        query = sql.SQL('TRUNCATE TABLE {}.{}').format(
            sql.Identifier(self.settings.target_schema),
            sql.Identifier(spec.target_table),
        )
        with self.target_pool.connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(query)
            conn.commit()
        logger.info(f"Truncated target table {self.settings.target_schema}.{spec.target_table}")

    def _wait(self, submitted: List[Tuple[Future, ChunkWorker]]) -> None:
        """Block until every chunk is done, cancelling stragglers after run_timeout."""
        futures = [future for future, _ in submitted]
        if not futures:
            return

        _, not_done = wait(futures, timeout=self.settings.run_timeout)
        if not not_done:
            return

        logger.error(
            f"Run timeout of {self.settings.run_timeout}s reached with "
            f"{len(not_done)} chunk(s) unfinished - cancelling"
        )
        for future, worker in submitted:
            if future in not_done and not future.cancel():
                worker.cancel()
        wait(futures)

    def _collect(self, future: Future, worker: ChunkWorker) -> ChunkResult:
        chunk = worker.chunk
        if future.cancelled():
            error_type, error = 'Cancelled', 'chunk cancelled before it started'
        else:
            try:
                return future.result()
            except Exception as e:
                logger.exception(f"Unexpected failure in {chunk.describe()}")
                error_type, error = type(e).__name__, str(e)

        return ChunkResult(
            table=chunk.qualified_name,
            target_table=chunk.target_table,
            start=chunk.start,
            end=chunk.end,
            index=chunk.index,
            total=chunk.total,
            state=FAILED,
            error_type=error_type,
            error=error,
        )


def get_postgres_connect_params(postgres_conn_id: str) -> Dict[str, Any]:
    """psycopg2.connect keyword arguments from an Airflow PostgreSQL connection."""
    from airflow.providers.postgres.hooks.postgres import PostgresHook

    pg_conn = PostgresHook.get_connection(postgres_conn_id)
    return {
        'host': pg_conn.host,
        'port': pg_conn.port or 5432,
        'database': pg_conn.schema or pg_conn.login,
        'user': pg_conn.login,
        'password': pg_conn.password,
    }


def migrate_tables(
    oracle_conn_id: str,
    postgres_conn_id: str,
    tables: List[str],
    workers: Optional[int] = None,
    target_schema: Optional[str] = None,
    truncate_target: Optional[bool] = None,
    run_timeout: Optional[float] = None,
    settings: Optional[CopySettings] = None,
) -> Dict[str, Any]:
    """
    Convenience function to run a full copy from Airflow connection IDs.

    Builds both pools, runs the coordinator, and always closes the pools.

    Args:
        oracle_conn_id: Oracle connection ID
        postgres_conn_id: PostgreSQL connection ID
        tables: Table entries to copy, in order
        workers: Concurrent chunk workers (None for the configured default)
        target_schema: PostgreSQL schema of the target tables
        truncate_target: Truncate each non-empty target table before loading
        run_timeout: Seconds before unfinished chunks are cancelled (None for the configured default)
        settings: Base settings (defaults to CopySettings.from_env())

    Returns:
        Summary dictionary (MigrationSummary.to_dict())
    """
    from ora_pg_migration.oracle_helper import OracleConnectionHelper
    from ora_pg_migration.pools import OracleConnectionPool, PostgresConnectionPool

    settings = (settings or CopySettings.from_env()).with_overrides(
        workers=workers,
        target_schema=target_schema,
        truncate_target=truncate_target,
        run_timeout=run_timeout,
    )

    oracle_helper = OracleConnectionHelper(oracle_conn_id)
    source_pool = OracleConnectionPool(
        oracle_helper.get_connect_params(),
        min_conn=1,
        max_conn=settings.oracle_pool_size,
        acquire_timeout=settings.acquire_timeout,
    )
    try:
        target_pool = PostgresConnectionPool(
            get_postgres_connect_params(postgres_conn_id),
            min_conn=1,
            max_conn=settings.pg_pool_size,
            acquire_timeout=settings.acquire_timeout,
        )
    except Exception:
        source_pool.close()
        raise

    try:
        oracle_helper.set_pool(source_pool)
        coordinator = Coordinator(
            source_pool,
            target_pool,
            settings,
            MetadataReader(oracle_helper),
        )
        summary = coordinator.run(tables, settings.workers)
    finally:
        target_pool.close()
        source_pool.close()

    return summary.to_dict()
