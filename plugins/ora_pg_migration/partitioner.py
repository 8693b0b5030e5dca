"""
Table Partitioning Module

Splits a table into contiguous, non-overlapping row ranges and renders the
extraction query each chunk worker runs against Oracle.

Range layout for R rows and W workers, with c = ceil(R / W):

    [1, c], [c+1, 2c], ..., [k*c+1, R]

The last range always ends at R. A range that would start past R is never
emitted, so a table with fewer rows than workers gets one single-row chunk
per row.

Two extraction strategies:
- KEY_RANGE: BETWEEN predicates directly on the primary key columns. The
  bounds are row positions, so this is only correct for a key whose values
  are exactly 1..R.
- ROW_NUMBER: numbers the rows with ROW_NUMBER() over a fixed ordering
  (primary key, or ROWID for unkeyed tables) and filters on that number.
  Correct for any key distribution.
"""

from dataclasses import dataclass
from typing import List, Tuple
import logging

from ora_pg_migration.errors import PartitionError
from ora_pg_migration.metadata import ColumnMeta, TableSpec, quote_oracle_identifier

logger = logging.getLogger(__name__)

KEY_RANGE = 'key_range'
ROW_NUMBER = 'row_number'

# Oracle binds NUMBER fine, but psycopg2 side and reporting assume int64
MAX_ROW_COUNT = 2 ** 63 - 1

RANGE_START_PARAM = 'range_start'
RANGE_END_PARAM = 'range_end'


@dataclass(frozen=True)
class ChunkSpec:
    """One row range of one table, ready for a chunk worker."""

    owner: str
    table_name: str
    target_table: str
    columns: Tuple[ColumnMeta, ...]
    start: int
    end: int
    index: int
    total: int
    strategy: str
    query: str

    @property
    def qualified_name(self) -> str:
        return f"{self.owner}.{self.table_name}"

    @property
    def row_estimate(self) -> int:
        return self.end - self.start + 1

    @property
    def parameters(self) -> dict:
        """Bind values for the two range placeholders."""
        return {RANGE_START_PARAM: self.start, RANGE_END_PARAM: self.end}

    def describe(self) -> str:
        return (
            f"{self.qualified_name} chunk {self.index}/{self.total} "
            f"[{self.start:,}-{self.end:,}]"
        )


def calculate_chunk_size(row_count: int, worker_count: int) -> int:
    """Return ceil(row_count / worker_count), never less than 1."""
    _validate_counts(row_count, worker_count)
    return max(1, (row_count + worker_count - 1) // worker_count)


def compute_ranges(row_count: int, worker_count: int) -> List[Tuple[int, int]]:
    """
    Divide rows 1..row_count into at most worker_count inclusive ranges.

    Args:
        row_count: Total rows in the table (snapshot)
        worker_count: Number of workers to spread the rows over

    Returns:
        Ordered list of (start, end) tuples; empty when row_count is 0

    Raises:
        PartitionError: If either count is invalid
    """
    _validate_counts(row_count, worker_count)
    if row_count == 0:
        return []

    chunk_size = calculate_chunk_size(row_count, worker_count)

    ranges = []
    for i in range(worker_count):
        start = 1 + i * chunk_size
        if start > row_count:
            break
        end = min(start + chunk_size - 1, row_count)
        if i == worker_count - 1:
            end = row_count
        ranges.append((start, end))

    # ceil() guarantees full coverage; anything else is a bug
    if ranges[-1][1] != row_count:
        raise PartitionError(
            f"Ranges end at {ranges[-1][1]} instead of {row_count} "
            f"(chunk size {chunk_size}, {worker_count} workers)"
        )

    return ranges


def _validate_counts(row_count, worker_count) -> None:
    if isinstance(row_count, bool) or not isinstance(row_count, int):
        raise PartitionError(f"Row count must be an integer, got {row_count!r}")
    if isinstance(worker_count, bool) or not isinstance(worker_count, int):
        raise PartitionError(f"Worker count must be an integer, got {worker_count!r}")
    if row_count < 0:
        raise PartitionError(f"Row count cannot be negative (got {row_count})")
    if row_count > MAX_ROW_COUNT:
        raise PartitionError(f"Row count {row_count} exceeds the 64-bit bind range")
    if worker_count < 1:
        raise PartitionError(f"Worker count must be at least 1 (got {worker_count})")


def choose_strategy(table: TableSpec, strict_key_ranges: bool = True) -> str:
    """Pick KEY_RANGE or ROW_NUMBER for a table."""
    if not table.has_primary_key:
        return ROW_NUMBER

    if table.dense_key:
        return KEY_RANGE

    if strict_key_ranges:
        logger.info(
            f"{table.qualified_name}: primary key ({', '.join(table.primary_key)}) "
            f"is not a verified dense integer sequence - using ROW_NUMBER ranges"
        )
        return ROW_NUMBER

    logger.warning(
        f"{table.qualified_name}: using BETWEEN on unverified key "
        f"({', '.join(table.primary_key)}); rows outside 1..{table.row_count:,} "
        f"will be missed"
    )
    return KEY_RANGE


def render_query(table: TableSpec, strategy: str) -> str:
    """
    Render the extraction query for a strategy.

    The query always carries exactly two binds, :range_start and :range_end,
    both inclusive row positions.
    """
    source_table = (
        f"{quote_oracle_identifier(table.owner, 'owner')}."
        f"{quote_oracle_identifier(table.table_name, 'table name')}"
    )
    column_list = ', '.join(
        quote_oracle_identifier(col.source_name, 'column name') for col in table.columns
    )

    if strategy == KEY_RANGE:
        if not table.has_primary_key:
            raise PartitionError(f"{table.qualified_name}: KEY_RANGE needs a primary key")
        key_columns = [quote_oracle_identifier(col, 'column name') for col in table.primary_key]
        predicate = ' AND '.join(
            f"{col} BETWEEN :{RANGE_START_PARAM} AND :{RANGE_END_PARAM}" for col in key_columns
        )
        return (
            f"SELECT {column_list} "
            f"FROM {source_table} "
            f"WHERE ({predicate}) "
            f"ORDER BY {', '.join(key_columns)}"
        )

    if strategy == ROW_NUMBER:
        if table.has_primary_key:
            ordering = ', '.join(
                f"t.{quote_oracle_identifier(col, 'column name')}" for col in table.primary_key
            )
        else:
            ordering = 't.ROWID'
        inner_columns = ', '.join(
            f"t.{quote_oracle_identifier(col.source_name, 'column name')}" for col in table.columns
        )
        return (
            f"SELECT {column_list} "
            f"FROM ("
            f"SELECT {inner_columns}, ROW_NUMBER() OVER (ORDER BY {ordering}) AS rn__ "
            f"FROM {source_table} t"
            f") "
            f"WHERE rn__ BETWEEN :{RANGE_START_PARAM} AND :{RANGE_END_PARAM} "
            f"ORDER BY rn__"
        )

    raise PartitionError(f"Unknown partition strategy '{strategy}'")


def plan(
    table: TableSpec,
    worker_count: int,
    strict_key_ranges: bool = True,
) -> List[ChunkSpec]:
    """
    Plan the chunks for one table.

    Args:
        table: Metadata snapshot from MetadataReader
        worker_count: Maximum number of chunks
        strict_key_ranges: Only use KEY_RANGE for verified dense keys

    Returns:
        List of ChunkSpec, empty for an empty table

    Raises:
        PartitionError: If the counts are invalid or the query cannot be rendered
    """
    ranges = compute_ranges(table.row_count, worker_count)
    if not ranges:
        logger.info(f"{table.qualified_name} is empty - no chunks planned")
        return []

    strategy = choose_strategy(table, strict_key_ranges)
    try:
        query = render_query(table, strategy)
    except ValueError as e:
        raise PartitionError(f"{table.qualified_name}: {e}") from e

    chunks = [
        ChunkSpec(
            owner=table.owner,
            table_name=table.table_name,
            target_table=table.target_table,
            columns=table.columns,
            start=start,
            end=end,
            index=i + 1,
            total=len(ranges),
            strategy=strategy,
            query=query,
        )
        for i, (start, end) in enumerate(ranges)
    ]

    logger.info(
        f"Planned {table.qualified_name}: {table.row_count:,} rows in {len(chunks)} "
        f"chunk(s) of up to {calculate_chunk_size(table.row_count, worker_count):,} rows "
        f"using {strategy}"
    )
    return chunks
