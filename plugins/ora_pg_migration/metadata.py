"""
Oracle Column Metadata Module

This module reads the minimal table metadata the copy engine needs from the
Oracle data dictionary: ordered columns with their types, primary key
columns in key order, and an exact row count.

All identifiers that later end up in generated SQL come from these catalog
results, never from free-text input.
"""

from dataclasses import dataclass
from typing import Any, List, Optional, Tuple
import logging

from ora_pg_migration.errors import MetadataError

logger = logging.getLogger(__name__)

# Oracle types that are fetched as locators and need an explicit read
LOB_TYPES = frozenset({'BLOB', 'CLOB', 'NCLOB', 'BFILE'})
BINARY_LOB_TYPES = frozenset({'BLOB', 'BFILE'})

# Types eligible for dense integer key verification (with scale 0)
INTEGER_KEY_TYPES = frozenset({'NUMBER', 'INTEGER'})

MAX_IDENTIFIER_LENGTH = 128


def quote_oracle_identifier(identifier: str, identifier_type: str = "identifier") -> str:
    """
    Double-quote an Oracle identifier taken from the data dictionary.

    Args:
        identifier: Identifier exactly as stored in the catalog
        identifier_type: Type description for error messages

    Returns:
        Quoted identifier, e.g. '"EMPLOYEES"'

    Raises:
        ValueError: If the identifier cannot be quoted safely
    """
    if not identifier:
        raise ValueError(f"Invalid {identifier_type}: cannot be empty")

    if len(identifier) > MAX_IDENTIFIER_LENGTH:
        raise ValueError(
            f"Invalid {identifier_type}: exceeds maximum length of "
            f"{MAX_IDENTIFIER_LENGTH} characters (got {len(identifier)} characters)"
        )

    if '"' in identifier or '\x00' in identifier:
        raise ValueError(
            f"Invalid {identifier_type} '{identifier}': must not contain "
            "double quotes or NUL characters"
        )

    return f'"{identifier}"'


@dataclass(frozen=True)
class ColumnMeta:
    """A source column: target name, catalog name and declared type."""

    name: str
    source_name: str
    data_type: str
    scale: Optional[int] = None

    @property
    def is_lob(self) -> bool:
        return self.data_type.upper() in LOB_TYPES

    @property
    def is_binary_lob(self) -> bool:
        return self.data_type.upper() in BINARY_LOB_TYPES

    @property
    def is_integer(self) -> bool:
        return self.data_type.upper() in INTEGER_KEY_TYPES and self.scale == 0


@dataclass(frozen=True)
class TableSpec:
    """Planning snapshot of one source table."""

    owner: str
    table_name: str
    columns: Tuple[ColumnMeta, ...]
    primary_key: Tuple[str, ...]
    row_count: int
    dense_key: bool = False

    @property
    def qualified_name(self) -> str:
        return f"{self.owner}.{self.table_name}"

    @property
    def target_table(self) -> str:
        return self.table_name.lower()

    @property
    def has_primary_key(self) -> bool:
        return len(self.primary_key) > 0

    @property
    def lob_columns(self) -> List[ColumnMeta]:
        return [col for col in self.columns if col.is_lob]

    def column(self, source_name: str) -> ColumnMeta:
        for col in self.columns:
            if col.source_name == source_name:
                return col
        raise KeyError(source_name)


class MetadataReader:
    """Read table metadata from the Oracle data dictionary."""

    COLUMNS_QUERY = """
        SELECT column_name, data_type, data_scale
        FROM all_tab_columns
        WHERE owner = :owner AND table_name = :table_name
        ORDER BY column_id
    """

    PRIMARY_KEY_QUERY = """
        SELECT cols.column_name
        FROM all_constraints cons
        JOIN all_cons_columns cols
          ON cons.owner = cols.owner
         AND cons.constraint_name = cols.constraint_name
        WHERE cons.owner = :owner
          AND cons.table_name = :table_name
          AND cons.constraint_type = 'P'
        ORDER BY cols.position
    """

    CURRENT_SCHEMA_QUERY = "SELECT SYS_CONTEXT('USERENV', 'CURRENT_SCHEMA') FROM DUAL"

    def __init__(self, oracle_helper):
        """
        Initialize the metadata reader.

        Args:
            oracle_helper: Object exposing get_records/get_first (OracleConnectionHelper)
        """
        self.oracle_hook = oracle_helper
        self._current_schema: Optional[str] = None

    def current_schema(self) -> str:
        """Return the session's current schema, used when an owner is omitted."""
        if self._current_schema is None:
            row = self.oracle_hook.get_first(self.CURRENT_SCHEMA_QUERY)
            if not row or not row[0]:
                raise MetadataError("<current schema>", "could not determine current schema")
            self._current_schema = row[0]
        return self._current_schema

    def describe_table(self, owner: Optional[str], table_name: str) -> TableSpec:
        """
        Build a TableSpec for one source table.

        Args:
            owner: Owning schema (None for the current schema)
            table_name: Table name as stored in the catalog

        Returns:
            TableSpec with columns, primary key, row count and dense-key flag

        Raises:
            MetadataError: If the table does not exist or a catalog query fails
        """
        qualified = f"{owner or '<current>'}.{table_name}"
        try:
            owner = owner or self.current_schema()
            qualified = f"{owner}.{table_name}"

            columns = self._get_columns(owner, table_name)
            if not columns:
                raise MetadataError(qualified, "table not found or has no visible columns")

            primary_key = self._get_primary_key_columns(owner, table_name)
            row_count = self._get_row_count(owner, table_name)

            dense_key = False
            if row_count > 0 and len(primary_key) == 1:
                key_column = next(c for c in columns if c.source_name == primary_key[0])
                if key_column.is_integer:
                    dense_key = self._is_dense_key(owner, table_name, key_column, row_count)
        except MetadataError:
            raise
        except Exception as e:
            logger.error(f"Metadata lookup failed for {qualified}: {e}")
            raise MetadataError(qualified, str(e)) from e

        spec = TableSpec(
            owner=owner,
            table_name=table_name,
            columns=tuple(columns),
            primary_key=tuple(primary_key),
            row_count=row_count,
            dense_key=dense_key,
        )

        logger.info(
            f"Described {qualified}: {len(columns)} columns, "
            f"pk=({', '.join(primary_key) or 'none'}), {row_count:,} rows"
            f"{', dense integer key' if dense_key else ''}"
        )
        return spec

    def _get_columns(self, owner: str, table_name: str) -> List[ColumnMeta]:
        rows = self.oracle_hook.get_records(
            self.COLUMNS_QUERY,
            parameters={'owner': owner, 'table_name': table_name},
        )
        columns = []
        for column_name, data_type, data_scale in rows:
            quote_oracle_identifier(column_name, "column name")
            columns.append(ColumnMeta(
                name=column_name.lower(),
                source_name=column_name,
                data_type=data_type,
                scale=int(data_scale) if data_scale is not None else None,
            ))
        return columns

    def _get_primary_key_columns(self, owner: str, table_name: str) -> List[str]:
        """Primary key column names in key ordinal order (empty if none)."""
        rows = self.oracle_hook.get_records(
            self.PRIMARY_KEY_QUERY,
            parameters={'owner': owner, 'table_name': table_name},
        )
        return [row[0] for row in rows]

    def _get_row_count(self, owner: str, table_name: str) -> int:
        query = (
            f"SELECT COUNT(*) FROM {quote_oracle_identifier(owner, 'owner')}."
            f"{quote_oracle_identifier(table_name, 'table name')}"
        )
        row = self.oracle_hook.get_first(query)
        return int(row[0] or 0) if row else 0

    def _is_dense_key(
        self,
        owner: str,
        table_name: str,
        key_column: ColumnMeta,
        row_count: int,
    ) -> bool:
        """
        Check whether a unique integer key holds exactly the values 1..row_count.

        A primary key is unique, so MIN = 1 and MAX = row_count leaves no room
        for gaps.
        """
        quoted_key = quote_oracle_identifier(key_column.source_name, "column name")
        query = (
            f"SELECT MIN({quoted_key}), MAX({quoted_key}) "
            f"FROM {quote_oracle_identifier(owner, 'owner')}."
            f"{quote_oracle_identifier(table_name, 'table name')}"
        )
        row = self.oracle_hook.get_first(query)
        if not row:
            return False

        min_key, max_key = row
        if min_key is None or max_key is None:
            return False
        return _as_int(min_key) == 1 and _as_int(max_key) == row_count


def _as_int(value: Any) -> Optional[int]:
    try:
        as_int = int(value)
    except (TypeError, ValueError):
        return None
    return as_int if as_int == value else None
