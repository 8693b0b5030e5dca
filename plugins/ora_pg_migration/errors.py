"""
Migration Error Types

Every failure raised by the copy engine derives from MigrationError so the
coordinator can tell engine failures apart from programming errors.

Scope of each error:
- MetadataError: catalog lookup failed or table missing (fatal to the table)
- PartitionError: row count unusable for planning (fatal to the table)
- ExtractionError: source query or cursor failed (fatal to the chunk)
- EncodeError: a row value could not be transcoded (fatal to the chunk)
- IngestionError: PostgreSQL COPY rejected the stream (fatal to the chunk)
"""

from typing import Optional


class MigrationError(Exception):
    """Base class for copy engine failures."""


class MetadataError(MigrationError):
    """Catalog lookup failed or the table does not exist."""

    def __init__(self, table: str, message: str):
        self.table = table
        super().__init__(f"{table}: {message}")


class PartitionError(MigrationError):
    """Row count or worker count cannot be turned into valid ranges."""


class ChunkError(MigrationError):
    """Failure scoped to a single chunk, tagged with its table and range."""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ):
        self.table = table
        self.start = start
        self.end = end
        super().__init__(message)

    def __str__(self) -> str:
        message = super().__str__()
        if self.table is None:
            return message
        return f"{self.table} [{self.start}-{self.end}]: {message}"


class ExtractionError(ChunkError):
    """Source query execution or cursor fetch failed mid-chunk."""


class EncodeError(ChunkError):
    """A row value (usually a large object) could not be encoded."""

    def __init__(self, message: str, column: Optional[str] = None, **kwargs):
        self.column = column
        if column:
            message = f"column {column}: {message}"
        super().__init__(message, **kwargs)


class IngestionError(ChunkError):
    """PostgreSQL COPY rejected the stream."""


class BridgeAborted(MigrationError):
    """The streaming bridge was shut down before end-of-stream."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)
