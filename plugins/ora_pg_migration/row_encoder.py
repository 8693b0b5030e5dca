"""
Row Encoder Module

Turns one Oracle row into one CSV record for PostgreSQL COPY:

- NULL is an empty, unquoted field (COPY's default CSV null string)
- every other value is double-quoted, with embedded quotes doubled
- fields are comma-separated and the record ends with a newline
- BLOB/BFILE content is inlined as PostgreSQL hex bytea text ("\\x0a1b...")
- CLOB/NCLOB content is inlined as literal text

Large objects are read completely into memory. lob_max_bytes puts an upper
bound on that, counted in UTF-8 bytes for CLOB/NCLOB text; an oversized
object fails the row (and therefore the chunk) instead of being truncated.
"""

from datetime import datetime, date, time as dt_time
from decimal import Decimal
from typing import Any, Optional, Sequence
import logging
import math

from ora_pg_migration.errors import EncodeError
from ora_pg_migration.metadata import ColumnMeta

logger = logging.getLogger(__name__)

FIELD_DELIMITER = ','
QUOTE_CHAR = '"'
RECORD_TERMINATOR = '\n'
BYTEA_HEX_PREFIX = '\\x'


def encode_binary(data: bytes) -> str:
    """Encode bytes as PostgreSQL hex bytea input text."""
    return BYTEA_HEX_PREFIX + bytes(data).hex()


def decode_binary(text: str) -> bytes:
    """Inverse of encode_binary."""
    if not text.startswith(BYTEA_HEX_PREFIX):
        raise ValueError(f"Not a hex bytea value: {text[:20]!r}")
    return bytes.fromhex(text[len(BYTEA_HEX_PREFIX):])


def quote_field(text: str) -> str:
    return QUOTE_CHAR + text.replace(QUOTE_CHAR, QUOTE_CHAR * 2) + QUOTE_CHAR


def format_scalar(value: Any) -> str:
    """
    Render a non-LOB, non-NULL value as COPY text.

    Numbers and strings pass through unchanged; temporal values use ISO
    format, which PostgreSQL parses for date/time/timestamp columns.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return 't' if value else 'f'
    if isinstance(value, (int, Decimal)):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return 'NaN'
        if math.isinf(value):
            return 'Infinity' if value > 0 else '-Infinity'
        return repr(value)
    if isinstance(value, datetime):
        return value.isoformat(sep=' ')
    if isinstance(value, (date, dt_time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return encode_binary(bytes(value))
    return str(value)


class RowEncoder:
    """Encode rows of one chunk; column order is fixed at construction."""

    def __init__(self, columns: Sequence[ColumnMeta], lob_max_bytes: Optional[int] = None):
        """
        Args:
            columns: Projected columns, in the same order as the query's select list
            lob_max_bytes: Largest LOB to inline (None or 0 for no limit)
        """
        self.columns = tuple(columns)
        self.lob_max_bytes = lob_max_bytes or None

    def encode(self, row: Sequence[Any]) -> str:
        """
        Encode one row as a CSV record.

        Raises:
            EncodeError: If the row shape is wrong or a value cannot be read
        """
        if len(row) != len(self.columns):
            raise EncodeError(
                f"row has {len(row)} values but {len(self.columns)} columns were selected"
            )

        fields = []
        for column, value in zip(self.columns, row):
            if value is None:
                fields.append('')
                continue

            try:
                if column.is_lob:
                    text = self._read_lob(column, value)
                else:
                    text = format_scalar(value)
            except EncodeError:
                raise
            except Exception as e:
                raise EncodeError(str(e), column=column.name) from e

            fields.append(quote_field(text))

        return FIELD_DELIMITER.join(fields) + RECORD_TERMINATOR

    def _read_lob(self, column: ColumnMeta, value: Any) -> str:
        """Read a LOB locator (or an already-fetched value) and transcode it."""
        # LOB.size() counts characters for CLOB/NCLOB; each character is at
        # least one byte, so a size over the limit is over it in bytes too
        if self.lob_max_bytes is not None and hasattr(value, 'size'):
            size = value.size()
            if size > self.lob_max_bytes:
                raise EncodeError(
                    f"large object of {size:,} {'bytes' if column.is_binary_lob else 'characters'} "
                    f"exceeds limit of {self.lob_max_bytes:,} bytes",
                    column=column.name,
                )

        content = value.read() if callable(getattr(value, 'read', None)) else value
        if content is None:
            content = b'' if column.is_binary_lob else ''

        if column.is_binary_lob:
            if isinstance(content, str):
                raise EncodeError("binary large object returned text content", column=column.name)
            self._check_lob_bytes(column, len(content))
            return encode_binary(content)

        if isinstance(content, (bytes, bytearray)):
            self._check_lob_bytes(column, len(content))
            return bytes(content).decode('utf-8')
        self._check_lob_bytes(column, len(content.encode('utf-8')))
        return content

    def _check_lob_bytes(self, column: ColumnMeta, byte_count: int) -> None:
        if self.lob_max_bytes is not None and byte_count > self.lob_max_bytes:
            raise EncodeError(
                f"large object of {byte_count:,} bytes exceeds limit of {self.lob_max_bytes:,} bytes",
                column=column.name,
            )
