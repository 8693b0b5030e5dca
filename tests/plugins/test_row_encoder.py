"""
Tests for Row Encoder Module

These tests validate CSV COPY record encoding, NULL handling, quoting and
large object transcoding.
"""

from datetime import date, datetime, time
from decimal import Decimal
from unittest.mock import Mock

import pytest

from ora_pg_migration.errors import EncodeError
from ora_pg_migration.metadata import ColumnMeta
from ora_pg_migration.row_encoder import (
    RowEncoder,
    decode_binary,
    encode_binary,
    format_scalar,
    quote_field,
)

from .conftest import parse_copy_csv


def _columns(*types):
    return [ColumnMeta(f"c{i}", f"C{i}", t) for i, t in enumerate(types)]


def _lob(content, size=None):
    lob = Mock()
    lob.read.return_value = content
    lob.size.return_value = len(content) if size is None else size
    return lob


class TestEncodeBinary:

    def test_hex_bytea_format(self):
        assert encode_binary(b'\x00\x1b\xff') == '\\x001bff'

    def test_empty(self):
        assert encode_binary(b'') == '\\x'

    def test_decode_inverts_encode(self):
        data = bytes(range(256))
        assert decode_binary(encode_binary(data)) == data

    def test_decode_requires_prefix(self):
        with pytest.raises(ValueError):
            decode_binary('001bff')


class TestQuoteField:

    def test_plain(self):
        assert quote_field('abc') == '"abc"'

    def test_embedded_quotes_doubled(self):
        assert quote_field('say "hi"') == '"say ""hi"""'

    def test_empty_string_is_quoted(self):
        assert quote_field('') == '""'


class TestFormatScalar:

    @pytest.mark.parametrize("value,expected", [
        ('text', 'text'),
        (42, '42'),
        (Decimal('12.50'), '12.50'),
        (1.5, '1.5'),
        (True, 't'),
        (False, 'f'),
        (date(2024, 2, 29), '2024-02-29'),
        (datetime(2024, 1, 2, 3, 4, 5, 600000), '2024-01-02 03:04:05.600000'),
        (time(12, 30), '12:30:00'),
        (b'\x01\x02', '\\x0102'),
    ])
    def test_values(self, value, expected):
        assert format_scalar(value) == expected

    def test_special_floats(self):
        assert format_scalar(float('nan')) == 'NaN'
        assert format_scalar(float('inf')) == 'Infinity'
        assert format_scalar(float('-inf')) == '-Infinity'


class TestRowEncoder:
    """Test whole-record encoding."""

    def test_record_layout(self):
        encoder = RowEncoder(_columns('NUMBER', 'VARCHAR2'))
        assert encoder.encode((1, 'Alice')) == '"1","Alice"\n'

    def test_null_is_empty_unquoted_field(self):
        encoder = RowEncoder(_columns('NUMBER', 'VARCHAR2', 'DATE'))
        assert encoder.encode((1, None, None)) == '"1",,\n'

    def test_empty_string_differs_from_null(self):
        encoder = RowEncoder(_columns('VARCHAR2', 'VARCHAR2'))
        record = encoder.encode(('', None))

        assert record == '"",\n'
        assert parse_copy_csv(record) == [('', None)]

    def test_delimiters_quotes_and_newlines_survive(self):
        value = 'a,b "c"\nd\re'
        encoder = RowEncoder(_columns('VARCHAR2'))

        assert parse_copy_csv(encoder.encode((value,))) == [(value,)]

    def test_non_ascii_text(self):
        encoder = RowEncoder(_columns('NVARCHAR2'))
        assert encoder.encode(('Zürich 東京',)) == '"Zürich 東京"\n'

    def test_wrong_row_length(self):
        encoder = RowEncoder(_columns('NUMBER', 'NUMBER'))
        with pytest.raises(EncodeError, match="1 values but 2 columns"):
            encoder.encode((1,))


class TestLargeObjects:
    """Test CLOB/BLOB transcoding."""

    def test_blob_becomes_hex(self):
        encoder = RowEncoder(_columns('BLOB'))
        assert encoder.encode((_lob(b'\xde\xad'),)) == '"\\xdead"\n'

    def test_blob_round_trips_through_decode(self):
        payload = bytes(range(200))
        encoder = RowEncoder(_columns('BLOB'))
        (field,), = parse_copy_csv(encoder.encode((_lob(payload),)))
        assert decode_binary(field) == payload

    def test_empty_blob_is_not_null(self):
        encoder = RowEncoder(_columns('BLOB'))
        assert encoder.encode((_lob(b''),)) == '"\\x"\n'

    def test_clob_becomes_literal_text(self):
        encoder = RowEncoder(_columns('CLOB'))
        assert encoder.encode((_lob('line one\nline "two"'),)) == '"line one\nline ""two"""\n'

    def test_already_fetched_lob_values(self):
        # oracledb returns str/bytes directly when fetch_lobs is disabled
        encoder = RowEncoder(_columns('CLOB', 'BLOB'))
        assert encoder.encode(('text', b'\x01')) == '"text","\\x01"\n'

    def test_null_lob(self):
        encoder = RowEncoder(_columns('CLOB', 'BLOB'))
        assert encoder.encode((None, None)) == ',\n'

    def test_lob_over_limit_fails_without_reading(self):
        lob = _lob(b'x' * 10, size=10)
        encoder = RowEncoder(_columns('BLOB'), lob_max_bytes=4)

        with pytest.raises(EncodeError, match="exceeds limit") as exc_info:
            encoder.encode((lob,))

        assert exc_info.value.column == 'c0'
        lob.read.assert_not_called()

    def test_lob_within_limit(self):
        encoder = RowEncoder(_columns('CLOB'), lob_max_bytes=4)
        assert encoder.encode((_lob('abcd'),)) == '"abcd"\n'

    def test_multibyte_clob_limit_counts_bytes(self):
        # 6 characters, 12 UTF-8 bytes
        lob = _lob('\u00e9' * 6)
        encoder = RowEncoder(_columns('CLOB'), lob_max_bytes=10)

        with pytest.raises(EncodeError, match="12 bytes exceeds limit of 10 bytes"):
            encoder.encode((lob,))

    def test_multibyte_clob_within_byte_limit(self):
        encoder = RowEncoder(_columns('CLOB'), lob_max_bytes=12)
        assert encoder.encode((_lob('\u00e9' * 6),)) == '"' + '\u00e9' * 6 + '"\n'

    def test_zero_limit_means_unlimited(self):
        encoder = RowEncoder(_columns('CLOB'), lob_max_bytes=0)
        assert encoder.encode((_lob('x' * 1000),)) == '"' + 'x' * 1000 + '"\n'

    def test_lob_read_failure_is_encode_error(self):
        lob = Mock()
        lob.size.return_value = 3
        lob.read.side_effect = RuntimeError("ORA-22922: nonexistent LOB value")
        encoder = RowEncoder(_columns('CLOB'))

        with pytest.raises(EncodeError, match="ORA-22922") as exc_info:
            encoder.encode((lob,))
        assert exc_info.value.column == 'c0'

    def test_invalid_utf8_clob_bytes(self):
        encoder = RowEncoder(_columns('CLOB'))
        with pytest.raises(EncodeError):
            encoder.encode((b'\xff\xfe',))
