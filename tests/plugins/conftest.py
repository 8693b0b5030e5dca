"""
Shared fakes for copy engine tests.

FakeOracleSource serves rows by position: a chunk query bound to
(range_start, range_end) returns rows[range_start - 1:range_end] of the
table named in its FROM clause, which is what both partition strategies
select for a dense or row-numbered table.

FakePostgresTarget parses the CSV COPY stream (empty unquoted field = NULL)
and keeps committed rows per table.
"""

import re
import threading

import pytest

from ora_pg_migration.config import CopySettings
from ora_pg_migration.errors import MetadataError
from ora_pg_migration.metadata import ColumnMeta, TableSpec

_FROM_PATTERN = re.compile(r'FROM "([^"]+)"\."([^"]+)"')
_COPY_TABLE_PATTERN = re.compile(r'COPY "([^"]+)"\."([^"]+)"')


def parse_copy_csv(data: str):
    """Parse COPY CSV text into rows; unquoted empty fields become None."""
    rows = []
    row = []
    field = []
    quoted = False
    in_quotes = False
    i = 0
    while i < len(data):
        ch = data[i]
        if in_quotes:
            if ch == '"':
                if i + 1 < len(data) and data[i + 1] == '"':
                    field.append('"')
                    i += 1
                else:
                    in_quotes = False
            else:
                field.append(ch)
        elif ch == '"':
            in_quotes = True
            quoted = True
        elif ch in (',', '\n'):
            row.append(''.join(field) if quoted or field else None)
            field, quoted = [], False
            if ch == '\n':
                rows.append(tuple(row))
                row = []
        else:
            field.append(ch)
        i += 1
    if in_quotes:
        raise ValueError("unterminated CSV quoted field")
    if field or quoted or row:
        raise ValueError("missing newline after last CSV record")
    return rows


class FakeOracleCursor:
    def __init__(self, connection):
        self.connection = connection
        self.arraysize = 100
        self.prefetchrows = 2
        self.outputtypehandler = None
        self.closed = False
        self._rows = []

    def execute(self, query, parameters=None):
        source = self.connection.source
        source.executed.append((query, parameters))
        source.output_type_handlers.append(self.outputtypehandler)
        if source.fail_execute:
            raise RuntimeError(source.fail_execute)

        match = _FROM_PATTERN.search(query)
        rows = source.tables[f"{match.group(1)}.{match.group(2)}"]
        start = parameters['range_start']
        end = parameters['range_end']
        self._rows = list(rows[start - 1:end])

    def __iter__(self):
        source = self.connection.source
        for position, row in enumerate(self._rows, 1):
            if source.fail_fetch_at is not None and position == source.fail_fetch_at:
                raise RuntimeError("ORA-03113: end-of-file on communication channel")
            yield row

    def fetchone(self):
        return (1,)

    def close(self):
        self.closed = True


class FakeOracleConnection:
    def __init__(self, source):
        self.source = source
        self.closed = False
        self.cancelled = False

    def cursor(self):
        return FakeOracleCursor(self)

    def cancel(self):
        self.cancelled = True

    def close(self):
        self.closed = True


class FakeOracleSource:
    """Tables keyed by 'OWNER.TABLE', each a list of row tuples."""

    def __init__(self, tables=None):
        self.tables = dict(tables or {})
        self.executed = []
        self.output_type_handlers = []
        self.fail_execute = None
        self.fail_fetch_at = None

    def connect(self, **kwargs):
        return FakeOracleConnection(self)


class FakePgCursor:
    def __init__(self, connection):
        self.connection = connection

    def __enter__(self):
        return self

    def __exit__(self, *args):
        return False

    def execute(self, statement, params=None):
        text = statement if isinstance(statement, str) else self.connection.target.render(statement)
        self.connection.statements.append(text)
        if 'TRUNCATE' in text:
            self.connection.target.truncated.append(text)

    def copy_expert(self, statement, file, size=8192):
        target = self.connection.target
        text = statement if isinstance(statement, str) else target.render(statement)
        self.connection.statements.append(text)

        chunks = []
        while True:
            data = file.read(size)
            if not data:
                break
            chunks.append(data)
        rows = parse_copy_csv(b''.join(chunks).decode('utf-8'))

        for row in rows:
            if target.reject_value is not None and target.reject_value in row:
                raise RuntimeError(f'invalid input syntax: "{target.reject_value}"')

        match = _COPY_TABLE_PATTERN.search(text)
        self.connection.pending.setdefault(match.group(2), []).extend(rows)


class FakePgConnection:
    def __init__(self, target):
        self.target = target
        self.autocommit = False
        self.statements = []
        self.pending = {}
        self.closed = False
        self.cancelled = False

    def cursor(self):
        return FakePgCursor(self)

    def commit(self):
        self.target.commit(self.pending)
        self.pending = {}

    def rollback(self):
        self.pending = {}

    def cancel(self):
        self.cancelled = True

    def close(self):
        self.closed = True


class FakePostgresTarget:
    def __init__(self, reject_value=None):
        self.reject_value = reject_value
        self.rows = {}
        self.truncated = []
        self.connections = []
        self._lock = threading.Lock()

    def connect(self):
        conn = FakePgConnection(self)
        self.connections.append(conn)
        return conn

    def commit(self, pending):
        with self._lock:
            for table, rows in pending.items():
                self.rows.setdefault(table, []).extend(rows)

    @staticmethod
    def render(statement):
        """Render a psycopg2 sql.Composed without a live connection."""
        from psycopg2 import sql

        parts = []
        for part in statement.seq:
            if isinstance(part, sql.Identifier):
                parts.append('.'.join('"' + s.replace('"', '""') + '"' for s in part.strings))
            elif isinstance(part, sql.SQL):
                parts.append(part.string)
            elif isinstance(part, sql.Composed):
                parts.append(FakePostgresTarget.render(part))
            else:
                raise TypeError(f"cannot render {part!r}")
        return ''.join(parts)


class FakePool:
    """acquire/release pool over a connection factory, tracking borrows."""

    def __init__(self, connect):
        self._connect = connect
        self.outstanding = 0
        self.acquired = 0
        self._lock = threading.Lock()

    def acquire(self):
        with self._lock:
            self.outstanding += 1
            self.acquired += 1
        return self._connect()

    def release(self, conn, discard=False):
        if getattr(conn, 'pending', None):
            conn.rollback()
        with self._lock:
            self.outstanding -= 1

    def connection(self):
        import contextlib

        @contextlib.contextmanager
        def borrow():
            conn = self.acquire()
            try:
                yield conn
            finally:
                self.release(conn)

        return borrow()


class StaticMetadataReader:
    """describe_table over prepared TableSpecs; unknown tables raise MetadataError."""

    def __init__(self, specs, default_owner='HR'):
        self.specs = {spec.qualified_name: spec for spec in specs}
        self.default_owner = default_owner

    def describe_table(self, owner, table_name):
        name = f"{owner or self.default_owner}.{table_name}"
        if name not in self.specs:
            raise MetadataError(name, "table not found or has no visible columns")
        return self.specs[name]


def make_table(owner='HR', table_name='EMPLOYEES', row_count=10, primary_key=('ID',),
               dense_key=True, extra_columns=(('NAME', 'VARCHAR2', None),)):
    columns = [ColumnMeta('id', 'ID', 'NUMBER', 0)]
    columns += [ColumnMeta(name.lower(), name, data_type, scale) for name, data_type, scale in extra_columns]
    return TableSpec(
        owner=owner,
        table_name=table_name,
        columns=tuple(columns),
        primary_key=tuple(primary_key),
        row_count=row_count,
        dense_key=dense_key,
    )


@pytest.fixture
def settings():
    return CopySettings(workers=3, fetch_size=50, bridge_capacity=2, bridge_block_size=16)


@pytest.fixture
def oracle_source():
    return FakeOracleSource()


@pytest.fixture
def pg_target():
    return FakePostgresTarget()


@pytest.fixture
def source_pool(oracle_source):
    return FakePool(oracle_source.connect)


@pytest.fixture
def target_pool(pg_target):
    return FakePool(pg_target.connect)
