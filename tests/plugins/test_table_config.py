"""
Tests for Table Configuration Utility Module

These tests validate parsing of the DAG's table list parameter.
"""

import pytest

from ora_pg_migration.table_config import (
    expand_tables_param,
    format_table_entry,
    load_tables_from_env,
    parse_table_entry,
    validate_tables,
)


class TestParseTableEntry:
    """Test single table entry parsing."""

    def test_owner_and_table(self):
        assert parse_table_entry('HR.EMPLOYEES') == ('HR', 'EMPLOYEES')

    def test_unquoted_parts_fold_to_upper_case(self):
        assert parse_table_entry('hr.employees') == ('HR', 'EMPLOYEES')

    def test_table_only(self):
        assert parse_table_entry('employees') == (None, 'EMPLOYEES')

    def test_quoted_parts_keep_case(self):
        assert parse_table_entry('"Hr"."Mixed Case"') == ('Hr', 'Mixed Case')

    def test_mixed_quoting(self):
        assert parse_table_entry('hr."Order Lines"') == ('HR', 'Order Lines')

    def test_surrounding_whitespace_ignored(self):
        assert parse_table_entry('  HR.JOBS  ') == ('HR', 'JOBS')

    @pytest.mark.parametrize("entry", ['', '   ', 'A.B.C', 'HR.', '.EMP', 'HR EMP', '"unterminated'])
    def test_invalid_entries(self, entry):
        with pytest.raises(ValueError, match="Invalid table entry"):
            parse_table_entry(entry)


class TestFormatTableEntry:

    def test_with_owner(self):
        assert format_table_entry('HR', 'EMPLOYEES') == 'HR.EMPLOYEES'

    def test_without_owner(self):
        assert format_table_entry(None, 'EMPLOYEES') == 'EMPLOYEES'


class TestValidateTables:

    def test_valid_list(self):
        validate_tables(['HR.EMPLOYEES', 'jobs'])

    @pytest.mark.parametrize("tables", [None, []])
    def test_empty_list(self, tables):
        with pytest.raises(ValueError, match="cannot be empty"):
            validate_tables(tables)

    def test_bad_entry(self):
        with pytest.raises(ValueError, match="Invalid tables entry"):
            validate_tables(['HR.EMPLOYEES', 'A.B.C'])


class TestExpandTablesParam:
    """Test normalization of the tables parameter."""

    def test_list(self):
        assert expand_tables_param(['HR.EMPLOYEES', 'HR.JOBS']) == ['HR.EMPLOYEES', 'HR.JOBS']

    def test_json_string(self):
        assert expand_tables_param('["HR.EMPLOYEES", "HR.JOBS"]') == ['HR.EMPLOYEES', 'HR.JOBS']

    def test_comma_separated_string(self):
        assert expand_tables_param('HR.EMPLOYEES, HR.JOBS') == ['HR.EMPLOYEES', 'HR.JOBS']

    def test_list_with_comma_separated_items(self):
        assert expand_tables_param(['HR.EMPLOYEES,HR.JOBS', 'HR.REGIONS']) == [
            'HR.EMPLOYEES', 'HR.JOBS', 'HR.REGIONS',
        ]

    def test_duplicates_dropped_keeping_order(self):
        assert expand_tables_param(['HR.JOBS', 'HR.EMPLOYEES', 'HR.JOBS']) == ['HR.JOBS', 'HR.EMPLOYEES']

    def test_empty_string(self):
        assert expand_tables_param('   ') == []

    def test_non_string_items_ignored(self):
        assert expand_tables_param(['HR.JOBS', 42, None]) == ['HR.JOBS']

    def test_unsupported_type(self):
        assert expand_tables_param(42) == []


class TestLoadTablesFromEnv:

    def test_reads_env_var(self, monkeypatch):
        monkeypatch.setenv('COPY_TABLES', 'HR.EMPLOYEES,HR.JOBS')
        assert load_tables_from_env() == ['HR.EMPLOYEES', 'HR.JOBS']

    def test_unset(self, monkeypatch):
        monkeypatch.delenv('COPY_TABLES', raising=False)
        assert load_tables_from_env() == []
