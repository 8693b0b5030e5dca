"""
Table Configuration Utility Module

This module parses the table list handed to the copy run. Entries name an
Oracle table either as 'OWNER.TABLE' or just 'TABLE' (current schema).

Oracle folds unquoted identifiers to upper case, so 'hr.employees' refers to
HR.EMPLOYEES. Double-quoted parts keep their case: '"Hr"."MixedCase"'.
"""

import json
import os
import re
from typing import List, Optional, Tuple
import logging

logger = logging.getLogger(__name__)

# "quoted" or bare identifier part
_PART = r'(?:"([^"]+)"|([^".\s]+))'
_ENTRY_PATTERN = re.compile(rf'^{_PART}(?:\.{_PART})?$')


def parse_table_entry(entry: str) -> Tuple[Optional[str], str]:
    """
    Parse a single table entry.

    Handles:
    - Owner and table: "hr.employees" -> ("HR", "EMPLOYEES")
    - Table only: "employees" -> (None, "EMPLOYEES")
    - Quoted parts: '"Hr"."Mixed Case"' -> ("Hr", "Mixed Case")

    Args:
        entry: Table entry string

    Returns:
        Tuple of (owner or None, table name) in catalog case

    Raises:
        ValueError: If the entry is empty or malformed
    """
    entry = entry.strip() if isinstance(entry, str) else entry
    if not entry:
        raise ValueError("Invalid table entry: cannot be empty")

    match = _ENTRY_PATTERN.match(entry)
    if not match:
        raise ValueError(
            f"Invalid table entry '{entry}': must be 'OWNER.TABLE', 'TABLE' "
            "or '\"Owner\".\"Table\"'"
        )

    first_quoted, first_bare, second_quoted, second_bare = match.groups()
    first = first_quoted if first_quoted is not None else first_bare.upper()

    if second_quoted is None and second_bare is None:
        return None, first

    second = second_quoted if second_quoted is not None else second_bare.upper()
    return first, second


def format_table_entry(owner: Optional[str], table: str) -> str:
    """Human-readable name for logs and reports."""
    return f"{owner}.{table}" if owner else table


def validate_tables(tables: Optional[List[str]]) -> None:
    """
    Validate the table list parameter.

    Raises:
        ValueError: If the list is empty or any entry is malformed
    """
    if not tables:
        raise ValueError(
            "tables parameter is required and cannot be empty. "
            "Specify tables as 'OWNER.TABLE', e.g. ['HR.EMPLOYEES', 'HR.DEPARTMENTS']"
        )

    for entry in tables:
        try:
            parse_table_entry(entry)
        except ValueError as e:
            raise ValueError(f"Invalid tables entry: {e}")


def expand_tables_param(tables_raw) -> List[str]:
    """
    Expand and normalize the tables parameter from various input formats.

    Handles:
    - List of strings: ["HR.EMPLOYEES", "HR.JOBS"]
    - JSON string: '["HR.EMPLOYEES", "HR.JOBS"]'
    - Comma-separated string: "HR.EMPLOYEES,HR.JOBS"
    - List with comma-separated items: ["HR.EMPLOYEES,HR.JOBS"]

    Duplicates are dropped, keeping the first occurrence.

    Args:
        tables_raw: Raw parameter value from DAG params

    Returns:
        Normalized list of table entries in input order
    """
    if isinstance(tables_raw, str):
        tables_raw = tables_raw.strip()
        if not tables_raw:
            return []

        try:
            parsed = json.loads(tables_raw)
            if isinstance(parsed, list):
                tables_raw = parsed
            else:
                tables_raw = [str(parsed)]
        except json.JSONDecodeError:
            tables_raw = [t.strip() for t in tables_raw.split(',') if t.strip()]

    if isinstance(tables_raw, (list, tuple)):
        expanded: List[str] = []
        for item in tables_raw:
            if not isinstance(item, str):
                continue
            parts = item.split(',') if ',' in item else [item]
            for part in parts:
                part = part.strip()
                if part and part not in expanded:
                    expanded.append(part)
        return expanded

    logger.warning(
        "expand_tables_param received unsupported type %s; returning empty list.",
        type(tables_raw).__name__,
    )
    return []


def load_tables_from_env(env_var: str = 'COPY_TABLES') -> List[str]:
    """Default table list for the DAG, read at parse time from an env var."""
    return expand_tables_param(os.environ.get(env_var, ''))
