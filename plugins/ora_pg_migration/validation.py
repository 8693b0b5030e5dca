"""
Copy Validation Module

Post-copy checks: compares source and target row counts for every table the
copy run planned, and renders a human-readable report of the run.
"""

from typing import Dict, Any, List, Optional
from datetime import datetime
import logging

from ora_pg_migration.metadata import quote_oracle_identifier

logger = logging.getLogger(__name__)


def _quote_pg_identifier(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


class MigrationValidator:
    """Validate a copy from Oracle to PostgreSQL."""

    def __init__(self, oracle_hook, postgres_hook):
        """
        Args:
            oracle_hook: OracleConnectionHelper (or anything with get_first)
            postgres_hook: PostgresHook (or anything with get_first)
        """
        self.oracle_hook = oracle_hook
        self.postgres_hook = postgres_hook

    def validate_row_count(
        self,
        owner: str,
        source_table: str,
        target_schema: str,
        target_table: str
    ) -> Dict[str, Any]:
        """
        Compare row counts between source and target tables.

        Args:
            owner: Source owner in Oracle
            source_table: Source table name in Oracle
            target_schema: Target schema name in PostgreSQL
            target_table: Target table name in PostgreSQL

        Returns:
            Validation result dictionary
        """
        source_query = (
            f"SELECT COUNT(*) FROM {quote_oracle_identifier(owner, 'owner')}."
            f"{quote_oracle_identifier(source_table, 'table')}"
        )
        source_count = self.oracle_hook.get_first(source_query)[0] or 0

        target_query = (
            f"SELECT COUNT(*) FROM {_quote_pg_identifier(target_schema)}."
            f"{_quote_pg_identifier(target_table)}"
        )
        target_count = self.postgres_hook.get_first(target_query)[0] or 0

        source_count = int(source_count)
        target_count = int(target_count)
        row_difference = target_count - source_count
        percentage_difference = (row_difference / source_count * 100) if source_count > 0 else 0

        validation_result = {
            'table_name': f"{owner}.{source_table}",
            'target_table': f"{target_schema}.{target_table}",
            'source_count': source_count,
            'target_count': target_count,
            'row_difference': row_difference,
            'percentage_difference': percentage_difference,
            'validation_passed': source_count == target_count,
            'validation_time': datetime.now().isoformat(),
        }

        if validation_result['validation_passed']:
            logger.info(f"✓ Row count validation passed for {owner}.{source_table}: {source_count:,} rows")
        else:
            logger.warning(
                f"✗ Row count mismatch for {owner}.{source_table}: "
                f"Source={source_count:,}, Target={target_count:,}, "
                f"Difference={row_difference:+,} ({percentage_difference:+.2f}%)"
            )

        return validation_result

    def validate_tables_batch(self, tables: List[Dict[str, Any]], target_schema: str) -> Dict[str, Any]:
        """
        Validate every table in a copy summary.

        Args:
            tables: Table outcome dictionaries (MigrationSummary.to_dict()['tables']);
                only 'planned' tables are checked
            target_schema: Target schema name in PostgreSQL

        Returns:
            Batch validation results
        """
        results = {
            'total_tables': 0,
            'passed_tables': [],
            'failed_tables': [],
            'row_count_results': [],
            'overall_success': True,
            'validation_time': datetime.now().isoformat(),
        }

        for table_info in tables:
            if table_info.get('status') != 'planned':
                continue

            results['total_tables'] += 1
            name = table_info['table']
            try:
                row_count_result = self.validate_row_count(
                    table_info['owner'],
                    table_info['source_table'],
                    target_schema,
                    table_info['target_table'],
                )
            except Exception as e:
                logger.error(f"Row count validation failed for {name}: {e}")
                row_count_result = {
                    'table_name': name,
                    'target_table': f"{target_schema}.{table_info.get('target_table')}",
                    'source_count': None,
                    'target_count': None,
                    'row_difference': None,
                    'validation_passed': False,
                    'error': str(e),
                }

            results['row_count_results'].append(row_count_result)
            if row_count_result['validation_passed']:
                results['passed_tables'].append(name)
            else:
                results['failed_tables'].append(name)
                results['overall_success'] = False

        results['passed_count'] = len(results['passed_tables'])
        results['failed_count'] = len(results['failed_tables'])
        results['success_rate'] = (
            results['passed_count'] / results['total_tables'] * 100
            if results['total_tables'] > 0 else 0
        )

        return results


def generate_migration_report(
    copy_results: Dict[str, Any],
    validation_results: Optional[Dict[str, Any]] = None
) -> str:
    """
    Generate a human-readable copy report.

    Args:
        copy_results: Summary dictionary from migrate_tables
        validation_results: Optional results from validate_tables_batch

    Returns:
        Formatted report string
    """
    elapsed = copy_results.get('elapsed_time_seconds', 0) or 0
    rows = copy_results.get('rows_copied', 0)
    rate = rows / elapsed if elapsed > 0 else 0

    report_lines = [
        "=" * 80,
        "ORACLE TO POSTGRESQL COPY REPORT",
        "=" * 80,
        f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        "",
        "SUMMARY",
        "-" * 40,
        f"Tables Attempted: {copy_results.get('tables_attempted', 0)}",
        f"Tables Processed: {copy_results.get('tables_processed', 0)}",
        f"Tables Skipped: {copy_results.get('tables_skipped', 0)}",
        f"Chunks Completed: {copy_results.get('chunks_completed', 0)}",
        f"Chunks Failed: {copy_results.get('chunks_failed', 0)}",
        f"Rows Copied: {rows:,}",
        f"Total Time: {elapsed:.2f} seconds",
        f"Average Rate: {rate:,.0f} rows/second",
        "",
    ]

    skipped = [t for t in copy_results.get('tables', []) if t.get('status') != 'planned']
    if skipped:
        report_lines.extend(["SKIPPED TABLES", "-" * 40])
        for table in skipped:
            reason = table.get('error') or 'empty'
            report_lines.append(f"  • {table['table']}: {reason}")
        report_lines.append("")

    failed_chunks = [c for c in copy_results.get('chunks', []) if c.get('state') != 'completed']
    if failed_chunks:
        report_lines.extend(["FAILED CHUNKS (re-run these ranges)", "-" * 40])
        for chunk in failed_chunks:
            report_lines.append(
                f"  • {chunk['table']} [{chunk['start']:,}-{chunk['end']:,}] "
                f"chunk {chunk['index']}/{chunk['total']}: {chunk.get('error_type')}: {chunk.get('error')}"
            )
        report_lines.append("")

    if validation_results:
        report_lines.extend(["ROW COUNT VALIDATION", "-" * 40])
        for result in validation_results.get('row_count_results', []):
            status = "✓ PASS" if result['validation_passed'] else "✗ FAIL"
            table_name = result['table_name']
            if result.get('error'):
                report_lines.append(f"{status} | {table_name:<30} | Error: {result['error']}")
            elif result['validation_passed']:
                report_lines.append(
                    f"{status} | {table_name:<30} | {result['source_count']:>10,} rows"
                )
            else:
                report_lines.append(
                    f"{status} | {table_name:<30} | Source: {result['source_count']:>10,} | "
                    f"Target: {result['target_count']:>10,} | Diff: {result['row_difference']:>+10,}"
                )
        report_lines.append("")

    report_lines.extend([
        "=" * 80,
        "END OF REPORT",
        "=" * 80,
    ])

    return "\n".join(report_lines)


def validate_migration(
    oracle_conn_id: str,
    postgres_conn_id: str,
    copy_results: Dict[str, Any],
    target_schema: str = 'public',
) -> Dict[str, Any]:
    """
    Convenience function to validate a finished copy run.

    Args:
        oracle_conn_id: Oracle connection ID
        postgres_conn_id: PostgreSQL connection ID
        copy_results: Summary dictionary from migrate_tables
        target_schema: Target schema name in PostgreSQL

    Returns:
        Validation results with the rendered report under 'report'
    """
    from airflow.providers.postgres.hooks.postgres import PostgresHook
    from ora_pg_migration.oracle_helper import OracleConnectionHelper

    validator = MigrationValidator(
        OracleConnectionHelper(oracle_conn_id),
        PostgresHook(postgres_conn_id=postgres_conn_id),
    )
    validation_results = validator.validate_tables_batch(copy_results.get('tables', []), target_schema)

    report = generate_migration_report(copy_results, validation_results)
    logger.info("\n" + report)
    validation_results['report'] = report

    return validation_results
