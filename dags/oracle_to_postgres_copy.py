"""
Oracle to PostgreSQL Partitioned Copy DAG

This DAG copies table data from Oracle into existing PostgreSQL tables:
1. Read column and primary key metadata for each requested table
2. Split every table into row ranges, one per worker
3. Extract ranges in parallel and bulk-load them with COPY FROM STDIN
4. Compare source and target row counts
5. Log a report and fail the run if any chunk failed or counts differ

Target tables must already exist with the source column names in lower case.
Failed chunks are not retried; the report lists their ranges.
"""

from airflow.sdk import dag, task
from airflow.models.param import Param
from pendulum import datetime
from datetime import timedelta
from typing import Dict, Any
import logging

from ora_pg_migration.coordinator import migrate_tables
from ora_pg_migration.table_config import (
    expand_tables_param,
    validate_tables,
    load_tables_from_env,
)
from ora_pg_migration.validation import generate_migration_report, validate_migration

logger = logging.getLogger(__name__)


@dag(
    dag_id="oracle_to_postgres_copy",
    start_date=datetime(2025, 1, 1),
    schedule=None,
    catchup=False,
    max_active_runs=1,
    is_paused_upon_creation=False,
    doc_md=__doc__,
    default_args={
        "owner": "data-team",
        # A retried copy would load completed ranges twice
        "retries": 0,
    },
    params={
        "source_conn_id": Param(
            default="oracle_source",
            type="string",
            description="Oracle connection ID"
        ),
        "target_conn_id": Param(
            default="postgres_target",
            type="string",
            description="PostgreSQL connection ID"
        ),
        "tables": Param(
            default=load_tables_from_env(),
            description="Tables to copy in 'OWNER.TABLE' format (e.g., ['HR.EMPLOYEES']). "
                        "Defaults from the COPY_TABLES env var."
        ),
        "workers": Param(
            default=4,
            type="integer",
            minimum=1,
            maximum=64,
            description="Concurrent chunk workers (also the number of ranges per table)"
        ),
        "target_schema": Param(
            default="public",
            type="string",
            description="Target schema in PostgreSQL"
        ),
        "truncate_target": Param(
            default=False,
            type="boolean",
            description="Truncate each non-empty target table before loading"
        ),
        "run_timeout": Param(
            default=None,
            type=["null", "integer"],
            minimum=1,
            description="Seconds before unfinished chunks are cancelled and reported as failed. "
                        "Empty uses the RUN_TIMEOUT env var (no limit when unset)."
        ),
        "validate": Param(
            default=True,
            type="boolean",
            description="Compare source and target row counts after the copy"
        ),
    },
    tags=["copy", "oracle", "postgres", "etl"],
)
def oracle_to_postgres_copy():
    """Copy DAG: partitioned parallel copy from Oracle to PostgreSQL."""

    @task
    def copy_tables(**context) -> Dict[str, Any]:
        """Run the partitioned copy for every requested table."""
        params = context["params"]

        tables = expand_tables_param(params.get("tables", []))
        validate_tables(tables)
        logger.info(f"Copying {len(tables)} tables with {params['workers']} workers: {tables}")

        results = migrate_tables(
            oracle_conn_id=params["source_conn_id"],
            postgres_conn_id=params["target_conn_id"],
            tables=tables,
            workers=params["workers"],
            target_schema=params["target_schema"],
            truncate_target=params["truncate_target"],
            run_timeout=params.get("run_timeout"),
        )

        context["ti"].xcom_push(key="rows_copied", value=results["rows_copied"])
        context["ti"].xcom_push(key="chunks_failed", value=results["chunks_failed"])
        return results

    @task
    def validate_row_counts(copy_results: Dict[str, Any], **context) -> Dict[str, Any]:
        """Compare row counts for every table that was copied."""
        params = context["params"]
        if not params["validate"]:
            logger.info("Row count validation disabled")
            return {}

        return validate_migration(
            oracle_conn_id=params["source_conn_id"],
            postgres_conn_id=params["target_conn_id"],
            copy_results=copy_results,
            target_schema=params["target_schema"],
        )

    @task
    def generate_report(copy_results: Dict[str, Any], validation_results: Dict[str, Any]) -> str:
        """Log the run report and fail the run when anything went wrong."""
        report = validation_results.get("report") or generate_migration_report(copy_results, validation_results)
        logger.info(f"\n{report}")

        problems = []
        if copy_results["chunks_failed"]:
            problems.append(f"{copy_results['chunks_failed']} chunk(s) failed")
        skipped_errors = [t["table"] for t in copy_results["tables"] if t["status"] == "skipped_error"]
        if skipped_errors:
            problems.append(f"tables skipped on error: {', '.join(skipped_errors)}")
        if validation_results and not validation_results.get("overall_success", True):
            problems.append(
                f"row count mismatch in {validation_results['failed_count']} table(s): "
                f"{', '.join(validation_results['failed_tables'])}"
            )

        if problems:
            raise ValueError("Copy finished with errors: " + "; ".join(problems))

        status = (
            f"✓ Copied {copy_results['rows_copied']:,} rows from "
            f"{copy_results['tables_processed']} tables in {copy_results['elapsed_time_seconds']:.2f}s"
        )
        logger.info(status)
        return status

    copy_results = copy_tables()
    validation_results = validate_row_counts(copy_results)
    generate_report(copy_results, validation_results)


oracle_to_postgres_copy()
