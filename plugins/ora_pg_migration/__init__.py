"""
Oracle to PostgreSQL Partitioned Copy Utilities

This package copies table data from an Oracle database into existing
PostgreSQL tables. Each table is split into contiguous row ranges that are
extracted in parallel and bulk-loaded with COPY FROM STDIN.

Modules:
- metadata: Read column, primary key and row count metadata from Oracle
- partitioner: Split a table into row ranges and render chunk queries
- row_encoder: Encode Oracle rows as PostgreSQL CSV COPY records
- bridge: Bounded in-memory channel between extraction and COPY
- chunk_worker: Copy one row range (extract, encode, stream, load)
- coordinator: Plan all tables and run chunks on a bounded worker pool
- pools: Oracle and PostgreSQL connection pools
- oracle_helper: Airflow connection to python-oracledb parameters
- validation: Row count validation and run report

Tuning Options:
- COPY_WORKERS=N: Concurrent chunk workers (default 4)
- FETCH_SIZE=N: Oracle fetch batch size (default 100000)
- LOB_MAX_BYTES=N: Reject LOB values larger than N bytes (0 = unlimited)
- STRICT_KEY_RANGES=false: Allow BETWEEN ranges on unverified integer keys
"""

__version__ = "1.0.0"

__all__ = [
    "metadata",
    "partitioner",
    "row_encoder",
    "bridge",
    "chunk_worker",
    "coordinator",
    "pools",
    "oracle_helper",
    "validation",
]
