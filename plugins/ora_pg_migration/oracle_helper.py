"""
Oracle Connection Helper

This module turns an Airflow connection into python-oracledb connect
parameters and offers the small query surface (get_records, get_first)
the metadata reader and validator need.

DSN resolution, in order:
- extra {"dsn": "..."} (full connect descriptor or TNS alias)
- host, port (default 1521) and extra {"service_name": "..."}
- host, port and the connection's schema field as the service name
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from airflow.hooks.base import BaseHook
import oracledb
import logging

from ora_pg_migration.pools import fetch_numbers_as_decimal

logger = logging.getLogger(__name__)

DEFAULT_ORACLE_PORT = 1521

Parameters = Optional[Union[Sequence[Any], Dict[str, Any]]]


class OracleConnectionHelper:
    """
    Helper for Oracle connections with a hook-like interface.

    Optionally uses an OracleConnectionPool so helper queries share the
    run's connection budget.
    """

    def __init__(self, oracle_conn_id: str, pool=None):
        """
        Initialize the Oracle connection helper.

        Args:
            oracle_conn_id: Airflow connection ID for the Oracle database
            pool: Optional OracleConnectionPool for connection reuse
        """
        self.conn_id = oracle_conn_id
        self._connect_params: Optional[Dict[str, Any]] = None
        self._pool = pool

    def get_connect_params(self) -> Dict[str, Any]:
        """
        Get oracledb.connect keyword arguments from the Airflow connection.

        Raises:
            ValueError: If no DSN can be built
        """
        if self._connect_params is None:
            conn = BaseHook.get_connection(self.conn_id)
            extra = conn.extra_dejson or {}

            dsn = extra.get('dsn')
            if not dsn:
                service_name = extra.get('service_name') or conn.schema
                if not conn.host or not service_name:
                    raise ValueError(
                        f"Connection '{self.conn_id}' needs either extra.dsn or "
                        f"host plus service name (extra.service_name or schema)"
                    )
                port = conn.port or DEFAULT_ORACLE_PORT
                dsn = f"{conn.host}:{port}/{service_name}"

            self._connect_params = {
                'user': conn.login,
                'password': conn.password or '',
                'dsn': dsn,
            }

        return self._connect_params

    def set_pool(self, pool) -> None:
        """
        Set the connection pool for this helper.

        Args:
            pool: OracleConnectionPool instance
        """
        self._pool = pool

    def get_conn(self):
        """
        Get an Oracle connection.

        If a pool is configured, acquires from pool. Otherwise creates a new connection.
        """
        if self._pool:
            return self._pool.acquire()
        conn = oracledb.connect(**self.get_connect_params())
        conn.outputtypehandler = fetch_numbers_as_decimal
        return conn

    def release_conn(self, conn) -> None:
        """
        Release a connection back to the pool or close it.

        Args:
            conn: Connection to release
        """
        if conn is None:
            return
        if self._pool:
            self._pool.release(conn)
        else:
            conn.close()

    def get_records(self, sql: str, parameters: Parameters = None) -> List[Tuple[Any, ...]]:
        """
        Execute a query and return all rows as a list of tuples.

        Args:
            sql: SQL query to execute
            parameters: Optional positional list or named dict of bind values

        Returns:
            List of tuples, one per row
        """
        conn = None
        try:
            conn = self.get_conn()
            cursor = conn.cursor()
            try:
                if parameters:
                    cursor.execute(sql, parameters)
                else:
                    cursor.execute(sql)
                return cursor.fetchall()
            finally:
                cursor.close()
        except Exception as e:
            logger.error(f"Error executing query: {e}")
            logger.error(f"Query: {sql}")
            if parameters:
                logger.error(f"Parameters: {parameters}")
            raise
        finally:
            self.release_conn(conn)

    def get_first(self, sql: str, parameters: Parameters = None) -> Optional[Tuple[Any, ...]]:
        """
        Execute a query and return the first row as a tuple.

        Returns:
            First row as a tuple, or None if no rows
        """
        conn = None
        try:
            conn = self.get_conn()
            cursor = conn.cursor()
            try:
                if parameters:
                    cursor.execute(sql, parameters)
                else:
                    cursor.execute(sql)
                return cursor.fetchone()
            finally:
                cursor.close()
        except Exception as e:
            logger.error(f"Error executing query: {e}")
            logger.error(f"Query: {sql}")
            if parameters:
                logger.error(f"Parameters: {parameters}")
            raise
        finally:
            self.release_conn(conn)
