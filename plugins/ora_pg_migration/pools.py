"""
Connection Pools

Caller-owned pools for the Oracle source and the PostgreSQL target. The
coordinator receives both as explicit handles; each chunk worker borrows
exactly one connection from each for its lifetime and always gives them
back, including on failure.
"""

from decimal import Decimal
from typing import Any, Callable, Dict, Optional
import contextlib
import logging
import threading

import oracledb
from psycopg2 import pool as pg_pool

logger = logging.getLogger(__name__)

# python-oracledb error raised when a TIMEDWAIT pool cannot hand out a connection in time
POOL_WAIT_TIMEOUT_CODE = "DPY-4005"


def fetch_numbers_as_decimal(cursor, metadata):
    """
    Output type handler that fetches every NUMBER column as Decimal.

    The driver returns NUMBER values with a fractional part as float by
    default, which loses digits beyond double precision.
    """
    if metadata.type_code is oracledb.DB_TYPE_NUMBER:
        return cursor.var(Decimal, arraysize=cursor.arraysize)


class OracleConnectionPool:
    """
    Thin wrapper over python-oracledb's session pool.

    Gives the Oracle side the same acquire/release/connection()/close surface
    as PostgresConnectionPool and installs fetch_numbers_as_decimal on every
    connection handed out.

    Usage:
        pool = OracleConnectionPool(connect_params, max_conn=8)
        with pool.connection() as conn:
            cursor = conn.cursor()
            # use connection
    """

    def __init__(
        self,
        connect_params: Dict[str, Any],
        min_conn: int = 1,
        max_conn: int = 8,
        acquire_timeout: float = 120.0,
        ping_interval: int = 60,
        pool_factory: Optional[Callable[..., Any]] = None,
    ):
        """
        Initialize the Oracle connection pool.

        Args:
            connect_params: Keyword arguments for oracledb (user, password, dsn)
            min_conn: Connections opened up front
            max_conn: Maximum concurrent connections (hard limit)
            acquire_timeout: Seconds to wait when pool is exhausted
            ping_interval: Seconds a connection may sit idle before it is pinged on acquire
            pool_factory: Pool constructor, defaults to oracledb.create_pool
        """
        factory = pool_factory or oracledb.create_pool
        self._max_conn = max_conn
        self._acquire_timeout = acquire_timeout
        self._closed = False

        logger.info(f"Initializing Oracle connection pool: min={min(min_conn, max_conn)}, max={max_conn}")
        self._pool = factory(
            min=min(min_conn, max_conn),
            max=max_conn,
            increment=1,
            getmode=oracledb.POOL_GETMODE_TIMEDWAIT,
            wait_timeout=int(acquire_timeout * 1000),
            ping_interval=ping_interval,
            **connect_params,
        )

    def acquire(self):
        """
        Acquire a connection from the pool.

        Raises:
            TimeoutError: If no connection available within acquire_timeout
            RuntimeError: If pool has been closed
        """
        if self._closed:
            raise RuntimeError("Connection pool has been closed")

        try:
            conn = self._pool.acquire()
        except oracledb.Error as e:
            error_obj = e.args[0] if e.args else None
            if getattr(error_obj, 'full_code', None) == POOL_WAIT_TIMEOUT_CODE:
                raise TimeoutError(
                    f"Could not acquire Oracle connection within {self._acquire_timeout}s "
                    f"(pool max: {self._max_conn})"
                ) from e
            raise

        conn.outputtypehandler = fetch_numbers_as_decimal
        return conn

    def release(self, conn, discard: bool = False) -> None:
        """
        Return a connection to the pool.

        Args:
            conn: Connection to return (None is ignored)
            discard: Drop the connection from the pool instead of reusing it
        """
        if conn is None:
            return
        if self._closed:
            # close(force=True) already closed every borrowed connection
            return

        if discard:
            self._pool.drop(conn)
        else:
            self._pool.release(conn)

    @contextlib.contextmanager
    def connection(self):
        """Borrow a connection for the duration of a with-block."""
        conn = self.acquire()
        try:
            yield conn
        finally:
            self.release(conn)

    def close(self) -> None:
        """Close all connections and shut down the pool."""
        self._closed = True
        self._pool.close(force=True)
        logger.info("Oracle connection pool closed")


class PostgresConnectionPool:
    """
    PostgreSQL pool with the same borrow/return surface as OracleConnectionPool.

    Wraps psycopg2's ThreadedConnectionPool; ThreadedConnectionPool raises
    PoolError when exhausted instead of waiting, so a semaphore provides the
    blocking acquire with timeout.
    """

    def __init__(
        self,
        connect_params: Dict[str, Any],
        min_conn: int = 1,
        max_conn: int = 8,
        acquire_timeout: float = 120.0,
        pool_factory: Optional[Callable[..., Any]] = None,
    ):
        """
        Args:
            connect_params: Keyword arguments for psycopg2.connect
            min_conn: Connections opened up front
            max_conn: Maximum concurrent connections
            acquire_timeout: Seconds to wait when pool is exhausted
            pool_factory: Pool class, defaults to psycopg2 ThreadedConnectionPool
        """
        factory = pool_factory or pg_pool.ThreadedConnectionPool
        self._pool = factory(minconn=min(min_conn, max_conn), maxconn=max_conn, **connect_params)
        self._semaphore = threading.Semaphore(max_conn)
        self._max_conn = max_conn
        self._acquire_timeout = acquire_timeout
        self._closed = False
        logger.info(f"Created PostgreSQL pool: max={max_conn}")

    def acquire(self):
        if self._closed:
            raise RuntimeError("Connection pool has been closed")

        if not self._semaphore.acquire(timeout=self._acquire_timeout):
            raise TimeoutError(
                f"Could not acquire PostgreSQL connection within {self._acquire_timeout}s "
                f"(pool max: {self._max_conn})"
            )
        try:
            return self._pool.getconn()
        except Exception:
            self._semaphore.release()
            raise

    def release(self, conn, discard: bool = False) -> None:
        """Return a connection, rolling back any open transaction first."""
        if conn is None:
            return

        if not discard and getattr(conn, "autocommit", False) is False:
            try:
                conn.rollback()
            except Exception:
                logger.exception("Exception occurred during PostgreSQL connection rollback")
                discard = True

        try:
            if self._closed:
                # closeall() already ran; the pool no longer accepts returns
                conn.close()
            else:
                self._pool.putconn(conn, close=discard)
        finally:
            self._semaphore.release()

    @contextlib.contextmanager
    def connection(self):
        conn = self.acquire()
        try:
            yield conn
        finally:
            self.release(conn)

    def close(self) -> None:
        self._closed = True
        self._pool.closeall()
        logger.info("PostgreSQL connection pool closed")
