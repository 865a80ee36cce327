"""
psycopg3 connection pool for the pipeline's PostgreSQL store.

Connections hand out rows as dicts. Opening the pool waits until
``min_size`` connections are ready and retries a few times, so services
started alongside the database (docker compose, CI) do not fail on the
first refused connection.
"""
import threading
import time
from contextlib import contextmanager
from typing import Any, Iterator

import psycopg
from psycopg.conninfo import make_conninfo
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from ldt_pipeline.config.settings import DatabaseSettings
from ldt_pipeline.observability.logger import get_logger

logger = get_logger(__name__)


class DatabaseConnectionPool:
    """
    Owns one psycopg_pool.ConnectionPool.

    The pool is created closed; call open() (or use it as a context
    manager) before handing it to PostgresStore or PostgresOwnerDirectory.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5432,
        database: str = "ldt_pipeline",
        user: str = "pipeline",
        password: str | None = None,
        min_size: int = 2,
        max_size: int = 10,
        timeout: float = 30.0,
    ) -> None:
        """
        Args:
            host: Database host
            port: Database port
            database: Database name
            user: Database role
            password: Password for the role (required)
            min_size: Connections kept open
            max_size: Upper bound of concurrent connections
            timeout: Seconds to wait for a connection (and to connect)

        Raises:
            ValueError: If no password is given
        """
        if not password:
            raise ValueError("Database password is required (set DB_PASSWORD)")

        self.host = host
        self.database = database
        self.min_size = min_size
        self.max_size = max_size
        self.timeout = timeout
        self.conninfo = make_conninfo(
            host=host,
            port=port,
            dbname=database,
            user=user,
            password=password,
            connect_timeout=int(timeout),
            application_name="ldt-pipeline",
        )
        self._pool: ConnectionPool | None = None
        self._local = threading.local()

    @classmethod
    def from_settings(cls, settings: DatabaseSettings, timeout: float = 30.0) -> "DatabaseConnectionPool":
        """Build a pool from the `database` section of PipelineSettings."""
        return cls(timeout=timeout, **settings.pool_kwargs())

    def open(self, max_retries: int = 3, retry_delay: float = 2.0) -> None:
        """
        Open the pool, retrying while the server refuses connections.

        Args:
            max_retries: Connection attempts before giving up
            retry_delay: Seconds between attempts

        Raises:
            psycopg.OperationalError: If every attempt fails
        """
        if self._pool is not None:
            return

        attempt = 0
        while True:
            attempt += 1
            # A pool that never became ready is closed and cannot be reopened
            pool = ConnectionPool(
                conninfo=self.conninfo,
                min_size=self.min_size,
                max_size=self.max_size,
                timeout=self.timeout,
                kwargs={"row_factory": dict_row},
                open=False,
            )
            try:
                pool.open(wait=True, timeout=self.timeout)
                break
            except psycopg.OperationalError as e:
                pool.close()
                if attempt >= max_retries:
                    logger.error(
                        f"Database unreachable after {attempt} attempts: {e}",
                        extra={"host": self.host, "database": self.database}
                    )
                    raise
                logger.warning(
                    f"Database not ready, retrying in {retry_delay}s: {e}",
                    extra={"host": self.host, "attempt": attempt}
                )
                time.sleep(retry_delay)

        self._pool = pool
        logger.info(
            "Database pool opened",
            extra={"host": self.host, "database": self.database, "max_size": self.max_size}
        )

    def close(self) -> None:
        if self._pool is not None:
            self._pool.close()
            self._pool = None
            logger.info("Database pool closed", extra={"host": self.host})

    @contextmanager
    def get_connection(self) -> Iterator[psycopg.Connection]:
        """
        Borrow a connection; it goes back to the pool on exit.

        The pool commits on a clean exit and rolls back on an exception,
        unless the caller manages its own transaction block. A borrow
        nested inside another one on the same thread gets the outer
        connection, so lookups made inside a store transaction see its
        writes and never hold a second pool slot.

        Raises:
            RuntimeError: If open() has not been called
        """
        if self._pool is None:
            raise RuntimeError("Connection pool is not open")

        current = getattr(self._local, "conn", None)
        if current is not None:
            yield current
            return

        with self._pool.connection() as conn:
            self._local.conn = conn
            try:
                yield conn
            finally:
                self._local.conn = None

    def execute_query(self, query: str, params: tuple | dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Run a SELECT and return all rows as dicts."""
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchall()

    def execute_command(self, command: str, params: tuple | dict[str, Any] | None = None) -> int:
        """
        Run one INSERT/UPDATE/DELETE/DDL statement.

        Outside a borrowed connection the statement commits on its own;
        inside one it joins the open transaction.

        Returns:
            Number of rows affected
        """
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(command, params)
                return cur.rowcount

    def __enter__(self) -> "DatabaseConnectionPool":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
