"""
PostgreSQL client with connection pooling.

Uses psycopg2 with ThreadedConnectionPool. Every call checks out a pooled
connection, runs one statement in its own transaction and returns plain row
dicts. Authorization is not enforced here; callers are resolved and checked
by the invoice lifecycle services before any query runs.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Tuple
from uuid import UUID

import psycopg2
import psycopg2.extras
import psycopg2.pool

logger = logging.getLogger(__name__)

Params = Tuple | Dict | None

# JSONB columns (machine_specs, machine_info, audit changes) decode to dicts
_jsonb_registered = False


def _convert(value: Any) -> Any:
    """UUIDs become strings, recursing into lists, tuples and dicts."""
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, list):
        return [_convert(v) for v in value]
    if isinstance(value, tuple):
        return tuple(_convert(v) for v in value)
    if isinstance(value, dict):
        return {k: _convert(v) for k, v in value.items()}
    return value


class PostgresClient:
    """
    PostgreSQL client returning rows as dicts.

    Usage:
        db = PostgresClient(database_url)
        invoices = db.execute("SELECT * FROM invoices WHERE user_id = %s", (user_id,))
        rows = db.execute_returning("UPDATE invoices SET ... RETURNING *", params)
    """

    # One pool per database URL, shared across instances
    _connection_pools: Dict[str, psycopg2.pool.ThreadedConnectionPool] = {}
    _pools_lock = threading.RLock()

    def __init__(self, database_url: str, min_connections: int = 2, max_connections: int = 20):
        self._database_url = database_url
        self._min_connections = min_connections
        self._max_connections = max_connections
        self._ensure_connection_pool()

    def _ensure_connection_pool(self) -> None:
        global _jsonb_registered

        with self._pools_lock:
            if self._database_url in self._connection_pools:
                return

            pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=self._min_connections,
                maxconn=self._max_connections,
                dsn=self._database_url,
                connect_timeout=30,
            )
            if not _jsonb_registered:
                psycopg2.extras.register_default_jsonb(globally=True)
                _jsonb_registered = True

            self._connection_pools[self._database_url] = pool
            logger.info(
                f"Connection pool created ({self._min_connections}-{self._max_connections} connections)"
            )

    @contextmanager
    def get_connection(self):
        """Check out a pooled connection, rolling back on database errors."""
        self._ensure_connection_pool()
        pool = self._connection_pools[self._database_url]
        conn = None

        try:
            conn = pool.getconn()
            if conn is None:
                raise RuntimeError("Could not get connection from pool")
            yield conn
        except psycopg2.Error:
            if conn is not None and not conn.closed:
                conn.rollback()
            raise
        finally:
            if conn:
                pool.putconn(conn)

    def _run(self, query: str, params: Params, fetch: str) -> Any:
        """
        Run one statement and commit.

        fetch is "rows" (all rows as dicts, [] when the statement has no
        result set), "returning" (all rows as dicts) or "scalar" (first
        column of the first row, None when empty).
        """
        params = _convert(params) if params is not None else None
        cursor_factory = None if fetch == "scalar" else psycopg2.extras.RealDictCursor

        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=cursor_factory) as cur:
                cur.execute(query, params)
                if fetch == "scalar":
                    row = cur.fetchone()
                    result = row[0] if row else None
                elif fetch == "rows" and not cur.description:
                    result = []
                else:
                    result = [dict(row) for row in cur.fetchall()]
                conn.commit()
                return result

    def execute(self, query: str, params: Params = None) -> List[Dict[str, Any]]:
        """Execute query, return list of row dicts. Empty list if no results."""
        return self._run(query, params, "rows")

    def execute_single(self, query: str, params: Params = None) -> Dict[str, Any] | None:
        """Execute query, return first row or None."""
        rows = self.execute(query, params)
        return rows[0] if rows else None

    def execute_scalar(self, query: str, params: Params = None) -> Any:
        """Execute query, return first value of first row or None."""
        return self._run(query, params, "scalar")

    def execute_returning(self, query: str, params: Params = None) -> List[Dict[str, Any]]:
        """Execute INSERT/UPDATE/DELETE with RETURNING, return affected rows."""
        return self._run(query, params, "returning")

    def close(self) -> None:
        """Close this URL's connection pool."""
        with self._pools_lock:
            pool = self._connection_pools.pop(self._database_url, None)
            if pool is not None:
                pool.closeall()

    @classmethod
    def close_all_pools(cls) -> None:
        """Close all connection pools."""
        with cls._pools_lock:
            for pool in cls._connection_pools.values():
                pool.closeall()
            cls._connection_pools.clear()
