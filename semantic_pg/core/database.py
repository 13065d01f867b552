"""
Database service for managing PostgreSQL connections with pgvector support.
"""

import os
import logging
from typing import Optional, Any, List, Sequence, Union, Dict
from contextlib import contextmanager
import psycopg2
from psycopg2 import pool, extras
from psycopg2.extensions import connection, cursor
from pgvector.psycopg2 import register_vector

logger = logging.getLogger(__name__)

Params = Optional[Union[Sequence[Any], Dict[str, Any]]]


class DatabaseService:
    """
    Manages database connections with connection pooling and pgvector support.

    Features:
    - Connection pooling for efficient resource management
    - Automatic pgvector registration
    - Context manager support for transactions
    - Query execution helpers
    """

    def __init__(
        self,
        connection_string: Optional[str] = None,
        min_connections: int = 1,
        max_connections: int = 10,
        enable_pgvector: bool = True
    ):
        """
        Initialize database service with connection pooling.

        Args:
            connection_string: PostgreSQL connection string (defaults to DATABASE_URL env)
            min_connections: Minimum connections in pool
            max_connections: Maximum connections in pool
            enable_pgvector: Whether to register pgvector extension
        """
        self.connection_string = connection_string or os.environ.get('DATABASE_URL')
        if not self.connection_string:
            raise ValueError("Database connection string not provided")

        self.min_connections = min_connections
        self.max_connections = max_connections
        self.enable_pgvector = enable_pgvector
        self._pool = None
        self._initialize_pool()

    @classmethod
    def from_config(cls, config) -> 'DatabaseService':
        """Build a service from a ConfigService."""
        return cls(
            config.database.connection_string,
            config.database.min_connections,
            config.database.max_connections,
            config.database.enable_pgvector
        )

    def _initialize_pool(self):
        """Initialize the connection pool."""
        try:
            self._pool = pool.ThreadedConnectionPool(
                self.min_connections,
                self.max_connections,
                self.connection_string
            )
            logger.info(f"Database pool initialized with {self.min_connections}-{self.max_connections} connections")
        except psycopg2.Error as e:
            logger.error(f"Failed to initialize connection pool: {e}")
            raise

    @contextmanager
    def get_connection(self) -> connection:
        """
        Get a connection from the pool as a context manager.

        Commits on success, rolls back and re-raises on failure.

        Yields:
            psycopg2 connection object
        """
        conn = None
        try:
            conn = self._pool.getconn()
            if self.enable_pgvector:
                register_vector(conn)
            yield conn
            conn.commit()
        except Exception as e:
            if conn:
                conn.rollback()
            logger.error(f"Database operation failed: {e}")
            raise
        finally:
            if conn:
                self._pool.putconn(conn)

    @contextmanager
    def get_cursor(self, dict_cursor: bool = False) -> cursor:
        """
        Get a cursor from a pooled connection.

        Args:
            dict_cursor: Whether to use RealDictCursor for dict-like rows

        Yields:
            psycopg2 cursor object
        """
        with self.get_connection() as conn:
            cursor_factory = extras.RealDictCursor if dict_cursor else None
            cur = conn.cursor(cursor_factory=cursor_factory)
            try:
                yield cur
            finally:
                cur.close()

    def execute_query(
        self,
        query: str,
        params: Params = None,
        fetch: bool = True,
        dict_cursor: bool = False
    ) -> Optional[List[Any]]:
        """
        Execute a query with optional parameters.

        Args:
            query: SQL query to execute
            params: Query parameters
            fetch: Whether to fetch results
            dict_cursor: Whether to return rows as dictionaries

        Returns:
            Query results if fetch=True, None otherwise
        """
        with self.get_cursor(dict_cursor=dict_cursor) as cur:
            cur.execute(query, params)
            if fetch:
                return cur.fetchall()
            return None

    def close(self):
        """Close all connections in the pool."""
        if self._pool:
            self._pool.closeall()
            logger.info("Database connection pool closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
