"""
Query executor: runs approved statements and reports backend failures as values.
"""

import logging
from typing import List, Optional, Union

import psycopg2

from .database import DatabaseService, Params
from .models import ExecutionFailure, QueryRows

logger = logging.getLogger(__name__)


def unique_column_names(names: List[str]) -> List[str]:
    """
    Make result column names unique so no value is lost when rows become dicts.

    Repeated names get a numeric suffix: ``id``, ``id_1``, ``id_2``.
    """
    originals = set(names)
    taken = set()
    unique = []
    for name in names:
        candidate = name
        suffix = 0
        # A suffixed name must not collide with a column the query already returns
        while candidate in taken or (candidate != name and candidate in originals):
            suffix += 1
            candidate = f"{name}_{suffix}"
        taken.add(candidate)
        unique.append(candidate)
    return unique


class QueryExecutor:
    """
    Executes approved SQL against PostgreSQL.

    Statements run inside a read-only transaction with a local statement
    timeout. User-supplied values travel as parameters, never by string
    concatenation. Results are returned in full; no row limit is imposed here.
    """

    def __init__(
        self,
        db_service: DatabaseService,
        statement_timeout_ms: int = 30000,
        read_only: bool = True
    ):
        """
        Args:
            db_service: Database service instance
            statement_timeout_ms: Per-statement timeout (0 disables it)
            read_only: Run statements in a READ ONLY transaction
        """
        self.db = db_service
        self.statement_timeout_ms = statement_timeout_ms
        self.read_only = read_only

    @classmethod
    def from_config(cls, db_service: DatabaseService, config) -> 'QueryExecutor':
        return cls(
            db_service,
            statement_timeout_ms=config.execution.statement_timeout_ms,
            read_only=config.execution.read_only
        )

    def execute(self, statement: str, params: Params = None) -> Union[QueryRows, ExecutionFailure]:
        """
        Execute an approved statement.

        Args:
            statement: SQL approved by the safety gate
            params: Parameters for placeholders in ``statement``

        Returns:
            QueryRows on success, ExecutionFailure carrying the statement and
            the backend message otherwise
        """
        try:
            with self.db.get_cursor() as cur:
                if self.read_only:
                    cur.execute("SET TRANSACTION READ ONLY")
                if self.statement_timeout_ms:
                    cur.execute("SET LOCAL statement_timeout = %s", (int(self.statement_timeout_ms),))
                cur.execute(statement, params)
                if cur.description is None:
                    return QueryRows(rows=[], columns=[])
                columns = unique_column_names([desc[0] for desc in cur.description])
                rows = [dict(zip(columns, row)) for row in cur.fetchall()]
        except psycopg2.Error as e:
            reason = self._error_message(e)
            logger.error(f"Query execution failed: {reason}")
            return ExecutionFailure(statement=statement, reason=reason)

        logger.info(f"Query returned {len(rows)} rows")
        return QueryRows(rows=rows, columns=columns)

    @staticmethod
    def _error_message(error: psycopg2.Error) -> str:
        message: Optional[str] = getattr(error, "pgerror", None) or str(error)
        return message.strip() or error.__class__.__name__
