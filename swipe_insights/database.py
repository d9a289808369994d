"""
Database connection and transaction module.

Provides connection management for insights.db, the explicit transaction
boundary used by ingestion, and a small set of metadata queries used by the
CLI status command.

Design Decisions:
    1. Writers open the database in autocommit mode (isolation_level=None)
       and take one explicit BEGIN IMMEDIATE transaction per ingestion. The
       write lock is taken up front so two writers never interleave.
    2. Foreign keys are enabled on every connection; SQLite defaults them off.
    3. Readers (API, reports) open the file read-only through a URI.
"""

import sqlite3
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Optional, Tuple
import logging

from swipe_insights.config import Config

logger = logging.getLogger(__name__)


def open_insights_db(path: Path, read_only: bool = False) -> sqlite3.Connection:
    """
    Open insights.db with foreign keys enabled.

    Args:
        path: Path to insights.db.
        read_only: Open through a read-only URI instead of read-write.

    Returns:
        SQLite connection in autocommit mode with sqlite3.Row rows.
    """
    if read_only:
        conn = sqlite3.connect(f"file:{path}?mode=ro", uri=True, isolation_level=None)
    else:
        conn = sqlite3.connect(str(path), isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """
    Run a block inside one all-or-nothing transaction.

    Commits when the block exits cleanly; rolls back and re-raises on any
    exception so no partial state is ever visible to readers.

    Args:
        conn: Connection opened by open_insights_db (autocommit mode).

    Yields:
        The same connection.
    """
    conn.execute("BEGIN IMMEDIATE;")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK;")
        logger.warning("Transaction rolled back")
        raise
    else:
        conn.execute("COMMIT;")


class InsightsDatabase:
    """
    Read-only connection manager for insights.db.

    Used by reporting paths (CLI status, charts) that must never write.
    """

    def __init__(self, config: Config):
        """
        Initialize database connection.

        Args:
            config: Configuration object with the insights.db path.

        Raises:
            ValueError: If insights.db does not exist or is unreadable.
        """
        if not config.validate():
            raise ValueError(
                f"Insights database not found or not readable: {config.analysis_db_path_str}"
            )

        self.config = config
        self._connection: Optional[sqlite3.Connection] = None

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    def connect(self) -> sqlite3.Connection:
        """
        Establish read-only connection to insights.db.

        Returns:
            SQLite connection object.
        """
        if self._connection is not None:
            return self._connection

        try:
            self._connection = open_insights_db(self.config.analysis_db_path, read_only=True)
            logger.info(f"Connected to database: {self.config.analysis_db_path_str}")
            return self._connection
        except sqlite3.Error as e:
            logger.error(f"Failed to connect to database: {e}")
            raise

    def close(self) -> None:
        """Close database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None
            logger.debug("Database connection closed")

    @property
    def connection(self) -> sqlite3.Connection:
        """
        Get database connection.

        Raises:
            RuntimeError: If connection not established.
        """
        if self._connection is None:
            raise RuntimeError("Database connection not established. Call connect() first.")
        return self._connection

    def _require_table_exists(self, table_name: str) -> str:
        """
        Validate a table name before interpolating into SQL.

        SQLite does not support binding identifiers, so only names present
        in sqlite_master are allowed.
        """
        if table_name not in self.get_table_names():
            raise ValueError(f"Unknown table name: {table_name!r}")
        return table_name

    def get_table_names(self) -> List[str]:
        """Get all table names in the database."""
        query = "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
        with closing(self.connection.cursor()) as cursor:
            cursor.execute(query)
            return [row[0] for row in cursor.fetchall()]

    def get_row_count(self, table_name: str) -> int:
        """Get row count for a table."""
        safe_table = self._require_table_exists(table_name)
        with closing(self.connection.cursor()) as cursor:
            cursor.execute(f'SELECT COUNT(*) FROM "{safe_table}";')
            result = cursor.fetchone()
            return result[0] if result else 0

    def get_row_counts_by_table(
        self, table_names: Optional[List[str]] = None
    ) -> List[Tuple[str, int]]:
        """
        Get row counts for multiple tables.

        Args:
            table_names: Optional list of table names. If None, uses all tables.

        Returns:
            List of (table_name, row_count) tuples.
        """
        if table_names is None:
            table_names = self.get_table_names()

        return [(table_name, self.get_row_count(table_name)) for table_name in table_names]

    def execute_query(
        self, query: str, parameters: Optional[Tuple[Any, ...]] = None
    ) -> List[sqlite3.Row]:
        """
        Execute a query and return results.

        Args:
            query: SQL query string.
            parameters: Optional query parameters.

        Returns:
            List of result rows.
        """
        with closing(self.connection.cursor()) as cursor:
            cursor.execute(query, parameters or ())
            return cursor.fetchall()
