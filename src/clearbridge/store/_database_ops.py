"""Database operation helpers shared by the store classes.

Consolidates the repeated `with self._db.connection() as conn:` pattern.
"""

from typing import TYPE_CHECKING, Any

from sqlalchemy import Executable
from sqlalchemy.engine import Row

if TYPE_CHECKING:
    from clearbridge.store.database import ClearanceDB


class DatabaseOps:
    """Helper for common database operations."""

    def __init__(self, db: "ClearanceDB") -> None:
        self._db = db

    def execute_fetchone(self, query: Executable) -> Row[Any] | None:
        """Execute query and return single row or None."""
        with self._db.connection() as conn:
            return conn.execute(query).fetchone()

    def execute_fetchall(self, query: Executable) -> list[Row[Any]]:
        """Execute query and return all rows."""
        with self._db.connection() as conn:
            return list(conn.execute(query).fetchall())

    def execute_insert(self, stmt: Executable) -> int:
        """Execute insert statement and return the new primary key.

        Raises:
            ValueError: If zero rows are affected
        """
        with self._db.connection() as conn:
            result = conn.execute(stmt)
            if result.rowcount == 0:
                raise ValueError("execute_insert: zero rows affected - write failed (constraint violation)")
            primary_key = result.inserted_primary_key
            if primary_key is None:
                raise ValueError("execute_insert: no primary key returned")
            return int(primary_key[0])

    def execute_update(self, stmt: Executable) -> None:
        """Execute update statement.

        Raises:
            ValueError: If zero rows are affected
        """
        with self._db.connection() as conn:
            result = conn.execute(stmt)
            if result.rowcount == 0:
                raise ValueError("execute_update: zero rows affected - target row does not exist")

    def execute_guarded_update(self, stmt: Executable) -> bool:
        """Execute a conditional update; report whether any row matched.

        Used for compare-and-set transitions where losing a race is normal.
        """
        with self._db.connection() as conn:
            return conn.execute(stmt).rowcount > 0
