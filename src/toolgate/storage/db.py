"""
Toolgate Database Connection

Thin wrapper giving SQLite and PostgreSQL one calling convention.
The backend is picked from the connection URL:

- ``postgresql://`` or ``postgres://`` → psycopg (PostgreSQL)
- anything else (file path, ``:memory:``) → sqlite3

Usage::

    from toolgate.storage.db import connect

    conn = connect(os.environ.get("TOOLGATE_DATABASE_URL", "toolgate.db"))
    conn.execute("UPDATE tool_calls SET status = ? WHERE id = ? AND status = ?", (...))
    if conn.rowcount == 1:
        conn.commit()

SQL is written with ``?`` placeholders; they become ``%s`` for PostgreSQL.
"""

from __future__ import annotations

import sqlite3
from typing import Any


class DbConnection:
    """Unified database connection wrapper."""

    def __init__(self, conn: Any, *, is_postgres: bool = False) -> None:
        self._conn = conn
        self._cursor: Any = None
        self.is_postgres = is_postgres

    def _convert_sql(self, sql: str) -> str:
        if not self.is_postgres:
            return sql
        return sql.replace("?", "%s")

    def execute(self, sql: str, params: tuple = ()) -> DbConnection:
        """Execute a single SQL statement. Returns self for chaining."""
        sql = self._convert_sql(sql)
        if self.is_postgres:
            self._cursor = self._conn.cursor()
            self._cursor.execute(sql, params or None)
        else:
            self._cursor = self._conn.execute(sql, params)
        return self

    def executescript(self, sql: str) -> None:
        """Execute several semicolon-separated statements and commit."""
        if self.is_postgres:
            cur = self._conn.cursor()
            for stmt in sql.split(";"):
                stmt = stmt.strip()
                if stmt:
                    cur.execute(stmt)
        else:
            self._conn.executescript(sql)
        self._conn.commit()

    @property
    def rowcount(self) -> int:
        """Rows affected by the last ``execute`` (-1 if unknown)."""
        if self._cursor is None:
            return -1
        return self._cursor.rowcount

    def fetchone(self) -> dict[str, Any] | None:
        if self._cursor is None:
            return None
        row = self._cursor.fetchone()
        return dict(row) if row is not None else None

    def fetchall(self) -> list[dict[str, Any]]:
        if self._cursor is None:
            return []
        return [dict(r) for r in self._cursor.fetchall()]

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()

    def upsert(self, table: str, pk: str, columns: list[str], values: tuple) -> None:
        """Insert or replace a row keyed by a single-column primary key."""
        placeholders = ", ".join(["?"] * len(columns))
        col_list = ", ".join(columns)

        if self.is_postgres:
            non_pk = [c for c in columns if c != pk]
            update_clause = ", ".join(f"{c} = EXCLUDED.{c}" for c in non_pk)
            sql = (
                f"INSERT INTO {table} ({col_list}) VALUES ({placeholders}) "
                f"ON CONFLICT ({pk}) DO UPDATE SET {update_clause}"
            )
        else:
            sql = f"INSERT OR REPLACE INTO {table} ({col_list}) VALUES ({placeholders})"
        self.execute(sql, values)


def connect(db_url: str) -> DbConnection:
    """Create a database connection from a URL or path.

    Args:
        db_url: PostgreSQL URL (``postgresql://...`` or ``postgres://...``)
                or SQLite path (file path or ``:memory:``).
    """
    if db_url.startswith(("postgresql://", "postgres://")):
        try:
            import psycopg
            from psycopg.rows import dict_row
        except ImportError:
            raise ImportError(
                "PostgreSQL support requires psycopg. Install with: pip install 'toolgate[postgres]'"
            ) from None

        conn = psycopg.connect(db_url, row_factory=dict_row, autocommit=False)
        return DbConnection(conn, is_postgres=True)

    conn = sqlite3.connect(db_url, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return DbConnection(conn, is_postgres=False)
