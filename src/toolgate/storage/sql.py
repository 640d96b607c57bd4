"""
Toolgate SQL Store

ToolStore backed by SQLite or PostgreSQL through ``toolgate.storage.db``.

Schema:
- tool_calls:         the call ledger (one row per invocation attempt)
- audit_logs:         append-only audit entries
- workspace_policies: per-workspace PolicyConfig as JSON
- usage_counters:     quota usage per (workspace, kind, window start)

The driver is synchronous; every operation runs in a worker thread and
holds one connection lock for the whole statement group, so conditional
updates commit or roll back as a unit.
"""

from __future__ import annotations

import asyncio
import json
import threading
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Any, TypeVar

from toolgate.core.models import (
    AuditEntry,
    CallRecord,
    CallStatus,
    PolicyConfig,
    QuotaKind,
    default_policy,
    utcnow,
)
from toolgate.exceptions import CallNotFoundError, PersistenceError, ToolgateError
from toolgate.logging import get_logger
from toolgate.storage.base import check_patch
from toolgate.storage.db import DbConnection, connect

logger = get_logger("toolgate.storage")

T = TypeVar("T")

_CALL_COLUMNS = [
    "id",
    "tool_name",
    "workspace_id",
    "project_id",
    "session_id",
    "actor_id",
    "input",
    "output",
    "status",
    "error_message",
    "confirmed_by",
    "confirmed_at",
    "executed_at",
    "created_at",
]

_JSON_COLUMNS = {"input", "output"}


class SqlToolStore:
    """Database-backed ToolStore."""

    def __init__(self, db_url: str = "toolgate.db"):
        """Open the database and create tables if missing.

        Args:
            db_url: ``postgresql://...`` for PostgreSQL, or a file path /
                    ``:memory:`` for SQLite.
        """
        self._db_url = db_url
        self._conn: DbConnection = connect(db_url)
        self._lock = threading.Lock()
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS tool_calls (
                id TEXT PRIMARY KEY,
                tool_name TEXT NOT NULL,
                workspace_id TEXT NOT NULL,
                project_id TEXT,
                session_id TEXT,
                actor_id TEXT NOT NULL,
                input TEXT DEFAULT '{}',
                output TEXT,
                status TEXT NOT NULL DEFAULT 'pending',
                error_message TEXT,
                confirmed_by TEXT,
                confirmed_at TEXT,
                executed_at TEXT,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_tool_calls_workspace ON tool_calls(workspace_id);
            CREATE INDEX IF NOT EXISTS idx_tool_calls_status ON tool_calls(status);

            CREATE TABLE IF NOT EXISTS audit_logs (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                actor_id TEXT NOT NULL,
                action TEXT NOT NULL,
                resource_type TEXT DEFAULT 'tool_call',
                resource_id TEXT,
                details TEXT DEFAULT '{}',
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_audit_logs_workspace ON audit_logs(workspace_id);

            CREATE TABLE IF NOT EXISTS workspace_policies (
                workspace_id TEXT PRIMARY KEY,
                policy TEXT NOT NULL DEFAULT '{}',
                updated_at TEXT DEFAULT ''
            );

            CREATE TABLE IF NOT EXISTS usage_counters (
                workspace_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                window_start TEXT NOT NULL,
                used DOUBLE PRECISION NOT NULL DEFAULT 0,
                PRIMARY KEY (workspace_id, kind, window_start)
            )
        """)

    async def _run(self, operation: str, fn: Callable[[], T]) -> T:
        """Run ``fn`` under the connection lock in a worker thread.

        Driver errors roll the transaction back and surface as PersistenceError.
        """

        def locked() -> T:
            with self._lock:
                try:
                    return fn()
                except ToolgateError:
                    self._conn.rollback()
                    raise
                except Exception as e:
                    self._conn.rollback()
                    raise PersistenceError(operation, str(e)) from e

        return await asyncio.to_thread(locked)

    # ─── Call ledger ────────────────────────────────────────

    async def create_call_record(self, record: CallRecord) -> str:
        row = _call_to_row(record)

        def op() -> str:
            placeholders = ", ".join(["?"] * len(_CALL_COLUMNS))
            self._conn.execute(
                f"INSERT INTO tool_calls ({', '.join(_CALL_COLUMNS)}) VALUES ({placeholders})",
                tuple(row[c] for c in _CALL_COLUMNS),
            )
            self._conn.commit()
            return record.id

        return await self._run("create_call_record", op)

    async def update_call_record(self, call_id: str, patch: dict[str, Any]) -> None:
        check_patch(patch)
        if not patch:
            return
        assignments, values = _patch_clause(patch)

        def op() -> None:
            self._conn.execute(
                f"UPDATE tool_calls SET {assignments} WHERE id = ?",
                (*values, call_id),
            )
            if self._conn.rowcount == 0:
                raise CallNotFoundError(call_id)
            self._conn.commit()

        await self._run("update_call_record", op)

    async def transition_call_record(
        self, call_id: str, expected_status: CallStatus, patch: dict[str, Any]
    ) -> bool:
        check_patch(patch)
        assignments, values = _patch_clause(patch)

        def op() -> bool:
            self._conn.execute(
                f"UPDATE tool_calls SET {assignments} WHERE id = ? AND status = ?",
                (*values, call_id, CallStatus(expected_status).value),
            )
            updated = self._conn.rowcount == 1
            self._conn.commit()
            return updated

        return await self._run("transition_call_record", op)

    async def get_call_record(self, call_id: str) -> CallRecord | None:
        def op() -> CallRecord | None:
            row = self._conn.execute(
                "SELECT * FROM tool_calls WHERE id = ?", (call_id,)
            ).fetchone()
            return _row_to_call(row) if row else None

        return await self._run("get_call_record", op)

    async def list_call_records(
        self, workspace_id: str, status: CallStatus | None = None
    ) -> list[CallRecord]:
        def op() -> list[CallRecord]:
            if status is None:
                self._conn.execute(
                    "SELECT * FROM tool_calls WHERE workspace_id = ? ORDER BY created_at",
                    (workspace_id,),
                )
            else:
                self._conn.execute(
                    "SELECT * FROM tool_calls WHERE workspace_id = ? AND status = ? ORDER BY created_at",
                    (workspace_id, CallStatus(status).value),
                )
            return [_row_to_call(r) for r in self._conn.fetchall()]

        return await self._run("list_call_records", op)

    # ─── Audit sink ─────────────────────────────────────────

    async def append_audit_entry(self, entry: AuditEntry) -> None:
        def op() -> None:
            self._conn.execute(
                """INSERT INTO audit_logs
                   (id, workspace_id, actor_id, action, resource_type, resource_id, details, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    entry.id,
                    entry.workspace_id,
                    entry.actor_id,
                    entry.action,
                    entry.resource_type,
                    entry.resource_id,
                    json.dumps(entry.details, default=str),
                    entry.created_at.isoformat(),
                ),
            )
            self._conn.commit()

        await self._run("append_audit_entry", op)

    async def list_audit_entries(self, workspace_id: str) -> list[AuditEntry]:
        def op() -> list[dict]:
            return self._conn.execute(
                "SELECT * FROM audit_logs WHERE workspace_id = ? ORDER BY created_at",
                (workspace_id,),
            ).fetchall()

        rows = await self._run("list_audit_entries", op)
        return [
            AuditEntry(
                id=r["id"],
                workspace_id=r["workspace_id"],
                actor_id=r["actor_id"],
                action=r["action"],
                resource_type=r["resource_type"] or "tool_call",
                resource_id=r["resource_id"],
                details=json.loads(r["details"] or "{}"),
                created_at=datetime.fromisoformat(r["created_at"]),
            )
            for r in rows
        ]

    # ─── Policy source ──────────────────────────────────────

    async def load_policy_config(self, workspace_id: str) -> PolicyConfig:
        def op() -> PolicyConfig:
            row = self._conn.execute(
                "SELECT policy FROM workspace_policies WHERE workspace_id = ?",
                (workspace_id,),
            ).fetchone()
            if row is None:
                return default_policy()
            return PolicyConfig.model_validate_json(row["policy"])

        return await self._run("load_policy_config", op)

    async def save_policy_config(self, workspace_id: str, config: PolicyConfig) -> None:
        def op() -> None:
            self._conn.upsert(
                "workspace_policies",
                "workspace_id",
                ["workspace_id", "policy", "updated_at"],
                (workspace_id, config.model_dump_json(by_alias=True), utcnow().isoformat()),
            )
            self._conn.commit()

        await self._run("save_policy_config", op)

    # ─── Usage source ───────────────────────────────────────

    async def query_usage(
        self, workspace_id: str, kind: QuotaKind, window_start: datetime
    ) -> float:
        key = (workspace_id, QuotaKind(kind).value, window_start.isoformat())

        def op() -> float:
            row = self._conn.execute(
                "SELECT used FROM usage_counters WHERE workspace_id = ? AND kind = ? AND window_start = ?",
                key,
            ).fetchone()
            return float(row["used"]) if row else 0.0

        return await self._run("query_usage", op)

    async def record_usage(
        self, workspace_id: str, kind: QuotaKind, window_start: datetime, amount: float
    ) -> float:
        key = (workspace_id, QuotaKind(kind).value, window_start.isoformat())

        def op() -> float:
            self._ensure_counter(key)
            self._conn.execute(
                "UPDATE usage_counters SET used = used + ? WHERE workspace_id = ? AND kind = ? AND window_start = ?",
                (amount, *key),
            )
            used = self._read_counter(key)
            self._conn.commit()
            return used

        return await self._run("record_usage", op)

    async def reserve_usage(
        self,
        workspace_id: str,
        kind: QuotaKind,
        window_start: datetime,
        amount: float,
        limit: float,
    ) -> tuple[bool, float]:
        key = (workspace_id, QuotaKind(kind).value, window_start.isoformat())

        def op() -> tuple[bool, float]:
            self._ensure_counter(key)
            self._conn.execute(
                "UPDATE usage_counters SET used = used + ? "
                "WHERE workspace_id = ? AND kind = ? AND window_start = ? AND used + ? <= ?",
                (amount, *key, amount, limit),
            )
            reserved = self._conn.rowcount == 1
            used = self._read_counter(key)
            self._conn.commit()
            return reserved, (used - amount if reserved else used)

        return await self._run("reserve_usage", op)

    def _ensure_counter(self, key: tuple[str, str, str]) -> None:
        self._conn.execute(
            "INSERT INTO usage_counters (workspace_id, kind, window_start, used) VALUES (?, ?, ?, 0) "
            "ON CONFLICT (workspace_id, kind, window_start) DO NOTHING",
            key,
        )

    def _read_counter(self, key: tuple[str, str, str]) -> float:
        row = self._conn.execute(
            "SELECT used FROM usage_counters WHERE workspace_id = ? AND kind = ? AND window_start = ?",
            key,
        ).fetchone()
        return float(row["used"]) if row else 0.0

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()


# ─── Row mapping ───────────────────────────────────────────


def _to_column(name: str, value: Any) -> Any:
    if value is None:
        return None
    if name in _JSON_COLUMNS:
        return json.dumps(value, default=str)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def _patch_clause(patch: dict[str, Any]) -> tuple[str, list[Any]]:
    names = list(patch)
    assignments = ", ".join(f"{n} = ?" for n in names)
    return assignments, [_to_column(n, patch[n]) for n in names]


def _call_to_row(record: CallRecord) -> dict[str, Any]:
    data = {name: getattr(record, name) for name in _CALL_COLUMNS}
    return {name: _to_column(name, value) for name, value in data.items()}


def _row_to_call(row: dict) -> CallRecord:
    def ts(value: str | None) -> datetime | None:
        return datetime.fromisoformat(value) if value else None

    return CallRecord(
        id=row["id"],
        tool_name=row["tool_name"],
        workspace_id=row["workspace_id"],
        project_id=row["project_id"],
        session_id=row["session_id"],
        actor_id=row["actor_id"],
        input=json.loads(row["input"]) if row["input"] else {},
        output=json.loads(row["output"]) if row["output"] is not None else None,
        status=CallStatus(row["status"]),
        error_message=row["error_message"],
        confirmed_by=row["confirmed_by"],
        confirmed_at=ts(row["confirmed_at"]),
        executed_at=ts(row["executed_at"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )
