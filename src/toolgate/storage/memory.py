"""
In-memory tool store.

Process-local implementation of the ToolStore protocol for tests, local
development and single-process deployments. Records are copied on the
way in and out so callers never share mutable state with the ledger.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

from toolgate.core.models import (
    AuditEntry,
    CallRecord,
    CallStatus,
    PolicyConfig,
    QuotaKind,
    default_policy,
)
from toolgate.exceptions import CallNotFoundError
from toolgate.storage.base import check_patch


class MemoryToolStore:
    """Dict-backed ToolStore. Conditional updates run under one asyncio lock."""

    def __init__(self, policies: dict[str, PolicyConfig] | None = None) -> None:
        self._calls: dict[str, CallRecord] = {}
        self._audit: list[AuditEntry] = []
        self._policies: dict[str, PolicyConfig] = dict(policies or {})
        self._usage: dict[tuple[str, QuotaKind, datetime], float] = {}
        self._lock = asyncio.Lock()

    # ─── Call ledger ────────────────────────────────────────

    async def create_call_record(self, record: CallRecord) -> str:
        async with self._lock:
            self._calls[record.id] = record.model_copy(deep=True)
        return record.id

    async def update_call_record(self, call_id: str, patch: dict[str, Any]) -> None:
        check_patch(patch)
        async with self._lock:
            current = self._calls.get(call_id)
            if current is None:
                raise CallNotFoundError(call_id)
            self._calls[call_id] = _patched(current, patch)

    async def transition_call_record(
        self, call_id: str, expected_status: CallStatus, patch: dict[str, Any]
    ) -> bool:
        check_patch(patch)
        async with self._lock:
            current = self._calls.get(call_id)
            if current is None or current.status != expected_status:
                return False
            self._calls[call_id] = _patched(current, patch)
            return True

    async def get_call_record(self, call_id: str) -> CallRecord | None:
        record = self._calls.get(call_id)
        return record.model_copy(deep=True) if record else None

    async def list_call_records(
        self, workspace_id: str, status: CallStatus | None = None
    ) -> list[CallRecord]:
        records = [
            r.model_copy(deep=True)
            for r in self._calls.values()
            if r.workspace_id == workspace_id and (status is None or r.status == status)
        ]
        return sorted(records, key=lambda r: r.created_at)

    # ─── Audit sink ─────────────────────────────────────────

    async def append_audit_entry(self, entry: AuditEntry) -> None:
        self._audit.append(entry.model_copy(deep=True))

    async def list_audit_entries(self, workspace_id: str) -> list[AuditEntry]:
        return [e.model_copy(deep=True) for e in self._audit if e.workspace_id == workspace_id]

    # ─── Policy source ──────────────────────────────────────

    async def load_policy_config(self, workspace_id: str) -> PolicyConfig:
        return self._policies.get(workspace_id) or default_policy()

    async def save_policy_config(self, workspace_id: str, config: PolicyConfig) -> None:
        self._policies[workspace_id] = config

    # ─── Usage source ───────────────────────────────────────

    async def query_usage(
        self, workspace_id: str, kind: QuotaKind, window_start: datetime
    ) -> float:
        return self._usage.get((workspace_id, QuotaKind(kind), window_start), 0.0)

    async def record_usage(
        self, workspace_id: str, kind: QuotaKind, window_start: datetime, amount: float
    ) -> float:
        key = (workspace_id, QuotaKind(kind), window_start)
        async with self._lock:
            self._usage[key] = self._usage.get(key, 0.0) + amount
            return self._usage[key]

    async def reserve_usage(
        self,
        workspace_id: str,
        kind: QuotaKind,
        window_start: datetime,
        amount: float,
        limit: float,
    ) -> tuple[bool, float]:
        key = (workspace_id, QuotaKind(kind), window_start)
        async with self._lock:
            used = self._usage.get(key, 0.0)
            if used + amount > limit:
                return False, used
            self._usage[key] = used + amount
            return True, used


def _patched(record: CallRecord, patch: dict[str, Any]) -> CallRecord:
    return CallRecord.model_validate({**record.model_dump(), **patch})
