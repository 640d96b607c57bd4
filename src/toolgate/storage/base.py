"""
Toolgate Store Protocol

The persistence collaborator the executor and policy engine talk to.
It bundles four concerns the host application owns the storage for:

- call ledger:   create / update / conditional transition / get / list
- audit sink:    append-only audit entries
- policy source: per-workspace PolicyConfig (default when absent)
- usage source:  per-window usage counters with atomic reservation

Implementations must make ``transition_call_record`` and
``reserve_usage`` single atomic conditional updates; the confirmation
protocol and quota accounting rely on it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from toolgate.core.models import (
    AuditEntry,
    CallRecord,
    CallStatus,
    PolicyConfig,
    QuotaKind,
)

# Fields the executor may patch on a call record
MUTABLE_CALL_FIELDS = frozenset(
    {
        "output",
        "status",
        "error_message",
        "confirmed_by",
        "confirmed_at",
        "executed_at",
    }
)


@runtime_checkable
class ToolStore(Protocol):
    """Async persistence collaborator for ledger, audit, policy and usage."""

    # ─── Call ledger ────────────────────────────────────────

    async def create_call_record(self, record: CallRecord) -> str: ...

    async def update_call_record(self, call_id: str, patch: dict[str, Any]) -> None: ...

    async def transition_call_record(
        self, call_id: str, expected_status: CallStatus, patch: dict[str, Any]
    ) -> bool:
        """Apply ``patch`` only if the record is still in ``expected_status``.

        Returns True if the record was updated, False if it was not in the
        expected status (or does not exist).
        """
        ...

    async def get_call_record(self, call_id: str) -> CallRecord | None: ...

    async def list_call_records(
        self, workspace_id: str, status: CallStatus | None = None
    ) -> list[CallRecord]: ...

    # ─── Audit sink ─────────────────────────────────────────

    async def append_audit_entry(self, entry: AuditEntry) -> None: ...

    async def list_audit_entries(self, workspace_id: str) -> list[AuditEntry]: ...

    # ─── Policy source ──────────────────────────────────────

    async def load_policy_config(self, workspace_id: str) -> PolicyConfig: ...

    async def save_policy_config(self, workspace_id: str, config: PolicyConfig) -> None: ...

    # ─── Usage source ───────────────────────────────────────

    async def query_usage(
        self, workspace_id: str, kind: QuotaKind, window_start: datetime
    ) -> float: ...

    async def record_usage(
        self, workspace_id: str, kind: QuotaKind, window_start: datetime, amount: float
    ) -> float: ...

    async def reserve_usage(
        self,
        workspace_id: str,
        kind: QuotaKind,
        window_start: datetime,
        amount: float,
        limit: float,
    ) -> tuple[bool, float]:
        """Increment usage by ``amount`` only if the total stays within ``limit``.

        Returns (reserved, used_before).
        """
        ...


def check_patch(patch: dict[str, Any]) -> None:
    unknown = set(patch) - MUTABLE_CALL_FIELDS
    if unknown:
        raise ValueError(f"Call record fields are not patchable: {sorted(unknown)}")
