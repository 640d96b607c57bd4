"""
Toolgate: Policy-Gated Tool Execution for AI Assistants

Usage:
    from toolgate import ToolGate, InvocationContext, tool

    gate = ToolGate()
    gate.register(add_note)

    ctx = InvocationContext(actor_id="u1", workspace_id="w1", project_id="p1")
    result = await gate.execute("add_note", {"title": "Kickoff"}, ctx)

    # High-risk tools come back pending until a user confirms:
    result = await gate.execute("send_email", {...}, ctx)
    if result.requires_confirmation:
        result = await gate.confirm_and_execute(result.data["call_id"], "u1")
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

from toolgate.config import ToolgateSettings
from toolgate.core.models import (
    AccessDecision,
    AuditEntry,
    CallRecord,
    CallStatus,
    Citation,
    InvocationContext,
    PolicyConfig,
    PolicyDecision,
    QuotaDecision,
    QuotaKind,
    QuotaLimits,
    RiskLevel,
    ToolResult,
    ToolScope,
    default_policy,
    utcnow,
)
from toolgate.engine.executor import ToolExecutor
from toolgate.exceptions import ToolgateError
from toolgate.logging import configure_logging, get_logger
from toolgate.observability.tracing import init_tracing
from toolgate.policy.engine import PolicyEngine
from toolgate.storage.base import ToolStore
from toolgate.storage.memory import MemoryToolStore
from toolgate.storage.sql import SqlToolStore
from toolgate.tools.catalog import ToolCatalog
from toolgate.tools.descriptor import ToolDescriptor, tool

__version__ = "0.1.0"

__all__ = [
    # Main API
    "ToolGate",
    "__version__",
    # Building blocks
    "ToolCatalog",
    "ToolDescriptor",
    "ToolExecutor",
    "PolicyEngine",
    "tool",
    # Stores
    "ToolStore",
    "MemoryToolStore",
    "SqlToolStore",
    # Models
    "AccessDecision",
    "AuditEntry",
    "CallRecord",
    "CallStatus",
    "Citation",
    "InvocationContext",
    "PolicyConfig",
    "PolicyDecision",
    "QuotaDecision",
    "QuotaKind",
    "QuotaLimits",
    "RiskLevel",
    "ToolResult",
    "ToolScope",
    "default_policy",
    # Config / errors
    "ToolgateSettings",
    "ToolgateError",
]

logger = get_logger("toolgate")


class ToolGate:
    """Main toolgate entry point: one catalog, one store, one executor.

    Wires the pieces together for the common case. Each piece is also
    usable on its own (see ToolExecutor, PolicyEngine, ToolCatalog).
    """

    def __init__(
        self,
        catalog: ToolCatalog | None = None,
        store: ToolStore | None = None,
        default_timeout: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            catalog: Tool catalog. A new empty one if None.
            store: Ledger/audit/policy/usage store. In-memory if None.
            default_timeout: Effect deadline in seconds for calls that give none.
            clock: Timestamp source shared by executor and quota windows.
        """
        self.catalog = catalog if catalog is not None else ToolCatalog()
        self.store = store if store is not None else MemoryToolStore()
        self._clock = clock
        self.executor = ToolExecutor(self.catalog, self.store, default_timeout, clock)

    @classmethod
    def from_settings(
        cls,
        settings: ToolgateSettings | None = None,
        catalog: ToolCatalog | None = None,
    ) -> ToolGate:
        """Build a ToolGate from settings (environment if None).

        Configures logging and OTLP export (when OTEL_EXPORTER_OTLP_ENDPOINT
        is set), then picks SqlToolStore when a database URL is set and
        MemoryToolStore otherwise.
        """
        settings = settings or ToolgateSettings.from_env()
        configure_logging(level=settings.log_level, json_output=settings.log_json)
        init_tracing()
        if settings.database_url:
            store: ToolStore = SqlToolStore(settings.database_url)
        else:
            store = MemoryToolStore()
        logger.info(f"ToolGate using {type(store).__name__}")
        return cls(catalog=catalog, store=store, default_timeout=settings.effect_timeout)

    def register(self, descriptor: ToolDescriptor) -> ToolDescriptor:
        self.catalog.register(descriptor)
        return descriptor

    # ─── Execution ──────────────────────────────────────────

    async def execute(
        self,
        tool_name: str,
        raw_input: Any,
        context: InvocationContext,
        *,
        timeout: float | None = None,
    ) -> ToolResult:
        return await self.executor.execute(tool_name, raw_input, context, timeout=timeout)

    async def confirm_and_execute(
        self, call_id: str, actor_id: str, *, timeout: float | None = None
    ) -> ToolResult:
        return await self.executor.confirm_and_execute(call_id, actor_id, timeout=timeout)

    async def cancel(self, call_id: str, actor_id: str, reason: str | None = None) -> ToolResult:
        return await self.executor.cancel(call_id, actor_id, reason)

    # ─── Policy ─────────────────────────────────────────────

    async def policy_for(self, workspace_id: str) -> PolicyEngine:
        """Policy engine bound to the workspace's current config and usage."""
        return await PolicyEngine.for_workspace(self.store, workspace_id, self._clock)

    async def check_quota(self, workspace_id: str, kind: QuotaKind, amount: float) -> QuotaDecision:
        policy = await self.policy_for(workspace_id)
        return await policy.check_quota(workspace_id, kind, amount)

    async def reserve_quota(self, workspace_id: str, kind: QuotaKind, amount: float) -> QuotaDecision:
        policy = await self.policy_for(workspace_id)
        return await policy.reserve_quota(workspace_id, kind, amount)

    async def require_quota(self, workspace_id: str, kind: QuotaKind, amount: float) -> QuotaDecision:
        """Reserve quota or raise QuotaExceededError."""
        policy = await self.policy_for(workspace_id)
        return await policy.require_quota(workspace_id, kind, amount)
