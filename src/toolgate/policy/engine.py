"""
Toolgate Policy Engine

Decision logic over a single workspace's PolicyConfig:

1. decide_execution : risk escalation, external-communication
                       confirmation, write-operation allow-list
2. can_access_path  : blocked/allowed file path prefixes
3. can_access_domain: blocked/allowed domains
4. check_quota      : usage in the current window vs. the limit
5. reserve_quota    : atomic check-and-increment of the usage counter
6. require_quota    : reserve_quota, raising QuotaExceededError on refusal
7. redact_pii       : pattern-based scrubbing, idempotent

All decisions except the quota ones are pure. Quota decisions read the
usage source (the tool store); the engine never caches usage.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

from toolgate.core.models import (
    AccessDecision,
    InvocationContext,
    PolicyConfig,
    PolicyDecision,
    QuotaDecision,
    QuotaKind,
    RiskLevel,
    default_policy,
    utcnow,
)
from toolgate.exceptions import QuotaExceededError, UnknownQuotaKindError
from toolgate.logging import get_logger
from toolgate.observability.metrics import record_policy_denial, record_quota_check
from toolgate.policy.redaction import redact_text, redact_value

if TYPE_CHECKING:
    from toolgate.storage.base import ToolStore

logger = get_logger("toolgate.policy")

EXTERNAL_COMMUNICATION_TOOLS = ("send_telegram", "send_email", "send_slack", "post_webhook")
WRITE_VERBS = ("create", "add", "update", "delete", "send", "export", "write")

_QUOTA_LABELS = {
    QuotaKind.LLM_TOKENS: "Daily token limit ({limit:g})",
    QuotaKind.AUDIO_MINUTES: "Monthly audio limit ({limit:g} minutes)",
    QuotaKind.STORAGE: "Storage limit ({limit:g}GB)",
}


class UsageSource(Protocol):
    """The slice of the tool store the quota checks need."""

    async def query_usage(
        self, workspace_id: str, kind: QuotaKind, window_start: datetime
    ) -> float: ...

    async def reserve_usage(
        self,
        workspace_id: str,
        kind: QuotaKind,
        window_start: datetime,
        amount: float,
        limit: float,
    ) -> tuple[bool, float]: ...


def window_start(kind: QuotaKind, now: datetime) -> datetime:
    """Start of the quota window containing ``now``.

    Token usage resets daily; audio and storage reset monthly.
    """
    day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if kind == QuotaKind.LLM_TOKENS:
        return day
    return day.replace(day=1)


def is_external_communication(tool_name: str) -> bool:
    name = tool_name.lower()
    return any(t in name for t in EXTERNAL_COMMUNICATION_TOOLS)


def is_write_operation(tool_name: str) -> bool:
    name = tool_name.lower()
    return any(v in name for v in WRITE_VERBS)


def operation_type(tool_name: str) -> str:
    """Resource type a write tool acts on: ``create_task`` -> ``task``."""
    parts = tool_name.lower().split("_")
    return parts[-1] if len(parts) > 1 else tool_name.lower()


def quota_kind(kind: QuotaKind | str) -> QuotaKind:
    """Resolve a quota kind from its value or camelCase name."""
    try:
        return QuotaKind(kind)
    except ValueError:
        raise UnknownQuotaKindError(kind, [k.value for k in QuotaKind]) from None


class PolicyEngine:
    """Evaluates actions against one workspace's policy."""

    def __init__(
        self,
        config: PolicyConfig | None = None,
        usage: UsageSource | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or default_policy()
        self._usage = usage
        self._clock = clock

    @classmethod
    async def for_workspace(
        cls,
        store: ToolStore,
        workspace_id: str,
        clock: Callable[[], datetime] = utcnow,
    ) -> PolicyEngine:
        """Load the workspace policy through the store and bind its usage source."""
        config = await store.load_policy_config(workspace_id)
        return cls(config, usage=store, clock=clock)

    # ─── Execution ──────────────────────────────────────────

    def decide_execution(
        self,
        tool_name: str,
        risk_level: RiskLevel,
        tool_requires_confirmation: bool,
        context: InvocationContext | None = None,
    ) -> PolicyDecision:
        """Decide whether a tool may run and whether it needs confirmation.

        HIGH risk always forces confirmation, regardless of the tool's
        own flag. ``context`` is accepted for parity with callers that
        scope decisions per actor; the current rules do not read it.
        """
        if RiskLevel(risk_level) == RiskLevel.HIGH:
            return PolicyDecision(
                allowed=True,
                requires_confirmation=True,
                reason="High-risk operations require confirmation",
            )

        if (
            is_external_communication(tool_name)
            and self.config.external_communication_requires_confirmation
        ):
            return PolicyDecision(
                allowed=True,
                requires_confirmation=True,
                reason="External communications require confirmation",
            )

        if is_write_operation(tool_name):
            op = operation_type(tool_name)
            allowed_ops = self.config.allowed_write_operations
            if op not in allowed_ops and "*" not in allowed_ops:
                record_policy_denial(tool_name=tool_name, rule="write_operation")
                return PolicyDecision(
                    allowed=False,
                    requires_confirmation=tool_requires_confirmation,
                    reason=f'Write operation "{op}" is not allowed',
                )

        return PolicyDecision(allowed=True, requires_confirmation=tool_requires_confirmation)

    # ─── Access lists ───────────────────────────────────────

    def can_access_path(self, path: str) -> AccessDecision:
        for blocked in self.config.blocked_file_paths:
            if path.startswith(blocked):
                return AccessDecision(allowed=False, reason=f'Path "{path}" is blocked by policy')

        if not self.config.allowed_file_paths:
            return AccessDecision(allowed=True)

        for allowed in self.config.allowed_file_paths:
            if path.startswith(allowed):
                return AccessDecision(allowed=True)

        return AccessDecision(allowed=False, reason=f'Path "{path}" is not in the allowed list')

    def can_access_domain(self, domain: str) -> AccessDecision:
        host = domain.strip().lower().rstrip(".")
        blocked = {d.lower() for d in self.config.blocked_domains}
        if host in blocked:
            return AccessDecision(allowed=False, reason=f'Domain "{domain}" is blocked')

        if not self.config.allowed_domains:
            return AccessDecision(allowed=True)

        if host in {d.lower() for d in self.config.allowed_domains}:
            return AccessDecision(allowed=True)

        return AccessDecision(allowed=False, reason=f'Domain "{domain}" is not in the allowed list')

    # ─── Quotas ─────────────────────────────────────────────

    async def check_quota(
        self, workspace_id: str, kind: QuotaKind, amount: float
    ) -> QuotaDecision:
        """Compare current-window usage plus ``amount`` against the limit.

        ``remaining`` is ``limit - used``, computed before ``amount``.
        This is advisory; use reserve_quota to actually claim capacity.
        """
        kind = quota_kind(kind)
        usage = self._require_usage()
        limit = self.config.quotas.limit_for(kind)
        start = window_start(kind, self._clock())

        used = await usage.query_usage(workspace_id, kind, start)
        remaining = limit - used

        if used + amount > limit:
            record_quota_check(kind=kind.value, allowed=False)
            return QuotaDecision(
                allowed=False,
                remaining=remaining,
                reason=f"{_QUOTA_LABELS[kind].format(limit=limit)} would be exceeded",
            )
        record_quota_check(kind=kind.value, allowed=True)
        return QuotaDecision(allowed=True, remaining=remaining)

    async def reserve_quota(
        self, workspace_id: str, kind: QuotaKind, amount: float
    ) -> QuotaDecision:
        """Atomically claim ``amount`` of the current window's quota.

        Either the counter is incremented and the call is allowed, or
        nothing changes. Concurrent reservations cannot jointly overshoot.
        """
        kind = quota_kind(kind)
        usage = self._require_usage()
        limit = self.config.quotas.limit_for(kind)
        start = window_start(kind, self._clock())

        reserved, used_before = await usage.reserve_usage(workspace_id, kind, start, amount, limit)
        remaining = limit - used_before
        record_quota_check(kind=kind.value, allowed=reserved)

        if not reserved:
            logger.info(
                "Quota reservation refused",
                extra={"workspace_id": workspace_id, "action": kind.value},
            )
            return QuotaDecision(
                allowed=False,
                remaining=remaining,
                reason=f"{_QUOTA_LABELS[kind].format(limit=limit)} would be exceeded",
            )
        return QuotaDecision(allowed=True, remaining=remaining)

    async def require_quota(
        self, workspace_id: str, kind: QuotaKind, amount: float
    ) -> QuotaDecision:
        """reserve_quota for callers that treat refusal as an error.

        Raises:
            QuotaExceededError: If the reservation was refused.
        """
        decision = await self.reserve_quota(workspace_id, kind, amount)
        if not decision.allowed:
            raise QuotaExceededError(quota_kind(kind).value, decision.reason or "Quota exceeded", decision.remaining)
        return decision

    def _require_usage(self) -> UsageSource:
        if self._usage is None:
            raise RuntimeError("PolicyEngine has no usage source; quota checks need a store")
        return self._usage

    # ─── PII ────────────────────────────────────────────────

    def redact_pii(self, text: str) -> str:
        if not self.config.redact_pii:
            return text
        return redact_text(text)

    def redact_details(self, details: dict[str, Any]) -> dict[str, Any]:
        if not self.config.redact_pii:
            return details
        return redact_value(details)
