"""
Toolgate Core Data Models

All shared types used across the framework. This module is the foundation
that every other component imports from. It must have no internal
dependencies beyond pydantic.
"""

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(UTC)


# ─── Enums ───────────────────────────────────────────────────

class RiskLevel(str, Enum):
    """Risk classification for tools."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class ToolScope(str, Enum):
    """Where a tool may be offered: whole workspace or a single project."""
    WORKSPACE = "workspace"
    PROJECT = "project"


class CallStatus(str, Enum):
    """Lifecycle state of a call record.

    pending -> confirmed -> executed | failed
    pending -> cancelled
    """
    PENDING = "pending"
    CONFIRMED = "confirmed"
    EXECUTED = "executed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (CallStatus.EXECUTED, CallStatus.FAILED, CallStatus.CANCELLED)


class QuotaKind(str, Enum):
    """Quota families enforced per workspace.

    Lookup also accepts the camelCase names used in workspace settings
    (``QuotaKind("llmTokens") is QuotaKind.LLM_TOKENS``).
    """
    LLM_TOKENS = "llm_tokens"
    AUDIO_MINUTES = "audio_minutes"
    STORAGE = "storage"

    @classmethod
    def _missing_(cls, value: object) -> "QuotaKind | None":
        if isinstance(value, str):
            key = value.replace("_", "").lower()
            for member in cls:
                if member.value.replace("_", "") == key:
                    return member
        return None


class SourceType(str, Enum):
    """Kinds of workspace content a citation can point at."""
    DOCUMENT = "document"
    EMAIL = "email"
    MEETING = "meeting"
    NOTE = "note"
    DECISION = "decision"


# ─── Invocation Context ─────────────────────────────────────

class InvocationContext(BaseModel):
    """Who is calling, and against which workspace/project.

    Supplied by the caller per call; never mutated by the framework.
    """
    model_config = ConfigDict(frozen=True)

    actor_id: str
    workspace_id: str
    project_id: str | None = None
    session_id: str | None = None


# ─── Result Envelope ────────────────────────────────────────

class Citation(BaseModel):
    """A pointer to the workspace content a result was derived from."""
    source_type: SourceType
    source_id: str
    title: str
    excerpt: str = ""
    timestamp: datetime | None = None
    confidence: float = Field(1.0, ge=0.0, le=1.0)
    url: str | None = None


class ToolResult(BaseModel):
    """Uniform envelope returned by every effect and by the executor."""
    success: bool
    data: Any = None
    error: str | None = None
    error_code: str | None = None
    citations: list[Citation] = Field(default_factory=list)

    @classmethod
    def ok(cls, data: Any = None, citations: list[Citation] | None = None) -> "ToolResult":
        return cls(success=True, data=data, citations=citations or [])

    @classmethod
    def failure(cls, error: Exception | str, error_code: str | None = None) -> "ToolResult":
        """Build a failed result from an exception or a plain message.

        Exceptions carrying a ``code`` attribute (the toolgate hierarchy)
        contribute it as error_code unless one is given explicitly.
        """
        if isinstance(error, Exception):
            code = error_code or getattr(error, "code", None) or "EXECUTION_ERROR"
            message = getattr(error, "message", None) or str(error) or type(error).__name__
            return cls(success=False, error=message, error_code=code)
        return cls(success=False, error=error, error_code=error_code)

    @property
    def requires_confirmation(self) -> bool:
        return isinstance(self.data, dict) and bool(self.data.get("requires_confirmation"))


# ─── Call Ledger ────────────────────────────────────────────

class CallRecord(BaseModel):
    """Durable record of one invocation attempt and its status."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tool_name: str
    workspace_id: str
    project_id: str | None = None
    session_id: str | None = None
    actor_id: str
    input: dict[str, Any] = Field(default_factory=dict)
    output: Any = None
    status: CallStatus = CallStatus.PENDING
    error_message: str | None = None
    confirmed_by: str | None = None
    confirmed_at: datetime | None = None
    executed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)

    def context(self) -> InvocationContext:
        """Rebuild the invocation context the call was proposed under."""
        return InvocationContext(
            actor_id=self.actor_id,
            workspace_id=self.workspace_id,
            project_id=self.project_id,
            session_id=self.session_id,
        )


# ─── Audit ──────────────────────────────────────────────────

class AuditEntry(BaseModel):
    """An append-only audit event for a policy-relevant action."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    workspace_id: str
    actor_id: str
    action: str
    resource_type: str = "tool_call"
    resource_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


# ─── Policy ─────────────────────────────────────────────────

class _CamelModel(BaseModel):
    """Accepts both camelCase (workspace settings JSON) and snake_case keys."""
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class QuotaLimits(_CamelModel):
    llm_tokens_per_day: float = 100_000
    audio_minutes_per_month: float = 600
    storage_gb: float = 10

    def limit_for(self, kind: QuotaKind) -> float:
        if kind == QuotaKind.LLM_TOKENS:
            return self.llm_tokens_per_day
        if kind == QuotaKind.AUDIO_MINUTES:
            return self.audio_minutes_per_month
        return self.storage_gb


class PolicyConfig(_CamelModel):
    """Per-workspace policy.

    Loaded from workspace settings; every missing key falls back to the
    default shown here. Frozen so a decision never sees it change.
    """
    allowed_read_sources: list[str] = Field(default_factory=lambda: ["*"])
    allowed_write_operations: list[str] = Field(
        default_factory=lambda: ["note", "task", "decision"]
    )
    external_communication_requires_confirmation: bool = True
    allowed_file_paths: list[str] = Field(default_factory=list)
    blocked_file_paths: list[str] = Field(
        default_factory=lambda: ["/etc", "/var", "/usr", "/bin", "/sbin"]
    )
    allowed_domains: list[str] = Field(default_factory=list)
    blocked_domains: list[str] = Field(default_factory=list)
    quotas: QuotaLimits = Field(default_factory=QuotaLimits)
    redact_pii: bool = Field(False, alias="redactPII")


def default_policy() -> PolicyConfig:
    """Policy applied to workspaces without stored settings."""
    return PolicyConfig()


class PolicyDecision(BaseModel):
    """Outcome of PolicyEngine.decide_execution."""
    allowed: bool
    requires_confirmation: bool = False
    reason: str | None = None


class AccessDecision(BaseModel):
    """Outcome of a path or domain check."""
    allowed: bool
    reason: str | None = None


class QuotaDecision(BaseModel):
    """Outcome of a quota check or reservation.

    ``remaining`` is computed before the requested amount is applied.
    """
    allowed: bool
    remaining: float | None = None
    reason: str | None = None
