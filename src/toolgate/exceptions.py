"""
Toolgate Custom Exceptions

Structured exception hierarchy for the tool execution framework.
All toolgate-specific exceptions inherit from ToolgateError and carry
a stable ``code`` that ends up in ToolResult.error_code.

Exception hierarchy:
    ToolgateError
    +-- ToolInputError            (input violates the tool contract)
    +-- NotFoundError
    |   +-- ToolNotFoundError     (unknown tool name)
    |   +-- CallNotFoundError     (unknown call record id)
    +-- DuplicateToolError        (name already registered)
    +-- PolicyDeniedError         (workspace policy refused the action)
    +-- InvalidStateError         (call record not in the expected status)
    +-- ToolExecutionError        (effect failed, or its output broke the contract)
    |   +-- ExecutionTimeoutError (effect exceeded its deadline)
    +-- PersistenceError          (ledger/audit/usage store failure)
    +-- QuotaExceededError        (workspace quota would be exceeded)
    +-- UnknownQuotaKindError     (quota kind name not recognised)
"""

from __future__ import annotations


class ToolgateError(Exception):
    """Base exception for all toolgate errors."""

    code = "TOOLGATE_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ToolInputError(ToolgateError):
    """Raised when input fails a tool's input contract.

    ``errors`` holds the pydantic error list (loc/msg/type) so callers
    can point at the offending field.
    """

    code = "VALIDATION_ERROR"

    def __init__(self, tool_name: str, message: str, errors: list[dict] | None = None):
        super().__init__(
            f"Invalid input for '{tool_name}': {message}",
            details={"tool_name": tool_name, "errors": errors or []},
        )
        self.tool_name = tool_name
        self.errors = errors or []


class NotFoundError(ToolgateError):
    """Base for lookups that found nothing."""

    code = "NOT_FOUND"


class ToolNotFoundError(NotFoundError):
    """Raised when a tool name is not in the catalog."""

    def __init__(self, tool_name: str):
        super().__init__(
            f"Tool '{tool_name}' not found",
            details={"tool_name": tool_name},
        )
        self.tool_name = tool_name


class CallNotFoundError(NotFoundError):
    """Raised when a call record id is not in the ledger."""

    def __init__(self, call_id: str):
        super().__init__(
            f"Tool call '{call_id}' not found",
            details={"call_id": call_id},
        )
        self.call_id = call_id


class DuplicateToolError(ToolgateError):
    """Raised when registering a name that is already in the catalog."""

    code = "DUPLICATE_TOOL"

    def __init__(self, tool_name: str):
        super().__init__(
            f"Tool '{tool_name}' is already registered",
            details={"tool_name": tool_name},
        )
        self.tool_name = tool_name


class PolicyDeniedError(ToolgateError):
    """Raised when the workspace policy refuses an action.

    Must short-circuit before any effect runs.
    """

    code = "POLICY_DENIED"

    def __init__(self, tool_name: str, reason: str, details: dict | None = None):
        super().__init__(
            reason,
            details={"tool_name": tool_name, "reason": reason, **(details or {})},
        )
        self.tool_name = tool_name
        self.reason = reason


class InvalidStateError(ToolgateError):
    """Raised when a call record is not in the status an operation requires."""

    code = "INVALID_STATE"

    def __init__(self, call_id: str, current_status: str, expected_status: str = "pending"):
        super().__init__(
            f"Tool call is not {expected_status}. Current status: {current_status}",
            details={
                "call_id": call_id,
                "current_status": current_status,
                "expected_status": expected_status,
            },
        )
        self.call_id = call_id
        self.current_status = current_status
        self.expected_status = expected_status


class ToolExecutionError(ToolgateError):
    """Raised when a tool's effect fails or returns output that breaks its contract."""

    code = "EXECUTION_ERROR"

    def __init__(self, tool_name: str, message: str, details: dict | None = None):
        super().__init__(
            message,
            details={"tool_name": tool_name, **(details or {})},
        )
        self.tool_name = tool_name


class ExecutionTimeoutError(ToolExecutionError):
    """Raised when an effect does not finish before its deadline.

    ``still_running`` is set when the effect could not be interrupted (a
    sync effect in a worker thread); its outcome is then unknown to the
    caller and is written to the call record once it returns.
    """

    code = "TIMEOUT"

    def __init__(self, tool_name: str, timeout: float, still_running: bool = False):
        message = f"Tool '{tool_name}' timed out after {timeout:g}s"
        if still_running:
            message += "; it is still running and its outcome is unknown"
        super().__init__(
            tool_name,
            message,
            details={"timeout": timeout, "still_running": still_running},
        )
        self.timeout = timeout
        self.still_running = still_running


class PersistenceError(ToolgateError):
    """Raised when the tool store cannot read or write."""

    code = "PERSISTENCE_ERROR"

    def __init__(self, operation: str, message: str, details: dict | None = None):
        super().__init__(
            f"Store operation '{operation}' failed: {message}",
            details={"operation": operation, **(details or {})},
        )
        self.operation = operation


class QuotaExceededError(ToolgateError):
    """Raised when a workspace quota would be exceeded."""

    code = "QUOTA_EXCEEDED"

    def __init__(self, kind: str, reason: str, remaining: float | None = None):
        super().__init__(
            reason,
            details={"kind": kind, "remaining": remaining},
        )
        self.kind = kind
        self.remaining = remaining


class UnknownQuotaKindError(ToolgateError):
    """Raised when a quota kind name matches none of the QuotaKind values."""

    code = "VALIDATION_ERROR"

    def __init__(self, kind: object, valid: list[str]):
        super().__init__(
            f"Unknown quota kind {kind!r}. Valid kinds: {', '.join(valid)}",
            details={"kind": str(kind), "valid": valid},
        )
        self.kind = kind
        self.valid = valid
