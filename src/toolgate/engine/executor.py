"""
Toolgate Tool Executor

Runs tools for a caller under the propose-then-confirm protocol:

1. Lookup      → unknown tools return NOT_FOUND, nothing is recorded
2. Validation  → input must satisfy the tool's contract before anything else
3. Policy      → the workspace policy may deny, or force confirmation
4. Ledger      → one CallRecord per call that passed 1-3
5. Effect      → run now (auto-approved) or later via confirm_and_execute

Confirmation is a single atomic ``pending -> confirmed`` transition in the
store, so two concurrent confirmations of the same call cannot both run
the effect. Policy is evaluated again at confirmation time against the
workspace's current configuration.

Entry points return a ToolResult and never raise, except for
``asyncio.CancelledError`` which is re-raised after the ledger is
finalized. A sync effect cannot be interrupted, so one that outlives its
deadline or its caller finalizes the record itself when its worker
thread returns.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from toolgate.core.models import (
    AuditEntry,
    CallRecord,
    CallStatus,
    InvocationContext,
    ToolResult,
    utcnow,
)
from toolgate.exceptions import (
    CallNotFoundError,
    ExecutionTimeoutError,
    InvalidStateError,
    PersistenceError,
    PolicyDeniedError,
    ToolExecutionError,
    ToolgateError,
    ToolInputError,
    ToolNotFoundError,
)
from toolgate.logging import get_logger
from toolgate.observability.metrics import measure_tool_duration, record_tool_call
from toolgate.observability.tracing import get_tracer
from toolgate.policy.engine import PolicyEngine
from toolgate.storage.base import ToolStore
from toolgate.tools.catalog import ToolCatalog
from toolgate.tools.descriptor import ToolDescriptor, coerce_result

logger = get_logger("toolgate.executor")


class ToolExecutor:
    """Executes catalog tools against a store, enforcing workspace policy."""

    def __init__(
        self,
        catalog: ToolCatalog,
        store: ToolStore,
        default_timeout: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            catalog: Tools this executor may run.
            store: Call ledger, audit sink, policy and usage source.
            default_timeout: Effect deadline in seconds when a call gives none.
                ``None`` means no deadline.
            clock: Source of timestamps written to the ledger.
        """
        self._catalog = catalog
        self._store = store
        self._default_timeout = default_timeout
        self._clock = clock
        self._detached: set[asyncio.Future] = set()

    @property
    def catalog(self) -> ToolCatalog:
        return self._catalog

    @property
    def store(self) -> ToolStore:
        return self._store

    # ─── Entry points ───────────────────────────────────────

    async def execute(
        self,
        tool_name: str,
        raw_input: Any,
        context: InvocationContext,
        *,
        timeout: float | None = None,
    ) -> ToolResult:
        """Propose a tool call and run it unless it needs confirmation.

        Returns either the effect's result, a pending handle
        (``data.requires_confirmation``, ``data.call_id``) or a failure.
        """
        tracer = get_tracer()
        with tracer.start_as_current_span("toolgate.execute") as span:
            span.set_attribute("toolgate.tool_name", tool_name)
            span.set_attribute("toolgate.workspace_id", context.workspace_id)
            result = await self._guard(
                "execute", tool_name, self._execute(tool_name, raw_input, context, timeout)
            )
            span.set_attribute("toolgate.success", result.success)
            if result.error_code:
                span.set_attribute("toolgate.error_code", result.error_code)
            return result

    async def confirm_and_execute(
        self,
        call_id: str,
        actor_id: str,
        *,
        timeout: float | None = None,
    ) -> ToolResult:
        """Confirm a pending call on behalf of ``actor_id`` and run its effect."""
        tracer = get_tracer()
        with tracer.start_as_current_span("toolgate.confirm") as span:
            span.set_attribute("toolgate.call_id", call_id)
            result = await self._guard(
                "confirm_and_execute", call_id, self._confirm(call_id, actor_id, timeout)
            )
            span.set_attribute("toolgate.success", result.success)
            if result.error_code:
                span.set_attribute("toolgate.error_code", result.error_code)
            return result

    async def cancel(self, call_id: str, actor_id: str, reason: str | None = None) -> ToolResult:
        """Withdraw a pending call. Only ``pending`` records can be cancelled."""
        return await self._guard("cancel", call_id, self._cancel(call_id, actor_id, reason))

    async def get_call(self, call_id: str) -> CallRecord | None:
        return await self._store.get_call_record(call_id)

    async def list_calls(
        self, workspace_id: str, status: CallStatus | None = None
    ) -> list[CallRecord]:
        return await self._store.list_call_records(workspace_id, status)

    async def _guard(self, operation: str, subject: str, coro) -> ToolResult:
        try:
            return await coro
        except ToolgateError as e:
            logger.warning(
                f"{operation} failed: {e.message}",
                extra={"tool_name": subject, "error_code": e.code},
            )
            return ToolResult.failure(e)
        except Exception as e:
            logger.error(f"{operation} failed unexpectedly", exc_info=True, extra={"tool_name": subject})
            return ToolResult.failure(e)

    # ─── Propose ────────────────────────────────────────────

    async def _execute(
        self,
        tool_name: str,
        raw_input: Any,
        context: InvocationContext,
        timeout: float | None,
    ) -> ToolResult:
        try:
            descriptor = self._catalog.get(tool_name)
        except ToolNotFoundError as e:
            logger.warning("Unknown tool requested", extra={"tool_name": tool_name, "error_code": e.code})
            return ToolResult.failure(e)

        try:
            validated = descriptor.validate_input(raw_input)
        except ToolInputError as e:
            logger.info(
                "Tool input rejected",
                extra={"tool_name": tool_name, "workspace_id": context.workspace_id, "error_code": e.code},
            )
            return ToolResult.failure(e)

        input_data = descriptor.dump_input(validated)
        policy = await PolicyEngine.for_workspace(self._store, context.workspace_id, self._clock)
        decision = policy.decide_execution(
            descriptor.name,
            descriptor.risk_level,
            descriptor.requires_confirmation,
            context,
        )

        if not decision.allowed:
            reason = decision.reason or "Denied by workspace policy"
            record_tool_call(tool_name=descriptor.name, status="denied", risk_level=descriptor.risk_level.value)
            await self._audit(
                context.workspace_id,
                context.actor_id,
                "tool_call_denied",
                None,
                {"tool_name": descriptor.name, "reason": reason, "input": input_data},
                policy,
            )
            return ToolResult.failure(PolicyDeniedError(descriptor.name, reason))

        needs_confirmation = decision.requires_confirmation
        record = CallRecord(
            tool_name=descriptor.name,
            workspace_id=context.workspace_id,
            project_id=context.project_id,
            session_id=context.session_id,
            actor_id=context.actor_id,
            input=input_data,
            status=CallStatus.PENDING if needs_confirmation else CallStatus.CONFIRMED,
            created_at=self._clock(),
        )

        call_id: str | None
        try:
            call_id = await self._store.create_call_record(record)
        except Exception as e:
            error = e if isinstance(e, ToolgateError) else PersistenceError("create_call_record", str(e))
            if needs_confirmation:
                logger.error(
                    "Could not record pending call; refusing to propose",
                    extra={"tool_name": descriptor.name, "workspace_id": context.workspace_id},
                )
                return ToolResult.failure(error)
            logger.error(
                "Could not record call; running without a ledger entry",
                extra={"tool_name": descriptor.name, "workspace_id": context.workspace_id},
            )
            call_id = None

        if needs_confirmation:
            record_tool_call(tool_name=descriptor.name, status="pending", risk_level=descriptor.risk_level.value)
            logger.info(
                "Tool call awaiting confirmation",
                extra={"call_id": call_id, "tool_name": descriptor.name, "actor_id": context.actor_id},
            )
            await self._audit(
                context.workspace_id,
                context.actor_id,
                "tool_call_proposed",
                call_id,
                {"tool_name": descriptor.name, "input": input_data, "reason": decision.reason},
                policy,
            )
            return ToolResult.ok(
                {
                    "requires_confirmation": True,
                    "call_id": call_id,
                    "tool_name": descriptor.name,
                    "message": decision.reason or "This action requires confirmation before it runs",
                }
            )

        return await self._run(descriptor, validated, context, call_id, policy, timeout)

    # ─── Confirm / cancel ───────────────────────────────────

    async def _confirm(self, call_id: str, actor_id: str, timeout: float | None) -> ToolResult:
        record = await self._store.get_call_record(call_id)
        if record is None:
            return ToolResult.failure(CallNotFoundError(call_id))
        if record.status != CallStatus.PENDING:
            return ToolResult.failure(InvalidStateError(call_id, record.status.value))

        moved = await self._store.transition_call_record(
            call_id,
            CallStatus.PENDING,
            {"status": CallStatus.CONFIRMED, "confirmed_by": actor_id, "confirmed_at": self._clock()},
        )
        if not moved:
            current = await self._store.get_call_record(call_id)
            status = current.status.value if current else "unknown"
            return ToolResult.failure(InvalidStateError(call_id, status))

        logger.info(
            "Tool call confirmed",
            extra={"call_id": call_id, "tool_name": record.tool_name, "actor_id": actor_id},
        )
        context = record.context()

        # From here on the record is confirmed; every exit must finalize it
        try:
            descriptor = self._catalog.get(record.tool_name)
            policy = await PolicyEngine.for_workspace(self._store, record.workspace_id, self._clock)
            decision = policy.decide_execution(
                descriptor.name,
                descriptor.risk_level,
                descriptor.requires_confirmation,
                context,
            )
            if not decision.allowed:
                reason = decision.reason or "Denied by workspace policy"
                await self._audit(
                    record.workspace_id,
                    actor_id,
                    "tool_call_denied",
                    call_id,
                    {"tool_name": descriptor.name, "reason": reason},
                    policy,
                )
                raise PolicyDeniedError(descriptor.name, reason)
            validated = descriptor.validate_input(record.input)
            await self._audit(
                record.workspace_id,
                actor_id,
                "tool_call_confirmed",
                call_id,
                {"tool_name": descriptor.name, "confirmed_by": actor_id},
                policy,
            )
        except asyncio.CancelledError:
            await self._finalize(call_id, record.tool_name, _failed_patch("Cancelled by caller", self._clock()))
            record_tool_call(tool_name=record.tool_name, status="failed")
            raise
        except Exception as e:
            if not isinstance(e, ToolgateError):
                logger.error(
                    "Confirmed call could not be prepared",
                    exc_info=True,
                    extra={"call_id": call_id, "tool_name": record.tool_name},
                )
                e = ToolExecutionError(record.tool_name, str(e) or type(e).__name__)
            await self._finalize(call_id, record.tool_name, _failed_patch(e.message, self._clock()))
            record_tool_call(tool_name=record.tool_name, status="failed")
            return ToolResult.failure(e)

        return await self._run(descriptor, validated, context, call_id, policy, timeout)

    async def _cancel(self, call_id: str, actor_id: str, reason: str | None) -> ToolResult:
        record = await self._store.get_call_record(call_id)
        if record is None:
            return ToolResult.failure(CallNotFoundError(call_id))

        moved = await self._store.transition_call_record(
            call_id,
            CallStatus.PENDING,
            {"status": CallStatus.CANCELLED, "error_message": reason},
        )
        if not moved:
            current = await self._store.get_call_record(call_id)
            status = current.status.value if current else record.status.value
            return ToolResult.failure(InvalidStateError(call_id, status))

        record_tool_call(tool_name=record.tool_name, status="cancelled")
        logger.info(
            "Tool call cancelled",
            extra={"call_id": call_id, "tool_name": record.tool_name, "actor_id": actor_id},
        )
        await self._audit(
            record.workspace_id,
            actor_id,
            "tool_call_cancelled",
            call_id,
            {"tool_name": record.tool_name, "reason": reason},
        )
        return ToolResult.ok({"call_id": call_id, "status": CallStatus.CANCELLED.value})

    # ─── Effect ─────────────────────────────────────────────

    async def _run(
        self,
        descriptor: ToolDescriptor,
        validated: BaseModel,
        context: InvocationContext,
        call_id: str | None,
        policy: PolicyEngine,
        timeout: float | None,
    ) -> ToolResult:
        """Run the effect under its deadline and finalize the ledger entry.

        Async effects are cancelled at the deadline. A sync effect runs in a
        worker thread that cannot be interrupted: when the deadline passes
        (or the caller is cancelled) the caller gets TIMEOUT right away,
        the record stays ``confirmed`` and the worker finalizes it with the
        real outcome once it returns. See ``wait_for_detached``.
        """
        timeout = timeout if timeout is not None else self._default_timeout
        started = time.monotonic()
        worker: asyncio.Future | None = None

        try:
            with measure_tool_duration(descriptor.name):
                if descriptor.is_async:
                    result = await _with_deadline(
                        descriptor.name, _call_async(descriptor, validated, context), timeout
                    )
                else:
                    worker = asyncio.ensure_future(_call_sync(descriptor, validated, context))
                    result = await _with_deadline(descriptor.name, asyncio.shield(worker), timeout)
            result = _check_output(descriptor, result)
        except asyncio.CancelledError:
            if worker is not None:
                self._detach(worker, descriptor, context, call_id, policy, started)
            else:
                await self._finalize(call_id, descriptor.name, _failed_patch("Cancelled by caller", self._clock()))
                record_tool_call(tool_name=descriptor.name, status="failed", risk_level=descriptor.risk_level.value)
            raise
        except ExecutionTimeoutError as e:
            if worker is not None:
                self._detach(worker, descriptor, context, call_id, policy, started)
                error = ExecutionTimeoutError(descriptor.name, e.timeout, still_running=True)
                logger.warning(
                    "Sync tool effect outlived its deadline; outcome pending",
                    extra={"call_id": call_id, "tool_name": descriptor.name, "error_code": error.code},
                )
                return ToolResult.failure(error)
            result = ToolResult.failure(e)
        except ToolgateError as e:
            result = ToolResult.failure(e)
        except Exception as e:
            result = _unexpected_failure(descriptor, call_id, e)

        return await self._complete(descriptor, context, call_id, policy, result, started)

    async def _complete(
        self,
        descriptor: ToolDescriptor,
        context: InvocationContext,
        call_id: str | None,
        policy: PolicyEngine,
        result: ToolResult,
        started: float,
    ) -> ToolResult:
        now = self._clock()
        if result.success:
            status = CallStatus.EXECUTED
            patch = {"status": status, "output": result.data, "executed_at": now}
        else:
            status = CallStatus.FAILED
            patch = _failed_patch(result.error or "Tool execution failed", now)
        await self._finalize(call_id, descriptor.name, patch)

        duration_ms = round((time.monotonic() - started) * 1000, 1)
        record_tool_call(tool_name=descriptor.name, status=status.value, risk_level=descriptor.risk_level.value)
        logger.info(
            f"Tool call {status.value}",
            extra={
                "call_id": call_id,
                "tool_name": descriptor.name,
                "workspace_id": context.workspace_id,
                "status": status.value,
                "error_code": result.error_code,
                "duration_ms": duration_ms,
            },
        )

        details: dict[str, Any] = {"tool_name": descriptor.name, "success": result.success}
        if not result.success:
            details["error"] = result.error
            details["error_code"] = result.error_code
        await self._audit(
            context.workspace_id,
            context.actor_id,
            "tool_call_executed" if result.success else "tool_call_failed",
            call_id,
            details,
            policy,
        )
        return result

    # ─── Detached sync effects ──────────────────────────────

    def _detach(
        self,
        worker: asyncio.Future,
        descriptor: ToolDescriptor,
        context: InvocationContext,
        call_id: str | None,
        policy: PolicyEngine,
        started: float,
    ) -> None:
        task = asyncio.ensure_future(self._settle(worker, descriptor, context, call_id, policy, started))
        self._detached.add(task)
        task.add_done_callback(self._detached.discard)

    async def _settle(
        self,
        worker: asyncio.Future,
        descriptor: ToolDescriptor,
        context: InvocationContext,
        call_id: str | None,
        policy: PolicyEngine,
        started: float,
    ) -> None:
        try:
            result = _check_output(descriptor, await worker)
        except ToolgateError as e:
            result = ToolResult.failure(e)
        except Exception as e:
            result = _unexpected_failure(descriptor, call_id, e)
        await self._complete(descriptor, context, call_id, policy, result, started)

    async def wait_for_detached(self) -> None:
        """Wait until every sync effect that outlived its caller has finalized."""
        while self._detached:
            await asyncio.gather(*self._detached)

    # ─── Ledger / audit ─────────────────────────────────────

    async def _finalize(self, call_id: str | None, tool_name: str, patch: dict[str, Any]) -> None:
        """Move a confirmed call to its terminal status."""
        if call_id is None:
            return
        try:
            moved = await self._store.transition_call_record(call_id, CallStatus.CONFIRMED, patch)
        except Exception:
            logger.error(
                "Could not finalize call record",
                exc_info=True,
                extra={"call_id": call_id, "tool_name": tool_name},
            )
            return
        if not moved:
            logger.warning(
                "Call record was not in confirmed status at finalization",
                extra={"call_id": call_id, "tool_name": tool_name, "status": patch["status"].value},
            )

    async def _audit(
        self,
        workspace_id: str,
        actor_id: str,
        action: str,
        resource_id: str | None,
        details: dict[str, Any],
        policy: PolicyEngine | None = None,
    ) -> None:
        """Append an audit entry. Failures are logged, never raised."""
        try:
            if policy is None:
                policy = await PolicyEngine.for_workspace(self._store, workspace_id, self._clock)
            entry = AuditEntry(
                workspace_id=workspace_id,
                actor_id=actor_id,
                action=action,
                resource_id=resource_id,
                details=policy.redact_details(details),
                created_at=self._clock(),
            )
            await self._store.append_audit_entry(entry)
        except Exception:
            logger.error(
                "Audit write failed",
                exc_info=True,
                extra={"workspace_id": workspace_id, "action": action, "call_id": resource_id},
            )


def _failed_patch(message: str, now: datetime) -> dict[str, Any]:
    return {"status": CallStatus.FAILED, "error_message": message, "executed_at": now}


async def _call_async(descriptor: ToolDescriptor, validated: BaseModel, context: InvocationContext) -> ToolResult:
    return coerce_result(await descriptor.effect(validated, context))


async def _call_sync(descriptor: ToolDescriptor, validated: BaseModel, context: InvocationContext) -> ToolResult:
    value = await asyncio.to_thread(descriptor.effect, validated, context)
    if inspect.isawaitable(value):
        value = await value
    return coerce_result(value)


async def _with_deadline(tool_name: str, awaitable, timeout: float | None) -> ToolResult:
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except TimeoutError:
        raise ExecutionTimeoutError(tool_name, timeout) from None


def _check_output(descriptor: ToolDescriptor, result: ToolResult) -> ToolResult:
    if not result.success:
        return result
    return result.model_copy(update={"data": descriptor.validate_output(result.data)})


def _unexpected_failure(descriptor: ToolDescriptor, call_id: str | None, error: Exception) -> ToolResult:
    logger.error(
        "Tool effect raised",
        exc_info=error,
        extra={"call_id": call_id, "tool_name": descriptor.name},
    )
    return ToolResult.failure(ToolExecutionError(descriptor.name, str(error) or type(error).__name__))
