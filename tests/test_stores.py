"""Contract tests for ToolStore implementations.

Every test runs against MemoryToolStore and SqlToolStore (SQLite :memory:).
"""

from datetime import UTC, datetime

import pytest

from toolgate.core.models import (
    AuditEntry,
    CallRecord,
    CallStatus,
    PolicyConfig,
    QuotaKind,
    QuotaLimits,
)
from toolgate.exceptions import CallNotFoundError, PersistenceError
from toolgate.storage.base import ToolStore
from toolgate.storage.memory import MemoryToolStore
from toolgate.storage.sql import SqlToolStore

WINDOW = datetime(2026, 3, 15, tzinfo=UTC)


def _record(status: CallStatus = CallStatus.PENDING, workspace_id: str = "ws-acme", **kwargs) -> CallRecord:
    return CallRecord(
        tool_name=kwargs.pop("tool_name", "send_email"),
        workspace_id=workspace_id,
        project_id="proj-launch",
        session_id="chat-1",
        actor_id="user-alice",
        input={"to": "team@acme.test", "subject": "Launch", "tags": ["a", "b"]},
        status=status,
        **kwargs,
    )


class TestProtocol:
    def test_implementations_satisfy_protocol(self, store):
        assert isinstance(store, ToolStore)


class TestCallLedger:
    @pytest.mark.asyncio
    async def test_create_and_get(self, store):
        record = _record()
        call_id = await store.create_call_record(record)
        assert call_id == record.id

        fetched = await store.get_call_record(call_id)
        assert fetched == record

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        assert await store.get_call_record("nope") is None

    @pytest.mark.asyncio
    async def test_update(self, store):
        record = _record(CallStatus.CONFIRMED)
        await store.create_call_record(record)
        now = datetime(2026, 3, 15, 10, 31, tzinfo=UTC)

        await store.update_call_record(
            record.id,
            {"status": CallStatus.EXECUTED, "output": {"message_id": "m-1"}, "executed_at": now},
        )

        fetched = await store.get_call_record(record.id)
        assert fetched.status == CallStatus.EXECUTED
        assert fetched.output == {"message_id": "m-1"}
        assert fetched.executed_at == now
        assert fetched.input == record.input

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, store):
        with pytest.raises(CallNotFoundError):
            await store.update_call_record("nope", {"status": CallStatus.FAILED})

    @pytest.mark.asyncio
    async def test_update_rejects_immutable_fields(self, store):
        record = _record()
        await store.create_call_record(record)
        with pytest.raises(ValueError, match="not patchable"):
            await store.update_call_record(record.id, {"tool_name": "other"})

    @pytest.mark.asyncio
    async def test_transition_when_expected(self, store):
        record = _record()
        await store.create_call_record(record)

        moved = await store.transition_call_record(
            record.id,
            CallStatus.PENDING,
            {"status": CallStatus.CONFIRMED, "confirmed_by": "user-bob"},
        )

        assert moved is True
        fetched = await store.get_call_record(record.id)
        assert fetched.status == CallStatus.CONFIRMED
        assert fetched.confirmed_by == "user-bob"

    @pytest.mark.asyncio
    async def test_transition_when_not_expected(self, store):
        record = _record(CallStatus.EXECUTED)
        await store.create_call_record(record)

        moved = await store.transition_call_record(
            record.id, CallStatus.PENDING, {"status": CallStatus.CONFIRMED}
        )

        assert moved is False
        assert (await store.get_call_record(record.id)).status == CallStatus.EXECUTED

    @pytest.mark.asyncio
    async def test_transition_only_once(self, store):
        record = _record()
        await store.create_call_record(record)
        patch = {"status": CallStatus.CONFIRMED}
        assert await store.transition_call_record(record.id, CallStatus.PENDING, patch) is True
        assert await store.transition_call_record(record.id, CallStatus.PENDING, patch) is False

    @pytest.mark.asyncio
    async def test_transition_missing(self, store):
        assert await store.transition_call_record("nope", CallStatus.PENDING, {"status": CallStatus.CONFIRMED}) is False

    @pytest.mark.asyncio
    async def test_list_filters(self, store):
        pending = _record()
        executed = _record(CallStatus.EXECUTED, tool_name="add_note")
        elsewhere = _record(workspace_id="ws-other")
        for r in (pending, executed, elsewhere):
            await store.create_call_record(r)

        all_calls = await store.list_call_records("ws-acme")
        assert {r.id for r in all_calls} == {pending.id, executed.id}

        only_pending = await store.list_call_records("ws-acme", CallStatus.PENDING)
        assert [r.id for r in only_pending] == [pending.id]

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self, store):
        record = _record()
        await store.create_call_record(record)
        fetched = await store.get_call_record(record.id)
        fetched.input["to"] = "attacker@evil.test"
        assert (await store.get_call_record(record.id)).input["to"] == "team@acme.test"


class TestAudit:
    @pytest.mark.asyncio
    async def test_append_and_list(self, store):
        entry = AuditEntry(
            workspace_id="ws-acme",
            actor_id="user-alice",
            action="tool_call_proposed",
            resource_id="call-1",
            details={"tool_name": "send_email", "input": {"to": "[EMAIL]"}},
        )
        await store.append_audit_entry(entry)
        await store.append_audit_entry(
            AuditEntry(workspace_id="ws-other", actor_id="user-bob", action="tool_call_denied")
        )

        entries = await store.list_audit_entries("ws-acme")
        assert entries == [entry]
        assert entries[0].resource_type == "tool_call"


class TestPolicyConfig:
    @pytest.mark.asyncio
    async def test_default_when_absent(self, store):
        assert await store.load_policy_config("ws-new") == PolicyConfig()

    @pytest.mark.asyncio
    async def test_save_and_load(self, store):
        config = PolicyConfig(
            allowed_write_operations=["*"],
            redact_pii=True,
            quotas=QuotaLimits(llm_tokens_per_day=500),
        )
        await store.save_policy_config("ws-acme", config)
        assert await store.load_policy_config("ws-acme") == config

    @pytest.mark.asyncio
    async def test_save_replaces(self, store):
        await store.save_policy_config("ws-acme", PolicyConfig(redact_pii=True))
        await store.save_policy_config("ws-acme", PolicyConfig(redact_pii=False))
        assert (await store.load_policy_config("ws-acme")).redact_pii is False


class TestUsage:
    @pytest.mark.asyncio
    async def test_query_empty(self, store):
        assert await store.query_usage("ws-acme", QuotaKind.LLM_TOKENS, WINDOW) == 0

    @pytest.mark.asyncio
    async def test_record_accumulates(self, store):
        assert await store.record_usage("ws-acme", QuotaKind.LLM_TOKENS, WINDOW, 40) == 40
        assert await store.record_usage("ws-acme", QuotaKind.LLM_TOKENS, WINDOW, 2.5) == 42.5
        assert await store.query_usage("ws-acme", QuotaKind.LLM_TOKENS, WINDOW) == 42.5

    @pytest.mark.asyncio
    async def test_windows_and_kinds_are_separate(self, store):
        await store.record_usage("ws-acme", QuotaKind.LLM_TOKENS, WINDOW, 40)
        other_window = datetime(2026, 3, 14, tzinfo=UTC)
        assert await store.query_usage("ws-acme", QuotaKind.LLM_TOKENS, other_window) == 0
        assert await store.query_usage("ws-acme", QuotaKind.AUDIO_MINUTES, WINDOW) == 0

    @pytest.mark.asyncio
    async def test_reserve_within_limit(self, store):
        await store.record_usage("ws-acme", QuotaKind.LLM_TOKENS, WINDOW, 80)
        reserved, used_before = await store.reserve_usage("ws-acme", QuotaKind.LLM_TOKENS, WINDOW, 20, 100)
        assert reserved is True
        assert used_before == 80
        assert await store.query_usage("ws-acme", QuotaKind.LLM_TOKENS, WINDOW) == 100

    @pytest.mark.asyncio
    async def test_reserve_over_limit_changes_nothing(self, store):
        await store.record_usage("ws-acme", QuotaKind.LLM_TOKENS, WINDOW, 80)
        reserved, used_before = await store.reserve_usage("ws-acme", QuotaKind.LLM_TOKENS, WINDOW, 30, 100)
        assert reserved is False
        assert used_before == 80
        assert await store.query_usage("ws-acme", QuotaKind.LLM_TOKENS, WINDOW) == 80

    @pytest.mark.asyncio
    async def test_reserve_fresh_counter(self, store):
        reserved, used_before = await store.reserve_usage("ws-acme", QuotaKind.STORAGE, WINDOW, 3, 10)
        assert reserved is True
        assert used_before == 0


class TestSqlStore:
    @pytest.mark.asyncio
    async def test_file_database_persists(self, tmp_path):
        path = str(tmp_path / "toolgate.db")
        record = _record()

        first = SqlToolStore(path)
        await first.create_call_record(record)
        first.close()

        second = SqlToolStore(path)
        try:
            assert await second.get_call_record(record.id) == record
        finally:
            second.close()

    @pytest.mark.asyncio
    async def test_driver_errors_become_persistence_errors(self, sql_store):
        record = _record()
        await sql_store.create_call_record(record)
        with pytest.raises(PersistenceError) as exc_info:
            await sql_store.create_call_record(record)
        assert exc_info.value.operation == "create_call_record"

    @pytest.mark.asyncio
    async def test_malformed_policy_row_is_persistence_error(self, sql_store, write_raw_policy):
        write_raw_policy(sql_store, "ws-acme", "{bad")
        with pytest.raises(PersistenceError) as exc_info:
            await sql_store.load_policy_config("ws-acme")
        assert exc_info.value.operation == "load_policy_config"

    @pytest.mark.asyncio
    async def test_store_usable_after_error(self, sql_store):
        record = _record()
        await sql_store.create_call_record(record)
        with pytest.raises(PersistenceError):
            await sql_store.create_call_record(record)
        assert await sql_store.get_call_record(record.id) == record


class TestMemoryStore:
    @pytest.mark.asyncio
    async def test_seeded_policies(self):
        config = PolicyConfig(redact_pii=True)
        store = MemoryToolStore(policies={"ws-acme": config})
        assert await store.load_policy_config("ws-acme") is config
