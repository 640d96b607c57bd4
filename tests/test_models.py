"""Tests for toolgate core data models."""

import pytest
from pydantic import ValidationError

from toolgate.core.models import (
    CallRecord,
    CallStatus,
    Citation,
    InvocationContext,
    PolicyConfig,
    QuotaKind,
    QuotaLimits,
    RiskLevel,
    SourceType,
    ToolResult,
    default_policy,
)


class TestEnums:
    def test_risk_levels(self):
        assert [r.value for r in RiskLevel] == ["LOW", "MEDIUM", "HIGH"]

    def test_call_status_values(self):
        assert CallStatus("pending") == CallStatus.PENDING
        assert CallStatus.CANCELLED.value == "cancelled"

    @pytest.mark.parametrize(
        "status, terminal",
        [
            (CallStatus.PENDING, False),
            (CallStatus.CONFIRMED, False),
            (CallStatus.EXECUTED, True),
            (CallStatus.FAILED, True),
            (CallStatus.CANCELLED, True),
        ],
    )
    def test_terminal_states(self, status, terminal):
        assert status.is_terminal is terminal

    def test_enums_are_strings(self):
        assert QuotaKind.LLM_TOKENS == "llm_tokens"
        assert RiskLevel.HIGH == "HIGH"


class TestInvocationContext:
    def test_frozen(self, ctx):
        with pytest.raises(ValidationError):
            ctx.workspace_id = "ws-evil"

    def test_optional_fields(self):
        c = InvocationContext(actor_id="u1", workspace_id="w1")
        assert c.project_id is None
        assert c.session_id is None


class TestCallRecord:
    def test_defaults(self):
        record = CallRecord(tool_name="add_note", workspace_id="w1", actor_id="u1")
        assert record.status == CallStatus.PENDING
        assert record.id
        assert record.created_at.tzinfo is not None
        assert record.output is None
        assert record.input == {}

    def test_unique_ids(self):
        a = CallRecord(tool_name="t", workspace_id="w", actor_id="u")
        b = CallRecord(tool_name="t", workspace_id="w", actor_id="u")
        assert a.id != b.id

    def test_context_roundtrip(self, ctx):
        record = CallRecord(
            tool_name="send_email",
            workspace_id=ctx.workspace_id,
            project_id=ctx.project_id,
            session_id=ctx.session_id,
            actor_id=ctx.actor_id,
        )
        assert record.context() == ctx


class TestToolResult:
    def test_ok(self):
        result = ToolResult.ok({"note_id": "n1"})
        assert result.success is True
        assert result.data == {"note_id": "n1"}
        assert result.citations == []
        assert result.error is None

    def test_ok_with_citations(self):
        citation = Citation(source_type=SourceType.NOTE, source_id="n1", title="Kickoff")
        result = ToolResult.ok("done", citations=[citation])
        assert result.citations[0].confidence == 1.0

    def test_requires_confirmation_flag(self):
        pending = ToolResult.ok({"requires_confirmation": True, "call_id": "c1"})
        assert pending.requires_confirmation is True
        assert ToolResult.ok({"x": 1}).requires_confirmation is False
        assert ToolResult.ok("text").requires_confirmation is False


class TestCitation:
    def test_confidence_bounds(self):
        with pytest.raises(ValidationError):
            Citation(source_type=SourceType.EMAIL, source_id="e1", title="Re: budget", confidence=1.5)

    def test_unknown_source_type(self):
        with pytest.raises(ValidationError):
            Citation(source_type="tweet", source_id="t1", title="x")


class TestPolicyConfig:
    def test_defaults(self):
        config = default_policy()
        assert config.allowed_read_sources == ["*"]
        assert config.allowed_write_operations == ["note", "task", "decision"]
        assert config.external_communication_requires_confirmation is True
        assert config.allowed_file_paths == []
        assert config.blocked_file_paths == ["/etc", "/var", "/usr", "/bin", "/sbin"]
        assert config.allowed_domains == []
        assert config.blocked_domains == []
        assert config.quotas == QuotaLimits(
            llm_tokens_per_day=100_000, audio_minutes_per_month=600, storage_gb=10
        )
        assert config.redact_pii is False

    def test_camel_case_keys(self):
        config = PolicyConfig.model_validate(
            {
                "allowedWriteOperations": ["*"],
                "externalCommunicationRequiresConfirmation": False,
                "blockedDomains": ["evil.example"],
                "redactPII": True,
                "quotas": {"llmTokensPerDay": 500},
            }
        )
        assert config.allowed_write_operations == ["*"]
        assert config.external_communication_requires_confirmation is False
        assert config.blocked_domains == ["evil.example"]
        assert config.redact_pii is True
        assert config.quotas.llm_tokens_per_day == 500
        assert config.quotas.audio_minutes_per_month == 600

    def test_snake_case_keys(self):
        config = PolicyConfig(allowed_domains=["example.com"], redact_pii=True)
        assert config.allowed_domains == ["example.com"]
        assert config.redact_pii is True

    def test_missing_keys_fall_back(self):
        config = PolicyConfig.model_validate({"allowedDomains": ["example.com"]})
        assert config.allowed_write_operations == ["note", "task", "decision"]
        assert config.blocked_file_paths[0] == "/etc"

    def test_frozen(self):
        config = default_policy()
        with pytest.raises(ValidationError):
            config.redact_pii = True

    def test_json_roundtrip_by_alias(self):
        config = PolicyConfig(redact_pii=True, allowed_write_operations=["note"])
        restored = PolicyConfig.model_validate_json(config.model_dump_json(by_alias=True))
        assert restored == config

    @pytest.mark.parametrize(
        "kind, expected",
        [
            (QuotaKind.LLM_TOKENS, 100_000),
            (QuotaKind.AUDIO_MINUTES, 600),
            (QuotaKind.STORAGE, 10),
        ],
    )
    def test_limit_for(self, kind, expected):
        assert QuotaLimits().limit_for(kind) == expected
