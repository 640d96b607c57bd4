"""Tests for tool descriptors: contracts, schemas and the tool decorator."""

import pytest
from pydantic import BaseModel, Field

from toolgate.core.models import InvocationContext, RiskLevel, ToolResult, ToolScope
from toolgate.exceptions import ToolExecutionError, ToolInputError
from toolgate.tools.descriptor import ToolDescriptor, coerce_result, tool


class AddNoteInput(BaseModel):
    title: str = Field(min_length=1)
    content: str = ""
    pinned: bool = False


class AddNoteOutput(BaseModel):
    note_id: str
    title: str


class SearchInput(BaseModel):
    query: str = "*"
    limit: int = Field(10, ge=1, le=50)


def _noop(data, ctx):
    return None


class TestValidateInput:
    def test_valid_input_returns_model(self):
        desc = ToolDescriptor("add_note", "Add a note", AddNoteInput, _noop)
        validated = desc.validate_input({"title": "Kickoff"})
        assert isinstance(validated, AddNoteInput)
        assert validated.content == ""

    def test_missing_field_raises(self):
        desc = ToolDescriptor("add_note", "Add a note", AddNoteInput, _noop)
        with pytest.raises(ToolInputError) as exc_info:
            desc.validate_input({"content": "no title"})
        err = exc_info.value
        assert err.tool_name == "add_note"
        assert err.errors[0]["loc"] == "title"
        assert err.code == "VALIDATION_ERROR"

    def test_wrong_type_raises(self):
        desc = ToolDescriptor("search_notes", "Search", SearchInput, _noop)
        with pytest.raises(ToolInputError, match="limit"):
            desc.validate_input({"limit": 500})

    def test_none_means_empty_object(self):
        desc = ToolDescriptor("search_notes", "Search", SearchInput, _noop)
        assert desc.validate_input(None) == SearchInput()

    def test_model_instance_passes_through(self):
        desc = ToolDescriptor("add_note", "Add a note", AddNoteInput, _noop)
        data = AddNoteInput(title="x")
        assert desc.validate_input(data) is data

    def test_dump_input_is_json_safe(self):
        desc = ToolDescriptor("add_note", "Add a note", AddNoteInput, _noop)
        dumped = desc.dump_input(desc.validate_input({"title": "Kickoff"}))
        assert dumped == {"title": "Kickoff", "content": "", "pinned": False}


class TestValidateOutput:
    def test_no_output_model_passes_data(self):
        desc = ToolDescriptor("add_note", "Add a note", AddNoteInput, _noop)
        assert desc.validate_output({"anything": 1}) == {"anything": 1}

    def test_output_model_accepts_matching_data(self):
        desc = ToolDescriptor("add_note", "Add a note", AddNoteInput, _noop, output_model=AddNoteOutput)
        assert desc.validate_output({"note_id": "n1", "title": "Kickoff"}) == {
            "note_id": "n1",
            "title": "Kickoff",
        }

    def test_output_model_rejects_mismatch(self):
        desc = ToolDescriptor("add_note", "Add a note", AddNoteInput, _noop, output_model=AddNoteOutput)
        with pytest.raises(ToolExecutionError, match="does not match its contract") as exc_info:
            desc.validate_output({"id": "n1"})
        assert exc_info.value.code == "EXECUTION_ERROR"
        assert exc_info.value.details["errors"]

    def test_model_output_is_dumped(self):
        desc = ToolDescriptor("add_note", "Add a note", AddNoteInput, _noop)
        out = desc.validate_output(AddNoteOutput(note_id="n1", title="t"))
        assert out == {"note_id": "n1", "title": "t"}


class TestDescriptorMetadata:
    def test_defaults(self):
        desc = ToolDescriptor("add_note", "Add a note", AddNoteInput, _noop)
        assert desc.risk_level == RiskLevel.LOW
        assert desc.requires_confirmation is False
        assert desc.scopes == frozenset({ToolScope.WORKSPACE})

    def test_is_async(self):
        async def add_note(data, ctx):
            return None

        class Effect:
            async def __call__(self, data, ctx):
                return None

        assert ToolDescriptor("add_note", "d", AddNoteInput, add_note).is_async is True
        assert ToolDescriptor("add_note", "d", AddNoteInput, Effect()).is_async is True
        assert ToolDescriptor("add_note", "d", AddNoteInput, _noop).is_async is False

    def test_string_enums_are_coerced(self):
        desc = ToolDescriptor("add_note", "d", AddNoteInput, _noop, risk_level="HIGH", scopes=["project"])
        assert desc.risk_level == RiskLevel.HIGH
        assert desc.scopes == frozenset({ToolScope.PROJECT})

    def test_empty_name_rejected(self):
        with pytest.raises(ValueError):
            ToolDescriptor("", "d", AddNoteInput, _noop)

    def test_openai_function_schema(self):
        desc = ToolDescriptor("add_note", "Add a note to a project", AddNoteInput, _noop)
        fn = desc.to_openai_function()
        assert fn["type"] == "function"
        assert fn["function"]["name"] == "add_note"
        assert fn["function"]["description"] == "Add a note to a project"
        params = fn["function"]["parameters"]
        assert params["type"] == "object"
        assert "title" in params["properties"]
        assert params["required"] == ["title"]

    def test_repr(self):
        desc = ToolDescriptor("send_email", "d", AddNoteInput, _noop, risk_level=RiskLevel.HIGH)
        assert "send_email" in repr(desc)
        assert "HIGH" in repr(desc)


class TestToolDecorator:
    def test_builds_descriptor(self):
        @tool("add_note", "Add a note", AddNoteInput, risk_level=RiskLevel.MEDIUM, scopes=[ToolScope.PROJECT])
        async def add_note(data: AddNoteInput, ctx: InvocationContext) -> ToolResult:
            return ToolResult.ok({"title": data.title})

        assert isinstance(add_note, ToolDescriptor)
        assert add_note.name == "add_note"
        assert add_note.risk_level == RiskLevel.MEDIUM
        assert ToolScope.PROJECT in add_note.scopes

    @pytest.mark.asyncio
    async def test_effect_is_kept(self, ctx):
        @tool("add_note", "Add a note", AddNoteInput)
        async def add_note(data: AddNoteInput, ctx: InvocationContext) -> ToolResult:
            return ToolResult.ok({"title": data.title, "by": ctx.actor_id})

        result = await add_note.effect(AddNoteInput(title="x"), ctx)
        assert result.data == {"title": "x", "by": "user-alice"}


class TestCoerceResult:
    def test_tool_result_unchanged(self):
        result = ToolResult.failure("nope", "NOT_FOUND")
        assert coerce_result(result) is result

    def test_raw_value_wrapped(self):
        result = coerce_result({"note_id": "n1"})
        assert result.success is True
        assert result.data == {"note_id": "n1"}

    def test_none_wrapped(self):
        assert coerce_result(None) == ToolResult.ok(None)
