"""
Toolgate Tool Descriptor

A tool is a static, self-describing unit of capability: a name, a
human description, pydantic input/output contracts, a risk level,
a confirmation requirement, the scopes it may be offered in, and the
effect function that performs the action.

The contracts are pydantic model classes. ``validate_input`` turns the
unstructured input coming from the LLM or the HTTP layer into a typed
model instance, and the effect only ever sees that instance.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from pydantic import BaseModel, ValidationError

from toolgate.core.models import InvocationContext, RiskLevel, ToolResult, ToolScope
from toolgate.exceptions import ToolExecutionError, ToolInputError

Effect = Callable[[Any, InvocationContext], Any] | Callable[[Any, InvocationContext], Awaitable[Any]]


class ToolDescriptor:
    """A tool registered in the catalog with its contracts and effect."""

    def __init__(
        self,
        name: str,
        description: str,
        input_model: type[BaseModel],
        effect: Effect,
        output_model: type[BaseModel] | None = None,
        risk_level: RiskLevel = RiskLevel.LOW,
        requires_confirmation: bool = False,
        scopes: Iterable[ToolScope] = (ToolScope.WORKSPACE,),
    ):
        if not name:
            raise ValueError("Tool name must not be empty")
        self.name = name
        self.description = description
        self.input_model = input_model
        self.output_model = output_model
        self.effect = effect
        self.risk_level = RiskLevel(risk_level)
        self.requires_confirmation = requires_confirmation
        self.scopes = frozenset(ToolScope(s) for s in scopes)

    @property
    def is_async(self) -> bool:
        """True when the effect is a coroutine function or has an async __call__."""
        return inspect.iscoroutinefunction(self.effect) or inspect.iscoroutinefunction(
            getattr(self.effect, "__call__", None)
        )

    def validate_input(self, raw: Any) -> BaseModel:
        """Validate unstructured input against the input contract.

        Raises:
            ToolInputError: If the input does not satisfy the contract.
        """
        if isinstance(raw, self.input_model):
            return raw
        try:
            return self.input_model.model_validate(raw if raw is not None else {})
        except ValidationError as e:
            raise ToolInputError(self.name, _summarize_errors(e), _error_list(e)) from e

    def validate_output(self, data: Any) -> Any:
        """Validate effect output against the output contract, if any.

        Returns the JSON-safe form of the output so it can go straight
        into the ledger. A mismatch is an execution failure, not an input
        error: the effect has already run.

        Raises:
            ToolExecutionError: If the output does not satisfy the contract.
        """
        if self.output_model is None:
            if isinstance(data, BaseModel):
                return data.model_dump(mode="json")
            return data
        try:
            model = (
                data
                if isinstance(data, self.output_model)
                else self.output_model.model_validate(data)
            )
        except ValidationError as e:
            raise ToolExecutionError(
                self.name,
                f"Output of '{self.name}' does not match its contract: {_summarize_errors(e)}",
                details={"errors": _error_list(e)},
            ) from e
        return model.model_dump(mode="json")

    def dump_input(self, validated: BaseModel) -> dict[str, Any]:
        """JSON-safe form of validated input, as stored on the call record."""
        return validated.model_dump(mode="json")

    def input_schema(self) -> dict[str, Any]:
        return self.input_model.model_json_schema()

    def to_openai_function(self) -> dict[str, Any]:
        """Function-calling schema for the chat loop."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema(),
            },
        }

    def __repr__(self) -> str:
        return (
            f"ToolDescriptor(name={self.name!r}, risk_level={self.risk_level.value}, "
            f"requires_confirmation={self.requires_confirmation})"
        )


def tool(
    name: str,
    description: str,
    input_model: type[BaseModel],
    output_model: type[BaseModel] | None = None,
    risk_level: RiskLevel = RiskLevel.LOW,
    requires_confirmation: bool = False,
    scopes: Iterable[ToolScope] = (ToolScope.WORKSPACE,),
) -> Callable[[Effect], ToolDescriptor]:
    """Decorator turning an effect function into a ToolDescriptor.

    Usage:
        @tool("add_note", "Add a note to a project", AddNoteInput, scopes=[ToolScope.PROJECT])
        async def add_note(data: AddNoteInput, ctx: InvocationContext) -> ToolResult:
            ...
    """

    def decorator(effect: Effect) -> ToolDescriptor:
        return ToolDescriptor(
            name=name,
            description=description,
            input_model=input_model,
            effect=effect,
            output_model=output_model,
            risk_level=risk_level,
            requires_confirmation=requires_confirmation,
            scopes=scopes,
        )

    return decorator


def coerce_result(value: Any) -> ToolResult:
    """Normalize whatever an effect returned into a ToolResult."""
    if isinstance(value, ToolResult):
        return value
    return ToolResult.ok(value)


def _error_list(error: ValidationError) -> list[dict]:
    return [
        {"loc": ".".join(str(p) for p in e["loc"]), "msg": e["msg"], "type": e["type"]}
        for e in error.errors()
    ]


def _summarize_errors(error: ValidationError) -> str:
    parts = []
    for e in error.errors()[:3]:
        loc = ".".join(str(p) for p in e["loc"])
        parts.append(f"{loc}: {e['msg']}" if loc else e["msg"])
    suffix = ", ..." if error.error_count() > 3 else ""
    return "; ".join(parts) + suffix
