"""
Toolgate Tool Catalog

In-process registry mapping tool name -> ToolDescriptor. One catalog
instance is built at startup and handed to the executor; there is no
module-level singleton, so tests and tenants can hold their own sets.
"""

from __future__ import annotations

from typing import Any

from toolgate.core.models import RiskLevel, ToolScope
from toolgate.exceptions import DuplicateToolError, ToolNotFoundError
from toolgate.logging import get_logger
from toolgate.tools.descriptor import ToolDescriptor

logger = get_logger("toolgate.tools.catalog")


class ToolCatalog:
    """Registry of tool descriptors, keyed by name, in registration order."""

    def __init__(self, tools: list[ToolDescriptor] | None = None) -> None:
        self._tools: dict[str, ToolDescriptor] = {}
        for t in tools or []:
            self.register(t)

    def register(self, descriptor: ToolDescriptor) -> None:
        """Register a tool.

        Raises:
            DuplicateToolError: If a tool with the same name is already registered.
        """
        if descriptor.name in self._tools:
            raise DuplicateToolError(descriptor.name)
        self._tools[descriptor.name] = descriptor
        logger.debug(
            "Tool registered",
            extra={"tool_name": descriptor.name, "risk_level": descriptor.risk_level.value},
        )

    def unregister(self, name: str) -> ToolDescriptor:
        if name not in self._tools:
            raise ToolNotFoundError(name)
        return self._tools.pop(name)

    def get(self, name: str) -> ToolDescriptor:
        """Look up a tool by name.

        Raises:
            ToolNotFoundError: If no tool has that name.
        """
        try:
            return self._tools[name]
        except KeyError:
            raise ToolNotFoundError(name) from None

    def list(
        self,
        risk_level: RiskLevel | None = None,
        scope: ToolScope | None = None,
    ) -> list[ToolDescriptor]:
        """Return tools in registration order, optionally filtered."""
        result: list[ToolDescriptor] = []
        for t in self._tools.values():
            if risk_level is not None and t.risk_level != risk_level:
                continue
            if scope is not None and scope not in t.scopes:
                continue
            result.append(t)
        return result

    def requiring_confirmation(self) -> list[ToolDescriptor]:
        return [t for t in self._tools.values() if t.requires_confirmation]

    def names(self) -> list[str]:
        return list(self._tools)

    def to_openai_functions(
        self, tools: list[ToolDescriptor] | None = None
    ) -> list[dict[str, Any]]:
        """Function-calling schemas for a set of tools (all if None)."""
        source = tools if tools is not None else list(self._tools.values())
        return [t.to_openai_function() for t in source]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools
