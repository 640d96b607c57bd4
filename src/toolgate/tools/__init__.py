"""
Toolgate Tools

Typed, self-describing tools and the catalog the executor resolves them from:

    caller → ToolExecutor → ToolCatalog.get(name) → ToolDescriptor.effect

Components:
- ToolDescriptor: name, description, pydantic contracts, risk, scopes, effect
- tool: decorator building a ToolDescriptor from an effect function
- ToolCatalog: name → descriptor registry, plus function-calling schemas
"""

from toolgate.tools.catalog import ToolCatalog
from toolgate.tools.descriptor import ToolDescriptor, coerce_result, tool

__all__ = [
    "ToolCatalog",
    "ToolDescriptor",
    "coerce_result",
    "tool",
]
