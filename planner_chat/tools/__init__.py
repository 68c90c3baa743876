"""MCP tool access: descriptors, catalog and the stdio invoker."""

from __future__ import annotations

from .catalog import ToolCatalog, ToolDescriptor
from .invoker import ToolInvoker

__all__ = ["ToolCatalog", "ToolDescriptor", "ToolInvoker"]
