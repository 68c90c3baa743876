"""
Tool descriptors and the per-session tool catalog offered to the LLM.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Literal

import structlog
from mcp import types
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = structlog.get_logger(__name__)

EMPTY_PARAMETERS: dict[str, Any] = {"type": "object", "properties": {}}


class ParameterSchema(BaseModel):
    """The subset of JSON Schema accepted as a tool's parameter declaration."""

    model_config = ConfigDict(extra="allow")

    type: Literal["object"] = "object"
    properties: dict[str, dict[str, Any]] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)


@dataclass(frozen=True)
class ToolDescriptor:
    """A named tool exposed by the tool server."""
    name: str
    description: str = ""
    parameters: dict[str, Any] | None = None

    @classmethod
    def from_mcp_tool(cls, tool: types.Tool) -> ToolDescriptor:
        return cls(
            name=tool.name,
            description=tool.description or "",
            parameters=tool.inputSchema or None,
        )

    def to_openai_tool(self) -> dict[str, Any]:
        """Render the OpenAI-compatible function declaration.

        Raises:
            ValidationError: If the parameter schema cannot be parsed.
        """
        parameters = EMPTY_PARAMETERS
        if self.parameters is not None:
            parameters = ParameterSchema.model_validate(self.parameters).model_dump(
                exclude_none=True
            )
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


class ToolCatalog:
    """Immutable name -> descriptor mapping built once at session start."""

    def __init__(self, descriptors: Iterable[ToolDescriptor] = ()) -> None:
        self._tools: dict[str, ToolDescriptor] = {}
        self._payload: list[dict[str, Any]] = []

        for descriptor in descriptors:
            if not descriptor.name:
                logger.warning("Skipping tool without a name")
                continue
            try:
                declaration = descriptor.to_openai_tool()
            except ValidationError as e:
                logger.warning(
                    "Failed to parse schema for tool, registering without parameters",
                    tool=descriptor.name,
                    error=str(e),
                )
                declaration = ToolDescriptor(
                    descriptor.name, descriptor.description
                ).to_openai_tool()
            self._tools[descriptor.name] = descriptor
            self._payload.append(declaration)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def get(self, name: str) -> ToolDescriptor | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def to_openai_tools(self) -> list[dict[str, Any]]:
        return list(self._payload)
