#!/usr/bin/env python3
"""
Tests for tool descriptors and the catalog advertised to the LLM.
"""

import pytest
from mcp import types
from pydantic import ValidationError

from planner_chat.tools.catalog import ToolCatalog, ToolDescriptor

TASK_SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string", "description": "Task title"},
        "due": {"type": "string", "format": "date"},
    },
    "required": ["title"],
}


def test_openai_declaration_shape():
    descriptor = ToolDescriptor("create_task", "Create a task", TASK_SCHEMA)

    declaration = descriptor.to_openai_tool()

    assert declaration["type"] == "function"
    function = declaration["function"]
    assert function["name"] == "create_task"
    assert function["description"] == "Create a task"
    assert function["parameters"]["properties"]["title"]["type"] == "string"
    assert function["parameters"]["required"] == ["title"]


def test_tool_without_schema_gets_empty_object():
    declaration = ToolDescriptor("list_tasks").to_openai_tool()
    assert declaration["function"]["parameters"] == {"type": "object", "properties": {}}


def test_extra_schema_keywords_are_kept():
    schema = {**TASK_SCHEMA, "additionalProperties": False}
    declaration = ToolDescriptor("create_task", parameters=schema).to_openai_tool()
    assert declaration["function"]["parameters"]["additionalProperties"] is False


def test_non_object_schema_is_rejected():
    with pytest.raises(ValidationError):
        ToolDescriptor("bad", parameters={"type": "array"}).to_openai_tool()


def test_from_mcp_tool():
    tool = types.Tool(name="taskitem_complete", description=None, inputSchema=TASK_SCHEMA)
    descriptor = ToolDescriptor.from_mcp_tool(tool)

    assert descriptor.name == "taskitem_complete"
    assert descriptor.description == ""
    assert descriptor.parameters == TASK_SCHEMA


class TestToolCatalog:
    def test_lookup_and_payload(self):
        catalog = ToolCatalog([
            ToolDescriptor("create_task", "Create", TASK_SCHEMA),
            ToolDescriptor("list_tasks", "List"),
        ])

        assert len(catalog) == 2
        assert "create_task" in catalog
        assert "delete_everything" not in catalog
        assert catalog.get("list_tasks").description == "List"
        assert catalog.names() == ["create_task", "list_tasks"]
        assert [t["function"]["name"] for t in catalog.to_openai_tools()] == catalog.names()

    def test_unnamed_tools_are_skipped(self):
        catalog = ToolCatalog([ToolDescriptor(""), ToolDescriptor("list_tasks")])
        assert catalog.names() == ["list_tasks"]

    def test_bad_schema_falls_back_to_no_parameters(self):
        catalog = ToolCatalog([
            ToolDescriptor("weird", "Odd schema", {"type": "object", "properties": "nope"}),
        ])

        assert "weird" in catalog
        parameters = catalog.to_openai_tools()[0]["function"]["parameters"]
        assert parameters == {"type": "object", "properties": {}}

    def test_payload_is_a_copy(self):
        catalog = ToolCatalog([ToolDescriptor("list_tasks")])
        catalog.to_openai_tools().clear()
        assert len(catalog.to_openai_tools()) == 1

    def test_empty_catalog(self):
        catalog = ToolCatalog()
        assert len(catalog) == 0
        assert catalog.to_openai_tools() == []
