#!/usr/bin/env python3
"""
Test script for logging utilities.

This validates tool error normalization and the timed operation helpers.
"""

import pytest
from mcp import McpError, types
from pydantic import ValidationError

from planner_chat.logging_utils import (
    classify_tool_error,
    configure_logging,
    log_operation,
    operation_context,
    tool_error,
)


class TestClassifyToolError:
    """Map tool server failures onto MCP error codes."""

    @pytest.mark.parametrize(
        "error,code,category",
        [
            (TimeoutError("handshake"), types.INTERNAL_ERROR, "timeout_error"),
            (BrokenPipeError(), types.INTERNAL_ERROR, "connection_error"),
            (ConnectionResetError("reset"), types.INTERNAL_ERROR, "connection_error"),
            (ValueError("bad arg"), types.INVALID_PARAMS, "parameter_error"),
            (TypeError("bad type"), types.INVALID_PARAMS, "parameter_error"),
            (RuntimeError("??"), types.INTERNAL_ERROR, "unknown_error"),
        ],
    )
    def test_categories(self, error, code, category):
        assert classify_tool_error(error) == (code, category)

    def test_mcp_error_keeps_its_code(self):
        mcp_error = McpError(
            error=types.ErrorData(code=types.PARSE_ERROR, message="Parse failed")
        )
        assert classify_tool_error(mcp_error) == (types.PARSE_ERROR, "mcp_error")

    def test_validation_error_before_value_error(self):
        """pydantic's ValidationError is a ValueError but gets its own category."""
        validation_error = ValidationError.from_exception_data(
            "ValidationError", [{"type": "missing", "loc": ("title",), "input": {}}]
        )
        assert classify_tool_error(validation_error) == (types.INVALID_PARAMS, "validation_error")


class TestToolError:
    """Wrap tool server failures as McpError."""

    def test_call_failure_names_invoker_and_tool(self):
        error = tool_error(
            BrokenPipeError("pipe closed"),
            "call_tool create_task",
            invoker="planner-tools:s1",
            tool="create_task",
        )

        assert isinstance(error, McpError)
        assert error.error.code == types.INTERNAL_ERROR
        assert error.error.message == "call_tool create_task failed: pipe closed"
        assert error.error.data == {
            "operation": "call_tool create_task",
            "invoker": "planner-tools:s1",
            "tool": "create_task",
            "error_category": "connection_error",
            "original_error_type": "BrokenPipeError",
        }

    def test_tool_omitted_when_not_given(self):
        error = tool_error(RuntimeError("boom"), "list_tools", invoker="planner-tools:s1")
        assert "tool" not in error.error.data
        assert error.error.data["operation"] == "list_tools"

    def test_mcp_error_keeps_message(self):
        original = McpError(
            error=types.ErrorData(code=types.METHOD_NOT_FOUND, message="No such tool")
        )
        error = tool_error(original, "call_tool x", invoker="planner-tools:s1", tool="x")
        assert error.error.code == types.METHOD_NOT_FOUND
        assert error.error.message == "No such tool"


class TestOperations:
    """Test the timed operation helpers."""

    @pytest.mark.asyncio
    async def test_log_operation_returns_result(self):
        @log_operation("create_session", bind=("session_id", "user_id"))
        async def create_session(session_id, user_id):
            return session_id, user_id

        assert create_session.__name__ == "create_session"
        assert await create_session("s1", user_id="u1") == ("s1", "u1")

    @pytest.mark.asyncio
    async def test_log_operation_reraises(self):
        @log_operation("create_session", bind=("session_id",))
        async def failing(session_id):
            raise ValueError("Test error")

        with pytest.raises(ValueError, match="Test error"):
            await failing("s1")

    @pytest.mark.asyncio
    async def test_log_operation_on_method_binds_named_arguments(self):
        class Factory:
            @log_operation("create_session", bind=("session_id", "missing"))
            async def create(self, session_id, user_id):
                return self, session_id

        factory = Factory()
        assert await factory.create("s1", "u1") == (factory, "s1")

    @pytest.mark.asyncio
    async def test_operation_context_yields_logger(self):
        async with operation_context("chat_respond", context={"session_id": "s1"}) as op_logger:
            assert op_logger is not None

    @pytest.mark.asyncio
    async def test_operation_context_reraises(self):
        with pytest.raises(RuntimeError, match="boom"):
            async with operation_context("chat_respond"):
                raise RuntimeError("boom")


class TestConfigureLogging:
    """Test logging level configuration."""

    def test_accepts_known_level(self):
        configure_logging("debug")

    def test_rejects_unknown_level(self):
        with pytest.raises(ValueError, match="Unknown logging level"):
            configure_logging("LOUD")
