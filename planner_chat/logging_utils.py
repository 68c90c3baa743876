"""
Structured logging and tool error normalization for the planner chat backend.

- structlog is configured once on import; ``configure_logging`` sets the level
- ``tool_error`` turns any failure talking to a tool server into an
  ``McpError`` whose data says which invoker, tool and operation failed
- ``operation_context`` / ``log_operation`` time session-level operations
  and log them with their session and user ids bound
"""

from __future__ import annotations

import functools
import inspect
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, ParamSpec, TypeVar

import structlog
from mcp import McpError, types
from pydantic import ValidationError

structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer(colors=False),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

P = ParamSpec("P")
T = TypeVar("T")

logger = structlog.get_logger(__name__)

# Checked in order; ValidationError is a ValueError and TimeoutError an OSError
_TOOL_ERROR_CATEGORIES: tuple[tuple[type[Exception] | tuple[type[Exception], ...], int, str], ...] = (
    (ValidationError, types.INVALID_PARAMS, "validation_error"),
    (TimeoutError, types.INTERNAL_ERROR, "timeout_error"),
    ((ConnectionError, OSError), types.INTERNAL_ERROR, "connection_error"),
    ((ValueError, TypeError), types.INVALID_PARAMS, "parameter_error"),
)


def configure_logging(level: str = "INFO") -> None:
    """Route stdlib logging (and therefore structlog) to stderr at ``level``."""
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown logging level '{level}'")
    logging.basicConfig(level=numeric_level, format="%(message)s")


def classify_tool_error(error: Exception) -> tuple[int, str]:
    """Return the MCP error code and category for a tool server failure."""
    if isinstance(error, McpError):
        return error.error.code, "mcp_error"
    for kinds, code, category in _TOOL_ERROR_CATEGORIES:
        if isinstance(error, kinds):
            return code, category
    return types.INTERNAL_ERROR, "unknown_error"


def tool_error(
    error: Exception,
    operation: str,
    *,
    invoker: str,
    tool: str | None = None,
) -> McpError:
    """
    Wrap a failure from a tool server as an ``McpError`` and log it.

    An ``McpError`` keeps its own code and message; anything else is
    reported as ``"<operation> failed: <error>"``.
    """
    code, category = classify_tool_error(error)
    data: dict[str, Any] = {
        "operation": operation,
        "invoker": invoker,
        "error_category": category,
        "original_error_type": type(error).__name__,
    }
    if tool is not None:
        data["tool"] = tool

    if isinstance(error, McpError):
        message = error.error.message
    else:
        message = f"{operation} failed: {error!s}"

    logger.error("Tool server operation failed", error_code=code, error=str(error), **data)
    return McpError(error=types.ErrorData(code=code, message=message, data=data))


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


@asynccontextmanager
async def operation_context(
    operation: str,
    *,
    context: dict[str, Any] | None = None,
) -> AsyncIterator[Any]:
    """
    Time the enclosed block and log its outcome.

    Yields a logger bound to ``operation`` and ``context``. Exceptions are
    logged with their duration and re-raised unchanged.
    """
    op_logger = logger.bind(operation=operation, **(context or {}))
    op_logger.debug("Operation started")
    started = time.perf_counter()
    try:
        yield op_logger
    except Exception as e:
        op_logger.error(
            "Operation failed",
            error_type=type(e).__name__,
            error=str(e),
            duration_ms=_elapsed_ms(started),
        )
        raise
    op_logger.debug("Operation completed", duration_ms=_elapsed_ms(started))


def log_operation(
    operation: str,
    *,
    bind: tuple[str, ...] = (),
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """
    Run a coroutine function inside ``operation_context``.

    The arguments named in ``bind`` (typically ``session_id`` and
    ``user_id``) are added to every log line of the operation.
    """
    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        signature = inspect.signature(func)

        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            arguments = signature.bind_partial(*args, **kwargs).arguments
            context = {name: arguments[name] for name in bind if name in arguments}
            async with operation_context(operation, context=context):
                return await func(*args, **kwargs)

        return wrapper
    return decorator
