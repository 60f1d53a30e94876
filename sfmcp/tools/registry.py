"""
Tool registry and per-request execution context.

The transport core only needs two things from the application's tools: a
list of tool definitions and a way to call one by name. Handlers receive the
tool arguments and a ``ToolContext`` bound to the calling session.

Usage:
    registry = ToolRegistry()

    @registry.register("describeObject", "Describe a Salesforce object", schema)
    async def describe_object(arguments, ctx):
        ctx.log(f"Describing {arguments['sObjectName']}", "debug")
        ...
"""

import asyncio
import inspect
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from jsonschema import ValidationError as JSONSchemaValidationError
from jsonschema import validate
from mcp.types import CallToolResult, EmbeddedResource, ImageContent, TextContent, Tool

from sfmcp.framework.errors import INVALID_PARAMS, ProtocolError, ToolExecutionError
from sfmcp.server.capabilities import CapabilitySet

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any], "ToolContext"], Any]
EmitFn = Callable[[str | None, str, Any, str | None], None]

EMPTY_INPUT_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}

_CONTENT_TYPES = (TextContent, ImageContent, EmbeddedResource)


@dataclass(frozen=True)
class ToolContext:
    """Execution context handed to a tool handler for one request.

    Attributes:
        session_id: Calling session
        request_id: JSON-RPC id of the ``tools/call`` request
        capabilities: Capabilities the client negotiated
        log_level: The session's current client notification floor
    """

    session_id: str
    request_id: str | int | None
    capabilities: CapabilitySet
    log_level: str
    emit_fn: EmitFn = field(repr=False)
    stats_fn: Callable[[], dict[str, Any]] = field(repr=False)

    def supports(self, capability: str) -> bool:
        """Whether the calling client declared ``capability``."""
        return self.capabilities.supports(capability)

    def log(self, payload: Any, level: str = "info", context: str | None = None) -> None:
        """Send a log event through the session's logging gate."""
        self.emit_fn(self.session_id, level, payload, context)

    def server_stats(self) -> dict[str, Any]:
        """Process-level snapshot (transport, session count, uptime)."""
        return self.stats_fn()


@dataclass(frozen=True)
class RegisteredTool:
    """A tool definition plus its handler."""

    name: str
    description: str
    input_schema: dict[str, Any]
    handler: ToolHandler

    def to_mcp(self) -> Tool:
        return Tool(name=self.name, description=self.description, inputSchema=self.input_schema)


class ToolRegistry:
    """
    Central registry for the tools exposed to clients.

    Registration happens during startup only; reads and calls are safe from
    any number of concurrent sessions.

    Execution statistics per tool:
    - executions, successes, failures
    - total_time_ms, avg_time_ms
    """

    def __init__(self) -> None:
        self._tools: dict[str, RegisteredTool] = {}
        self._execution_stats: dict[str, dict[str, Any]] = {}

    def add(
        self,
        name: str,
        handler: ToolHandler,
        description: str = "",
        input_schema: dict[str, Any] | None = None,
    ) -> None:
        """
        Register a tool handler.

        Args:
            name: Tool name exposed to clients
            handler: Callable ``(arguments, ctx)``, sync or async
            description: Human-readable description
            input_schema: JSON Schema of the arguments

        Raises:
            ValueError: If the name is empty or already registered
        """
        if not name:
            msg = "Tool name must not be empty"
            raise ValueError(msg)

        if name in self._tools:
            msg = f"Tool '{name}' already registered"
            raise ValueError(msg)

        self._tools[name] = RegisteredTool(
            name=name,
            description=description,
            input_schema=input_schema or dict(EMPTY_INPUT_SCHEMA),
            handler=handler,
        )
        self._execution_stats[name] = {
            "executions": 0,
            "successes": 0,
            "failures": 0,
            "total_time_ms": 0.0,
            "avg_time_ms": 0.0,
        }
        logger.info("Registered tool: %s", name)

    def register(
        self,
        name: str,
        description: str = "",
        input_schema: dict[str, Any] | None = None,
    ) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator form of :meth:`add`."""

        def decorator(handler: ToolHandler) -> ToolHandler:
            self.add(name, handler, description, input_schema)
            return handler

        return decorator

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def names(self) -> list[str]:
        return list(self._tools)

    def list_tools(self) -> list[Tool]:
        """MCP tool definitions in registration order."""
        return [tool.to_mcp() for tool in self._tools.values()]

    def get_execution_stats(self, name: str) -> dict[str, Any] | None:
        stats = self._execution_stats.get(name)
        return dict(stats) if stats else None

    async def call(self, name: str, arguments: dict[str, Any], ctx: ToolContext) -> CallToolResult:
        """
        Execute a tool.

        Args:
            name: Tool name
            arguments: Tool arguments
            ctx: Per-request execution context

        Returns:
            CallToolResult built from the handler's return value

        Raises:
            ProtocolError: If no tool with that name is registered or the
                arguments do not match its input schema
            ToolExecutionError: If the handler raised
        """
        tool = self._tools.get(name)
        if tool is None:
            msg = f"Unknown tool: {name}"
            raise ProtocolError(INVALID_PARAMS, msg)

        _validate_arguments(tool, arguments)

        stats = self._execution_stats[name]
        stats["executions"] += 1
        start_time = datetime.now()

        try:
            result = await _run_handler(tool.handler, arguments, ctx)
        except Exception as e:
            stats["failures"] += 1
            raise ToolExecutionError(name, e) from e
        finally:
            elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000
            stats["total_time_ms"] += elapsed_ms
            stats["avg_time_ms"] = stats["total_time_ms"] / stats["executions"]

        stats["successes"] += 1
        return to_call_result(result)


def _validate_arguments(tool: RegisteredTool, arguments: dict[str, Any]) -> None:
    try:
        validate(instance=arguments, schema=tool.input_schema)
    except JSONSchemaValidationError as e:
        path = ".".join(str(p) for p in e.path) if e.path else "root"
        msg = f"Invalid input for {tool.name} at '{path}': {e.message}"
        logger.warning("Input validation failed: %s", msg)
        raise ProtocolError(INVALID_PARAMS, msg) from e


async def _run_handler(handler: ToolHandler, arguments: dict[str, Any], ctx: ToolContext) -> Any:
    # Sync handlers run in the default thread pool so they don't block the loop
    if inspect.iscoroutinefunction(handler):
        return await handler(arguments, ctx)
    loop = asyncio.get_running_loop()
    result = await loop.run_in_executor(None, lambda: handler(arguments, ctx))
    if inspect.isawaitable(result):
        return await result
    return result


def to_call_result(result: Any) -> CallToolResult:
    """Normalize a handler return value into a ``CallToolResult``."""
    if isinstance(result, CallToolResult):
        return result

    if isinstance(result, str):
        return CallToolResult(content=[TextContent(type="text", text=result)])

    if isinstance(result, list) and result and all(isinstance(i, _CONTENT_TYPES) for i in result):
        return CallToolResult(content=result)

    try:
        text = json.dumps(result, indent=2, default=str)
    except (TypeError, ValueError):
        text = str(result)
    return CallToolResult(content=[TextContent(type="text", text=text)])


__all__ = [
    "EMPTY_INPUT_SCHEMA",
    "RegisteredTool",
    "ToolContext",
    "ToolHandler",
    "ToolRegistry",
    "to_call_result",
]
