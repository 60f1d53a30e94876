"""
Per-session MCP server.

A ``ProtocolEngine`` binds one ``Session`` to its own ``mcp.server.Server``.
The SDK owns the JSON-RPC side (framing, the initialize handshake, protocol
version negotiation, ping, request validation); the engine registers the
handlers this server exposes and bridges the session's log notifications.

``run()`` serves the session over a pair of SDK message streams: the stdio
streams in single-stream mode, or the streams of the session's own
``StreamableHTTPServerTransport`` in HTTP mode.

States:
    new -> ready    on the first request handled after initialization
    * -> closed     when ``run()`` returns or ``close()`` is called; close
                    callbacks run exactly once
"""

import asyncio
import logging
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING, Any

import anyio
from anyio.abc import TaskGroup
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from mcp.server import Server
from mcp.server.session import ServerSession
from mcp.shared.message import SessionMessage
from mcp.types import CallToolResult, LoggingLevel, TextContent, Tool

from sfmcp.framework.errors import ProtocolError, ToolExecutionError
from sfmcp.server.sessions import Session
from sfmcp.tools.registry import ToolContext

if TYPE_CHECKING:
    from sfmcp.server.context import RouterContext

logger = logging.getLogger(__name__)

CloseCallback = Callable[["ProtocolEngine"], None]

ReadStream = MemoryObjectReceiveStream[SessionMessage | Exception]
WriteStream = MemoryObjectSendStream[SessionMessage]


class EngineState(str, Enum):
    NEW = "new"
    READY = "ready"
    CLOSED = "closed"


def _error_result(text: str) -> CallToolResult:
    return CallToolResult(content=[TextContent(type="text", text=text)], isError=True)


class ProtocolEngine:
    """
    MCP server bound to exactly one session.

    Registered handlers: tools/list, tools/call and logging/setLevel.
    Handlers for one session run one at a time; different sessions never
    share a lock.

    Args:
        session: Session this engine serves for its whole life
        context: Router state (registry, gate, configuration)
    """

    def __init__(self, session: Session, context: "RouterContext") -> None:
        self.session = session
        self.state = EngineState.NEW
        self._context = context
        self._lock = anyio.Lock()
        self._close_callbacks: list[CloseCallback] = []
        self._mcp_session: ServerSession | None = None
        self._task_group: TaskGroup | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pending = 0
        self._max_pending = context.config.server.outbox_size

        server_info = context.config.server_info
        self.server = Server(
            server_info.name,
            version=server_info.version,
            instructions=server_info.instructions,
        )
        self._register_handlers()

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def initialized(self) -> bool:
        return self.state is EngineState.READY

    @property
    def closed(self) -> bool:
        return self.state is EngineState.CLOSED

    @property
    def pending_notifications(self) -> int:
        """Log notifications scheduled but not yet written to the client."""
        return self._pending

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _register_handlers(self) -> None:
        """Register the MCP endpoints served by this session."""

        @self.server.list_tools()
        async def list_tools() -> list[Tool]:
            async with self._lock:
                self._attach()
                return self._context.registry.list_tools()

        # Arguments are validated by the registry against the tool schema
        @self.server.call_tool(validate_input=False)
        async def call_tool(name: str, arguments: dict[str, Any]) -> CallToolResult:
            async with self._lock:
                self._attach()
                return await self._call_tool(name, arguments or {})

        @self.server.set_logging_level()
        async def set_logging_level(level: LoggingLevel) -> None:
            async with self._lock:
                self._attach()
                self.session.log_level = level
                logger.info("Session %s log level set to %s", self.session_id, level)

    def _attach(self) -> None:
        """Bind the SDK session the current request arrived on."""
        self.session.touch()
        if self._mcp_session is not None:
            return

        mcp_session = self.server.request_context.session
        self._mcp_session = mcp_session

        # HTTP sessions negotiate from the initialize frame when the table creates them
        params = mcp_session.client_params
        if not self.session.negotiated and params is not None:
            negotiator = self._context.negotiator
            init = negotiator.from_client_params(params)
            self.session.bind(init, negotiator.negotiate(self.session_id, init))

        self.state = EngineState.READY
        logger.info(
            "Session %s ready (client %s %s, protocol %s)",
            self.session_id,
            self.session.client_name,
            self.session.client_version,
            self.session.protocol_version,
        )

    async def _call_tool(self, name: str, arguments: dict[str, Any]) -> CallToolResult:
        ctx = ToolContext(
            session_id=self.session_id,
            request_id=self.server.request_context.request_id,
            capabilities=self.session.capabilities,
            log_level=self.session.log_level,
            emit_fn=self._context.gate.emit,
            stats_fn=self._context.stats,
        )

        try:
            return await self._context.registry.call(name, arguments, ctx)
        except ProtocolError as e:
            logger.info("Session %s: rejected call to %s: %s", self.session_id, name, e.message)
            return _error_result(e.message)
        except ToolExecutionError as e:
            self._context.gate.emit(self.session_id, "error", e.cause, f"Error executing {name}")
            return _error_result(f"Error: {e.cause}")

    # ------------------------------------------------------------------
    # Serving
    # ------------------------------------------------------------------

    async def run(self, read_stream: ReadStream, write_stream: WriteStream) -> None:
        """
        Serve the session until its read stream ends.

        The engine is closed when this returns, whatever the reason.
        """
        self._loop = asyncio.get_running_loop()
        try:
            async with anyio.create_task_group() as tg:
                self._task_group = tg
                await self.server.run(
                    read_stream,
                    write_stream,
                    self.server.create_initialization_options(),
                )
                # Log notifications still in flight have nowhere to go
                tg.cancel_scope.cancel()
        finally:
            self._task_group = None
            self.close()

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def send_log(self, level: str, data: str, logger_name: str) -> bool:
        """
        Schedule a ``notifications/message`` to the client.

        Safe to call from a worker thread (sync tool handlers run in the
        default executor).

        Returns:
            False if the session is not serving or already has
            ``outbox_size`` notifications in flight
        """
        if not self.initialized or self._loop is None:
            return False

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is not self._loop:
            self._loop.call_soon_threadsafe(self._schedule_log, level, data, logger_name)
            return True

        return self._schedule_log(level, data, logger_name)

    def _schedule_log(self, level: str, data: str, logger_name: str) -> bool:
        if self._task_group is None or self._mcp_session is None or self.closed:
            return False
        if self._pending >= self._max_pending:
            logger.warning(
                "Session %s has too many pending notifications, dropping one", self.session_id
            )
            return False

        self._pending += 1
        self._task_group.start_soon(self._send_log, self._mcp_session, level, data, logger_name)
        return True

    async def _send_log(
        self, mcp_session: ServerSession, level: str, data: str, logger_name: str
    ) -> None:
        try:
            await mcp_session.send_log_message(level=level, data=data, logger=logger_name)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            logger.debug("Session %s closed before a log notification was sent", self.session_id)
        finally:
            self._pending -= 1

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def on_close(self, callback: CloseCallback) -> None:
        self._close_callbacks.append(callback)

    def close(self) -> None:
        """Close the engine and run close callbacks once."""
        if self.closed:
            return

        self.state = EngineState.CLOSED
        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception:
                logger.exception("Close callback failed for session %s", self.session_id)

        logger.debug("Engine for session %s closed", self.session_id)


__all__ = ["EngineState", "ProtocolEngine", "ReadStream", "WriteStream"]
