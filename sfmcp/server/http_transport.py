"""
Multiplexed HTTP transport.

One Starlette application serves every client. Each session owns an SDK
``StreamableHTTPServerTransport`` running its engine; this module only decides
which transport a request belongs to, keyed by the ``mcp-session-id`` header:

- ``POST /mcp`` with a known id is handed to that session's transport.
- ``POST /mcp`` without an id and with an ``initialize`` body creates a new
  session; its transport answers and returns the id in the header.
- ``GET /mcp`` returns the session status, or hands the request to the
  transport (server-to-client SSE stream) when the client accepts
  ``text/event-stream``.
- ``DELETE /mcp`` terminates the session.
- ``GET /healthz`` is an unauthenticated liveness check.

Anything else on ``/mcp`` is a ``400`` with JSON-RPC code ``-32000``; no
session is created for a rejected frame.
"""

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import anyio
import uvicorn
from anyio.abc import TaskGroup, TaskStatus
from mcp.server.streamable_http import StreamableHTTPServerTransport
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route
from starlette.types import Message, Receive, Scope, Send

from sfmcp.framework.errors import (
    INVALID_REQUEST,
    PARSE_ERROR,
    SESSION_ERROR,
    BadInitializationError,
    MissingSessionError,
    jsonrpc_error,
)
from sfmcp.server.capabilities import is_initialize_request
from sfmcp.server.context import RouterContext
from sfmcp.server.ports import find_available_port
from sfmcp.server.schemas import HealthStatus
from sfmcp.server.sessions import Session

logger = logging.getLogger(__name__)

SESSION_HEADER = "mcp-session-id"
MCP_PATH = "/mcp"
HEALTH_PATH = "/healthz"
SERVER_TYPE = "MCP HTTP Server"

INVALID_SESSION_MESSAGE = "Bad Request: Invalid or missing session ID"


def _bad_request(error: dict[str, Any]) -> JSONResponse:
    return JSONResponse(error, status_code=400)


def _replay_body(body: bytes, receive: Receive) -> Receive:
    """Receive callable that yields an already-read body once, then defers to ``receive``."""
    replayed = False

    async def replay() -> Message:
        nonlocal replayed
        if not replayed:
            replayed = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay


async def _forward(
    transport: StreamableHTTPServerTransport, scope: Scope, receive: Receive, send: Send
) -> int | None:
    """Let ``transport`` answer the request; returns the HTTP status it sent."""
    status: int | None = None

    async def send_and_record(message: Message) -> None:
        nonlocal status
        if message["type"] == "http.response.start":
            status = message["status"]
        await send(message)

    await transport.handle_request(scope, receive, send_and_record)
    return status


class _MCPEndpoint:
    """ASGI adapter so ``/mcp`` handlers get the raw scope, receive and send."""

    def __init__(self, transport: "HttpTransport") -> None:
        self._transport = transport

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self._transport.handle_mcp(scope, receive, send)


class HttpTransport:
    """
    Session-multiplexed MCP endpoint.

    Args:
        context: Router state shared with the engines
    """

    def __init__(self, context: RouterContext) -> None:
        self.context = context
        self._task_group: TaskGroup | None = None
        self.app = self._create_app()

    def _create_app(self) -> Starlette:
        @asynccontextmanager
        async def lifespan(app: Starlette) -> AsyncIterator[None]:
            # Session servers run in this task group, outside any one request
            async with anyio.create_task_group() as tg:
                self._task_group = tg
                await self.context.startup()
                try:
                    yield
                finally:
                    await self.context.shutdown()
                    tg.cancel_scope.cancel()
                    self._task_group = None

        middleware = [
            # Browser-based clients need to read the session header
            Middleware(
                CORSMiddleware,
                allow_origins=["http://localhost", "http://127.0.0.1"],
                allow_origin_regex=r"http://(localhost|127\.0\.0\.1)(:\d+)?",
                allow_methods=["GET", "POST", "DELETE"],
                allow_headers=["Content-Type", "Accept", SESSION_HEADER, "mcp-protocol-version"],
                expose_headers=[SESSION_HEADER],
            ),
        ]

        return Starlette(
            routes=[
                Route(MCP_PATH, _MCPEndpoint(self), methods=["GET", "POST", "DELETE"]),
                Route(HEALTH_PATH, self.health_check, methods=["GET"]),
            ],
            middleware=middleware,
            lifespan=lifespan,
        )

    # ------------------------------------------------------------------
    # /mcp
    # ------------------------------------------------------------------

    async def handle_mcp(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        if request.method == "POST":
            response = await self.handle_post(request, send)
        elif request.method == "GET":
            response = await self.handle_get(request, send)
        else:
            response = await self.handle_delete(request, send)

        # None means a session transport already answered
        if response is not None:
            await response(scope, receive, send)

    async def handle_post(self, request: Request, send: Send) -> Response | None:
        """Route one JSON-RPC frame to its session, creating it on initialize."""
        body = await request.body()
        try:
            frame = json.loads(body)
        except ValueError as e:
            logger.debug("Rejected non-JSON body: %s", e)
            return _bad_request(jsonrpc_error(PARSE_ERROR, "Parse error"))

        receive = _replay_body(body, request.receive)
        session_id = request.headers.get(SESSION_HEADER)
        sessions = self.context.sessions
        session = sessions.get(session_id)

        if session is not None:
            if is_initialize_request(frame):
                logger.info("Rejected second initialize on session %s", session.session_id)
                return _bad_request(
                    jsonrpc_error(INVALID_REQUEST, "Session already initialized", frame.get("id"))
                )
            session.touch()
            await session.transport.handle_request(request.scope, receive, send)
            return None

        if session_id or not is_initialize_request(frame):
            logger.info(
                "Rejected POST without a valid session (header %s)",
                "present" if session_id else "absent",
            )
            return _bad_request(MissingSessionError().to_jsonrpc())

        try:
            session = await self._open_session(frame)
        except BadInitializationError as e:
            logger.info("Rejected initialization request: %s", e.reason)
            return _bad_request(e.to_jsonrpc(frame.get("id")))

        status = await _forward(session.transport, request.scope, receive, send)
        if status is None or status >= 400:
            # The transport refused the handshake; do not leave a half-open session
            logger.info("Initialization of session %s failed (HTTP %s)", session.session_id, status)
            await sessions.terminate(session.session_id)
        return None

    async def handle_get(self, request: Request, send: Send) -> Response | None:
        """Session status, or the session's server-to-client SSE stream."""
        session = self._session_from_header(request)
        if session is None:
            return _bad_request(jsonrpc_error(SESSION_ERROR, INVALID_SESSION_MESSAGE))

        if "text/event-stream" in request.headers.get("accept", ""):
            logger.debug("SSE stream requested for session %s", session.session_id)
            await session.transport.handle_request(request.scope, request.receive, send)
            return None

        return JSONResponse(
            session.status().model_dump(mode="json"),
            headers={SESSION_HEADER: session.session_id},
        )

    async def handle_delete(self, request: Request, send: Send) -> Response | None:
        """Terminate the session named in the header."""
        session = self._session_from_header(request)
        if session is None:
            return _bad_request(jsonrpc_error(SESSION_ERROR, INVALID_SESSION_MESSAGE))

        status = await _forward(session.transport, request.scope, request.receive, send)
        if status is not None and status < 400:
            await self.context.sessions.terminate(session.session_id)
        return None

    def _session_from_header(self, request: Request) -> Session | None:
        return self.context.sessions.get(request.headers.get(SESSION_HEADER))

    async def _open_session(self, frame: Any) -> Session:
        """Create a session and start its server on a dedicated SDK transport."""
        if self._task_group is None:
            msg = "HTTP transport is not running"
            raise RuntimeError(msg)

        session = await self.context.sessions.create(frame)
        session.transport = StreamableHTTPServerTransport(
            mcp_session_id=session.session_id,
            is_json_response_enabled=True,
        )
        await self._task_group.start(self._run_session, session)
        return session

    async def _run_session(
        self, session: Session, *, task_status: TaskStatus[None] = anyio.TASK_STATUS_IGNORED
    ) -> None:
        transport = session.transport
        async with transport.connect() as (read_stream, write_stream):
            task_status.started()
            try:
                await session.engine.run(read_stream, write_stream)
            except Exception:
                logger.exception("Session %s crashed", session.session_id)
            finally:
                # However the session ended, later requests must not reach it
                with anyio.CancelScope(shield=True):
                    await transport.terminate()

    # ------------------------------------------------------------------
    # /healthz
    # ------------------------------------------------------------------

    async def health_check(self, request: Request) -> JSONResponse:
        """
        Liveness check.

        Only counts sessions; never inspects their contents.
        """
        try:
            status = HealthStatus(
                status="healthy",
                timestamp=datetime.now(timezone.utc),
                uptimeSeconds=round(self.context.uptime_seconds(), 3),
                activeSessions=len(self.context.sessions),
                serverType=SERVER_TYPE,
                version=self.context.config.server_info.version,
                port=self.context.port,
            )
            return JSONResponse(status.model_dump(mode="json"))
        except Exception as e:
            logger.exception("Health check failed: %s", e)
            return JSONResponse(
                {
                    "status": "unhealthy",
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "error": str(e),
                },
                status_code=503,
            )

    # ------------------------------------------------------------------
    # Serving
    # ------------------------------------------------------------------

    async def serve(self) -> None:
        """
        Bind the first free port at or above the configured one and serve.

        Raises:
            PortExhaustedError: If no port in the tried range is free
        """
        server_config = self.context.config.server
        requested = server_config.http_port
        port = find_available_port(
            requested, server_config.port_max_attempts, host=server_config.http_host
        )
        if port != requested:
            logger.warning("Port %s is occupied. Using port %s instead.", requested, port)

        self.context.port = port
        logger.info("MCP HTTP server running on port %s", port)

        config = uvicorn.Config(
            self.app,
            host=server_config.http_host,
            port=port,
            log_level="warning",
            access_log=False,
        )
        server = uvicorn.Server(config)

        try:
            await server.serve()
        except Exception as e:
            logger.exception("HTTP server error: %s", e)
            raise


__all__ = ["SESSION_HEADER", "HttpTransport"]
