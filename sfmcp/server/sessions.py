"""Session table for the multiplexed HTTP transport.

Each client that initializes over HTTP gets one ``Session``: a server-generated
identifier bound to its own ``ProtocolEngine`` (and, over HTTP, its own SDK
``StreamableHTTPServerTransport``) for its whole life. The table is the only
owner of sessions; entries are created from a valid ``initialize`` frame and
removed either by an explicit terminate or when the engine closes.

Usage:
    table = SessionTable(negotiator, engine_factory)
    session = await table.create(init_frame)
    same = table.resolve(session.session_id)
    await table.terminate(session.session_id)
"""

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from sfmcp.framework.errors import (
    BadInitializationError,
    InvalidSessionError,
    MissingSessionError,
)
from sfmcp.server.capabilities import CapabilityNegotiator, CapabilitySet, InitializeParams
from sfmcp.server.schemas import SessionStatus

if TYPE_CHECKING:
    from mcp.server.streamable_http import StreamableHTTPServerTransport

    from sfmcp.server.engine import ProtocolEngine

logger = logging.getLogger(__name__)

EngineFactory = Callable[["Session"], "ProtocolEngine"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Session:
    """One logical client session.

    Attributes:
        session_id: Opaque server-generated identifier
        log_level: Floor for log notifications sent to this client
        capabilities: Capabilities frozen at initialization
        client_name: Name the client announced in ``clientInfo``
        client_version: Version the client announced in ``clientInfo``
        protocol_version: Protocol version the client requested
        created_at: Creation time (UTC)
        last_activity: Time of the last frame handled (UTC)
        engine: Protocol engine bound to this session
        transport: SDK HTTP transport carrying the session (None over stdio)
    """

    session_id: str
    log_level: str = "info"
    capabilities: CapabilitySet = field(default_factory=CapabilitySet)
    client_name: str = ""
    client_version: str = ""
    protocol_version: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    last_activity: datetime = field(default_factory=_utcnow)
    engine: "ProtocolEngine | None" = field(default=None, repr=False, compare=False)
    transport: "StreamableHTTPServerTransport | None" = field(
        default=None, repr=False, compare=False
    )
    negotiated: bool = field(default=False, init=False)

    def bind(self, params: InitializeParams, capabilities: CapabilitySet) -> None:
        """Attach the client identity and negotiated capabilities.

        Raises:
            BadInitializationError: If the session was already bound
        """
        if self.negotiated:
            msg = "session already initialized"
            raise BadInitializationError(msg)

        self.capabilities = capabilities
        self.client_name = params.client_name
        self.client_version = params.client_version
        self.protocol_version = params.protocol_version
        self.negotiated = True

    def supports(self, capability: str) -> bool:
        return self.capabilities.supports(capability)

    def touch(self) -> None:
        self.last_activity = _utcnow()

    def status(self) -> SessionStatus:
        """Snapshot served by ``GET /mcp``."""
        return SessionStatus(
            sessionId=self.session_id,
            state=self.engine.state.value if self.engine else "new",
            clientInfo={"name": self.client_name, "version": self.client_version},
            protocolVersion=self.protocol_version,
            capabilities=self.capabilities.to_dict(),
            logLevel=self.log_level,
            createdAt=self.created_at,
            lastActivity=self.last_activity,
            pendingNotifications=self.engine.pending_notifications if self.engine else 0,
        )


class SessionTable:
    """
    Mapping of session id to live ``Session``.

    Create and terminate serialize on an ``asyncio.Lock``; resolution is a
    plain dictionary lookup. Only live sessions are held, so memory follows
    the number of open sessions, not the number ever created.
    """

    def __init__(
        self,
        negotiator: CapabilityNegotiator,
        engine_factory: EngineFactory,
        default_log_level: str = "info",
    ) -> None:
        self._negotiator = negotiator
        self._engine_factory = engine_factory
        self._default_log_level = default_log_level
        self._sessions: dict[str, Session] = {}
        self._created = 0
        self._lock = asyncio.Lock()

    def get(self, session_id: str | None) -> Session | None:
        if not session_id:
            return None
        return self._sessions.get(session_id)

    def resolve(self, session_id: str | None) -> Session:
        """Return the session for ``session_id``.

        Raises:
            MissingSessionError: If no id was supplied
            InvalidSessionError: If the id is unknown or already terminated
        """
        if not session_id:
            raise MissingSessionError()

        session = self._sessions.get(session_id)
        if session is None:
            raise InvalidSessionError(session_id)

        return session

    async def create(self, init_frame: Any) -> Session:
        """Create a session from an ``initialize`` frame.

        The frame is validated and the client's capabilities negotiated before
        anything is registered, so a rejected frame leaves no trace.

        Args:
            init_frame: Decoded JSON-RPC ``initialize`` request

        Returns:
            The new session, with its engine bound but not yet initialized

        Raises:
            BadInitializationError: If the frame is not a valid initialize request
        """
        params = self._negotiator.parse_initialize(init_frame)

        async with self._lock:
            session_id = str(uuid.uuid4())
            session = Session(session_id=session_id, log_level=self._default_log_level)
            session.bind(params, self._negotiator.negotiate(session_id, params))

            engine = self._engine_factory(session)
            session.engine = engine
            engine.on_close(lambda _engine, sid=session_id: self._evict(sid))
            self._sessions[session_id] = session
            self._created += 1

        logger.info(
            "Session %s created for client %s %s",
            session_id,
            params.client_name,
            params.client_version,
        )
        return session

    async def terminate(self, session_id: str | None) -> bool:
        """Close a session and drop it from the table.

        Returns:
            True if a session was closed, False if the id was not found
        """
        async with self._lock:
            session = self._sessions.pop(session_id, None) if session_id else None

        if session is None:
            logger.info("Session %s not found, nothing to terminate", session_id)
            return False

        self._negotiator.forget(session.session_id)
        if session.transport is not None:
            await session.transport.terminate()
        if session.engine is not None:
            session.engine.close()

        logger.info("Session %s terminated", session.session_id)
        return True

    async def close_all(self) -> int:
        """Terminate every live session. Returns how many were closed."""
        closed = 0
        for session_id in list(self._sessions):
            if await self.terminate(session_id):
                closed += 1
        return closed

    def ids(self) -> list[str]:
        return list(self._sessions)

    def stats(self) -> dict[str, Any]:
        return {
            "active_sessions": len(self._sessions),
            "sessions_created": self._created,
        }

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def _evict(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is not None:
            logger.debug("Session %s evicted after engine close", session_id)
        self._negotiator.forget(session_id)


__all__ = ["EngineFactory", "Session", "SessionTable"]
