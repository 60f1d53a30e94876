"""
Process-wide router state.

``RouterContext`` is constructed once at startup and owns everything the
transports share: configuration, the tool registry, the capability
negotiator, the session table (HTTP) or the single stdio session, and the
logging gate. Transports call ``startup()`` before serving and
``shutdown()`` when they stop.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from sfmcp.server.capabilities import CapabilityNegotiator
from sfmcp.server.config import Config
from sfmcp.server.engine import ProtocolEngine
from sfmcp.server.logging_gate import Delivery, LoggingGate
from sfmcp.server.sessions import Session, SessionTable
from sfmcp.server.transport import TransportMode
from sfmcp.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class RouterContext:
    """
    Shared state for one server process.

    Attributes:
        config: Loaded configuration
        registry: Tools exposed to clients
        mode: Transport selected at startup
        negotiator: Per-session capability records
        sessions: Session table (used in HTTP mode)
        gate: Logging gate shared by every session
        started_at: Time ``startup()`` ran (UTC)
        port: Bound HTTP port, once known
    """

    def __init__(self, config: Config, registry: ToolRegistry, mode: TransportMode) -> None:
        self.config = config
        self.registry = registry
        self.mode = mode
        self.negotiator = CapabilityNegotiator()
        self.sessions = SessionTable(
            self.negotiator,
            self._build_engine,
            default_log_level=config.server.log_level,
        )
        self.gate = LoggingGate(
            self.find_session,
            local_log_level=config.server.local_log_level,
            prefix=config.server.log_prefix,
        )
        self.started_at = datetime.now(timezone.utc)
        self.port: int | None = None
        self.stdio_session: Session | None = None
        self._running = False

    @property
    def multiplexed(self) -> bool:
        return self.mode is TransportMode.HTTP

    @property
    def running(self) -> bool:
        return self._running

    def _build_engine(self, session: Session) -> ProtocolEngine:
        return ProtocolEngine(session, self)

    def find_session(self, session_id: str | None) -> Session | None:
        """Live session by id, from the table or the stdio binding."""
        if not session_id:
            return None
        session = self.sessions.get(session_id)
        if session is None and self.stdio_session is not None:
            if self.stdio_session.session_id == session_id:
                session = self.stdio_session
        return session

    def open_stdio_session(self) -> Session:
        """Bind the single stdio session (one per process)."""
        if self.stdio_session is not None:
            msg = "stdio session already open"
            raise RuntimeError(msg)

        session = Session(session_id=str(uuid.uuid4()), log_level=self.config.server.log_level)
        session.engine = self._build_engine(session)
        session.engine.on_close(lambda engine: self.negotiator.forget(engine.session_id))
        self.stdio_session = session
        logger.debug("stdio session %s opened", session.session_id)
        return session

    def close_stdio_session(self) -> None:
        session, self.stdio_session = self.stdio_session, None
        if session is not None and session.engine is not None:
            session.engine.close()

    async def startup(self) -> None:
        self.started_at = datetime.now(timezone.utc)
        self._running = True
        logger.info(
            "%s %s starting (%s transport, %d tool(s))",
            self.config.server_info.name,
            self.config.server_info.version,
            self.mode.value,
            len(self.registry),
        )

    async def shutdown(self) -> None:
        if not self._running:
            return
        self._running = False

        closed = await self.sessions.close_all()
        self.close_stdio_session()
        logger.info("Server stopped, %d session(s) closed", closed)

    def uptime_seconds(self) -> float:
        return (datetime.now(timezone.utc) - self.started_at).total_seconds()

    def stats(self) -> dict[str, Any]:
        """Process-level snapshot shared with tools and the health endpoint."""
        active = len(self.sessions) + (1 if self.stdio_session is not None else 0)
        return {
            "transport": self.mode.value,
            "activeSessions": active,
            "uptimeSeconds": round(self.uptime_seconds(), 3),
            "port": self.port,
            "serverName": self.config.server_info.name,
            "version": self.config.server_info.version,
            "tools": self.registry.names(),
        }

    def log(self, payload: Any, severity: str = "info", context: str | None = None) -> Delivery:
        """Process-level log event (no session), routed through the gate."""
        return self.gate.emit(None, severity, payload, context)


__all__ = ["RouterContext"]
