"""
Capability-aware logging sink.

Every log event produced on behalf of a session passes through the gate,
which decides between three outcomes:

- client: a ``notifications/message`` sent through the session's SDK
  ``ServerSession``, when the client declared the ``logging`` capability and
  the event is within the session's floor (changed by ``logging/setLevel``)
- local: a diagnostic line on stderr, for anything at ``error`` or worse and,
  for clients that cannot receive log notifications, anything within the
  operator floor (``local_log_level``)
- discarded: everything else

``emit`` never raises.
"""

import json
import logging
import traceback
from collections.abc import Callable
from enum import Enum
from typing import Any

from sfmcp.observability.logging import SEVERITY_TO_LOGGING, get_log_prefix
from sfmcp.server.config import LOG_LEVEL_PRIORITIES
from sfmcp.server.sessions import Session

logger = logging.getLogger(__name__)

# Local diagnostic sink, separate from module loggers so operators can route it
diagnostics = logging.getLogger("sfmcp.diagnostics")

MAX_PAYLOAD_CHARS = 5000
_TRUNCATED_CHARS = MAX_PAYLOAD_CHARS - 3
_ERROR_PRIORITY = LOG_LEVEL_PRIORITIES["error"]


class Delivery(str, Enum):
    CLIENT = "client"
    LOCAL = "local"
    DISCARDED = "discarded"


def normalize_payload(payload: Any, context: str | None = None) -> str:
    """Render a log payload as bounded text.

    Exceptions become ``"<context>: <message>\\nStack: <trace>"``; other
    non-string values are rendered as indented JSON (``str()`` when not
    serializable). Text longer than 5000 characters is cut to 4997 plus
    ``"..."``.
    """
    if isinstance(payload, BaseException):
        message = f"{context}: {payload}" if context else str(payload)
        trace = "".join(
            traceback.format_exception(type(payload), payload, payload.__traceback__)
        ).rstrip()
        text = f"{message}\nStack: {trace}"
    elif isinstance(payload, str):
        text = payload
    else:
        try:
            text = json.dumps(payload, indent=2)
        except (TypeError, ValueError):
            text = str(payload)

    if len(text) > MAX_PAYLOAD_CHARS:
        text = text[:_TRUNCATED_CHARS] + "..."
    return text


class LoggingGate:
    """
    Routes log events to the client, to local diagnostics, or nowhere.

    Args:
        find_session: Lookup of a live session by id (None when unknown)
        local_log_level: Operator floor applied to non-logging-capable sessions
        prefix: Optional label shown in the log prefix
    """

    def __init__(
        self,
        find_session: Callable[[str | None], Session | None],
        local_log_level: str = "notice",
        prefix: str = "",
    ) -> None:
        self._find_session = find_session
        self._local_priority = LOG_LEVEL_PRIORITIES[local_log_level]
        self._prefix = prefix

    def emit(
        self,
        session_id: str | None,
        severity: str,
        payload: Any,
        context: str | None = None,
    ) -> Delivery:
        """
        Route one log event.

        Args:
            session_id: Session the event belongs to (None for process-level events)
            severity: One of the eight syslog severities; unknown values count as info
            payload: String, exception or structured value
            context: Optional label prefixed to exception messages

        Returns:
            Where the event went
        """
        try:
            return self._route(session_id, severity, payload, context)
        except Exception:
            logger.exception("Logging gate failed to route a %s event", severity)
            return Delivery.DISCARDED

    def _route(
        self,
        session_id: str | None,
        severity: str,
        payload: Any,
        context: str | None,
    ) -> Delivery:
        level = severity if severity in LOG_LEVEL_PRIORITIES else "info"
        priority = LOG_LEVEL_PRIORITIES[level]
        text = normalize_payload(payload, context)

        session = self._find_session(session_id)
        capable = session is not None and session.supports("logging")

        if capable and priority <= LOG_LEVEL_PRIORITIES[session.log_level]:
            if self._send_to_client(session, level, text):
                return Delivery.CLIENT
            # Undeliverable: treat like a client that cannot receive logs
            capable = False

        if priority <= _ERROR_PRIORITY or (not capable and priority <= self._local_priority):
            self._write_local(session_id, level, text)
            return Delivery.LOCAL

        return Delivery.DISCARDED

    def _send_to_client(self, session: Session, level: str, text: str) -> bool:
        engine = session.engine
        if engine is None:
            return False
        return engine.send_log(level, text, f"{get_log_prefix(level, self._prefix)} MCP server")

    def _write_local(self, session_id: str | None, level: str, text: str) -> None:
        diagnostics.log(
            SEVERITY_TO_LOGGING[level],
            "%s | %s | %s",
            get_log_prefix(level, self._prefix),
            level,
            text,
            extra={"session_id": session_id, "severity": level},
        )


__all__ = ["Delivery", "LoggingGate", "normalize_payload"]
