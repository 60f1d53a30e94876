"""Local diagnostic logging for the MCP server.

Everything is written to stderr: in stdio mode stdout carries the protocol
stream and must never receive log lines.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

# stdlib has no NOTICE; place it between INFO and WARNING
NOTICE = 25
logging.addLevelName(NOTICE, "NOTICE")

# MCP severity -> stdlib logging level
SEVERITY_TO_LOGGING: dict[str, int] = {
    "emergency": logging.CRITICAL,
    "alert": logging.CRITICAL,
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "notice": NOTICE,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

LEVEL_EMOJIS: dict[str, str] = {
    "emergency": "🔥",
    "alert": "⛔️",
    "critical": "❗️",
    "error": "❌",
    "warning": "⚠️",
    "notice": "✉️",
    "info": "💡",
    "debug": "🐞",
}


def get_log_prefix(severity: str, label: str = "") -> str:
    """Build the visual prefix for a log line, e.g. ``(❌❌❌)``."""
    emojis = LEVEL_EMOJIS.get(severity, "❓") * 3
    if label:
        return f"({label} · {emojis})"
    return f"({emojis})"


class JSONFormatter(logging.Formatter):
    """ELK/Datadog style JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "session_id": getattr(record, "session_id", None),
            "severity": getattr(record, "severity", None),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    """Install a single stderr handler on the root logger.

    Args:
        level: stdlib level name (DEBUG/INFO/WARNING/ERROR) or MCP severity
        fmt: "text" or "json"
    """
    numeric = SEVERITY_TO_LOGGING.get(level.lower())
    if numeric is None:
        numeric = logging.getLevelName(level.upper())
        if not isinstance(numeric, int):
            numeric = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    root = logging.getLogger()
    # Avoid duplicating handlers when called more than once
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(numeric)


__all__ = [
    "LEVEL_EMOJIS",
    "NOTICE",
    "SEVERITY_TO_LOGGING",
    "JSONFormatter",
    "configure_logging",
    "get_log_prefix",
]
