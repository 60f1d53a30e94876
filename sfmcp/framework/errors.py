"""
Error taxonomy for the transport and session layer.

Routing, session and startup failures raise these typed exceptions. The
transport boundary turns them into JSON-RPC error objects (and HTTP status
codes in multiplexed mode); they never crash the process.

Key features:
- Error code enums (avoid typos)
- Severity levels (fatal, transient, user_error)
- Pydantic model for structured error details
- JSON-RPC translation at the boundary
"""

from enum import Enum
from typing import Any

from mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    PARSE_ERROR,
)
from pydantic import BaseModel, ConfigDict, Field

# Implementation-defined JSON-RPC server error used for session routing failures
SESSION_ERROR = -32000

__all__ = [
    "INTERNAL_ERROR",
    "INVALID_PARAMS",
    "INVALID_REQUEST",
    "PARSE_ERROR",
    "SESSION_ERROR",
    "BadInitializationError",
    "ErrorCode",
    "ErrorDetails",
    "ErrorSeverity",
    "InvalidSessionError",
    "MCPError",
    "MissingSessionError",
    "PortExhaustedError",
    "ProtocolError",
    "ToolExecutionError",
    "UnsupportedTransportError",
    "jsonrpc_error",
    "to_mcp_error",
]

# ============================================================================
# Error Codes and Severity
# ============================================================================


class ErrorCode(str, Enum):
    """Enumeration of all error codes in the system."""

    # Startup errors
    PORT_EXHAUSTED = "PORT_EXHAUSTED"
    UNSUPPORTED_TRANSPORT = "UNSUPPORTED_TRANSPORT"

    # Session routing errors
    MISSING_SESSION = "MISSING_SESSION"
    INVALID_SESSION = "INVALID_SESSION"
    BAD_INITIALIZATION = "BAD_INITIALIZATION"

    # Protocol errors
    PROTOCOL_ERROR = "PROTOCOL_ERROR"

    # Execution errors
    TOOL_EXECUTION_ERROR = "TOOL_EXECUTION_ERROR"

    # Internal errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorSeverity(str, Enum):
    """Error severity for alerting and exit-code decisions."""

    FATAL = "fatal"  # Unrecoverable, aborts startup
    TRANSIENT = "transient"  # Temporary, retryable
    USER_ERROR = "user_error"  # Client mistake, not retryable


# ============================================================================
# Pydantic Error Models
# ============================================================================


class ErrorDetails(BaseModel):
    """Structured error details for serialization."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    code: ErrorCode = Field(..., description="Error code enum")
    message: str = Field(..., description="Human-readable error message")
    context: dict[str, Any] = Field(default_factory=dict, description="Additional context")
    severity: ErrorSeverity = Field(default=ErrorSeverity.FATAL, description="Error severity")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return self.model_dump(mode="json")


def jsonrpc_error(
    code: int,
    message: str,
    request_id: str | int | None = None,
    data: Any | None = None,
) -> dict[str, Any]:
    """Build a JSON-RPC 2.0 error envelope.

    Args:
        code: JSON-RPC error code
        message: Human-readable message
        request_id: Id of the request being answered (None when unknown)
        data: Optional structured detail

    Returns:
        Wire-format dictionary
    """
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "error": error, "id": request_id}


# ============================================================================
# Base Exception Class
# ============================================================================


class MCPError(Exception):
    """Base class for all MCP server errors."""

    jsonrpc_code: int = INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        details: dict[str, Any] | None = None,
        severity: ErrorSeverity = ErrorSeverity.FATAL,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}
        self.severity = severity

    def to_details(self) -> ErrorDetails:
        """Convert to structured ErrorDetails."""
        return ErrorDetails(
            code=self.code, message=self.message, context=self.details, severity=self.severity
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "error": self.code.value,
            "message": self.message,
            "details": self.details,
            "severity": self.severity.value,
        }

    def to_jsonrpc(self, request_id: str | int | None = None) -> dict[str, Any]:
        """Convert to a JSON-RPC error envelope."""
        return jsonrpc_error(
            self.jsonrpc_code, self.message, request_id, self.details or None
        )


# ============================================================================
# Startup Errors
# ============================================================================


class PortExhaustedError(MCPError):
    """No free port in the tried range."""

    def __init__(self, start_port: int, end_port: int) -> None:
        super().__init__(
            f"No available port found in range [{start_port}, {end_port}). "
            f"Tried {end_port - start_port} port(s).",
            ErrorCode.PORT_EXHAUSTED,
            {"start_port": start_port, "end_port": end_port},
            severity=ErrorSeverity.FATAL,
        )
        self.start_port = start_port
        self.end_port = end_port


class UnsupportedTransportError(MCPError):
    """Transport selection is not one of the known modes."""

    def __init__(self, transport: str) -> None:
        super().__init__(
            f"Unsupported transport type: {transport}",
            ErrorCode.UNSUPPORTED_TRANSPORT,
            {"transport": transport},
            severity=ErrorSeverity.FATAL,
        )


# ============================================================================
# Session Routing Errors
# ============================================================================


class MissingSessionError(MCPError):
    """A frame that requires a session arrived without a session identifier."""

    jsonrpc_code = SESSION_ERROR

    def __init__(self, message: str = "Bad Request: No valid session ID provided") -> None:
        super().__init__(message, ErrorCode.MISSING_SESSION, severity=ErrorSeverity.USER_ERROR)


class InvalidSessionError(MCPError):
    """The session identifier is not known to the session table."""

    jsonrpc_code = SESSION_ERROR

    def __init__(
        self,
        session_id: str,
        message: str = "Bad Request: No valid session ID provided",
    ) -> None:
        # The identifier is deliberately left out of the wire details
        super().__init__(message, ErrorCode.INVALID_SESSION, severity=ErrorSeverity.USER_ERROR)
        self.session_id = session_id


class BadInitializationError(MCPError):
    """An initialization frame failed validation."""

    jsonrpc_code = SESSION_ERROR

    def __init__(self, reason: str, errors: list[dict[str, Any]] | None = None) -> None:
        details: dict[str, Any] = {"reason": reason}
        if errors:
            details["errors"] = errors
        super().__init__(
            "Bad Request: Invalid initialization request",
            ErrorCode.BAD_INITIALIZATION,
            details,
            severity=ErrorSeverity.USER_ERROR,
        )
        self.reason = reason


# ============================================================================
# Protocol and Execution Errors
# ============================================================================


class ProtocolError(MCPError):
    """A JSON-RPC level failure answered on an established session."""

    def __init__(self, jsonrpc_code: int, message: str, data: Any | None = None) -> None:
        super().__init__(
            message,
            ErrorCode.PROTOCOL_ERROR,
            {"data": data} if data is not None else None,
            severity=ErrorSeverity.USER_ERROR,
        )
        self.jsonrpc_code = jsonrpc_code
        self.data = data

    def to_jsonrpc(self, request_id: str | int | None = None) -> dict[str, Any]:
        return jsonrpc_error(self.jsonrpc_code, self.message, request_id, self.data)


class ToolExecutionError(MCPError):
    """Tool handler raised while executing."""

    def __init__(self, tool_name: str, cause: Exception) -> None:
        super().__init__(
            f"Tool '{tool_name}' failed: {cause}",
            ErrorCode.TOOL_EXECUTION_ERROR,
            {"tool_name": tool_name, "cause_type": type(cause).__name__, "cause": str(cause)},
            severity=ErrorSeverity.TRANSIENT,
        )
        self.tool_name = tool_name
        self.cause = cause


# ============================================================================
# Boundary Translation
# ============================================================================


def to_mcp_error(exc: Exception) -> MCPError:
    """
    Translate arbitrary exceptions to MCPError at boundaries.

    Args:
        exc: Any exception

    Returns:
        MCPError instance
    """
    if isinstance(exc, MCPError):
        return exc
    return MCPError(
        f"Unexpected error: {exc}",
        ErrorCode.INTERNAL_ERROR,
        {"cause_type": type(exc).__name__},
        severity=ErrorSeverity.FATAL,
    )
