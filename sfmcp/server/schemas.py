"""Response models for the HTTP transport's non-JSON-RPC endpoints."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class HealthStatus(BaseModel):
    """Body of ``GET /healthz``."""

    model_config = ConfigDict(frozen=True)

    status: str = Field(..., description="'healthy' or 'unhealthy'")
    timestamp: datetime = Field(..., description="Time the check ran (UTC)")
    uptimeSeconds: float = Field(..., ge=0, description="Seconds since startup")
    activeSessions: int = Field(..., ge=0, description="Live sessions in the table")
    serverType: str = Field(..., description="Server alias")
    version: str = Field(..., description="Server version")
    port: int | None = Field(default=None, description="Bound HTTP port")


class SessionStatus(BaseModel):
    """Body of ``GET /mcp`` for a known session."""

    model_config = ConfigDict(frozen=True)

    sessionId: str
    state: str
    clientInfo: dict[str, str]
    protocolVersion: str | None = None
    capabilities: dict[str, Any] = Field(default_factory=dict)
    logLevel: str
    createdAt: datetime
    lastActivity: datetime
    pendingNotifications: int = Field(default=0, ge=0)


__all__ = ["HealthStatus", "SessionStatus"]
