"""Built-in ``salesforceMcpUtils`` tool: server-side helpers with no org access."""

from datetime import datetime
from typing import Any

from sfmcp.tools.registry import ToolContext, ToolRegistry

TOOL_NAME = "salesforceMcpUtils"

INPUT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "action": {
            "type": "string",
            "enum": ["getCurrentDatetime", "getState"],
            "description": "Helper to run",
        }
    },
    "required": ["action"],
}

DESCRIPTION = (
    "Utility actions for the MCP server. "
    "getCurrentDatetime returns the server's local date and time; "
    "getState returns the transport, active sessions and the caller's negotiated capabilities."
)


def get_current_datetime() -> dict[str, Any]:
    now = datetime.now().astimezone()
    return {
        "now": now.isoformat(),
        "timezone": now.tzname(),
        "formatted": now.strftime("%d-%m-%y, %H:%M:%S"),
    }


def get_state(ctx: ToolContext) -> dict[str, Any]:
    return {
        "server": ctx.server_stats(),
        "session": {
            "sessionId": ctx.session_id,
            "capabilities": ctx.capabilities.to_dict(),
            "logLevel": ctx.log_level,
        },
    }


async def salesforce_mcp_utils(arguments: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    action = arguments.get("action")
    ctx.log(f"salesforceMcpUtils action: {action}", "debug")

    if action == "getCurrentDatetime":
        return get_current_datetime()
    if action == "getState":
        return get_state(ctx)

    msg = f"Unknown action: {action!r}. Valid actions: getCurrentDatetime, getState"
    raise ValueError(msg)


def register(registry: ToolRegistry) -> None:
    registry.add(TOOL_NAME, salesforce_mcp_utils, DESCRIPTION, INPUT_SCHEMA)
