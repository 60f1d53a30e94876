"""Shared fixtures for the transport layer tests."""

from dataclasses import replace
from typing import Any

import pytest

from sfmcp.server.config import Config
from sfmcp.server.context import RouterContext
from sfmcp.server.transport import TransportMode
from sfmcp.tools import ToolContext, ToolRegistry, build_default_registry

ENV_VARS = (
    "MCP_HTTP_HOST",
    "MCP_HTTP_PORT",
    "LOG_LEVEL",
    "MCP_LOCAL_LOG_LEVEL",
    "MCP_LOG_PREFIX",
    "MCP_LOG_FORMAT",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's environment out of configuration."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config() -> Config:
    cfg = Config()
    cfg.server = replace(cfg.server, stdio_settle_seconds=0.0)
    return cfg


@pytest.fixture
def registry() -> ToolRegistry:
    """Built-in tools plus a few handlers exercising each execution path."""
    reg = build_default_registry()

    @reg.register("echo", "Echo the arguments back")
    async def echo(arguments: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        return {"arguments": arguments, "session": ctx.session_id}

    @reg.register("shout", "Uppercase text (sync handler)")
    def shout(arguments: dict[str, Any], ctx: ToolContext) -> str:
        ctx.log(f"shouting {arguments.get('text', '')}", "info")
        return str(arguments.get("text", "")).upper()

    @reg.register("explode", "Always fails")
    async def explode(arguments: dict[str, Any], ctx: ToolContext) -> None:
        msg = "kaboom"
        raise RuntimeError(msg)

    return reg


@pytest.fixture
def http_context(config: Config, registry: ToolRegistry) -> RouterContext:
    return RouterContext(config, registry, TransportMode.HTTP)


@pytest.fixture
def stdio_context(config: Config, registry: ToolRegistry) -> RouterContext:
    return RouterContext(config, registry, TransportMode.STDIO)
