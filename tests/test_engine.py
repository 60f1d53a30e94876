"""Tests for the per-session MCP server."""

import json
from dataclasses import replace
from typing import Any

import anyio
import pytest
from mcp.types import LATEST_PROTOCOL_VERSION

from sfmcp.server.config import Config
from sfmcp.server.context import RouterContext
from sfmcp.server.engine import EngineState, ProtocolEngine
from sfmcp.server.sessions import Session
from sfmcp.server.transport import TransportMode
from sfmcp.tools import ToolContext, ToolRegistry
from tests.helpers import StreamClient, connect, make_call, make_initialize, make_request

LOGGING = {"logging": {}}


async def _ready(client: StreamClient, **init: Any) -> None:
    """Initialize and handle one request so the engine binds its session."""
    await client.initialize(**init)
    reply = await client.request(make_request("tools/list", request_id=100))
    assert "result" in reply


class TestInitialize:
    """Test the initialize handshake."""

    @pytest.mark.asyncio
    async def test_initialize_result(self, stdio_context: RouterContext) -> None:
        session = stdio_context.open_stdio_session()

        async with connect(session.engine) as client:
            reply = await client.initialize()

        result = reply["result"]
        assert reply["id"] == 1
        assert result["protocolVersion"] == "2025-06-18"
        assert result["serverInfo"]["name"] == "IBM Salesforce MCP Server"
        assert "logging" in result["capabilities"]
        assert "tools" in result["capabilities"]
        assert result["instructions"].startswith("# Agent instructions")
        assert "sessionId" not in result

    @pytest.mark.asyncio
    async def test_supported_older_version_is_echoed(self, stdio_context: RouterContext) -> None:
        session = stdio_context.open_stdio_session()

        async with connect(session.engine) as client:
            reply = await client.initialize(protocol_version="2024-11-05")

        assert reply["result"]["protocolVersion"] == "2024-11-05"

    @pytest.mark.asyncio
    async def test_unknown_version_falls_back(self, stdio_context: RouterContext) -> None:
        session = stdio_context.open_stdio_session()

        async with connect(session.engine) as client:
            reply = await client.initialize(protocol_version="1999-01-01")

        assert reply["result"]["protocolVersion"] == LATEST_PROTOCOL_VERSION

    @pytest.mark.asyncio
    async def test_first_request_binds_stdio_session(self, stdio_context: RouterContext) -> None:
        session = stdio_context.open_stdio_session()

        async with connect(session.engine) as client:
            await client.initialize(capabilities=LOGGING, client_name="agent")
            assert session.engine.state is EngineState.NEW

            await client.request(make_request("tools/list"))

            assert session.engine.state is EngineState.READY
            assert session.supports("logging")
            assert session.client_name == "agent"
            assert stdio_context.negotiator.supports(session.session_id, "logging")

    @pytest.mark.asyncio
    async def test_capabilities_stay_frozen(self, stdio_context: RouterContext) -> None:
        """A repeated initialize is answered but cannot change what was negotiated."""
        session = stdio_context.open_stdio_session()

        async with connect(session.engine) as client:
            await _ready(client, capabilities=LOGGING)

            reply = await client.request(make_initialize(request_id=9, client_name="other"))
            await client.request(make_request("tools/list", request_id=10))

        assert "result" in reply
        assert session.supports("logging")
        assert session.client_name == "test-client"

    @pytest.mark.asyncio
    async def test_http_session_keeps_table_negotiation(self, http_context: RouterContext) -> None:
        session = await http_context.sessions.create(
            make_initialize(capabilities=LOGGING, client_name="agent")
        )

        async with connect(session.engine) as client:
            await _ready(client, client_name="agent")

            assert session.engine.initialized
            assert session.supports("logging")


class TestDispatch:
    """Test request handling around the registered handlers."""

    @pytest.mark.asyncio
    async def test_request_before_initialize(self, stdio_context: RouterContext) -> None:
        session = stdio_context.open_stdio_session()

        async with connect(session.engine) as client:
            reply = await client.request(make_request("tools/list"))

            assert "error" in reply
            assert session.engine.state is EngineState.NEW

    @pytest.mark.asyncio
    async def test_ping_before_initialize(self, stdio_context: RouterContext) -> None:
        session = stdio_context.open_stdio_session()

        async with connect(session.engine) as client:
            reply = await client.request(make_request("ping", request_id=7))

        assert reply == {"jsonrpc": "2.0", "id": 7, "result": {}}

    @pytest.mark.asyncio
    async def test_tools_list(self, stdio_context: RouterContext) -> None:
        session = stdio_context.open_stdio_session()

        async with connect(session.engine) as client:
            await client.initialize()
            reply = await client.request(make_request("tools/list"))

        names = [tool["name"] for tool in reply["result"]["tools"]]
        assert names == stdio_context.registry.names()
        assert "echo" in names
        assert all("inputSchema" in tool for tool in reply["result"]["tools"])

    @pytest.mark.asyncio
    async def test_unknown_method(self, stdio_context: RouterContext) -> None:
        session = stdio_context.open_stdio_session()

        async with connect(session.engine) as client:
            await _ready(client)
            reply = await client.request(make_request("resources/frobnicate", request_id=5))

            assert reply["id"] == 5  # noqa: PLR2004
            assert "error" in reply
            follow_up = await client.request(make_request("ping", request_id=6))
            assert follow_up["result"] == {}

    @pytest.mark.asyncio
    async def test_set_level(self, stdio_context: RouterContext) -> None:
        session = stdio_context.open_stdio_session()

        async with connect(session.engine) as client:
            await _ready(client)
            reply = await client.request(make_request("logging/setLevel", level="warning"))

            assert reply["result"] == {}
            assert session.log_level == "warning"

            bad = await client.request(make_request("logging/setLevel", request_id=4, level="loud"))

            assert "error" in bad
            assert session.log_level == "warning"


class TestToolCalls:
    """Test tools/call execution."""

    @pytest.mark.asyncio
    async def test_async_tool(self, stdio_context: RouterContext) -> None:
        session = stdio_context.open_stdio_session()

        async with connect(session.engine) as client:
            await _ready(client)
            reply = await client.request(make_call("echo", {"x": 1}))

        result = reply["result"]
        assert result["isError"] is False
        payload = json.loads(result["content"][0]["text"])
        assert payload == {"arguments": {"x": 1}, "session": session.session_id}

    @pytest.mark.asyncio
    async def test_sync_tool_logs_to_capable_client(self, stdio_context: RouterContext) -> None:
        session = stdio_context.open_stdio_session()

        async with connect(session.engine) as client:
            await _ready(client, capabilities=LOGGING)
            reply = await client.request(make_call("shout", {"text": "hi"}))
            notification = await client.next_notification()

        assert reply["result"]["content"][0]["text"] == "HI"
        assert notification["method"] == "notifications/message"
        assert notification["params"]["level"] == "info"
        assert notification["params"]["data"] == "shouting hi"
        assert notification["params"]["logger"] == "(💡💡💡) MCP server"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, stdio_context: RouterContext) -> None:
        session = stdio_context.open_stdio_session()

        async with connect(session.engine) as client:
            await _ready(client)
            reply = await client.request(make_call("nope"))

        assert reply["result"]["isError"] is True
        assert "nope" in reply["result"]["content"][0]["text"]

    @pytest.mark.asyncio
    async def test_invalid_arguments_name_the_field(self, stdio_context: RouterContext) -> None:
        session = stdio_context.open_stdio_session()

        async with connect(session.engine) as client:
            await _ready(client)
            reply = await client.request(
                make_call("salesforceMcpUtils", {"action": 42})
            )

        assert reply["result"]["isError"] is True
        assert "action" in reply["result"]["content"][0]["text"]

    @pytest.mark.asyncio
    async def test_failing_tool_returns_error_result(self, stdio_context: RouterContext) -> None:
        """Handler failure is a tool error result plus an error log event; the session survives."""
        session = stdio_context.open_stdio_session()

        async with connect(session.engine) as client:
            await _ready(client, capabilities=LOGGING)
            reply = await client.request(make_call("explode"))
            notification = await client.next_notification()
            follow_up = await client.request(make_request("ping", request_id=10))

        assert reply["result"]["isError"] is True
        assert reply["result"]["content"][0]["text"] == "Error: kaboom"
        assert notification["params"]["level"] == "error"
        assert notification["params"]["data"].startswith("Error executing explode: kaboom")
        assert follow_up["result"] == {}

    @pytest.mark.asyncio
    async def test_calls_in_one_session_are_serialized(
        self, config: Config, registry: ToolRegistry
    ) -> None:
        active = 0
        peak = 0

        @registry.register("slow", "Sleeps briefly")
        async def slow(arguments: dict[str, Any], ctx: ToolContext) -> str:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await anyio.sleep(0.05)
            active -= 1
            return "done"

        context = RouterContext(config, registry, TransportMode.STDIO)
        session = context.open_stdio_session()

        async with connect(session.engine) as client:
            await _ready(client)
            for request_id in (20, 21, 22):
                await client.send(make_call("slow", request_id=request_id))
            replies = [await client.receive() for _ in range(3)]

        assert sorted(r["id"] for r in replies) == [20, 21, 22]
        assert all(r["result"]["content"][0]["text"] == "done" for r in replies)
        assert peak == 1


class TestNotificationsAndLifecycle:
    """Test log notification delivery and close semantics."""

    @pytest.mark.asyncio
    async def test_send_log_needs_ready_session(self, stdio_context: RouterContext) -> None:
        session = stdio_context.open_stdio_session()

        assert session.engine.send_log("info", "early", "logger") is False

    @pytest.mark.asyncio
    async def test_too_many_pending_notifications_are_dropped(self, registry: ToolRegistry) -> None:
        config = Config()
        config.server = replace(config.server, outbox_size=1, stdio_settle_seconds=0.0)
        context = RouterContext(config, registry, TransportMode.STDIO)
        session = context.open_stdio_session()
        engine = session.engine

        async with connect(engine) as client:
            await _ready(client, capabilities=LOGGING)

            assert engine.send_log("info", "first", "test") is True
            assert engine.send_log("info", "second", "test") is False
            assert engine.pending_notifications == 1

            notification = await client.next_notification()
            assert notification["params"]["data"] == "first"

    @pytest.mark.asyncio
    async def test_close_runs_callbacks_once(self, http_context: RouterContext) -> None:
        engine = ProtocolEngine(Session(session_id="s1"), http_context)
        calls: list[str] = []
        engine.on_close(lambda e: calls.append(e.session_id))

        engine.close()
        engine.close()

        assert calls == ["s1"]
        assert engine.state is EngineState.CLOSED
        assert engine.send_log("error", "late", "test") is False

    @pytest.mark.asyncio
    async def test_end_of_input_closes_engine(self, stdio_context: RouterContext) -> None:
        session = stdio_context.open_stdio_session()
        engine = session.engine

        async with connect(engine) as client:
            await _ready(client)
            assert not engine.closed

        assert engine.closed
        assert stdio_context.negotiator.capabilities_for(session.session_id) is None
