"""Frame builders and in-memory clients shared by the tests."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from mcp.shared.message import SessionMessage
from mcp.types import JSONRPCMessage

from sfmcp.server.engine import ProtocolEngine

# Streamable HTTP clients must accept both reply formats
MCP_HEADERS = {"accept": "application/json, text/event-stream"}

TIMEOUT_SECONDS = 5


def make_initialize(
    request_id: int | str = 1,
    capabilities: dict[str, Any] | None = None,
    protocol_version: str = "2025-06-18",
    client_name: str = "test-client",
) -> dict[str, Any]:
    """Build a JSON-RPC initialize request."""
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "initialize",
        "params": {
            "protocolVersion": protocol_version,
            "capabilities": capabilities if capabilities is not None else {},
            "clientInfo": {"name": client_name, "version": "1.0.0"},
        },
    }


def make_request(method: str, request_id: int | str = 2, **params: Any) -> dict[str, Any]:
    frame: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params:
        frame["params"] = params
    return frame


def make_notification(method: str) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "method": method}


def make_call(name: str, arguments: dict[str, Any] | None = None, request_id: int = 3) -> dict[str, Any]:
    return make_request("tools/call", request_id, name=name, arguments=arguments or {})


class StreamClient:
    """
    Raw JSON-RPC client over the SDK's in-memory message streams.

    Frames are built by hand so tests can declare capabilities (``logging``)
    and send frames the SDK client would never produce.
    """

    def __init__(
        self,
        to_server: MemoryObjectSendStream[Any],
        from_server: MemoryObjectReceiveStream[Any],
    ) -> None:
        self._to_server = to_server
        self._from_server = from_server
        self.notifications: list[dict[str, Any]] = []

    async def send(self, frame: dict[str, Any]) -> None:
        await self._to_server.send(SessionMessage(JSONRPCMessage.model_validate(frame)))

    async def receive(self) -> dict[str, Any]:
        with anyio.fail_after(TIMEOUT_SECONDS):
            message = await self._from_server.receive()
        return message.message.model_dump(by_alias=True, mode="json", exclude_none=True)

    async def request(self, frame: dict[str, Any]) -> dict[str, Any]:
        """Send a request and return its reply, keeping notifications seen meanwhile."""
        await self.send(frame)
        while True:
            message = await self.receive()
            if "method" in message:
                self.notifications.append(message)
            elif message.get("id") == frame["id"]:
                return message

    async def initialize(self, **init: Any) -> dict[str, Any]:
        reply = await self.request(make_initialize(**init))
        await self.send(make_notification("notifications/initialized"))
        return reply

    async def next_notification(self) -> dict[str, Any]:
        if self.notifications:
            return self.notifications.pop(0)
        while True:
            message = await self.receive()
            if "method" in message:
                return message

    async def close(self) -> None:
        await self._to_server.aclose()


@asynccontextmanager
async def connect(engine: ProtocolEngine) -> AsyncIterator[StreamClient]:
    """Run ``engine`` over in-memory streams for the duration of the block."""
    client_send, server_read = anyio.create_memory_object_stream(16)
    server_write, client_read = anyio.create_memory_object_stream(16)

    async with anyio.create_task_group() as tg:
        tg.start_soon(engine.run, server_read, server_write)
        client = StreamClient(client_send, client_read)
        try:
            yield client
        finally:
            # End of input stops the engine
            await client.close()
