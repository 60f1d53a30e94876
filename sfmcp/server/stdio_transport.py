"""
Single-stream stdio transport.

The process serves exactly one client over stdin/stdout, bound to one session
for the whole process lifetime; no session table lookup happens on this path.
Framing (newline-delimited JSON) is provided by ``mcp.server.stdio`` and the
protocol by the session engine's ``mcp.server.Server``.
"""

import logging

import anyio
from mcp.server.stdio import stdio_server

from sfmcp.server.context import RouterContext
from sfmcp.server.engine import ReadStream, WriteStream

logger = logging.getLogger(__name__)


class StdioTransport:
    """
    stdio transport bound to a single session.

    Args:
        context: Router state; its stdio session is opened by ``run``
    """

    def __init__(self, context: RouterContext) -> None:
        self.context = context

    async def serve(self) -> None:
        """Serve on the process's stdin/stdout until the client disconnects."""
        await self.context.startup()
        try:
            async with stdio_server() as (read_stream, write_stream):
                await self.run(read_stream, write_stream)
        finally:
            await self.context.shutdown()

    async def run(self, read_stream: ReadStream, write_stream: WriteStream) -> None:
        """
        Serve the stdio session over the given streams.

        Returns when the read stream reaches end of input; the session is
        closed at that point.
        """
        session = self.context.open_stdio_session()

        # Let the client finish wiring its side of the pipe
        await anyio.sleep(self.context.config.server.stdio_settle_seconds)
        logger.info("Connected to stdio transport (session %s)", session.session_id)

        try:
            await session.engine.run(read_stream, write_stream)
            logger.info("stdio input closed, ending session %s", session.session_id)
        finally:
            self.context.close_stdio_session()


__all__ = ["StdioTransport"]
