"""Transport selection.

The transport is chosen once at startup and never changes for the life of
the process.
"""

from enum import Enum
from typing import TYPE_CHECKING

from sfmcp.framework.errors import UnsupportedTransportError

if TYPE_CHECKING:
    from sfmcp.server.context import RouterContext


class TransportMode(str, Enum):
    STDIO = "stdio"
    HTTP = "http"

    @classmethod
    def parse(cls, value: str) -> "TransportMode":
        """Parse ``stdio``/``http`` (a leading ``--`` is accepted).

        Raises:
            UnsupportedTransportError: For any other value
        """
        normalized = value.strip().lower().removeprefix("--")
        try:
            return cls(normalized)
        except ValueError as e:
            raise UnsupportedTransportError(value) from e


async def connect_transport(context: "RouterContext") -> None:
    """Serve on the transport selected in ``context.mode`` until it stops."""
    if context.mode is TransportMode.HTTP:
        from sfmcp.server.http_transport import HttpTransport

        await HttpTransport(context).serve()
    elif context.mode is TransportMode.STDIO:
        from sfmcp.server.stdio_transport import StdioTransport

        await StdioTransport(context).serve()
    else:
        raise UnsupportedTransportError(str(context.mode))


__all__ = ["TransportMode", "connect_transport"]
