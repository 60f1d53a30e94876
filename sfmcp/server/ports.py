"""Free listening port discovery for the HTTP transport."""

import errno
import logging
import socket

from sfmcp.framework.errors import PortExhaustedError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 10


def is_port_available(port: int, host: str = "127.0.0.1") -> bool:
    """Check whether ``port`` can be bound on ``host``.

    A throwaway listener is bound and released immediately.

    Args:
        port: TCP port to check
        host: Interface address to bind on

    Returns:
        True if the bind succeeded, False if the address is in use

    Raises:
        OSError: Any bind failure other than "address in use"
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    with socket.socket(family, socket.SOCK_STREAM) as candidate:
        candidate.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            candidate.bind((host, port))
            candidate.listen(1)
        except OSError as e:
            if e.errno == errno.EADDRINUSE:
                return False
            raise
    return True


def find_available_port(
    start_port: int,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    host: str = "127.0.0.1",
) -> int:
    """Return the first bindable port in ``[start_port, start_port + max_attempts)``.

    Candidates are tried sequentially and never retried.

    Args:
        start_port: Preferred port
        max_attempts: Number of candidates to try
        host: Interface address to bind on

    Returns:
        Available port number

    Raises:
        PortExhaustedError: If no candidate in the range is free
        ValueError: If max_attempts is not positive
    """
    if max_attempts < 1:
        msg = f"max_attempts must be >= 1, got {max_attempts}"
        raise ValueError(msg)

    end_port = min(start_port + max_attempts, 65536)
    for port in range(start_port, end_port):
        if is_port_available(port, host):
            return port
        logger.debug("Port %s is in use", port)

    raise PortExhaustedError(start_port, start_port + max_attempts)


__all__ = ["DEFAULT_MAX_ATTEMPTS", "find_available_port", "is_port_available"]
