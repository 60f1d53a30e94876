"""Tests for free port discovery."""

import errno
import socket
from collections.abc import Iterator

import pytest

from sfmcp.framework.errors import PortExhaustedError
from sfmcp.server.ports import find_available_port, is_port_available


@pytest.fixture
def occupied_port() -> Iterator[int]:
    """A port held by a live listener for the duration of the test."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as holder:
        holder.bind(("127.0.0.1", 0))
        holder.listen(1)
        yield holder.getsockname()[1]


class TestIsPortAvailable:
    """Test single-port probing."""

    def test_occupied_port_is_unavailable(self, occupied_port: int) -> None:
        assert is_port_available(occupied_port) is False

    def test_released_port_is_available(self) -> None:
        """A port freed by its previous owner can be bound again."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("127.0.0.1", 0))
            port = s.getsockname()[1]

        assert is_port_available(port) is True


class TestFindAvailablePort:
    """Test sequential port search."""

    def test_skips_occupied_port(self, occupied_port: int) -> None:
        """Result lies in the tried range, differs from the occupied port and is bindable."""
        port = find_available_port(occupied_port, max_attempts=5)

        assert occupied_port < port < occupied_port + 5
        assert is_port_available(port)

    def test_single_attempt_on_occupied_port_raises(self, occupied_port: int) -> None:
        with pytest.raises(PortExhaustedError, match="No available port found") as exc_info:
            find_available_port(occupied_port, max_attempts=1)

        assert exc_info.value.start_port == occupied_port
        assert exc_info.value.end_port == occupied_port + 1

    def test_free_start_port_is_returned_as_is(self) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("127.0.0.1", 0))
            port = s.getsockname()[1]

        assert find_available_port(port, max_attempts=1) == port

    def test_rejects_non_positive_attempts(self) -> None:
        with pytest.raises(ValueError, match="max_attempts"):
            find_available_port(3000, max_attempts=0)

    def test_error_message_names_range(self, occupied_port: int) -> None:
        with pytest.raises(PortExhaustedError) as exc_info:
            find_available_port(occupied_port, max_attempts=1)

        assert f"[{occupied_port}, {occupied_port + 1})" in str(exc_info.value)

    def test_other_bind_errors_propagate(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Only "address in use" moves the search on; anything else stops it at once."""
        attempts: list[tuple[str, int]] = []

        def refuse(sock: socket.socket, address: tuple[str, int]) -> None:
            attempts.append(address)
            raise OSError(errno.EACCES, "Permission denied")

        monkeypatch.setattr(socket.socket, "bind", refuse)

        with pytest.raises(OSError) as exc_info:
            find_available_port(3000, max_attempts=5)

        assert not isinstance(exc_info.value, PortExhaustedError)
        assert exc_info.value.errno == errno.EACCES
        assert attempts == [("127.0.0.1", 3000)]
