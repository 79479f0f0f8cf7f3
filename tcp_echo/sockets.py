"""TCP/IPv4 socket lifecycle: create, bind, listen, accept, connect, close.

Each step writes a status line through the given Diagnostics before the
blocking/OS call and, where there is something to report, after it. Any
OSError raised by the call surfaces as EchoIOError.
"""
import os
import socket
from contextlib import contextmanager
from typing import Optional, Tuple

from tcp_echo.diagnostics import Diagnostics
from tcp_echo.errors import EchoIOError

BACKLOG = int(os.environ.get("ECHO_BACKLOG", "4"))

# Bind to all addresses
WILDCARD_ADDRESS = "0.0.0.0"  # nosec B104 - echo server listens on every interface


@contextmanager
def os_errors():
    """Translate OSError raised inside the block into EchoIOError."""
    try:
        yield
    except EchoIOError:
        raise
    except OSError as e:
        raise EchoIOError.from_os_error(e) from e


def create_socket(diag: Diagnostics) -> socket.socket:
    diag.log("Constructing a new TCP socket...")
    with os_errors():
        return socket.socket(socket.AF_INET, socket.SOCK_STREAM)


def bind(diag: Diagnostics, sock: socket.socket, port: int) -> None:
    """Bind to the wildcard address; port 0 asks the OS for any free port."""
    if not 0 <= port <= 0xFFFF:
        raise EchoIOError(f"Port {port} out of range")

    diag.log("Binding to port %d.", port)
    with os_errors():
        sock.bind((WILDCARD_ADDRESS, port))


def resolve_bound_port(diag: Diagnostics, sock: socket.socket) -> int:
    with os_errors():
        _, port = sock.getsockname()

    diag.log("Binded to random port %d.", port)
    return port


def listen(diag: Diagnostics, sock: socket.socket, backlog: int = BACKLOG) -> None:
    diag.log("Listening on socket with a backlog of %d pending connections.", backlog)
    with os_errors():
        sock.listen(backlog)


def accept(diag: Diagnostics, sock: socket.socket) -> Tuple[socket.socket, str]:
    """Block until a client connects; returns its socket and ``ip:port``."""
    diag.log("Waiting for a client connection...")
    with os_errors():
        client, address = sock.accept()

    try:
        peer = diag.log_address("Client connection from", address)
    except EchoIOError:
        close(client)
        raise
    return client, peer


def connect(diag: Diagnostics, sock: socket.socket, ip: str, port: int) -> None:
    if not 0 < port <= 0xFFFF:
        raise EchoIOError(f"Port {port} out of range")

    diag.log("Connecting to %s:%d...", ip, port)
    with os_errors():
        sock.connect((ip, port))
    diag.log("Connected.")


def close(sock: Optional[socket.socket]) -> None:
    """Release a handle. Call exactly once per handle; None is a no-op."""
    if sock is not None:
        sock.close()


def shutdown(sock: Optional[socket.socket]) -> bool:
    """Wake any thread blocked on sock without releasing the handle.

    Returns False when the socket was not in a state that can be shut down.
    """
    if sock is None:
        return False
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        return False
    return True
