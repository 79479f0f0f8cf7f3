"""Receive-then-send loop over one accepted connection."""
import os
import socket
from enum import Enum

from tcp_echo.diagnostics import Diagnostics
from tcp_echo.sockets import os_errors

# Transfer buffer capacity; one byte is kept back for the text terminator
BUFFER_SIZE = int(os.environ.get("ECHO_BUFFER_SIZE", "80"))


class LoopState(Enum):
    RECEIVING = "receiving"
    SENDING = "sending"
    TERMINATED = "terminated"


def _as_text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def receive(diag: Diagnostics, sock: socket.socket, buffer_size: int = BUFFER_SIZE) -> bytes:
    """Block for at most ``buffer_size - 1`` bytes. Empty means the peer closed."""
    diag.log("Receiving from the socket...")
    with os_errors():
        data = sock.recv(buffer_size - 1)

    if data:
        diag.log("Received %d bytes: %s", len(data), _as_text(data))
    else:
        diag.log("Client disconnected.")
    return data


def send(diag: Diagnostics, sock: socket.socket, data: bytes) -> int:
    diag.log("Sending to the socket...")
    with os_errors():
        sent = sock.send(data)

    if sent > 0:
        diag.log("Sent %d bytes: %s", sent, _as_text(data[:sent]))
    else:
        diag.log("Client disconnected.")
    return sent


def run_echo_loop(diag: Diagnostics, client: socket.socket, buffer_size: int = BUFFER_SIZE) -> int:
    """Echo until the peer closes or a call fails; returns total bytes echoed.

    A zero-length receive or send ends the loop normally. Errors propagate as
    EchoIOError. The caller owns ``client`` and closes it.
    """
    if buffer_size < 2:
        raise ValueError("buffer_size must leave room for at least one byte")

    state = LoopState.RECEIVING
    pending = b""
    echoed = 0

    while state is not LoopState.TERMINATED:
        if state is LoopState.RECEIVING:
            pending = receive(diag, client, buffer_size)
            state = LoopState.SENDING if pending else LoopState.TERMINATED
        else:
            sent = send(diag, client, pending)
            if sent == 0:
                state = LoopState.TERMINATED
                continue
            echoed += sent
            pending = pending[sent:]
            # short sends finish the same chunk before the next receive
            state = LoopState.SENDING if pending else LoopState.RECEIVING

    return echoed
