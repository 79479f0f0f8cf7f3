"""Status lines for every lifecycle and loop step.

The sink is any callable taking one string. Delivery is best-effort: a sink
that raises is reported on the library logger and the step carries on.
"""
import logging
import socket
from typing import Callable, Optional, Tuple, Union

from tcp_echo.errors import EchoIOError

logger = logging.getLogger("tcp_echo")

LogSink = Callable[[str], None]

# Longest status line handed to the sink
MAX_LOG_MESSAGE_LENGTH = 256


class Diagnostics:
    def __init__(self, sink: Optional[LogSink] = None):
        self.sink = sink if sink is not None else logger.info

    def log(self, fmt: str, *args) -> None:
        try:
            text = fmt % args if args else fmt
            self.sink(text[:MAX_LOG_MESSAGE_LENGTH])
        except Exception as e:
            logger.debug("Log sink dropped message %r: %s", fmt, e)

    def log_address(self, message: str, address) -> str:
        formatted = format_address(address)
        self.log("%s %s.", message, formatted)
        return formatted


def format_address(address: Tuple[Union[str, bytes, int], int]) -> str:
    """Render an IPv4 address and port as ``a.b.c.d:port``.

    The host may be dotted-decimal text, 4 packed bytes, or a 32-bit
    integer in host byte order.
    """
    try:
        host, port = address
    except (TypeError, ValueError):
        raise EchoIOError(f"Malformed address {address!r}")

    try:
        if isinstance(host, int):
            packed = host.to_bytes(4, "big")
        elif isinstance(host, bytes):
            packed = host
        else:
            packed = socket.inet_pton(socket.AF_INET, host)
        ip = socket.inet_ntop(socket.AF_INET, packed)
    except (OverflowError, TypeError, ValueError) as e:
        raise EchoIOError(f"Malformed address {host!r}") from e
    except OSError as e:
        raise EchoIOError.from_os_error(e) from e

    if not isinstance(port, int) or not 0 <= port <= 0xFFFF:
        raise EchoIOError(f"Malformed port {port!r}")

    return f"{ip}:{port}"
