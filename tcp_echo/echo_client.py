import os
import sys
import logging
from typing import Optional, Union

from tcp_echo import sockets
from tcp_echo.diagnostics import Diagnostics, LogSink
from tcp_echo.echo_loop import BUFFER_SIZE, receive, send
from tcp_echo.errors import EchoIOError

logger = logging.getLogger("echo-client")


def start_client(ip: str, port: int, message: Union[str, bytes],
                 log: Optional[LogSink] = None, buffer_size: int = BUFFER_SIZE) -> bytes:
    """Connect, send ``message``, read the echo back, close. Returns the echo."""
    diag = Diagnostics(log if log is not None else logger.info)
    payload = message.encode("utf-8") if isinstance(message, str) else message

    client = sockets.create_socket(diag)
    try:
        sockets.connect(diag, client, ip, port)

        remaining = payload
        while remaining:
            sent = send(diag, client, remaining)
            if sent == 0:
                raise EchoIOError("Connection closed while sending")
            remaining = remaining[sent:]

        chunks = []
        received = 0
        while received < len(payload):
            data = receive(diag, client, buffer_size)
            if not data:
                break
            chunks.append(data)
            received += len(data)
    finally:
        sockets.close(client)

    echo = b"".join(chunks)
    diag.log("Echo received: %s", echo.decode("utf-8", errors="replace"))
    return echo


def main(host, port, message="hello"):
    try:
        echo = start_client(host, port, message)
    except EchoIOError as e:
        logger.error("Client failed: %s", e)
        raise SystemExit(1)
    print(echo.decode("utf-8", errors="replace"))


if __name__ == "__main__":
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=getattr(logging, log_level, logging.INFO),
                        format="%(asctime)s | %(levelname)s | %(message)s")
    if len(sys.argv) < 3:
        print("Usage: python -m tcp_echo.echo_client <host> <port> [message]")
        raise SystemExit(2)
    host = sys.argv[1]
    port = int(sys.argv[2])
    msg = sys.argv[3] if len(sys.argv) > 3 else "hello"
    main(host, port, msg)
