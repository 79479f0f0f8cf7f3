import os
import sys
import logging
import socket
import threading
from typing import Optional

from tcp_echo import sockets
from tcp_echo.diagnostics import Diagnostics, LogSink
from tcp_echo.echo_loop import BUFFER_SIZE, run_echo_loop
from tcp_echo.errors import EchoIOError

logger = logging.getLogger("echo-server")

DEFAULT_PORT = int(os.environ.get("ECHO_PORT", "0"))


class EchoServer:
    """Serves exactly one client: open, accept, echo, close.

    ``open`` binds and listens so the resolved port is known before the
    blocking ``serve`` call. ``abort`` may be called from another thread to
    unblock a pending accept or receive.
    """

    def __init__(self, log: Optional[LogSink] = None,
                 backlog: int = sockets.BACKLOG, buffer_size: int = BUFFER_SIZE):
        self.diag = Diagnostics(log if log is not None else logger.info)
        self.backlog = backlog
        self.buffer_size = buffer_size
        self.port: Optional[int] = None
        self.peer: Optional[str] = None
        self._server: Optional[socket.socket] = None
        self._client: Optional[socket.socket] = None
        self._aborted = False
        self._lock = threading.Lock()

    def open(self, port: int) -> int:
        """Create, bind and listen. Returns the bound port."""
        server = sockets.create_socket(self.diag)
        try:
            sockets.bind(self.diag, server, port)
            if port == 0:
                port = sockets.resolve_bound_port(self.diag, server)
            sockets.listen(self.diag, server, self.backlog)
        except EchoIOError:
            sockets.close(server)
            raise

        with self._lock:
            aborted = self._aborted
            if not aborted:
                self._server = server
        if aborted:
            sockets.close(server)
            raise EchoIOError("Server aborted")

        self.port = port
        return port

    def serve(self) -> int:
        """Accept one client and echo until it leaves. Closes both sockets."""
        if self._server is None:
            raise EchoIOError("Server socket is not open")

        try:
            client, self.peer = sockets.accept(self.diag, self._server)
            with self._lock:
                self._client = client
                aborted = self._aborted
            if aborted:
                sockets.shutdown(client)
            try:
                return run_echo_loop(self.diag, client, self.buffer_size)
            finally:
                with self._lock:
                    self._client = None
                sockets.close(client)
        finally:
            self.close()

    def close(self) -> None:
        with self._lock:
            server, self._server = self._server, None
        sockets.close(server)

    def abort(self) -> bool:
        """Shut down the open sockets so blocked calls return.

        The serving thread still owns the handles and releases them. Sockets
        stored after this call are shut down (or refused) as they appear.
        """
        with self._lock:
            self._aborted = True
            client, server = self._client, self._server
        woke_client = sockets.shutdown(client)
        woke_server = sockets.shutdown(server)
        return woke_client or woke_server


def start_server(port: int, log: Optional[LogSink] = None) -> int:
    """Run a complete server session on ``port``; returns bytes echoed."""
    server = EchoServer(log)
    server.open(port)
    return server.serve()


def main(port):
    try:
        start_server(port)
    except EchoIOError as e:
        logger.error("Server failed: %s", e)
        raise SystemExit(1)
    logger.info("Server terminated.")


if __name__ == "__main__":
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=getattr(logging, log_level, logging.INFO),
                        format="%(asctime)s | %(levelname)s | %(message)s")
    port = int(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_PORT
    main(port)
