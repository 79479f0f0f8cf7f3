"""Blocking TCP echo server and client."""
from tcp_echo.errors import EchoIOError

__all__ = ["EchoIOError"]
