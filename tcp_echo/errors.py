import os
from typing import Optional


class EchoIOError(IOError):
    """Single error kind raised by the echo core.

    Carries either an OS error number with its strerror text, or a message
    built directly for non-OS failures (e.g. a malformed address).
    """

    def __init__(self, message: str, errnum: Optional[int] = None):
        if errnum is None:
            super().__init__(message)
        else:
            super().__init__(errnum, message)
        self.message = message

    def __str__(self):
        return self.message

    @classmethod
    def from_errno(cls, errnum: int) -> "EchoIOError":
        return cls(os.strerror(errnum), errnum)

    @classmethod
    def from_os_error(cls, exc: OSError) -> "EchoIOError":
        if exc.errno is None:
            return cls(str(exc) or type(exc).__name__)
        # getaddrinfo errors carry EAI_* codes that os.strerror does not know
        return cls(exc.strerror or os.strerror(exc.errno), exc.errno)
