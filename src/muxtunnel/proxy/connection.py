"""
Duplex stream connection.

Wraps an asyncio reader/writer pair so a splice session can treat local
and relay connections the same way.
"""

import asyncio
import errno

from muxtunnel.exceptions import InvalidConnectionError
from muxtunnel.utils.logger import get_logger

logger = get_logger(__name__)

# How long close() waits for the transport to finish closing
CLOSE_WAIT_TIMEOUT = 1.0

# errno values meaning "this socket is already gone"
_CLOSED_ERRNOS = frozenset(
    {
        errno.EBADF,
        errno.ENOTCONN,
        errno.ESHUTDOWN,
        errno.ECONNRESET,
        errno.EPIPE,
        errno.ETIMEDOUT,
    }
)


class Connection:
    """A duplex byte-stream connection with idempotent close."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        label: str | None = None,
    ):
        """
        Initialize connection.

        Args:
            reader: AsyncIO stream reader.
            writer: AsyncIO stream writer.
            label: Name used in logs (defaults to the peer address).
        """
        self.reader = reader
        self.writer = writer
        self.label = label or _describe_peer(writer)
        self._closed = False

    @property
    def closed(self) -> bool:
        """True once close() has been called."""
        return self._closed

    async def close(self) -> None:
        """
        Close the connection.

        Safe to call any number of times, including after the peer or the
        other direction of a splice already closed the transport.
        """
        if self._closed:
            return
        self._closed = True

        self.writer.close()
        try:
            await asyncio.wait_for(self.writer.wait_closed(), timeout=CLOSE_WAIT_TIMEOUT)
        except (OSError, asyncio.TimeoutError) as e:
            logger.trace(f"[{self.label}] Ignored error while closing: {e!r}")

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<Connection {self.label} {state}>"


def _describe_peer(writer: asyncio.StreamWriter) -> str:
    peer = writer.get_extra_info("peername")
    if peer:
        if isinstance(peer, tuple):
            return f"{peer[0]}:{peer[1]}"
        return str(peer)
    sockname = writer.get_extra_info("sockname")
    return str(sockname) if sockname else "unknown"


def is_connection_open(conn: Connection | None) -> bool:
    """
    Best-effort liveness probe.

    Checks the closing state of the transport and issues a zero-length
    write. A local close is not always visible synchronously, so a True
    result is not authoritative; a stale True only means one extra copy
    task starts and ends on its first read or write.

    Raises:
        InvalidConnectionError: If conn is None.
    """
    if conn is None:
        raise InvalidConnectionError("Connection is None")

    if conn.closed or conn.writer.is_closing():
        return False

    try:
        conn.writer.write(b"")
    except (OSError, RuntimeError):
        return False
    return True


def is_closed_error(error: BaseException | None) -> bool:
    """
    Whether an error just means the connection is gone.

    Reset, broken pipe, aborted and "connection lost" errors are the normal
    way a splice session ends when one side hangs up.
    """
    if error is None:
        return False
    if isinstance(error, (ConnectionError, asyncio.IncompleteReadError)):
        return True
    if isinstance(error, OSError):
        return error.errno in _CLOSED_ERRNOS
    if isinstance(error, RuntimeError):
        return "closed" in str(error).lower()
    return False


async def open_connection(
    host: str,
    port: int,
    timeout: float | None = None,
    label: str | None = None,
) -> Connection:
    """Open a TCP connection, bounded by an optional timeout."""
    reader, writer = await asyncio.wait_for(
        asyncio.open_connection(host, port), timeout=timeout
    )
    return Connection(reader, writer, label=label)
