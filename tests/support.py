"""Network doubles shared by the tests."""

import asyncio
import socket

from muxtunnel.proxy.connection import Connection


def find_free_port() -> int:
    """Find an available TCP port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


async def connection_pair(
    label_a: str = "a", label_b: str = "b"
) -> tuple[Connection, Connection]:
    """Two connected Connections backed by a socketpair."""
    sock_a, sock_b = socket.socketpair()
    reader_a, writer_a = await asyncio.open_connection(sock=sock_a)
    reader_b, writer_b = await asyncio.open_connection(sock=sock_b)
    return Connection(reader_a, writer_a, label_a), Connection(reader_b, writer_b, label_b)


class EchoRelay:
    """
    Relay double.

    Reads the handshake line of every connection, records it, then echoes
    everything it receives until the client hangs up.
    """

    def __init__(self):
        self.handshakes: list[bytes] = []
        self.handshake_received = asyncio.Event()
        self.disconnected = asyncio.Event()
        self.port: int | None = None
        self._server: asyncio.Server | None = None

    async def start(self) -> "EchoRelay":
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def _handle(self, reader, writer):
        try:
            line = await reader.readline()
            self.handshakes.append(line)
            self.handshake_received.set()
            while True:
                data = await reader.read(65536)
                if not data:
                    break
                writer.write(data)
                await writer.drain()
        except ConnectionError:
            pass
        finally:
            writer.close()
            self.disconnected.set()

    async def close(self):
        if self._server:
            self._server.close()
            try:
                await asyncio.wait_for(self._server.wait_closed(), timeout=1.0)
            except asyncio.TimeoutError:
                pass


async def read_eof(reader: asyncio.StreamReader, timeout: float = 5.0) -> bytes:
    """Read until EOF, failing the test if it takes longer than timeout."""
    return await asyncio.wait_for(reader.read(), timeout=timeout)
