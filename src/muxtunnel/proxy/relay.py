"""
Relay connector.

Opens a connection to the relay and writes the handshake line that tells
it which tunnel the connection belongs to. The relay reads exactly one
line and then forwards raw bytes; no acknowledgment is expected.
"""

import asyncio

from muxtunnel.config import AgentConfig
from muxtunnel.crypto.handshake import encrypt_handshake
from muxtunnel.exceptions import (
    ConnectTimeoutError,
    EncryptError,
    HandshakeWriteError,
    RelayConnectError,
)
from muxtunnel.proxy.connection import Connection
from muxtunnel.utils.logger import get_logger

logger = get_logger(__name__)


class RelayConnector:
    """Dials the relay and sends handshakes."""

    def __init__(
        self,
        host: str,
        port: int,
        connect_timeout: float = 10.0,
        handshake_key: bytes | None = None,
    ):
        """
        Initialize relay connector.

        Args:
            host: Relay host.
            port: Relay port.
            connect_timeout: Seconds allowed for the TCP dial.
            handshake_key: 32-byte key for encrypted handshakes.
        """
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self._handshake_key = handshake_key

    @classmethod
    def from_config(cls, config: AgentConfig) -> "RelayConnector":
        """Build a connector from a validated configuration."""
        return cls(
            config.RELAY_HOST,
            config.RELAY_PORT,
            connect_timeout=config.RELAY_CONNECT_TIMEOUT,
            handshake_key=config.get_handshake_key(),
        )

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def build_handshake(self, handshake: str, encrypt: bool = False) -> bytes:
        """
        Build the handshake line.

        Raises:
            EncryptError: If encryption is requested without a key.
            HandshakeCryptoError: If encryption fails.
        """
        token = handshake
        if encrypt:
            if self._handshake_key is None:
                raise EncryptError("Encrypted handshake requested but no key configured")
            token = encrypt_handshake(handshake, self._handshake_key)
        return f"{token}\n".encode("utf-8")

    async def connect(self, handshake: str, *, encrypt: bool = False) -> Connection:
        """
        Connect to the relay and send the handshake.

        The handshake is built before dialing, so a crypto failure never
        opens a socket. On a failed handshake write the connection is
        closed before raising.

        Args:
            handshake: Tunnel token.
            encrypt: Seal the token with the handshake key.

        Returns:
            Connection to the relay, positioned after the handshake.

        Raises:
            HandshakeCryptoError: If the token cannot be encrypted.
            ConnectTimeoutError: If the dial exceeds connect_timeout.
            RelayConnectError: If the dial fails (e.g. connection refused).
            HandshakeWriteError: If the handshake cannot be written.
        """
        line = self.build_handshake(handshake, encrypt)

        logger.debug(f"Connecting to relay {self.address}...")
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(
                f"Timeout connecting to relay {self.address} "
                f"after {self.connect_timeout:g}s"
            )
            raise ConnectTimeoutError(self.address, self.connect_timeout) from e
        except OSError as e:
            logger.error(f"Failed to connect to relay {self.address}: {e}")
            raise RelayConnectError(str(e), self.address) from e

        conn = Connection(reader, writer, label=f"relay {self.address}")

        try:
            writer.write(line)
            await writer.drain()
        except OSError as e:
            logger.error(f"Failed to send handshake to relay {self.address}: {e}")
            await conn.close()
            raise HandshakeWriteError(
                f"Handshake to relay {self.address} failed: {e}"
            ) from e

        logger.debug(
            f"Handshake '{handshake}' sent to relay {self.address} "
            f"({'encrypted' if encrypt else 'plain'})"
        )
        return conn
