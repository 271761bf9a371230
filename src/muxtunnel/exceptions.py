"""Tunnel agent exception classes."""


class MuxTunnelError(Exception):
    """Base exception for tunnel agent operations."""

    pass


# =============================================================================
# Startup Errors
# =============================================================================


class ConfigError(MuxTunnelError):
    """Configuration is missing or invalid."""

    pass


class ListenerBindError(MuxTunnelError):
    """Local endpoint could not be bound."""

    def __init__(self, message: str, address: str):
        self.address = address
        super().__init__(f"Cannot bind {address}: {message}")


# =============================================================================
# Per-Connection Errors
# =============================================================================


class RelayError(MuxTunnelError):
    """Relay connection could not be established."""

    pass


class RelayConnectError(RelayError):
    """Dialing the relay failed."""

    def __init__(self, message: str, address: str):
        self.address = address
        super().__init__(f"Relay {address} unreachable: {message}")


class ConnectTimeoutError(RelayConnectError):
    """Dialing the relay did not complete within the connect timeout."""

    def __init__(self, address: str, timeout: float):
        self.timeout = timeout
        super().__init__(f"timed out after {timeout:g}s", address)


class HandshakeWriteError(RelayError):
    """Writing the handshake line to the relay failed."""

    pass


class LocalDialError(MuxTunnelError):
    """Dialing the local target of a direct tunnel failed."""

    def __init__(self, message: str, address: str):
        self.address = address
        super().__init__(f"Local target {address} unreachable: {message}")


class InvalidConnectionError(MuxTunnelError):
    """A splice was requested with a missing connection."""

    pass


# =============================================================================
# Handshake Crypto Errors
# =============================================================================


class HandshakeCryptoError(MuxTunnelError):
    """Base exception for handshake encryption."""

    pass


class InvalidKeyLengthError(HandshakeCryptoError):
    """Handshake key is not 32 bytes long."""

    def __init__(self, length: int):
        self.length = length
        super().__init__(f"Handshake key must be 32 bytes, got {length}")


class KeyDecodeError(HandshakeCryptoError):
    """Handshake key material is not valid base64."""

    pass


class EncryptError(HandshakeCryptoError):
    """Handshake encryption failed."""

    pass


class DecryptError(HandshakeCryptoError):
    """Handshake blob could not be decrypted or failed authentication."""

    pass
