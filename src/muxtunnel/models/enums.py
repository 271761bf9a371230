"""
Enumeration types for muxtunnel.

This module defines the enumeration types shared by configuration, the
endpoint listener and the command line.
"""

from enum import Enum


# =============================================================================
# Endpoint Enums
# =============================================================================


class EndpointKind(str, Enum):
    """
    How a tunnel exposes its local side.

    - UNIX: Listen on a filesystem domain socket
    - TCP: Listen on a local host:port
    - DIRECT: No listener, dial the local target once and splice it
    """

    UNIX = "unix"
    TCP = "tcp"
    DIRECT = "direct"


class HandshakeMode(str, Enum):
    """
    How the handshake token is written to the relay.

    - PLAIN: Token is sent as-is
    - ENCRYPTED: Token is sealed with AES-256-GCM and base64 encoded
    """

    PLAIN = "plain"
    ENCRYPTED = "encrypted"


# =============================================================================
# Logging Enums
# =============================================================================


class LogLevel(str, Enum):
    """
    Logging verbosity levels.

    Levels (from most to least verbose):
        - FULL: Complete trace with detailed stack information
        - DEBUG: Debug messages and above
        - INFO: Informational messages and above
        - WARNING: Only warnings and errors
    """

    FULL = "full"
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
