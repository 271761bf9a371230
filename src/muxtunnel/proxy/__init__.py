"""
Connection proxy engine.

Listeners accept local connections, the relay connector opens the
matching relay connection, and splice() copies bytes between them.
"""

from muxtunnel.proxy.connection import (
    Connection,
    is_closed_error,
    is_connection_open,
)
from muxtunnel.proxy.listener import EndpointListener
from muxtunnel.proxy.relay import RelayConnector
from muxtunnel.proxy.splice import CloseGate, SpliceResult, splice

__all__ = [
    "CloseGate",
    "Connection",
    "EndpointListener",
    "RelayConnector",
    "SpliceResult",
    "is_closed_error",
    "is_connection_open",
    "splice",
]
