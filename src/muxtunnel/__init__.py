"""muxtunnel: local endpoints spliced to a handshake-routed relay."""

__version__ = "0.1.0"
