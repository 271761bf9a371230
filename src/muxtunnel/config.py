"""
Agent configuration.

The agent is configured from the process environment once at startup.
The resulting AgentConfig is passed explicitly to the agent, the relay
connector and each endpoint listener.

Usage:
    from muxtunnel.config import AgentConfig

    config = AgentConfig.from_env()
    config.validate()
"""

import os
from dataclasses import dataclass, field, replace

from muxtunnel.crypto.handshake import KEY_SIZE, decode_key
from muxtunnel.exceptions import ConfigError, KeyDecodeError
from muxtunnel.models.enums import EndpointKind, HandshakeMode, LogLevel

DEFAULT_SOCKET_PATH = "/var/run/usbmuxd"
DEFAULT_FORWARD_ADDRESS = "127.0.0.1:7777"

# Prefix forcing the direct variant with an explicit host:port target
DIRECT_PREFIX = "dial://"


# =============================================================================
# Tunnel Descriptor
# =============================================================================


@dataclass(frozen=True)
class TunnelSpec:
    """
    One configured tunnel.

    Attributes:
        local_address: Socket path, host:port to listen on, or a direct target.
        handshake: Token telling the relay which tunnel this connection carries.
        encrypt: Per-tunnel handshake encryption override (None = agent default).
    """

    local_address: str
    handshake: str
    encrypt: bool | None = None

    @property
    def kind(self) -> EndpointKind:
        return parse_endpoint(self.local_address)[0]

    def __str__(self) -> str:
        return f"{self.local_address}={self.handshake}"


def parse_endpoint(address: str) -> tuple[EndpointKind, str]:
    """
    Classify a local address.

    - "/path/to.sock" -> UNIX, path
    - "dial://host:port" -> DIRECT, "host:port"
    - "host:port" -> TCP, "host:port"
    - anything else -> DIRECT, address

    Returns:
        (kind, target) tuple.
    """
    if address.startswith("/"):
        return EndpointKind.UNIX, address
    if address.startswith(DIRECT_PREFIX):
        return EndpointKind.DIRECT, address[len(DIRECT_PREFIX) :]
    if ":" in address:
        return EndpointKind.TCP, address
    return EndpointKind.DIRECT, address


def split_host_port(address: str) -> tuple[str, int | None]:
    """
    Split "host:port" into its parts.

    A bare host yields a None port. IPv6 hosts must be bracketed
    ("[::1]:80"), otherwise "::1" would read as host ":" and port 1.

    Raises:
        ValueError: If the port is not a valid integer or an IPv6 host
            is not bracketed.
    """
    if ":" not in address:
        return address, None

    host, port_str = address.rsplit(":", 1)
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise ValueError(f"IPv6 host must be in brackets: {address}")
    port = int(port_str)
    if not 0 <= port <= 65535:
        raise ValueError(f"Port out of range: {port}")
    return host, port


def parse_tunnels(value: str) -> list[TunnelSpec]:
    """
    Parse a tunnel list.

    Format: comma-separated "address=handshake" entries, each optionally
    suffixed with "!enc" or "!plain" to override handshake encryption:

        /var/run/usbmuxd=usbmuxd,127.0.0.1:7777=forward!enc

    Raises:
        ConfigError: If an entry is malformed.
    """
    tunnels = []
    for entry in value.split(","):
        entry = entry.strip()
        if not entry:
            continue

        encrypt = None
        if entry.endswith("!enc"):
            encrypt, entry = True, entry[: -len("!enc")]
        elif entry.endswith("!plain"):
            encrypt, entry = False, entry[: -len("!plain")]

        address, sep, handshake = entry.rpartition("=")
        if not sep or not address or not handshake:
            raise ConfigError(
                f"Invalid tunnel entry '{entry}': expected address=handshake"
            )
        tunnels.append(TunnelSpec(address.strip(), handshake.strip(), encrypt))

    return tunnels


def _env_float(env, name: str, default: float | None) -> float | None:
    value = env.get(name, "").strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got '{value}'") from e


# =============================================================================
# Configuration Dataclass
# =============================================================================


@dataclass
class AgentConfig:
    """
    Tunnel agent configuration.

    Attributes:
        RELAY_HOST: Relay server host (required).
        RELAY_PORT: Relay server port (required).
        SOCKET_PATH: Local domain socket of the default usbmuxd tunnel.
        HANDSHAKE_SECRET: Base64 of the 32-byte handshake key.
        HANDSHAKE_MODE: Default handshake mode for all tunnels.
        TUNNELS: Configured tunnels (defaults built from SOCKET_PATH).
        LOG_LEVEL: Logging verbosity level.
    """

    # Relay Configuration
    RELAY_HOST: str = ""
    RELAY_PORT: int | None = None
    RELAY_CONNECT_TIMEOUT: float = 10.0

    # Local Endpoint Configuration
    SOCKET_PATH: str = DEFAULT_SOCKET_PATH
    SOCKET_MODE: int | None = None  # chmod applied to created sockets
    LOCAL_DIAL_TIMEOUT: float = 10.0
    TUNNELS: list[TunnelSpec] = field(default_factory=list)

    # Handshake Configuration
    HANDSHAKE_SECRET: str = ""
    HANDSHAKE_MODE: HandshakeMode = HandshakeMode.PLAIN

    # Splice Configuration
    SPLICE_IDLE_TIMEOUT: float | None = None  # None = sessions never time out
    SPLICE_BUFFER_SIZE: int = 65536

    # Logging Configuration
    LOG_LEVEL: LogLevel = LogLevel.INFO
    LOG_FILE: str = ""

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "AgentConfig":
        """
        Build a configuration from environment variables.

        Missing optional variables keep their defaults. Required values are
        not checked here; call validate() before using the config.

        Raises:
            ConfigError: If a variable is present but malformed.
        """
        env = os.environ if environ is None else environ

        port_str = env.get("USBMUXD_PORT", "").strip()
        try:
            port = int(port_str) if port_str else None
        except ValueError as e:
            raise ConfigError(f"USBMUXD_PORT must be an integer, got '{port_str}'") from e

        mode_str = env.get("MUXTUNNEL_HANDSHAKE_MODE", "").strip().lower()
        try:
            mode = HandshakeMode(mode_str) if mode_str else HandshakeMode.PLAIN
        except ValueError as e:
            raise ConfigError(
                f"MUXTUNNEL_HANDSHAKE_MODE must be 'plain' or 'encrypted', "
                f"got '{mode_str}'"
            ) from e

        level_str = env.get("MUXTUNNEL_LOG_LEVEL", "").strip().lower()
        try:
            level = LogLevel(level_str) if level_str else LogLevel.INFO
        except ValueError as e:
            raise ConfigError(f"Invalid MUXTUNNEL_LOG_LEVEL '{level_str}'") from e

        socket_mode_str = env.get("MUXTUNNEL_SOCKET_MODE", "").strip()
        try:
            socket_mode = int(socket_mode_str, 8) if socket_mode_str else None
        except ValueError as e:
            raise ConfigError(
                f"MUXTUNNEL_SOCKET_MODE must be octal, got '{socket_mode_str}'"
            ) from e

        socket_path = env.get("USBMUXD_SOCKET_ADDRESS", "").strip()
        tunnels_str = env.get("MUXTUNNEL_TUNNELS", "").strip()

        config = cls(
            RELAY_HOST=env.get("USBMUXD_HOST", "").strip(),
            RELAY_PORT=port,
            RELAY_CONNECT_TIMEOUT=_env_float(env, "MUXTUNNEL_CONNECT_TIMEOUT", 10.0),
            SOCKET_PATH=socket_path or DEFAULT_SOCKET_PATH,
            SOCKET_MODE=socket_mode,
            LOCAL_DIAL_TIMEOUT=_env_float(env, "MUXTUNNEL_LOCAL_DIAL_TIMEOUT", 10.0),
            TUNNELS=parse_tunnels(tunnels_str) if tunnels_str else [],
            HANDSHAKE_SECRET=env.get("HANDSHAKE_SECRET", "").strip(),
            HANDSHAKE_MODE=mode,
            SPLICE_IDLE_TIMEOUT=_env_float(env, "MUXTUNNEL_IDLE_TIMEOUT", None),
            LOG_LEVEL=level,
            LOG_FILE=env.get("MUXTUNNEL_LOG_FILE", "").strip(),
        )
        return config

    def with_overrides(self, **changes) -> "AgentConfig":
        """Return a copy with the given non-None fields replaced."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    def get_tunnels(self) -> list[TunnelSpec]:
        """Get the configured tunnels, or the default usbmuxd + forward pair."""
        if self.TUNNELS:
            return list(self.TUNNELS)
        return [
            TunnelSpec(self.SOCKET_PATH, "usbmuxd"),
            TunnelSpec(DEFAULT_FORWARD_ADDRESS, "forward"),
        ]

    def get_relay_address(self) -> str:
        """Get the relay address as host:port."""
        return f"{self.RELAY_HOST}:{self.RELAY_PORT}"

    def get_handshake_key(self) -> bytes | None:
        """
        Get the decoded handshake key, or None if no secret is configured.

        Raises:
            ConfigError: If the secret cannot be decoded or has the wrong length.
        """
        if not self.HANDSHAKE_SECRET:
            return None
        try:
            key = decode_key(self.HANDSHAKE_SECRET)
        except KeyDecodeError as e:
            raise ConfigError(f"HANDSHAKE_SECRET: {e}") from e
        if len(key) != KEY_SIZE:
            raise ConfigError(
                f"HANDSHAKE_SECRET must decode to {KEY_SIZE} bytes, got {len(key)}"
            )
        return key

    def should_encrypt(self, tunnel: TunnelSpec) -> bool:
        """Resolve whether a tunnel sends an encrypted handshake."""
        if tunnel.encrypt is not None:
            return tunnel.encrypt
        return self.HANDSHAKE_MODE == HandshakeMode.ENCRYPTED

    def validate(self) -> None:
        """
        Check startup preconditions.

        Raises:
            ConfigError: On the first problem found.
        """
        if not self.RELAY_HOST or self.RELAY_PORT is None:
            raise ConfigError("USBMUXD_HOST and USBMUXD_PORT must be set")
        if not 1 <= self.RELAY_PORT <= 65535:
            raise ConfigError(f"Relay port out of range: {self.RELAY_PORT}")
        if self.RELAY_CONNECT_TIMEOUT <= 0:
            raise ConfigError("Relay connect timeout must be positive")
        if self.SPLICE_IDLE_TIMEOUT is not None and self.SPLICE_IDLE_TIMEOUT <= 0:
            raise ConfigError("Splice idle timeout must be positive")

        key = self.get_handshake_key()
        tunnels = self.get_tunnels()
        if not tunnels:
            raise ConfigError("No tunnels configured")

        seen: set[str] = set()
        for tunnel in tunnels:
            if not tunnel.local_address:
                raise ConfigError(f"Tunnel '{tunnel.handshake}' has no local address")
            if tunnel.local_address in seen:
                raise ConfigError(f"Duplicate local address: {tunnel.local_address}")
            seen.add(tunnel.local_address)

            if not tunnel.handshake or "\n" in tunnel.handshake:
                raise ConfigError(
                    f"Tunnel {tunnel.local_address}: handshake must be a "
                    "non-empty single line"
                )
            if self.should_encrypt(tunnel) and key is None:
                raise ConfigError(
                    f"Tunnel {tunnel}: encrypted handshake requires HANDSHAKE_SECRET"
                )

            kind, target = parse_endpoint(tunnel.local_address)
            if kind != EndpointKind.UNIX:
                try:
                    split_host_port(target)
                except ValueError as e:
                    raise ConfigError(
                        f"Tunnel {tunnel.local_address}: invalid address ({e})"
                    ) from e
