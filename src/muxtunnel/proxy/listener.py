"""
Endpoint listener.

One listener per configured tunnel. Depending on the local address it
listens on a domain socket, listens on a TCP port, or dials the local
target once. Every local connection gets its own relay connection and
splice session.
"""

import asyncio
import os
import stat

from muxtunnel.config import AgentConfig, TunnelSpec, parse_endpoint, split_host_port
from muxtunnel.exceptions import (
    HandshakeCryptoError,
    ListenerBindError,
    LocalDialError,
    RelayError,
)
from muxtunnel.models.enums import EndpointKind
from muxtunnel.proxy.connection import Connection, open_connection
from muxtunnel.proxy.relay import RelayConnector
from muxtunnel.proxy.splice import SpliceResult, splice
from muxtunnel.utils.logger import format_traceback, get_logger

logger = get_logger(__name__)


class EndpointListener:
    """Runs one tunnel: accepts local connections and splices them to the relay."""

    def __init__(
        self,
        tunnel: TunnelSpec,
        connector: RelayConnector,
        *,
        encrypt: bool = False,
        idle_timeout: float | None = None,
        buffer_size: int = 65536,
        local_dial_timeout: float | None = 10.0,
        socket_mode: int | None = None,
    ):
        """
        Initialize endpoint listener.

        Args:
            tunnel: Tunnel descriptor.
            connector: Relay connector shared by all tunnels.
            encrypt: Send an encrypted handshake.
            idle_timeout: Splice idle timeout (None = no timeout).
            buffer_size: Splice read size.
            local_dial_timeout: Timeout for the direct variant's local dial.
            socket_mode: chmod applied to a created domain socket.
        """
        self.tunnel = tunnel
        self.connector = connector
        self.encrypt = encrypt
        self.idle_timeout = idle_timeout
        self.buffer_size = buffer_size
        self.local_dial_timeout = local_dial_timeout
        self.socket_mode = socket_mode
        self.kind, self.target = parse_endpoint(tunnel.local_address)

        self._server: asyncio.Server | None = None
        self._sessions: set[asyncio.Task] = set()
        self._log_prefix = f"[Tunnel {tunnel.handshake}]"

    @classmethod
    def from_config(
        cls, tunnel: TunnelSpec, connector: RelayConnector, config: AgentConfig
    ) -> "EndpointListener":
        """Build a listener using the agent-wide settings."""
        return cls(
            tunnel,
            connector,
            encrypt=config.should_encrypt(tunnel),
            idle_timeout=config.SPLICE_IDLE_TIMEOUT,
            buffer_size=config.SPLICE_BUFFER_SIZE,
            local_dial_timeout=config.LOCAL_DIAL_TIMEOUT,
            socket_mode=config.SOCKET_MODE,
        )

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def is_serving(self) -> bool:
        return self._server is not None and self._server.is_serving()

    @property
    def address(self) -> str:
        """The bound address (resolves port 0 for TCP listeners)."""
        if self._server and self._server.sockets and self.kind == EndpointKind.TCP:
            host, port = self._server.sockets[0].getsockname()[:2]
            if ":" in host:
                return f"[{host}]:{port}"
            return f"{host}:{port}"
        return self.target

    @property
    def active_sessions(self) -> int:
        return len(self._sessions)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def run(self) -> None:
        """
        Run the tunnel.

        Listener variants bind and accept until cancelled. The direct
        variant runs a single session and returns.

        Raises:
            ListenerBindError: If the local endpoint cannot be bound.
        """
        logger.info(
            f"{self._log_prefix} Starting tunnel: local={self.tunnel.local_address} "
            f"kind={self.kind.value} handshake={self.tunnel.handshake}"
        )

        if self.kind == EndpointKind.DIRECT:
            await self.run_direct()
            return

        try:
            await self.start()
            await self.serve_forever()
        finally:
            await self.close()

    async def start(self) -> None:
        """
        Bind the local endpoint.

        Raises:
            ListenerBindError: On any bind failure.
        """
        if self.kind == EndpointKind.UNIX:
            await self._start_unix()
        elif self.kind == EndpointKind.TCP:
            await self._start_tcp()
        else:
            raise ListenerBindError(
                "direct tunnels have no listener", self.tunnel.local_address
            )

    async def _start_unix(self) -> None:
        path = self.target

        # Clear out a socket left behind by a previous run
        try:
            st = os.lstat(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise ListenerBindError(str(e), path) from e
        else:
            if not stat.S_ISSOCK(st.st_mode):
                raise ListenerBindError("path exists and is not a socket", path)
            try:
                os.unlink(path)
                logger.debug(f"{self._log_prefix} Removed stale socket {path}")
            except FileNotFoundError:
                pass
            except OSError as e:
                raise ListenerBindError(f"cannot remove stale socket: {e}", path) from e

        parent = os.path.dirname(path)
        try:
            os.makedirs(parent, mode=0o755, exist_ok=True)
        except OSError as e:
            logger.critical(f"{self._log_prefix} Cannot create directory '{parent}': {e}")
            raise ListenerBindError(f"cannot create directory {parent}: {e}", path) from e

        try:
            self._server = await asyncio.start_unix_server(
                self._handle_local, path=path
            )
        except OSError as e:
            logger.critical(f"{self._log_prefix} Failed to create unix socket {path}: {e}")
            raise ListenerBindError(str(e), path) from e

        if self.socket_mode is not None:
            try:
                os.chmod(path, self.socket_mode)
            except OSError as e:
                logger.critical(f"{self._log_prefix} Cannot chmod {path}: {e}")
                await self.close()
                raise ListenerBindError(f"cannot set socket mode: {e}", path) from e

        logger.info(f"{self._log_prefix} Listening on unix socket {path}")

    async def _start_tcp(self) -> None:
        try:
            host, port = split_host_port(self.target)
        except ValueError as e:
            raise ListenerBindError(str(e), self.target) from e

        try:
            self._server = await asyncio.start_server(
                self._handle_local, host=host or None, port=port
            )
        except OSError as e:
            if e.errno in (98, 48):  # Address already in use (Linux 98, macOS 48)
                logger.critical(
                    f"{self._log_prefix} Failed to bind {self.target}: "
                    "Address already in use."
                )
            else:
                logger.critical(f"{self._log_prefix} Failed to bind {self.target}: {e}")
            raise ListenerBindError(str(e), self.target) from e

        logger.info(f"{self._log_prefix} Listening on tcp {self.address}")

    async def serve_forever(self) -> None:
        """Accept connections until cancelled or closed."""
        if self._server is None:
            await self.start()
        try:
            await self._server.serve_forever()
        except asyncio.CancelledError:
            logger.info(f"{self._log_prefix} Listener task cancelled.")
            raise

    async def close(self) -> None:
        """Stop accepting and remove the socket file this listener created."""
        if self._server is None:
            return
        server, self._server = self._server, None
        server.close()
        try:
            await asyncio.wait_for(server.wait_closed(), timeout=1.0)
        except asyncio.TimeoutError:
            # wait_closed() also waits for live sessions on newer Pythons
            pass

        if self.kind == EndpointKind.UNIX:
            try:
                os.unlink(self.target)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"{self._log_prefix} Cannot remove {self.target}: {e}")

        logger.info(
            f"{self._log_prefix} Listener on {self.target} closed "
            f"({self.active_sessions} session(s) still open)."
        )

    # =========================================================================
    # Connection Handling
    # =========================================================================

    async def _handle_local(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handle a single accepted local connection."""
        local = Connection(reader, writer)
        if self.kind == EndpointKind.UNIX:
            local.label = f"unix {self.target}"

        task = asyncio.current_task()
        if task is not None:
            self._sessions.add(task)

        try:
            logger.info(f"{self._log_prefix} New connection from {local.label}")
            await self.handle_connection(local)
        except Exception as e:
            logger.error(
                f"{self._log_prefix} Unexpected error handling {local.label}: {e}"
            )
            logger.debug(format_traceback(e))
            await local.close()
        finally:
            if task is not None:
                self._sessions.discard(task)

    async def handle_connection(self, local: Connection) -> SpliceResult | None:
        """
        Connect a local connection to the relay and splice them.

        A relay failure closes the local connection and is not propagated;
        the accept loop keeps going.

        Returns:
            The splice result, or None if the relay could not be reached.
        """
        try:
            remote = await self.connector.connect(
                self.tunnel.handshake, encrypt=self.encrypt
            )
        except (RelayError, HandshakeCryptoError) as e:
            logger.error(f"{self._log_prefix} Relay unavailable, dropping {local.label}: {e}")
            await local.close()
            return None
        except BaseException:
            await local.close()
            raise

        return await splice(
            local,
            remote,
            idle_timeout=self.idle_timeout,
            buffer_size=self.buffer_size,
        )

    async def run_direct(self) -> SpliceResult | None:
        """
        Run the direct variant: relay connect, local dial, one splice.

        Returns:
            The splice result, or None if either side could not be reached.
        """
        try:
            remote = await self.connector.connect(
                self.tunnel.handshake, encrypt=self.encrypt
            )
        except (RelayError, HandshakeCryptoError) as e:
            logger.error(f"{self._log_prefix} Relay unavailable: {e}")
            return None

        try:
            local = await self._dial_local()
        except LocalDialError as e:
            logger.error(f"{self._log_prefix} {e}")
            await remote.close()
            return None
        except BaseException:
            await remote.close()
            raise

        return await splice(
            local,
            remote,
            idle_timeout=self.idle_timeout,
            buffer_size=self.buffer_size,
        )

    async def _dial_local(self) -> Connection:
        try:
            host, port = split_host_port(self.target)
        except ValueError as e:
            raise LocalDialError(str(e), self.target) from e
        if port is None:
            raise LocalDialError("no port given (use dial://host:port)", self.target)

        try:
            return await open_connection(
                host, port, timeout=self.local_dial_timeout, label=f"local {self.target}"
            )
        except asyncio.TimeoutError as e:
            raise LocalDialError(
                f"timed out after {self.local_dial_timeout:g}s", self.target
            ) from e
        except OSError as e:
            raise LocalDialError(str(e), self.target) from e
