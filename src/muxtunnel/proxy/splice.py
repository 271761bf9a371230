"""
Bidirectional splice of two connections.

Each splice session runs two copy tasks (local->remote, remote->local).
Whichever finishes first closes both connections through a shared
CloseGate; the session returns once both tasks have returned.
"""

import asyncio
import time
from dataclasses import dataclass, field

from muxtunnel.exceptions import InvalidConnectionError
from muxtunnel.proxy.bind_connection import DEFAULT_BUFFER_SIZE, bind_reader_writer
from muxtunnel.proxy.connection import Connection, is_closed_error, is_connection_open
from muxtunnel.utils.logger import get_logger

logger = get_logger(__name__)


# =============================================================================
# Close Gate
# =============================================================================


class CloseGate:
    """
    Closes a set of connections exactly once.

    Both copy directions of a session share one gate. The first fire()
    closes every connection; later calls wait for that close to finish
    and return without doing anything.
    """

    def __init__(self, *connections: Connection):
        self._connections = connections
        self._fired = False
        self._done = asyncio.Event()

    @property
    def fired(self) -> bool:
        return self._fired

    async def fire(self) -> bool:
        """
        Close all connections if nobody has yet.

        Returns:
            True if this call performed the close.
        """
        # The flag is set before the first await, so concurrent callers
        # can never both see it unset.
        if self._fired:
            await self._done.wait()
            return False
        self._fired = True

        try:
            for conn in self._connections:
                await conn.close()
        finally:
            self._done.set()
        return True

    async def wait(self) -> None:
        """Wait until the connections have been closed."""
        await self._done.wait()


# =============================================================================
# Splice Session
# =============================================================================


@dataclass
class DirectionResult:
    """Outcome of one copy direction."""

    name: str
    started: bool = False
    bytes_copied: int = 0
    error: BaseException | None = None


@dataclass
class SpliceResult:
    """Outcome of a splice session."""

    upstream: DirectionResult = field(
        default_factory=lambda: DirectionResult("local->remote")
    )
    downstream: DirectionResult = field(
        default_factory=lambda: DirectionResult("remote->local")
    )
    duration: float = 0.0
    timed_out: bool = False

    @property
    def bytes_total(self) -> int:
        return self.upstream.bytes_copied + self.downstream.bytes_copied


class _IdleTimer:
    """Tracks the last time either direction of a session moved data."""

    def __init__(self):
        self.last_activity = time.monotonic()

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    async def watch(
        self, gate: CloseGate, result: SpliceResult, timeout: float, label: str
    ) -> None:
        """Fire the gate once the whole session has been silent for timeout."""
        while not gate.fired:
            idle_for = time.monotonic() - self.last_activity
            if idle_for >= timeout:
                result.timed_out = True
                logger.info(f"[{label}] Idle for {timeout:g}s, closing session.")
                await gate.fire()
                return
            await asyncio.sleep(timeout - idle_for)


async def _pump(
    source: Connection,
    dest: Connection,
    result: DirectionResult,
    gate: CloseGate,
    buffer_size: int,
    idle: _IdleTimer,
) -> None:
    """Copy source to dest, then fire the shared close."""
    log_prefix = f"[{source.label} -> {dest.label}]"

    def count(size: int) -> None:
        result.bytes_copied += size
        idle.touch()

    try:
        await bind_reader_writer(source.reader, dest.writer, buffer_size, on_data=count)
        logger.debug(f"{log_prefix} EOF after {result.bytes_copied} bytes.")
    except Exception as e:
        result.error = e
        if is_closed_error(e) or gate.fired:
            logger.debug(f"{log_prefix} Connection closed: {e!r}")
        else:
            logger.error(f"{log_prefix} Copy error ({result.name}): {e!r}")
    finally:
        await gate.fire()


async def splice(
    local: Connection | None,
    remote: Connection | None,
    *,
    idle_timeout: float | None = None,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
) -> SpliceResult:
    """
    Copy bytes between two connections until either side is done.

    Blocks until both directions have stopped; both connections are closed
    when it returns. Run it as its own task to keep other sessions going.

    Args:
        local: Connection to the local peer.
        remote: Connection to the relay.
        idle_timeout: Seconds without data in either direction before the
            session is closed (None = no timeout).
        buffer_size: Maximum bytes per read.

    Returns:
        Per-direction byte counts and errors.

    Raises:
        InvalidConnectionError: If either connection is None.
    """
    if local is None or remote is None:
        raise InvalidConnectionError(
            f"splice() needs two connections (local={local!r}, remote={remote!r})"
        )

    result = SpliceResult()
    gate = CloseGate(local, remote)
    idle = _IdleTimer()
    started = time.monotonic()

    logger.info(f"Proxy started: {local.label} <-> {remote.label}")

    tasks = []
    directions = (
        (local, remote, result.upstream),
        (remote, local, result.downstream),
    )
    for source, dest, direction in directions:
        if not is_connection_open(source):
            logger.debug(
                f"[{source.label}] Already closed, not starting {direction.name}."
            )
            continue
        direction.started = True
        tasks.append(
            asyncio.create_task(
                _pump(source, dest, direction, gate, buffer_size, idle)
            )
        )

    watchdog = None
    if tasks and idle_timeout is not None:
        watchdog = asyncio.create_task(
            idle.watch(gate, result, idle_timeout, f"{local.label} <-> {remote.label}")
        )

    try:
        if tasks:
            await asyncio.gather(*tasks)
        else:
            await gate.fire()
    finally:
        if watchdog is not None:
            watchdog.cancel()
            await asyncio.gather(watchdog, return_exceptions=True)

    result.duration = time.monotonic() - started
    logger.info(
        f"Proxy completed: {local.label} <-> {remote.label} "
        f"(sent={result.upstream.bytes_copied}, "
        f"received={result.downstream.bytes_copied}, "
        f"duration={result.duration:.2f}s)"
    )
    return result
