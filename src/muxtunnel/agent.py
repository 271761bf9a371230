"""
Tunnel agent.

Runs every configured tunnel as its own task. A startup failure in any
tunnel (bind error) stops the whole agent; per-connection failures never
leave the tunnel that produced them.
"""

import asyncio
import signal

from muxtunnel.config import AgentConfig
from muxtunnel.proxy.listener import EndpointListener
from muxtunnel.proxy.relay import RelayConnector
from muxtunnel.utils.logger import get_logger

logger = get_logger(__name__)


class Agent:
    """Owns the relay connector and one listener per tunnel."""

    def __init__(self, config: AgentConfig):
        """
        Initialize agent.

        Args:
            config: Validated agent configuration.

        Raises:
            ConfigError: If the config is invalid.
        """
        config.validate()
        self.config = config
        self.connector = RelayConnector.from_config(config)
        self.listeners = [
            EndpointListener.from_config(tunnel, self.connector, config)
            for tunnel in config.get_tunnels()
        ]
        self._tasks: list[asyncio.Task] = []

    async def run(self) -> None:
        """
        Run all tunnels until they finish or one fails to start.

        Direct tunnels finish after one session; listener tunnels run until
        the agent is cancelled.

        Raises:
            ListenerBindError: If a listener cannot bind.
        """
        logger.info(
            f"Agent starting: relay={self.connector.address}, "
            f"tunnels={len(self.listeners)}"
        )

        self._tasks = [
            asyncio.create_task(listener.run(), name=f"tunnel-{listener.tunnel}")
            for listener in self.listeners
        ]

        try:
            pending = set(self._tasks)
            while pending:
                done, pending = await asyncio.wait(
                    pending, return_when=asyncio.FIRST_EXCEPTION
                )
                for task in done:
                    exc = task.exception()
                    if exc is not None:
                        logger.critical(f"Tunnel failed: {exc}")
                        raise exc
        finally:
            await self.shutdown()

        logger.info("All tunnels finished.")

    async def shutdown(self) -> None:
        """Cancel tunnel tasks and close listeners."""
        for task in self._tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        for listener in self.listeners:
            await listener.close()


async def run_agent(config: AgentConfig) -> None:
    """
    Run the agent until it finishes or receives SIGINT/SIGTERM.

    In-flight sessions are not drained on shutdown.
    """
    agent = Agent(config)
    main_task = asyncio.current_task()
    loop = asyncio.get_running_loop()

    def _request_stop(signame: str) -> None:
        logger.info(f"Received {signame}, shutting down.")
        main_task.cancel()

    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_stop, sig.name)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Not available on this platform/thread
            pass

    try:
        await agent.run()
    except asyncio.CancelledError:
        logger.info("Agent stopped.")
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
