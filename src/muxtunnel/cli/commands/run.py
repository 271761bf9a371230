"""Run the tunnel agent."""

import asyncio
from typing import Annotated

import typer

from muxtunnel.agent import run_agent
from muxtunnel.config import AgentConfig, parse_tunnels
from muxtunnel.exceptions import ConfigError, ListenerBindError
from muxtunnel.models.enums import HandshakeMode, LogLevel
from muxtunnel.cli.output import print_error
from muxtunnel.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)

app = typer.Typer(help="Run the tunnel agent")


@app.callback(invoke_without_command=True)
def run(
    relay_host: Annotated[
        str | None,
        typer.Option("--relay-host", help="Relay host (overrides USBMUXD_HOST)"),
    ] = None,
    relay_port: Annotated[
        int | None,
        typer.Option("--relay-port", help="Relay port (overrides USBMUXD_PORT)"),
    ] = None,
    tunnel: Annotated[
        list[str] | None,
        typer.Option(
            "--tunnel",
            "-t",
            help="Tunnel as ADDRESS=HANDSHAKE[!enc|!plain] (repeatable)",
        ),
    ] = None,
    handshake_mode: Annotated[
        HandshakeMode | None,
        typer.Option("--handshake-mode", help="Default handshake mode"),
    ] = None,
    idle_timeout: Annotated[
        float | None,
        typer.Option(
            "--idle-timeout",
            help="Close sessions with no data in either direction for this many seconds",
        ),
    ] = None,
    log_level: Annotated[
        LogLevel | None,
        typer.Option("--log-level", "-l", help="Log verbosity"),
    ] = None,
):
    """
    Start every configured tunnel.

    Settings come from the environment; options given here take precedence.
    """
    try:
        config = AgentConfig.from_env()
        config = config.with_overrides(
            RELAY_HOST=relay_host,
            RELAY_PORT=relay_port,
            TUNNELS=parse_tunnels(",".join(tunnel)) if tunnel else None,
            HANDSHAKE_MODE=handshake_mode,
            SPLICE_IDLE_TIMEOUT=idle_timeout,
            LOG_LEVEL=log_level,
        )
        config.validate()
    except ConfigError as e:
        print_error(str(e))
        raise typer.Exit(1)

    configure_logging(config.LOG_LEVEL, config.LOG_FILE or None)

    try:
        asyncio.run(run_agent(config))
    except ListenerBindError as e:
        logger.critical(f"FATAL: {e}")
        print_error(str(e))
        raise typer.Exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted.")
