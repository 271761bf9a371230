"""Config inspection commands."""

import os

import typer
from rich.table import Table

from muxtunnel.config import AgentConfig, parse_endpoint
from muxtunnel.exceptions import ConfigError
from muxtunnel.cli.output import console, print_error, print_success, print_warning

app = typer.Typer(help="Configuration commands")

# Setting -> environment variable it is read from
_ENV_SOURCES = {
    "RELAY_HOST": "USBMUXD_HOST",
    "RELAY_PORT": "USBMUXD_PORT",
    "RELAY_CONNECT_TIMEOUT": "MUXTUNNEL_CONNECT_TIMEOUT",
    "SOCKET_PATH": "USBMUXD_SOCKET_ADDRESS",
    "SOCKET_MODE": "MUXTUNNEL_SOCKET_MODE",
    "LOCAL_DIAL_TIMEOUT": "MUXTUNNEL_LOCAL_DIAL_TIMEOUT",
    "HANDSHAKE_SECRET": "HANDSHAKE_SECRET",
    "HANDSHAKE_MODE": "MUXTUNNEL_HANDSHAKE_MODE",
    "SPLICE_IDLE_TIMEOUT": "MUXTUNNEL_IDLE_TIMEOUT",
    "LOG_LEVEL": "MUXTUNNEL_LOG_LEVEL",
    "LOG_FILE": "MUXTUNNEL_LOG_FILE",
}


def _display(name: str, value) -> str:
    if name == "HANDSHAKE_SECRET":
        return "********" if value else "(unset)"
    if name == "SOCKET_MODE" and value is not None:
        return oct(value)
    if value is None or value == "":
        return "(unset)"
    if hasattr(value, "value"):
        return str(value.value)
    return str(value)


@app.command("show")
def show_config():
    """Show the effective configuration and tunnels."""
    try:
        config = AgentConfig.from_env()
    except ConfigError as e:
        print_error(str(e))
        raise typer.Exit(1)

    table = Table(title="Current Configuration", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    table.add_column("Source")

    for name, env_name in _ENV_SOURCES.items():
        table.add_row(
            name,
            _display(name, getattr(config, name)),
            "env" if os.environ.get(env_name) else "default",
        )
    console.print(table)

    tunnels = Table(title="Tunnels", show_header=True)
    tunnels.add_column("Local Address", style="cyan")
    tunnels.add_column("Kind")
    tunnels.add_column("Handshake", style="green")
    tunnels.add_column("Encrypted")

    for tunnel in config.get_tunnels():
        kind, _ = parse_endpoint(tunnel.local_address)
        tunnels.add_row(
            tunnel.local_address,
            kind.value,
            tunnel.handshake,
            "yes" if config.should_encrypt(tunnel) else "no",
        )
    console.print(tunnels)


@app.command("check")
def check_config():
    """Validate the configuration without starting the agent."""
    try:
        config = AgentConfig.from_env()
        config.validate()
    except ConfigError as e:
        print_error(str(e))
        raise typer.Exit(1)

    tunnels = config.get_tunnels()
    if config.HANDSHAKE_SECRET and not any(map(config.should_encrypt, tunnels)):
        print_warning("HANDSHAKE_SECRET is set but no tunnel sends encrypted handshakes")
    print_success(
        f"Configuration OK: relay {config.get_relay_address()}, "
        f"{len(tunnels)} tunnel(s)"
    )
