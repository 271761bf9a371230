"""
muxtunnel CLI entry point.

Usage:
    muxtunnel [OPTIONS] COMMAND [ARGS]...

Commands:
    run        Run the tunnel agent
    handshake  Handshake key and token helpers
    config     Configuration
    version    Show version information
"""

import typer

from muxtunnel.cli.commands import config_cmd, handshake, run as run_cmd
from muxtunnel.cli.output import console

app = typer.Typer(
    name="muxtunnel",
    help="Local tunnel agent for a handshake-routed relay",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Register command groups
app.add_typer(run_cmd.app, name="run", help="Run the tunnel agent")
app.add_typer(handshake.app, name="handshake", help="Handshake encryption helpers")
app.add_typer(config_cmd.app, name="config", help="Configuration")


@app.command("version")
def version():
    """Show version information."""
    from muxtunnel import __version__

    console.print(f"muxtunnel v{__version__}")


def run():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()
