"""Allow running the CLI with ``python -m muxtunnel``."""

from muxtunnel.cli.main import run

run()
