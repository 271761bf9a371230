"""Handshake key and token commands."""

from typing import Annotated

import typer

from muxtunnel.crypto.handshake import (
    decode_key,
    decrypt_handshake,
    encrypt_handshake,
    generate_key,
)
from muxtunnel.exceptions import HandshakeCryptoError
from muxtunnel.cli.output import console, print_error

app = typer.Typer(help="Handshake encryption helpers")

KeyOption = Annotated[
    str | None,
    typer.Option(
        "--key",
        "-k",
        help="Base64 key (default: HANDSHAKE_SECRET)",
        envvar="HANDSHAKE_SECRET",
    ),
]


def _load_key(key: str | None) -> bytes:
    if not key:
        print_error("No key given. Use --key or set HANDSHAKE_SECRET.")
        raise typer.Exit(1)
    try:
        return decode_key(key)
    except HandshakeCryptoError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("keygen")
def keygen():
    """Generate a random base64 handshake key."""
    console.print(generate_key(), highlight=False, soft_wrap=True)


@app.command("encrypt")
def encrypt(
    token: Annotated[str, typer.Argument(help="Handshake token to encrypt")],
    key: KeyOption = None,
):
    """Encrypt a handshake token the way the agent sends it."""
    raw_key = _load_key(key)
    try:
        console.print(encrypt_handshake(token, raw_key), highlight=False, soft_wrap=True)
    except HandshakeCryptoError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("decrypt")
def decrypt(
    blob: Annotated[str, typer.Argument(help="Encrypted handshake blob")],
    key: KeyOption = None,
):
    """Decrypt a handshake blob the way the relay does."""
    raw_key = _load_key(key)
    try:
        console.print(decrypt_handshake(blob, raw_key), highlight=False, soft_wrap=True)
    except HandshakeCryptoError as e:
        print_error(str(e))
        raise typer.Exit(1)
