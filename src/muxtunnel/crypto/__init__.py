"""
Handshake encryption.

The relay identifies a tunnel by the first line on a connection. When a
pre-shared key is configured, that line carries an AES-256-GCM blob instead
of the plaintext token.
"""

from muxtunnel.crypto.handshake import (
    KEY_SIZE,
    NONCE_SIZE,
    decode_key,
    decrypt_handshake,
    encrypt_handshake,
    generate_key,
    nonce_of,
)

__all__ = [
    "KEY_SIZE",
    "NONCE_SIZE",
    "decode_key",
    "decrypt_handshake",
    "encrypt_handshake",
    "generate_key",
    "nonce_of",
]
