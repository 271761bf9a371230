"""
Handshake token encryption.

Blob format (before base64):
┌──────────────┬──────────────────────────┬──────────────┐
│ Nonce (12B)  │ Ciphertext (len(token))  │ GCM tag (16B)│
└──────────────┴──────────────────────────┴──────────────┘

The blob is standard base64 without line breaks so it can be sent as a
single newline-terminated handshake line.
"""

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from muxtunnel.exceptions import (
    DecryptError,
    EncryptError,
    InvalidKeyLengthError,
    KeyDecodeError,
)

KEY_SIZE = 32  # AES-256
NONCE_SIZE = 12  # Standard nonce size for AES-GCM
TAG_SIZE = 16


def _check_key(key: bytes) -> None:
    if len(key) != KEY_SIZE:
        raise InvalidKeyLengthError(len(key))


def decode_key(material: str) -> bytes:
    """
    Decode base64 key material from configuration.

    The length is not checked here; encrypt/decrypt reject keys that are
    not KEY_SIZE bytes.

    Raises:
        KeyDecodeError: If the material is not valid base64.
    """
    try:
        return base64.b64decode(material.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise KeyDecodeError(f"Handshake key is not valid base64: {e}") from e


def generate_key() -> str:
    """Generate a random key, base64 encoded for configuration."""
    return base64.b64encode(os.urandom(KEY_SIZE)).decode("ascii")


def encrypt_handshake(plaintext: str, key: bytes) -> str:
    """
    Seal a handshake token.

    A fresh nonce is drawn from os.urandom on every call and prepended to
    the ciphertext.

    Args:
        plaintext: Tunnel handshake token.
        key: 32-byte AES key.

    Returns:
        Base64 blob of nonce + ciphertext + tag.

    Raises:
        InvalidKeyLengthError: If key is not 32 bytes.
        EncryptError: If the cipher fails.
    """
    _check_key(key)

    try:
        nonce = os.urandom(NONCE_SIZE)
        sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    except (ValueError, TypeError, OverflowError) as e:
        raise EncryptError(f"Handshake encryption failed: {e}") from e

    return base64.b64encode(nonce + sealed).decode("ascii")


def decrypt_handshake(blob: str, key: bytes) -> str:
    """
    Open a handshake blob produced by encrypt_handshake.

    This is what the relay does with an encrypted handshake line.

    Raises:
        InvalidKeyLengthError: If key is not 32 bytes.
        DecryptError: If the blob is malformed or fails authentication.
    """
    _check_key(key)

    try:
        data = base64.b64decode(blob.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecryptError(f"Handshake blob is not valid base64: {e}") from e

    if len(data) < NONCE_SIZE + TAG_SIZE:
        raise DecryptError(f"Handshake blob too short ({len(data)} bytes)")

    nonce, sealed = data[:NONCE_SIZE], data[NONCE_SIZE:]
    try:
        plaintext = AESGCM(key).decrypt(nonce, sealed, None)
    except InvalidTag as e:
        raise DecryptError("Handshake blob failed authentication") from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptError("Handshake token is not valid UTF-8") from e


def nonce_of(blob: str) -> bytes:
    """Return the nonce prefix of a handshake blob."""
    return base64.b64decode(blob)[:NONCE_SIZE]
