"""
At-rest encryption of portal passwords (AES-256-GCM).

Stored format is ``<iv hex>:<tag hex>:<ciphertext hex>`` with a 16-byte IV.
"""

from __future__ import annotations

import os
from typing import Callable

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

IV_LENGTH = 16
TAG_LENGTH = 16

SecretUnwrapper = Callable[[str], str]


class CredentialDecryptionError(Exception):
    """Stored credential could not be decrypted."""

    pass


def load_key(hex_key: str) -> bytes:
    try:
        key = bytes.fromhex(hex_key)
    except ValueError as e:
        raise ValueError("ENCRYPTION_KEY must be hex encoded") from e
    if len(key) != 32:
        raise ValueError("ENCRYPTION_KEY must be 32 bytes (64 hex characters)")
    return key


def encrypt(plaintext: str, hex_key: str) -> str:
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(load_key(hex_key)).encrypt(iv, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"


def decrypt(token: str, hex_key: str) -> str:
    """
    Decrypt a stored credential.

    Raises:
        CredentialDecryptionError: If the token is malformed or was tampered with
    """
    key = load_key(hex_key)
    try:
        iv_hex, tag_hex, ciphertext_hex = token.split(":")
        iv = bytes.fromhex(iv_hex)
        sealed = bytes.fromhex(ciphertext_hex) + bytes.fromhex(tag_hex)
        return AESGCM(key).decrypt(iv, sealed, None).decode("utf-8")
    except (ValueError, InvalidTag) as e:
        raise CredentialDecryptionError("Stored credential could not be decrypted") from e


def make_unwrapper(hex_key: str) -> SecretUnwrapper:
    """Bind the key so callers only ever see a token -> plaintext function."""

    def unwrap(token: str) -> str:
        return decrypt(token, hex_key)

    return unwrap
