"""
Credential Vault
================

Authenticated symmetric encryption for channel credentials at rest.

Features:
- AES-256-GCM with a process-wide key (ENCRYPTION_KEY, 64 hex chars)
- Fresh 16-byte random IV per encryption
- Token format: iv:authTag:ciphertext, each part hex encoded
- Field-by-field helpers for the channel credentials map
"""

import logging
import os
import secrets
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from stockledger.config import get_settings
from stockledger.errors import DecryptionError

logger = logging.getLogger(__name__)

IV_LENGTH = 16
AUTH_TAG_LENGTH = 16
KEY_LENGTH = 32


def _get_key(key: Optional[str] = None) -> bytes:
    """Resolve the 32-byte key from an explicit hex string or settings."""
    hex_key = key if key is not None else get_settings().ENCRYPTION_KEY
    if not hex_key:
        raise ValueError("ENCRYPTION_KEY is not configured")
    try:
        raw = bytes.fromhex(hex_key)
    except ValueError:
        raise ValueError("ENCRYPTION_KEY must be a hex string")
    if len(raw) != KEY_LENGTH:
        raise ValueError("ENCRYPTION_KEY must be 64 hex characters (32 bytes)")
    return raw


# =========================================================================
# PUBLIC API
# =========================================================================

def encrypt(plaintext: str, key: Optional[str] = None) -> str:
    """
    Encrypt a string and return an `iv:authTag:ciphertext` token.

    Two calls with the same plaintext produce different tokens.
    """
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(_get_key(key)).encrypt(iv, plaintext.encode("utf-8"), None)
    # AESGCM appends the tag to the ciphertext
    ciphertext, tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]
    return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"


def decrypt(token: str, key: Optional[str] = None) -> str:
    """
    Decrypt a token produced by `encrypt`.

    Raises:
        DecryptionError: malformed token, tag mismatch or wrong key.
    """
    parts = token.split(":") if isinstance(token, str) else []
    if len(parts) != 3:
        raise DecryptionError("Invalid encrypted credential format")

    try:
        iv = bytes.fromhex(parts[0])
        tag = bytes.fromhex(parts[1])
        ciphertext = bytes.fromhex(parts[2])
    except ValueError:
        raise DecryptionError("Invalid encrypted credential format")

    if len(iv) != IV_LENGTH or len(tag) != AUTH_TAG_LENGTH:
        raise DecryptionError("Invalid encrypted credential format")

    try:
        plaintext = AESGCM(_get_key(key)).decrypt(iv, ciphertext + tag, None)
    except InvalidTag:
        raise DecryptionError("Failed to decrypt credential - data may be corrupted or the key rotated")

    return plaintext.decode("utf-8")


def is_encrypted(value: Any) -> bool:
    """Check whether a value has the shape of a vault token."""
    if not isinstance(value, str):
        return False
    parts = value.split(":")
    if len(parts) != 3:
        return False
    iv_hex, tag_hex, ciphertext_hex = parts
    if len(iv_hex) != IV_LENGTH * 2 or len(tag_hex) != AUTH_TAG_LENGTH * 2:
        return False
    try:
        bytes.fromhex(iv_hex)
        bytes.fromhex(tag_hex)
        bytes.fromhex(ciphertext_hex)
    except ValueError:
        return False
    return True


def encrypt_credentials(credentials: Dict[str, Any], key: Optional[str] = None) -> Dict[str, str]:
    """Encrypt every non-empty string field. Other values are dropped."""
    encrypted = {}
    for field, value in credentials.items():
        if isinstance(value, str) and value:
            encrypted[field] = encrypt(value, key)
    return encrypted


def decrypt_credentials(credentials: Dict[str, Any], key: Optional[str] = None) -> Dict[str, str]:
    """Decrypt every non-empty string field of a stored credentials map."""
    decrypted = {}
    for field, value in (credentials or {}).items():
        if isinstance(value, str) and value:
            decrypted[field] = decrypt(value, key)
    return decrypted


def generate_encryption_key() -> str:
    """Generate a new 64-char hex key for ENCRYPTION_KEY."""
    return secrets.token_hex(KEY_LENGTH)
