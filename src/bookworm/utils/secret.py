"""At-rest encryption for credentials kept in the user settings table.

Fernet tokens from the ``cryptography`` library. The key comes from
``BOOKWORM_SECRET_KEY``; without it a fixed fallback key is derived and a
warning is logged once, so a personal install still starts.
"""

from __future__ import annotations

import base64
import hashlib
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from loguru import logger

_ENV_KEY = "BOOKWORM_SECRET_KEY"

_fernet: Optional[Fernet] = None


def _derive_key(passphrase: bytes) -> bytes:
    return base64.urlsafe_b64encode(hashlib.sha256(passphrase).digest())


def _get_fernet() -> Fernet:
    global _fernet
    if _fernet is not None:
        return _fernet

    raw = os.getenv(_ENV_KEY, "").strip()
    if not raw:
        logger.warning(
            f"{_ENV_KEY} is not set; stored Hardcover credentials use a built-in key."
        )
        key = _derive_key(b"bookworm-local-default-key")
    else:
        try:
            Fernet(raw.encode())
            key = raw.encode()
        except ValueError:
            key = _derive_key(raw.encode())

    _fernet = Fernet(key)
    return _fernet


def encrypt(plaintext: str) -> str:
    if not plaintext:
        return ""
    return _get_fernet().encrypt(plaintext.encode()).decode()


def decrypt(token: str) -> str:
    """Decrypt a token; values that are not Fernet tokens are returned unchanged."""
    if not token:
        return ""
    try:
        return _get_fernet().decrypt(token.encode()).decode()
    except InvalidToken:
        return token
