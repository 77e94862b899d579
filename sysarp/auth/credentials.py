"""Local credential hashing.

The offline roster never stores a plaintext credential. Each one is kept as
"scrypt$<salt b64>$<key b64>" and compared in constant time.
"""

from __future__ import annotations

import base64
import hmac
import os

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

SCHEME = "scrypt"
_N, _R, _P = 2 ** 14, 8, 1
_LENGTH = 32


def _kdf(salt: bytes) -> Scrypt:
    return Scrypt(salt=salt, length=_LENGTH, n=_N, r=_R, p=_P)


def hash_credential(credential: str) -> str:
    """Derive a storable hash for a credential."""
    salt = os.urandom(16)
    key = _kdf(salt).derive(credential.encode("utf-8"))
    return "$".join((
        SCHEME,
        base64.b64encode(salt).decode("ascii"),
        base64.b64encode(key).decode("ascii"),
    ))


def verify_credential(stored: str, credential: str) -> bool:
    """Check a credential against a stored hash."""
    try:
        scheme, salt_b64, key_b64 = stored.split("$")
    except (AttributeError, ValueError):
        return False
    if scheme != SCHEME:
        return False
    try:
        salt = base64.b64decode(salt_b64)
        expected = base64.b64decode(key_b64)
        _kdf(salt).verify(credential.encode("utf-8"), expected)
        return True
    except (InvalidKey, ValueError):
        return False


def constant_time_equals(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))
