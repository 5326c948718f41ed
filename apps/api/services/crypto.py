"""
Salted password hashing for password-protected share links.
"""

import base64
import secrets

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config import settings


HASH_SCHEME = "pbkdf2_sha256"
SALT_BYTES = 16
KEY_LENGTH = 32


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def _b64decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


def _kdf(salt: bytes, iterations: int) -> PBKDF2HMAC:
    return PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )


def hash_password(password: str) -> str:
    """
    Hash a share password with a fresh random salt.

    Returns:
        ``pbkdf2_sha256$<iterations>$<salt>$<digest>``
    """
    iterations = max(int(settings.PASSWORD_HASH_ITERATIONS), 1000)
    salt = secrets.token_bytes(SALT_BYTES)
    digest = _kdf(salt, iterations).derive(password.encode("utf-8"))
    return f"{HASH_SCHEME}${iterations}${_b64encode(salt)}${_b64encode(digest)}"


def verify_password(password: str, encoded: str) -> bool:
    """Constant-time check of ``password`` against a stored hash."""
    try:
        scheme, iterations, salt, digest = encoded.split("$", 3)
        if scheme != HASH_SCHEME:
            return False
        _kdf(_b64decode(salt), int(iterations)).verify(password.encode("utf-8"), _b64decode(digest))
    except (ValueError, InvalidKey):
        return False
    return True
