"""
Password hashing and verification.

Stored hashes come in three historical shapes, recognised in this order:

- ``$2...``            bcrypt (legacy, read-only)
- ``<salt>:<key>``     PBKDF2-HMAC-SHA256, 100,000 iterations, 32-byte key,
                       both halves base64url without padding (current format)
- anything else        SHA-256 hex of ``password + secret`` (legacy, read-only)

New passwords are always written in the PBKDF2 shape.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from typing import Optional, Union

import bcrypt

from authcore.config import AuthSettings

logger = logging.getLogger(__name__)

SALT_BYTES = 16
PBKDF2_ITERATIONS = 100_000
PBKDF2_HASH = "sha256"
DERIVED_KEY_BYTES = 32


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


@dataclass(frozen=True)
class AdaptiveHash:
    """bcrypt-encoded hash from the original signup flow."""

    encoded: str
    scheme = "bcrypt"

    def __str__(self) -> str:
        return self.encoded


@dataclass(frozen=True)
class StretchedHash:
    """PBKDF2 salt/derived-key pair."""

    salt: str
    key: str
    scheme = "pbkdf2"

    def __str__(self) -> str:
        return f"{self.salt}:{self.key}"


@dataclass(frozen=True)
class LegacyDigest:
    """Single SHA-256 over password + server secret, hex encoded."""

    digest: str
    scheme = "sha256"

    def __str__(self) -> str:
        return self.digest


PasswordHash = Union[AdaptiveHash, StretchedHash, LegacyDigest]


def parse_password_hash(stored: Optional[str]) -> Optional[PasswordHash]:
    """Classify a stored hash string. Returns None for empty values."""
    if not stored:
        return None
    if stored.startswith("$2"):
        return AdaptiveHash(stored)
    if ":" in stored:
        salt, _, key = stored.partition(":")
        return StretchedHash(salt=salt, key=key)
    return LegacyDigest(stored)


def hash_scheme(stored: Optional[str]) -> str:
    """Scheme name for a stored hash ("none" when missing)."""
    parsed = parse_password_hash(stored)
    return parsed.scheme if parsed else "none"


def derive_key(password: str, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac(
        PBKDF2_HASH,
        password.encode("utf-8"),
        salt,
        PBKDF2_ITERATIONS,
        dklen=DERIVED_KEY_BYTES,
    )


def legacy_digest(password: str, secret: str) -> str:
    return hashlib.sha256((password + secret).encode("utf-8")).hexdigest()


class PasswordHasher:
    """Computes new hashes and verifies any recognised stored shape."""

    def __init__(self, settings: AuthSettings):
        self._legacy_secret = settings.legacy_digest_secret

    def hash_sync(self, password: str) -> str:
        salt = secrets.token_bytes(SALT_BYTES)
        key = derive_key(password, salt)
        return str(StretchedHash(salt=b64url_encode(salt), key=b64url_encode(key)))

    def verify_sync(self, password: str, stored: Optional[str]) -> bool:
        """Check a password. Any internal error counts as a mismatch."""
        try:
            parsed = parse_password_hash(stored)
            if parsed is None or password is None:
                return False
            if isinstance(parsed, AdaptiveHash):
                return self._verify_adaptive(password, parsed)
            if isinstance(parsed, StretchedHash):
                return self._verify_stretched(password, parsed)
            if isinstance(parsed, LegacyDigest):
                return self._verify_legacy(password, parsed)
            return False
        except Exception as e:
            logger.error(f"Password verification error: {type(e).__name__}")
            return False

    def _verify_adaptive(self, password: str, parsed: AdaptiveHash) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), parsed.encoded.encode("utf-8"))
        except (ValueError, TypeError):
            return False

    def _verify_stretched(self, password: str, parsed: StretchedHash) -> bool:
        if not parsed.salt or not parsed.key:
            return False
        derived = b64url_encode(derive_key(password, b64url_decode(parsed.salt)))
        return hmac.compare_digest(derived, parsed.key)

    def _verify_legacy(self, password: str, parsed: LegacyDigest) -> bool:
        if not self._legacy_secret:
            return False
        return hmac.compare_digest(legacy_digest(password, self._legacy_secret), parsed.digest)

    async def hash(self, password: str) -> str:
        """Hash a new password (always PBKDF2) off the event loop."""
        return await asyncio.to_thread(self.hash_sync, password)

    async def verify(self, password: str, stored: Optional[str]) -> bool:
        return await asyncio.to_thread(self.verify_sync, password, stored)
