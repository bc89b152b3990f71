"""
Compact signed session tokens.

Tokens are HS256 JWTs: base64url(header).base64url(payload).base64url(signature),
signed with a single shared secret from AuthSettings. There is no server-side
token store; expiry is the only revocation mechanism.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import jwt
from jwt.algorithms import HMACAlgorithm
from jwt.utils import base64url_decode, base64url_encode

from authcore.config import AuthSettings

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"

# Recognised lifetimes; anything else falls back to seven days.
TTL_SECONDS = {
    "1h": 3600,
    "7d": 604800,
}
DEFAULT_TTL_SECONDS = 604800

SESSION_TTL = "7d"
RESET_TTL = "1h"

RESET_TOKEN_TYPE = "password_reset"

ERROR_FORMAT = "Invalid token format"
ERROR_SIGNATURE = "Invalid signature"
ERROR_EXPIRED = "Token expired"
ERROR_FAILED = "Token verification failed"

_SEGMENT_RE = re.compile(r"[A-Za-z0-9_-]*")
_HS256 = HMACAlgorithm(HMACAlgorithm.SHA256)


def ttl_to_seconds(ttl: str) -> int:
    return TTL_SECONDS.get(ttl, DEFAULT_TTL_SECONDS)


def _decode_segment(segment: str) -> bytes:
    """Strict base64url: alphabet characters only and a decodable length."""
    if not _SEGMENT_RE.fullmatch(segment) or len(segment) % 4 == 1:
        raise ValueError("Malformed base64url segment")
    return base64url_decode(segment)


def _is_canonical_segment(segment: str, raw: bytes) -> bool:
    """Reject encodings that differ only in discarded trailing bits."""
    return base64url_encode(raw).decode("ascii") == segment


@dataclass
class TokenVerification:
    """Outcome of TokenCodec.verify."""

    valid: bool
    payload: Optional[dict[str, Any]] = None
    error: Optional[str] = None


class TokenCodec:
    """Mints and checks signed tokens with the configured secret."""

    def __init__(self, settings: AuthSettings, clock: Callable[[], float] = time.time):
        self._secret = settings.require_signing_secret()
        self._clock = clock

    def now(self) -> int:
        return int(self._clock())

    def encode(self, payload: dict[str, Any], ttl: str = SESSION_TTL) -> str:
        """Sign a payload, adding iat and exp."""
        issued_at = self.now()
        claims = dict(payload)
        claims["iat"] = issued_at
        claims["exp"] = issued_at + ttl_to_seconds(ttl)
        return jwt.encode(claims, self._secret, algorithm=JWT_ALGORITHM)

    def decode(self, token: str) -> TokenVerification:
        """
        Verify a token and return its payload.

        Never raises: malformed input, bad signatures and expired tokens all
        come back as ``valid=False`` with a reason.
        """
        try:
            if not isinstance(token, str) or token.count(".") != 2:
                return TokenVerification(valid=False, error=ERROR_FORMAT)

            # The signature is checked over the raw segments before anything is decoded.
            signing_input, signature = token.rsplit(".", 1)
            raw_signature = _decode_segment(signature)
            key = _HS256.prepare_key(self._secret)
            if not _is_canonical_segment(signature, raw_signature) or not _HS256.verify(
                signing_input.encode("utf-8"), key, raw_signature
            ):
                return TokenVerification(valid=False, error=ERROR_SIGNATURE)

            # Expiry is checked here rather than by PyJWT so the comparison is exp < now.
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[JWT_ALGORITHM],
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                    "verify_aud": False,
                    "verify_iss": False,
                },
            )
            if not isinstance(payload, dict):
                return TokenVerification(valid=False, error=ERROR_FAILED)

            exp = payload.get("exp")
            if exp is not None and float(exp) < self.now():
                return TokenVerification(valid=False, error=ERROR_EXPIRED)

            return TokenVerification(valid=True, payload=payload)
        except jwt.InvalidSignatureError:
            return TokenVerification(valid=False, error=ERROR_SIGNATURE)
        except Exception as e:
            logger.debug(f"Token verification failed: {type(e).__name__}")
            return TokenVerification(valid=False, error=ERROR_FAILED)

    async def sign(self, payload: dict[str, Any], ttl: str = SESSION_TTL) -> str:
        return await asyncio.to_thread(self.encode, payload, ttl)

    async def verify(self, token: str) -> TokenVerification:
        return await asyncio.to_thread(self.decode, token)
