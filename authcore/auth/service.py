"""
Session service for user accounts.

Handles:
- Signup with a PBKDF2 password hash
- Login against legacy and current hash formats
- Token verification with transparent refresh
- Admin password overrides

No server-side session exists: every call stands alone and the signed token
is the only state a client holds.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

from authcore.auth.passwords import PasswordHasher
from authcore.auth.resolver import CredentialResolver, normalize_email
from authcore.auth.tokens import RESET_TOKEN_TYPE, SESSION_TTL, TokenCodec, ttl_to_seconds
from authcore.config import AuthSettings
from authcore.db.directory import DuplicateRecordError, UserDirectory, generate_record_id
from authcore.db.models import Role, UserRecord, utcnow
from authcore.errors import AuthError, validation_error

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 8

ACTIVE_STATUS = "approved"

# Claims compared against the live record when deciding on a refresh
REFRESH_CLAIMS = ("email", "displayName", "role")


def check_password_length(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise validation_error(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")


class SessionService:
    """Signup, login, verify-and-refresh and admin password changes."""

    def __init__(
        self,
        settings: AuthSettings,
        directory: UserDirectory,
        codec: TokenCodec,
        hasher: PasswordHasher,
        resolver: CredentialResolver,
    ):
        self.settings = settings
        self.directory = directory
        self.codec = codec
        self.hasher = hasher
        self.resolver = resolver

    async def _issue(self, user: UserRecord) -> str:
        return await self.codec.sign(user.claims(), SESSION_TTL)

    # ==================== SIGNUP ====================

    async def signup(self, email: Optional[str], password: Optional[str], display_name: Optional[str] = None) -> dict[str, Any]:
        """
        Create an account and return ``{success, user, token}``.

        Raises AuthError 400 on bad input and 409 ``email_exists`` when the
        address is already registered.
        """
        if not email or not password:
            raise validation_error("Email and password are required")

        normalized = normalize_email(email)
        if not EMAIL_PATTERN.match(normalized):
            raise validation_error("Invalid email format")
        check_password_length(password)

        if await self.resolver.find_by_email(normalized):
            raise AuthError(409, "email_exists", "User with this email already exists")

        now = utcnow()
        record = UserRecord(
            id=generate_record_id("user"),
            email=normalized,
            display_name=(display_name or "").strip() or normalized.split("@")[0],
            role=Role.PARTICIPANT,
            status=ACTIVE_STATUS,
            password_hash=await self.hasher.hash(password),
            created_at=now,
            updated_at=now,
        )

        try:
            user = await self.directory.create(record)
        except DuplicateRecordError:
            logger.info(f"Unique constraint hit on signup, retrying as upsert: {normalized}")
            try:
                user = await self.directory.upsert_by_email(record)
            except DuplicateRecordError as e:
                logger.info(f"Upsert also rejected: {e}")
                raise AuthError(
                    409,
                    "email_exists",
                    "An account with this email already exists. Please sign in instead.",
                )

        logger.info(f"Created user: {user.id}")
        return {"success": True, "user": user.public(), "token": await self._issue(user)}

    # ==================== LOGIN ====================

    async def login(self, email: Optional[str], password: Optional[str]) -> dict[str, Any]:
        """Authenticate with email and password and return ``{success, user, token}``."""
        if not email or not password:
            raise validation_error("Email and password are required")

        candidates = await self.resolver.find_by_email(email)
        if not candidates:
            raise AuthError(401, "invalid_credentials", "Invalid email or password")

        selection = await self.resolver.select_authoritative(candidates, password)
        if not selection.matched:
            if selection.saw_missing_hash:
                raise AuthError(
                    409,
                    "password_not_set",
                    "No password set for this account. Please use Forgot password to set a password.",
                )
            raise AuthError(
                409,
                "password_reset_required",
                "We could not verify your password. Please reset it to continue.",
            )

        user = selection.user
        logger.info(f"Login succeeded for {user.id} ({len(candidates)} candidate record(s))")
        return {"success": True, "user": user.public(), "token": await self._issue(user)}

    # ==================== VERIFY ====================

    async def verify_and_refresh(self, token: Optional[str]) -> dict[str, Any]:
        """
        Validate a session token against the live user record.

        A fresh token is minted when the old one is within the refresh threshold
        of expiring, or when email, display name or role changed since it was
        issued. ``expiresAt`` is in epoch milliseconds.
        """
        if not token:
            raise AuthError(401, "missing_token", "Unauthorized")

        result = await self.codec.verify(token)
        if not result.valid or not result.payload:
            logger.debug(f"Token rejected: {result.error}")
            raise AuthError(401, "invalid_token", "Invalid or expired token")

        payload = result.payload
        user_id = payload.get("userId")
        if not user_id or payload.get("type") == RESET_TOKEN_TYPE:
            raise AuthError(401, "invalid_payload", "Invalid token payload")

        user = await self.directory.get_active(str(user_id))
        if user is None:
            raise AuthError(401, "user_not_found", "User not found")

        try:
            exp = int(payload.get("exp") or 0)
        except (TypeError, ValueError):
            exp = 0
        near_expiry = (exp - self.codec.now()) < self.settings.refresh_threshold_seconds
        live = user.claims()
        payload_changed = any(payload.get(claim) != live[claim] for claim in REFRESH_CLAIMS)

        refreshed = False
        expires_at = exp * 1000 if exp else None
        if near_expiry or payload_changed:
            token = await self._issue(user)
            refreshed = True
            expires_at = (self.codec.now() + ttl_to_seconds(SESSION_TTL)) * 1000
            logger.info(
                f"Refreshed token for {user.id} (near_expiry={near_expiry}, changed={payload_changed})"
            )

        return {
            "success": True,
            "user": user.public(),
            "token": token,
            "refreshed": refreshed,
            "expiresAt": expires_at,
        }

    # ==================== ADMIN ====================

    async def _require_admin(self, bearer: Optional[str]) -> UserRecord:
        if not bearer:
            raise AuthError(401, "unauthorized", "Unauthorized")
        result = await self.codec.verify(bearer)
        payload = result.payload or {}
        if not result.valid or not payload.get("userId") or payload.get("type") == RESET_TOKEN_TYPE:
            raise AuthError(401, "unauthorized", "Unauthorized")

        # Role comes from the live record, never from the token claims
        requester = await self.directory.get_active(str(payload["userId"]))
        if requester is None or not requester.is_admin:
            raise AuthError(403, "forbidden", "Forbidden")
        return requester

    async def admin_set_password(
        self,
        bearer: Optional[str],
        password: Optional[str],
        user_id: Optional[str] = None,
        email: Optional[str] = None,
    ) -> dict[str, Any]:
        """Set another user's password. Requires an admin bearer token; returns no token."""
        admin = await self._require_admin(bearer)

        if not password or not (user_id or email):
            raise validation_error("Missing userId/email or password")
        check_password_length(password)

        if user_id:
            target = await self.directory.get_active(str(user_id))
        else:
            candidates = await self.resolver.find_by_email(email)
            target = max(candidates, key=lambda u: u.last_modified) if candidates else None
        if target is None:
            raise AuthError(404, "user_not_found", "User not found")

        await self.directory.update(
            target.id,
            {"password_hash": await self.hasher.hash(password), "updated_at": utcnow()},
        )
        logger.info(f"Admin {admin.id} set password for {target.id}")
        return {"success": True}
