"""
Password recovery.

request_reset answers identically whether or not the address has an account,
and whether or not anything downstream fails. The reset token is a signed,
one-hour token; the stored PasswordResetRecord is bookkeeping only.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Optional
from urllib.parse import quote

from authcore.auth.email import MailMessage, Mailer, render_password_reset_email
from authcore.auth.passwords import PasswordHasher
from authcore.auth.resolver import CredentialResolver
from authcore.auth.service import check_password_length
from authcore.auth.tokens import RESET_TOKEN_TYPE, RESET_TTL, TokenCodec, ttl_to_seconds
from authcore.config import AuthSettings
from authcore.db.directory import UserDirectory, generate_record_id
from authcore.db.models import PasswordResetRecord, UserRecord, utcnow
from authcore.errors import AuthError, validation_error

logger = logging.getLogger(__name__)

RESET_REQUESTED_MESSAGE = "If an account exists with this email, you will receive a reset link."
RESET_DONE_MESSAGE = "Password reset successfully"
INVALID_RESET_TOKEN = "Invalid or expired reset token"


class RecoveryService:
    """Issues and redeems password-reset tokens."""

    def __init__(
        self,
        settings: AuthSettings,
        directory: UserDirectory,
        codec: TokenCodec,
        hasher: PasswordHasher,
        resolver: CredentialResolver,
        mailer: Mailer,
    ):
        self.settings = settings
        self.directory = directory
        self.codec = codec
        self.hasher = hasher
        self.resolver = resolver
        self.mailer = mailer

    def reset_url(self, token: str) -> str:
        return f"{self.settings.app_url}/reset-password?token={quote(token, safe='')}"

    async def request_reset(self, email: Optional[str]) -> dict[str, Any]:
        """Start a reset. The response never depends on whether the email is known."""
        if not email or not email.strip():
            raise validation_error("Email is required")

        try:
            await self._send_reset(email)
        except Exception:
            logger.exception("Password reset request failed")

        return {"success": True, "message": RESET_REQUESTED_MESSAGE}

    async def _send_reset(self, email: str) -> None:
        candidates = await self.resolver.find_by_email(email)
        if not candidates:
            logger.info("Password reset requested for unknown email")
            return

        user = max(candidates, key=lambda u: u.last_modified)
        token = await self.codec.sign(
            {"userId": user.id, "email": user.email, "type": RESET_TOKEN_TYPE},
            RESET_TTL,
        )
        await self._record_reset(user, token)

        subject, html_body, text_body = render_password_reset_email(
            user.display_name, self.reset_url(token), app_name=self.settings.app_name
        )
        result = await self.mailer.send(
            MailMessage(
                to=user.email,
                from_addr=self.settings.mail_from,
                reply_to=self.settings.mail_reply_to,
                subject=subject,
                html=html_body,
                text=text_body,
            )
        )
        if result.success:
            logger.info(f"Password reset email sent for {user.id} (message id {result.message_id})")
        else:
            logger.error(f"Password reset email failed for {user.id}")

    async def _record_reset(self, user: UserRecord, token: str) -> None:
        now = utcnow()
        record = PasswordResetRecord(
            id=generate_record_id("reset"),
            user_id=user.id,
            email=user.email,
            token=token,
            expires_at=now + timedelta(seconds=ttl_to_seconds(RESET_TTL)),
            created_at=now,
        )
        try:
            await self.directory.create_password_reset(record)
        except Exception as e:
            # The token verifies on its own; the stored row is an audit trail
            logger.warning(f"Failed to store reset record, continuing with email send: {e}")

    async def confirm_reset(self, token: Optional[str], password: Optional[str]) -> dict[str, Any]:
        """Set a new password from a valid reset token."""
        if not token or not password:
            raise validation_error("Token and password are required")
        check_password_length(password)

        result = await self.codec.verify(token)
        payload = result.payload or {}
        if not result.valid or payload.get("type") != RESET_TOKEN_TYPE or not payload.get("userId"):
            logger.info(f"Reset token rejected: {result.error or 'wrong token type'}")
            raise AuthError(400, "invalid_reset_token", INVALID_RESET_TOKEN)

        user = await self.directory.get_active(str(payload["userId"]))
        if user is None:
            raise AuthError(400, "invalid_reset_token", INVALID_RESET_TOKEN)

        await self.directory.update(
            user.id,
            {"password_hash": await self.hasher.hash(password), "updated_at": utcnow()},
        )

        try:
            await self.directory.mark_password_reset_used(token)
        except Exception as e:
            logger.warning(f"Failed to mark reset record used for {user.id}: {e}")

        logger.info(f"Password reset for {user.id}")
        return {"success": True, "message": RESET_DONE_MESSAGE}
