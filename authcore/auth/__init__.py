"""
Authentication core.

Provides:
- Signed session and reset tokens
- Password hashing across legacy and current formats
- Email lookup tolerant of legacy casing
- Signup, login, verify-and-refresh, admin password changes
- Enumeration-safe password recovery
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from authcore.config import AuthSettings
from authcore.db.directory import UserDirectory

from .email import Mailer, MailMessage, MailResult, SmtpMailer, render_password_reset_email
from .passwords import PasswordHasher, parse_password_hash
from .recovery import RecoveryService
from .resolver import CredentialResolver, normalize_email
from .service import SessionService
from .tokens import TokenCodec, TokenVerification


@dataclass
class AuthServices:
    """Everything the web layer and CLI need, wired to one settings object."""

    settings: AuthSettings
    directory: UserDirectory
    codec: TokenCodec
    hasher: PasswordHasher
    resolver: CredentialResolver
    sessions: SessionService
    recovery: RecoveryService


def build_services(
    settings: AuthSettings,
    directory: UserDirectory,
    mailer: Optional[Mailer] = None,
) -> AuthServices:
    """
    Wire the components together.

    Raises ConfigurationError when the signing secret is missing.
    """
    codec = TokenCodec(settings)
    hasher = PasswordHasher(settings)
    resolver = CredentialResolver(directory, hasher, settings)
    mailer = mailer or SmtpMailer(settings.smtp, sender_name=settings.app_name)
    return AuthServices(
        settings=settings,
        directory=directory,
        codec=codec,
        hasher=hasher,
        resolver=resolver,
        sessions=SessionService(settings, directory, codec, hasher, resolver),
        recovery=RecoveryService(settings, directory, codec, hasher, resolver, mailer),
    )


__all__ = [
    'AuthServices',
    'build_services',
    'CredentialResolver',
    'Mailer',
    'MailMessage',
    'MailResult',
    'normalize_email',
    'parse_password_hash',
    'PasswordHasher',
    'RecoveryService',
    'render_password_reset_email',
    'SessionService',
    'SmtpMailer',
    'TokenCodec',
    'TokenVerification',
]
