"""Pytest configuration and fixtures."""

import asyncio
from typing import Optional

import pytest

from authcore.auth.email import Mailer, MailMessage, MailResult
from authcore.config import AuthSettings, SmtpSettings
from authcore.db.models import UserRecord, utcnow
from authcore.db.sql_directory import SqlUserDirectory

SIGNING_SECRET = "test-signing-secret-with-enough-entropy-0123456789"
LEGACY_SECRET = "legacy-digest-secret-for-tests-0123456789abcdef"


class RecordingMailer(Mailer):
    """Mailer that keeps messages in memory."""

    def __init__(self, error: Optional[Exception] = None):
        self.messages: list[MailMessage] = []
        self.error = error

    async def send(self, message: MailMessage) -> MailResult:
        if self.error is not None:
            raise self.error
        self.messages.append(message)
        return MailResult(success=True, message_id=f"msg-{len(self.messages)}")


def run(coro):
    """Drive a coroutine from a synchronous test."""
    return asyncio.run(coro)


@pytest.fixture
def settings(tmp_path):
    """Settings with fixed secrets and a throwaway SQLite file."""
    return AuthSettings(
        signing_secret=SIGNING_SECRET,
        legacy_digest_secret=LEGACY_SECRET,
        app_url="https://jam.example.org",
        mail_from="noreply@jam.example.org",
        mail_reply_to="help@jam.example.org",
        database_url=f"sqlite:///{tmp_path}/auth.db",
        smtp=SmtpSettings(),
    )


@pytest.fixture
def directory(settings):
    directory = SqlUserDirectory(settings.database_url)
    directory.init_db()
    yield directory
    directory.get_engine().dispose()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def services(settings, directory, mailer):
    from authcore.auth import build_services

    return build_services(settings, directory, mailer)


@pytest.fixture
def client(settings, directory, mailer):
    from fastapi.testclient import TestClient

    from authcore.web.server import create_app

    return TestClient(create_app(settings, directory, mailer))


@pytest.fixture
def add_user(directory, settings):
    """Insert a user directly, hashing ``password`` when given."""
    from authcore.auth.passwords import PasswordHasher
    from authcore.db.directory import generate_record_id

    hasher = PasswordHasher(settings)

    def _add(email: str, password: Optional[str] = None, **fields) -> UserRecord:
        now = fields.pop("created_at", utcnow())
        record = UserRecord(
            id=fields.pop("id", generate_record_id("user")),
            email=email,
            display_name=fields.pop("display_name", email.strip().split("@")[0]),
            role=fields.pop("role", "participant"),
            status=fields.pop("status", "approved"),
            password_hash=fields.pop("password_hash", hasher.hash_sync(password) if password else None),
            created_at=now,
            updated_at=fields.pop("updated_at", now),
        )
        return directory.create_sync(record)

    return _add
