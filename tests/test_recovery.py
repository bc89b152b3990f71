"""Tests for password recovery."""

import re

import pytest

from authcore.auth import build_services
from authcore.auth.recovery import RESET_REQUESTED_MESSAGE
from authcore.auth.tokens import TokenCodec
from authcore.db.sql_directory import SqlUserDirectory
from authcore.errors import AuthError
from tests.conftest import RecordingMailer, run

TOKEN_RE = re.compile(r"reset-password\?token=([A-Za-z0-9_\-.]+)")


def _reset_token(message) -> str:
    return TOKEN_RE.search(message.text).group(1)


class BrokenResetStore(SqlUserDirectory):
    """Directory that cannot store reset records."""

    def create_password_reset_sync(self, record):
        raise RuntimeError("password_resets table missing")


class BrokenLookups(SqlUserDirectory):
    """Directory whose lookups always fail."""

    async def list(self, where=None, order_by=None, limit=None):
        raise RuntimeError("database unavailable")


class TestRequestReset:
    """Tests for RecoveryService.request_reset."""

    def test_identical_response_for_known_and_unknown(self, services, mailer, add_user):
        add_user("exists@x.com", "password123")

        known = run(services.recovery.request_reset("exists@x.com"))
        unknown = run(services.recovery.request_reset("doesnotexist@x.com"))

        assert known == unknown == {"success": True, "message": RESET_REQUESTED_MESSAGE}
        assert len(mailer.messages) == 1

    def test_email_contents(self, services, mailer, settings, add_user):
        add_user("Reader@Example.com", "password123", display_name="Reader <b>")

        run(services.recovery.request_reset("reader@example.com"))

        message = mailer.messages[0]
        assert message.to == "Reader@Example.com"
        assert message.from_addr == settings.mail_from
        assert message.reply_to == settings.mail_reply_to
        assert "https://jam.example.org/reset-password?token=" in message.text
        assert "https://jam.example.org/reset-password?token=" in message.html
        assert "Reader &lt;b&gt;" in message.html

    def test_reset_token_payload(self, services, mailer, add_user):
        user = add_user("p@x.com", "password123")

        run(services.recovery.request_reset("p@x.com"))

        payload = services.codec.decode(_reset_token(mailer.messages[0])).payload
        assert payload["userId"] == user.id
        assert payload["type"] == "password_reset"
        assert payload["exp"] - payload["iat"] == 3600

    def test_reset_record_stored(self, services, directory, mailer, add_user):
        user = add_user("p@x.com", "password123")

        run(services.recovery.request_reset("p@x.com"))

        records = directory.list_password_resets(user.id)
        assert len(records) == 1
        assert records[0].id.startswith("reset_")
        assert records[0].token == _reset_token(mailer.messages[0])
        assert records[0].used is False

    def test_mail_failure_hidden(self, settings, directory, add_user):
        add_user("p@x.com", "password123")
        services = build_services(settings, directory, RecordingMailer(error=RuntimeError("smtp down")))

        result = run(services.recovery.request_reset("p@x.com"))

        assert result == {"success": True, "message": RESET_REQUESTED_MESSAGE}

    def test_record_failure_does_not_block_email(self, settings, mailer, add_user):
        directory = BrokenResetStore(settings.database_url)
        directory.init_db()
        add_user("p@x.com", "password123")
        services = build_services(settings, directory, mailer)

        result = run(services.recovery.request_reset("p@x.com"))

        assert result["success"] is True
        assert len(mailer.messages) == 1

    def test_lookup_failure_hidden(self, settings, mailer):
        directory = BrokenLookups(settings.database_url)
        services = build_services(settings, directory, mailer)

        result = run(services.recovery.request_reset("p@x.com"))

        assert result == {"success": True, "message": RESET_REQUESTED_MESSAGE}
        assert mailer.messages == []

    def test_soft_deleted_account_gets_no_mail(self, services, mailer, add_user):
        add_user("gone@x.com", "password123", status="deleted")

        result = run(services.recovery.request_reset("gone@x.com"))

        assert result == {"success": True, "message": RESET_REQUESTED_MESSAGE}
        assert mailer.messages == []

    def test_email_required(self, services):
        with pytest.raises(AuthError) as excinfo:
            run(services.recovery.request_reset("  "))
        assert excinfo.value.status_code == 400


class TestConfirmReset:
    """Tests for RecoveryService.confirm_reset."""

    def test_full_reset_flow(self, services, directory, mailer, add_user):
        user = add_user("p@x.com", "oldpassword")
        run(services.recovery.request_reset("p@x.com"))
        token = _reset_token(mailer.messages[0])

        result = run(services.recovery.confirm_reset(token, "brandnewpass"))

        assert result == {"success": True, "message": "Password reset successfully"}
        assert run(services.sessions.login("p@x.com", "brandnewpass"))["user"]["id"] == user.id
        assert directory.list_password_resets(user.id)[0].used is True

    def test_token_reusable_until_expiry(self, services, mailer, add_user):
        add_user("p@x.com", "oldpassword")
        run(services.recovery.request_reset("p@x.com"))
        token = _reset_token(mailer.messages[0])

        run(services.recovery.confirm_reset(token, "firstnewpass"))
        run(services.recovery.confirm_reset(token, "secondnewpass"))

        assert run(services.sessions.login("p@x.com", "secondnewpass"))["success"]

    def _assert_rejected(self, services, token, password="brandnewpass", message="Invalid or expired reset token"):
        with pytest.raises(AuthError) as excinfo:
            run(services.recovery.confirm_reset(token, password))
        assert excinfo.value.status_code == 400
        assert excinfo.value.message == message

    def test_session_token_rejected(self, services, add_user):
        user = add_user("p@x.com", "oldpassword")
        self._assert_rejected(services, services.codec.encode(user.claims()))

    def test_expired_token_rejected(self, services, settings, add_user):
        user = add_user("p@x.com", "oldpassword")
        old = TokenCodec(settings, clock=lambda: 1_000_000_000)
        token = old.encode({"userId": user.id, "email": user.email, "type": "password_reset"}, "1h")

        self._assert_rejected(services, token)

    def test_garbage_token_rejected(self, services):
        self._assert_rejected(services, "garbage.token.value")

    def test_deleted_user_rejected(self, services):
        token = services.codec.encode({"userId": "user_gone", "email": "g@x.com", "type": "password_reset"}, "1h")
        self._assert_rejected(services, token)

    def test_soft_deleted_account_rejected(self, services, directory, mailer, add_user):
        user = add_user("p@x.com", "oldpassword")
        run(services.recovery.request_reset("p@x.com"))
        run(directory.update(user.id, {"status": "deleted"}))

        self._assert_rejected(services, _reset_token(mailer.messages[0]))

    def test_short_password(self, services):
        self._assert_rejected(
            services, "any.token.value", password="short", message="Password must be at least 8 characters long"
        )

    def test_missing_fields(self, services):
        self._assert_rejected(services, "", message="Token and password are required")
