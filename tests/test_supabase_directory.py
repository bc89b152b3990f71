"""Tests for the Supabase-backed directory against an in-memory fake client."""

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from authcore.db.directory import DuplicateRecordError
from authcore.db.models import PasswordResetRecord, UserRecord
from authcore.db.supabase_client import SupabaseUserDirectory, get_service_client, is_supabase_configured
from authcore.errors import ConfigurationError
from tests.conftest import run

STAMP = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeQuery:
    """Records the PostgREST builder calls made against one table."""

    def __init__(self, client, table):
        self.client = client
        self.table = table
        self.calls = []
        client.queries.append(self)

    def _record(self, name, *args, **kwargs):
        self.calls.append((name, args, kwargs))
        return self

    def select(self, *args, **kwargs):
        return self._record("select", *args, **kwargs)

    def insert(self, *args, **kwargs):
        return self._record("insert", *args, **kwargs)

    def update(self, *args, **kwargs):
        return self._record("update", *args, **kwargs)

    def upsert(self, *args, **kwargs):
        return self._record("upsert", *args, **kwargs)

    def eq(self, *args, **kwargs):
        return self._record("eq", *args, **kwargs)

    def or_(self, *args, **kwargs):
        return self._record("or_", *args, **kwargs)

    def order(self, *args, **kwargs):
        return self._record("order", *args, **kwargs)

    def limit(self, *args, **kwargs):
        return self._record("limit", *args, **kwargs)

    def execute(self):
        write = self.calls[0][0] in {"insert", "update", "upsert"}
        if write and self.client.write_error is not None:
            raise self.client.write_error
        return SimpleNamespace(data=self.client.rows)

    def call(self, name):
        return next(c for c in self.calls if c[0] == name)


class FakeClient:
    def __init__(self, rows=None, write_error=None):
        self.rows = rows or []
        self.write_error = write_error
        self.queries = []

    def table(self, name):
        return FakeQuery(self, name)


class UniqueViolation(Exception):
    code = "23505"


def _user(**fields):
    defaults = dict(
        id="user_1",
        email="a@b.com",
        display_name="A",
        role="participant",
        status="approved",
        password_hash="salt:key",
        created_at=STAMP,
        updated_at=STAMP,
    )
    defaults.update(fields)
    return UserRecord(**defaults)


class TestColumnMapping:
    """Tests for column naming and dual writes."""

    def test_snake_style_dual_writes_aliases(self):
        directory = SupabaseUserDirectory(FakeClient())

        row = directory.to_row({"password_hash": "h", "updated_at": STAMP, "display_name": "A"})

        assert row == {
            "password_hash": "h",
            "passwordHash": "h",
            "updated_at": STAMP.isoformat(),
            "updatedAt": STAMP.isoformat(),
            "display_name": "A",
        }

    def test_camel_style(self):
        directory = SupabaseUserDirectory(FakeClient(), column_style="camel")

        row = directory.to_row({"password_hash": "h", "display_name": "A"})

        assert row == {"passwordHash": "h", "password_hash": "h", "displayName": "A"}

    def test_dual_write_disabled(self):
        directory = SupabaseUserDirectory(FakeClient(), dual_write_aliases=False)
        assert directory.to_row({"password_hash": "h"}) == {"password_hash": "h"}

    def test_unknown_style(self):
        with pytest.raises(ConfigurationError):
            SupabaseUserDirectory(FakeClient(), column_style="kebab")


class TestSupabaseUserDirectory:
    """Tests for SupabaseUserDirectory operations."""

    def test_list_reads_camel_case_rows(self):
        client = FakeClient(
            rows=[
                {
                    "id": "user_9",
                    "email": "Mixed@Case.com",
                    "displayName": "Mixed",
                    "role": "host",
                    "passwordHash": "salt:key",
                    "createdAt": "2024-01-01T00:00:00+00:00",
                    "updatedAt": "2024-02-01T00:00:00Z",
                }
            ]
        )
        directory = SupabaseUserDirectory(client)

        users = run(directory.list({"email": "mixed@case.com"}, order_by="updated_at", limit=5))

        assert users[0].display_name == "Mixed"
        assert users[0].password_hash == "salt:key"
        assert users[0].updated_at == datetime(2024, 2, 1, tzinfo=timezone.utc)
        query = client.queries[0]
        assert query.table == "users"
        assert query.call("eq")[1] == ("email", "mixed@case.com")
        assert query.call("order") == ("order", ("updated_at",), {"desc": True})
        assert query.call("limit")[1] == (5,)

    def test_or_filter(self):
        client = FakeClient()
        directory = SupabaseUserDirectory(client)

        run(directory.list({"OR": [{"email": "A@b.com"}, {"email": 'A"B@B.COM'}]}))

        assert client.queries[0].call("or_")[1] == ('email.eq."A@b.com",email.eq."A\\"B@B.COM"',)

    def test_create(self):
        client = FakeClient(rows=[])
        directory = SupabaseUserDirectory(client)

        created = run(directory.create(_user()))

        inserted = client.queries[0].call("insert")[1][0]
        assert created.id == "user_1"
        assert inserted["password_hash"] == inserted["passwordHash"] == "salt:key"
        assert inserted["created_at"] == STAMP.isoformat()

    def test_create_unique_violation(self):
        directory = SupabaseUserDirectory(FakeClient(write_error=UniqueViolation("duplicate key")))

        with pytest.raises(DuplicateRecordError):
            run(directory.create(_user()))

    def test_create_other_errors_propagate(self):
        directory = SupabaseUserDirectory(FakeClient(write_error=RuntimeError("timeout")))

        with pytest.raises(RuntimeError):
            run(directory.create(_user()))

    def test_update_writes_aliases(self):
        client = FakeClient()
        directory = SupabaseUserDirectory(client)

        run(directory.update("user_1", {"password_hash": "new:hash", "updated_at": STAMP}))

        query = client.queries[0]
        assert query.call("update")[1][0] == {
            "password_hash": "new:hash",
            "passwordHash": "new:hash",
            "updated_at": STAMP.isoformat(),
            "updatedAt": STAMP.isoformat(),
        }
        assert query.call("eq")[1] == ("id", "user_1")

    def test_upsert_rejects_live_account(self):
        directory = SupabaseUserDirectory(FakeClient(rows=[{"id": "user_0", "email": "a@b.com", "status": "approved"}]))

        with pytest.raises(DuplicateRecordError):
            run(directory.upsert_by_email(_user()))

    def test_upsert_reclaims_deleted_account(self):
        client = FakeClient(rows=[{"id": "user_0", "email": "a@b.com", "status": "deleted"}])
        directory = SupabaseUserDirectory(client)

        run(directory.upsert_by_email(_user()))

        upsert = client.queries[1].call("upsert")
        assert upsert[1][0]["id"] == "user_0"
        assert upsert[2] == {"on_conflict": "email"}

    def test_password_reset_rows(self):
        client = FakeClient()
        directory = SupabaseUserDirectory(client)
        record = PasswordResetRecord(
            id="reset_1", user_id="user_1", email="a@b.com", token="t", expires_at=STAMP, created_at=STAMP
        )

        run(directory.create_password_reset(record))
        run(directory.mark_password_reset_used("t"))

        inserted = client.queries[0].call("insert")[1][0]
        assert client.queries[0].table == "password_resets"
        assert inserted["used"] == 0
        assert inserted["user_id"] == "user_1"
        assert inserted["expires_at"] == STAMP.isoformat()
        assert client.queries[1].call("update")[1][0] == {"used": 1}
        assert client.queries[1].call("eq")[1] == ("token", "t")


class TestServiceClient:
    def test_not_configured(self, settings):
        assert not is_supabase_configured(settings)
        with pytest.raises(ConfigurationError):
            get_service_client(settings)
