"""
Supabase client initialization and the Supabase-backed UserDirectory.

The service role client is used: the authentication core reads and writes user
records directly, without row-level security.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from authcore.config import AuthSettings
from authcore.db.directory import DuplicateRecordError, Filter, UserDirectory
from authcore.db.models import FIELD_ALIASES, PasswordResetRecord, UserRecord
from authcore.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Columns written twice (canonical + alias) while storage schemas disagree
DUAL_WRITE_FIELDS = ("password_hash", "updated_at")

UNIQUE_VIOLATION = "23505"


def is_supabase_configured(settings: AuthSettings) -> bool:
    """Check that URL and service key are both present."""
    return bool(settings.supabase_url and settings.supabase_key)


def get_service_client(settings: AuthSettings):
    """
    Create the Supabase client with the service role key.

    Raises ConfigurationError if the URL or key is missing.
    """
    if not is_supabase_configured(settings):
        raise ConfigurationError(
            "SUPABASE_URL and SUPABASE_SERVICE_KEY are required for the supabase directory"
        )

    from supabase import create_client

    logger.info(f"Initializing Supabase client with URL: {settings.supabase_url[:30]}...")
    client = create_client(settings.supabase_url, settings.supabase_key)
    logger.info("Supabase service client initialized")
    return client


def _is_unique_violation(exc: Exception) -> bool:
    code = getattr(exc, "code", None)
    if code == UNIQUE_VIOLATION:
        return True
    message = str(exc).lower()
    return "duplicate key" in message or "unique constraint" in message


def _quote(value: Any) -> str:
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


class SupabaseUserDirectory(UserDirectory):
    """
    UserDirectory over PostgREST tables.

    ``column_style`` selects snake_case or camelCase column names for writes and
    filters. Reads accept either. With ``dual_write_aliases`` the password hash and
    updated timestamp are also written under their alias names.
    """

    def __init__(
        self,
        client,
        users_table: str = "users",
        resets_table: str = "password_resets",
        column_style: str = "snake",
        dual_write_aliases: bool = True,
    ):
        if column_style not in {"snake", "camel"}:
            raise ConfigurationError(f"Unknown column style: {column_style}")
        self.client = client
        self.users_table = users_table
        self.resets_table = resets_table
        self.column_style = column_style
        self.dual_write_aliases = dual_write_aliases

    @classmethod
    def from_settings(cls, settings: AuthSettings) -> "SupabaseUserDirectory":
        return cls(
            get_service_client(settings),
            column_style=settings.column_style,
            dual_write_aliases=settings.dual_write_aliases,
        )

    def column(self, name: str) -> str:
        if self.column_style == "camel":
            return FIELD_ALIASES.get(name, name)
        return name

    def _alias(self, name: str) -> Optional[str]:
        alias = FIELD_ALIASES.get(name)
        if alias is None:
            return None
        return name if self.column_style == "camel" else alias

    def to_row(self, fields: dict[str, Any]) -> dict[str, Any]:
        """Translate canonical fields into storage columns."""
        row: dict[str, Any] = {}
        for name, value in fields.items():
            if hasattr(value, "isoformat"):
                value = value.isoformat()
            row[self.column(name)] = value
            if self.dual_write_aliases and name in DUAL_WRITE_FIELDS:
                row[self._alias(name)] = value
        return row

    def _apply_filter(self, query, where: Optional[Filter]):
        for key, value in (where or {}).items():
            if key == "OR":
                branches = []
                for branch in value:
                    if len(branch) != 1 or "OR" in branch:
                        raise ValueError("OR branches must be single equality filters")
                    name, expected = next(iter(branch.items()))
                    branches.append(f"{self.column(name)}.eq.{_quote(expected)}")
                query = query.or_(",".join(branches))
            else:
                query = query.eq(self.column(key), value)
        return query

    # ==================== USERS ====================

    def list_sync(
        self,
        where: Optional[Filter] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[UserRecord]:
        query = self.client.table(self.users_table).select("*")
        query = self._apply_filter(query, where)
        if order_by:
            query = query.order(self.column(order_by), desc=True)
        if limit:
            query = query.limit(limit)
        result = query.execute()
        return [UserRecord.from_row(row) for row in (result.data or [])]

    def create_sync(self, record: UserRecord) -> UserRecord:
        try:
            result = self.client.table(self.users_table).insert(self.to_row(record.model_dump())).execute()
        except Exception as e:
            if _is_unique_violation(e):
                raise DuplicateRecordError(f"User already exists: {record.email}") from e
            raise
        rows = result.data or []
        return UserRecord.from_row(rows[0]) if rows else record

    def update_sync(self, user_id: str, fields: dict[str, Any]) -> None:
        try:
            self.client.table(self.users_table).update(self.to_row(fields)).eq(
                self.column("id"), user_id
            ).execute()
        except Exception as e:
            if _is_unique_violation(e):
                raise DuplicateRecordError(f"Update conflicts with an existing user: {user_id}") from e
            raise

    def upsert_by_email_sync(self, record: UserRecord) -> UserRecord:
        existing = self.list_sync({"email": record.email}, limit=1)
        if existing and not existing[0].is_deleted:
            raise DuplicateRecordError(f"User already exists: {record.email}")
        fields = record.model_dump()
        if existing:
            fields["id"] = existing[0].id
        try:
            result = (
                self.client.table(self.users_table)
                .upsert(self.to_row(fields), on_conflict=self.column("email"))
                .execute()
            )
        except Exception as e:
            if _is_unique_violation(e):
                raise DuplicateRecordError(f"User already exists: {record.email}") from e
            raise
        rows = result.data or []
        return UserRecord.from_row(rows[0]) if rows else UserRecord(**fields)

    async def list(
        self,
        where: Optional[Filter] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[UserRecord]:
        return await asyncio.to_thread(self.list_sync, where, order_by, limit)

    async def create(self, record: UserRecord) -> UserRecord:
        return await asyncio.to_thread(self.create_sync, record)

    async def update(self, user_id: str, fields: dict[str, Any]) -> None:
        await asyncio.to_thread(self.update_sync, user_id, fields)

    async def upsert_by_email(self, record: UserRecord) -> UserRecord:
        return await asyncio.to_thread(self.upsert_by_email_sync, record)

    # ==================== PASSWORD RESETS ====================

    def create_password_reset_sync(self, record: PasswordResetRecord) -> None:
        fields = record.model_dump()
        row = {self.column(name): value for name, value in fields.items()}
        for name in ("expires_at", "created_at"):
            row[self.column(name)] = fields[name].isoformat()
        # Stored as 0/1 in the original schema
        row["used"] = int(record.used)
        self.client.table(self.resets_table).insert(row).execute()

    def mark_password_reset_used_sync(self, token: str) -> None:
        self.client.table(self.resets_table).update({"used": 1}).eq("token", token).execute()

    async def create_password_reset(self, record: PasswordResetRecord) -> None:
        await asyncio.to_thread(self.create_password_reset_sync, record)

    async def mark_password_reset_used(self, token: str) -> None:
        await asyncio.to_thread(self.mark_password_reset_used_sync, token)
