"""
The UserDirectory contract.

The authentication core persists nothing itself. Every read and write of user
and password-reset records goes through a UserDirectory implementation.

Filters are plain dicts over canonical field names:

    {"email": "a@b.com"}                         equality (several keys AND together)
    {"OR": [{"email": "A@b.com"}, {"email": "A@B.COM"}]}
    {}                                           everything

``order_by`` names a timestamp field; results are always newest first.
"""

from __future__ import annotations

import secrets
import string
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

from authcore.db.models import PasswordResetRecord, UserRecord

Filter = dict[str, Any]

_ID_ALPHABET = string.ascii_lowercase + string.digits


class DuplicateRecordError(Exception):
    """Raised when a write violates a unique constraint (e.g. users.email)."""


def generate_record_id(prefix: str) -> str:
    """``<prefix>_<epoch millis>_<random base36>``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(13))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


def matches_filter(values: dict[str, Any], where: Optional[Filter]) -> bool:
    """Evaluate a filter against a canonical field mapping."""
    if not where:
        return True
    for key, expected in where.items():
        if key == "OR":
            if not any(matches_filter(values, branch) for branch in expected):
                return False
        elif values.get(key) != expected:
            return False
    return True


class UserDirectory(ABC):
    """Persistence collaborator for users and password-reset records."""

    @abstractmethod
    async def list(
        self,
        where: Optional[Filter] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[UserRecord]:
        """Return users matching ``where``, newest first by ``order_by``."""

    @abstractmethod
    async def create(self, record: UserRecord) -> UserRecord:
        """Insert a user. Raises DuplicateRecordError on a unique violation."""

    @abstractmethod
    async def update(self, user_id: str, fields: dict[str, Any]) -> None:
        """Apply a partial update using canonical field names."""

    @abstractmethod
    async def upsert_by_email(self, record: UserRecord) -> UserRecord:
        """
        Write ``record`` over an existing row with the same email when that row
        may be reclaimed. Raises DuplicateRecordError otherwise.
        """

    @abstractmethod
    async def create_password_reset(self, record: PasswordResetRecord) -> None:
        """Store a reset-token audit record."""

    @abstractmethod
    async def mark_password_reset_used(self, token: str) -> None:
        """Flag the reset record for ``token`` as used (advisory, not atomic)."""

    async def get(self, user_id: str) -> Optional[UserRecord]:
        rows = await self.list({"id": user_id}, limit=1)
        return rows[0] if rows else None

    async def get_active(self, user_id: str) -> Optional[UserRecord]:
        """Like get, but a soft-deleted account counts as missing."""
        user = await self.get(user_id)
        return None if user is None or user.is_deleted else user

    async def init(self) -> None:
        """Prepare storage (create tables etc). No-op by default."""
