"""
Record types shared by the authentication core and the directory adapters.

Field names are canonical snake_case. Adapters translate to and from whatever
column names the underlying store uses.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Role(str, enum.Enum):
    """User role enum."""

    PARTICIPANT = "participant"
    HOST = "host"
    ADMIN = "admin"


# Canonical field name -> camelCase alias used by older storage schemas
FIELD_ALIASES = {
    "display_name": "displayName",
    "password_hash": "passwordHash",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
    "user_id": "userId",
    "expires_at": "expiresAt",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def pick(row: dict[str, Any], name: str) -> Any:
    """Read a column by canonical name, falling back to its camelCase alias."""
    alias = FIELD_ALIASES.get(name)
    value = row.get(name)
    if value in (None, "") and alias:
        alias_value = row.get(alias)
        if alias_value not in (None, ""):
            return alias_value
    return value


DELETED_STATUS = "deleted"


class UserRecord(BaseModel):
    """A user as stored in the directory."""

    model_config = ConfigDict(extra="ignore")

    id: str
    email: str = ""
    display_name: Optional[str] = None
    role: str = Role.PARTICIPANT.value
    status: Optional[str] = None
    password_hash: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @field_validator("role", mode="before")
    @classmethod
    def _role_value(cls, value: Any) -> Any:
        if isinstance(value, Role):
            return value.value
        return value or Role.PARTICIPANT.value

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "UserRecord":
        """Build from a storage row using either snake_case or camelCase columns."""
        return cls(
            id=str(row.get("id")),
            email=row.get("email") or "",
            display_name=pick(row, "display_name"),
            role=row.get("role"),
            status=row.get("status"),
            password_hash=pick(row, "password_hash") or None,
            created_at=pick(row, "created_at"),
            updated_at=pick(row, "updated_at"),
        )

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value

    @property
    def is_deleted(self) -> bool:
        return self.status == DELETED_STATUS

    @property
    def last_modified(self) -> datetime:
        """updated_at, else created_at, else the epoch."""
        return self.updated_at or self.created_at or datetime(1970, 1, 1, tzinfo=timezone.utc)

    def public(self) -> dict[str, Any]:
        """The user shape returned to clients."""
        return {
            "id": self.id,
            "email": self.email,
            "displayName": self.display_name,
            "role": self.role,
        }

    def claims(self) -> dict[str, Any]:
        """Session token payload for this user."""
        return {
            "userId": self.id,
            "email": self.email,
            "displayName": self.display_name,
            "role": self.role,
        }


class PasswordResetRecord(BaseModel):
    """Audit trail entry for an issued reset token."""

    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: str
    email: str
    token: str
    expires_at: datetime
    used: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at", "expires_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return as_utc(value)
