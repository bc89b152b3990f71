"""
SQLAlchemy-backed UserDirectory.

Tables:
- users: one row per account (email unique, case-sensitive as stored)
- password_resets: audit trail of issued reset tokens

Used for local development, tests and any deployment with a plain SQL database.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    String,
    Text,
    and_,
    create_engine,
    or_,
    true,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from authcore.db.directory import DuplicateRecordError, Filter, UserDirectory
from authcore.db.models import DELETED_STATUS, PasswordResetRecord, UserRecord, as_utc

logger = logging.getLogger(__name__)

Base = declarative_base()


class UserRow(Base):
    """User account table."""

    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    email = Column(String(320), unique=True, nullable=False, index=True)
    display_name = Column(String(200))
    role = Column(String(32), nullable=False, default="participant")
    status = Column(String(32))
    password_hash = Column(Text)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)

    def __repr__(self):
        return f"<UserRow(id='{self.id}', email='{self.email}', role='{self.role}')>"


class PasswordResetRow(Base):
    """Issued password-reset tokens."""

    __tablename__ = "password_resets"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    email = Column(String(320), nullable=False)
    token = Column(Text, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    used = Column(Boolean, default=False)
    created_at = Column(DateTime)


USER_COLUMNS = {
    "id": UserRow.id,
    "email": UserRow.email,
    "display_name": UserRow.display_name,
    "role": UserRow.role,
    "status": UserRow.status,
    "password_hash": UserRow.password_hash,
    "created_at": UserRow.created_at,
    "updated_at": UserRow.updated_at,
}


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite has no timezone support; store naive UTC."""
    value = as_utc(value)
    return value.replace(tzinfo=None) if value else None


def _to_record(row: UserRow) -> UserRecord:
    return UserRecord(
        id=row.id,
        email=row.email,
        display_name=row.display_name,
        role=row.role,
        status=row.status,
        password_hash=row.password_hash,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _condition(where: Optional[Filter]):
    if not where:
        return true()
    clauses = []
    for key, value in where.items():
        if key == "OR":
            clauses.append(or_(*[_condition(branch) for branch in value]))
        else:
            column = USER_COLUMNS.get(key)
            if column is None:
                raise ValueError(f"Unknown user field in filter: {key}")
            clauses.append(column == value)
    return and_(*clauses)


def _row_values(fields: dict[str, Any]) -> dict[str, Any]:
    values = {}
    for key, value in fields.items():
        if key not in USER_COLUMNS:
            raise ValueError(f"Unknown user field: {key}")
        if isinstance(value, datetime):
            value = _naive_utc(value)
        values[key] = value
    return values


class SqlUserDirectory(UserDirectory):
    """UserDirectory over a SQLAlchemy engine. Blocking calls run in threads."""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self._engine = None
        self._session_factory = None

    def get_engine(self):
        """Get or create database engine."""
        if self._engine is None:
            kwargs: dict[str, Any] = {"echo": False}
            if self.database_url.startswith("sqlite"):
                kwargs["connect_args"] = {"check_same_thread": False}
                if ":memory:" in self.database_url or self.database_url == "sqlite://":
                    kwargs["poolclass"] = StaticPool
            self._engine = create_engine(self.database_url, **kwargs)
        return self._engine

    def get_session(self) -> Session:
        """Get a new database session."""
        if self._session_factory is None:
            self._session_factory = sessionmaker(bind=self.get_engine())
        return self._session_factory()

    def init_db(self) -> None:
        """Create tables."""
        Base.metadata.create_all(self.get_engine())

    async def init(self) -> None:
        await asyncio.to_thread(self.init_db)

    # ==================== USERS ====================

    def list_sync(
        self,
        where: Optional[Filter] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[UserRecord]:
        session = self.get_session()
        try:
            query = session.query(UserRow).filter(_condition(where))
            if order_by:
                column = USER_COLUMNS.get(order_by)
                if column is None:
                    raise ValueError(f"Unknown order field: {order_by}")
                query = query.order_by(column.desc())
            if limit:
                query = query.limit(limit)
            return [_to_record(row) for row in query.all()]
        finally:
            session.close()

    def create_sync(self, record: UserRecord) -> UserRecord:
        session = self.get_session()
        try:
            row = UserRow(**_row_values(record.model_dump()))
            session.add(row)
            session.commit()
            return _to_record(row)
        except IntegrityError as e:
            session.rollback()
            raise DuplicateRecordError(f"User already exists: {record.email}") from e
        finally:
            session.close()

    def update_sync(self, user_id: str, fields: dict[str, Any]) -> None:
        session = self.get_session()
        try:
            values = _row_values(fields)
            session.query(UserRow).filter(UserRow.id == user_id).update(
                values, synchronize_session=False
            )
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise DuplicateRecordError(f"Update conflicts with an existing user: {user_id}") from e
        finally:
            session.close()

    def upsert_by_email_sync(self, record: UserRecord) -> UserRecord:
        session = self.get_session()
        try:
            existing = session.query(UserRow).filter(UserRow.email == record.email).first()
            if existing is None:
                row = UserRow(**_row_values(record.model_dump()))
                session.add(row)
            elif existing.status == DELETED_STATUS:
                # Reclaim a soft-deleted account; its id stays the same.
                values = _row_values(record.model_dump(exclude={"id"}))
                for key, value in values.items():
                    setattr(existing, key, value)
                row = existing
            else:
                raise DuplicateRecordError(f"User already exists: {record.email}")
            session.commit()
            return _to_record(row)
        except IntegrityError as e:
            session.rollback()
            raise DuplicateRecordError(f"User already exists: {record.email}") from e
        finally:
            session.close()

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
        session = self.get_session()
        try:
            session.add(
                PasswordResetRow(
                    id=record.id,
                    user_id=record.user_id,
                    email=record.email,
                    token=record.token,
                    expires_at=_naive_utc(record.expires_at),
                    used=record.used,
                    created_at=_naive_utc(record.created_at),
                )
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def mark_password_reset_used_sync(self, token: str) -> None:
        session = self.get_session()
        try:
            session.query(PasswordResetRow).filter(PasswordResetRow.token == token).update(
                {"used": True}, synchronize_session=False
            )
            session.commit()
        finally:
            session.close()

    def list_password_resets(self, user_id: str) -> list[PasswordResetRecord]:
        session = self.get_session()
        try:
            rows = (
                session.query(PasswordResetRow)
                .filter(PasswordResetRow.user_id == user_id)
                .order_by(PasswordResetRow.created_at.desc())
                .all()
            )
            return [
                PasswordResetRecord(
                    id=row.id,
                    user_id=row.user_id,
                    email=row.email,
                    token=row.token,
                    expires_at=row.expires_at,
                    used=bool(row.used),
                    created_at=row.created_at,
                )
                for row in rows
            ]
        finally:
            session.close()

    async def create_password_reset(self, record: PasswordResetRecord) -> None:
        await asyncio.to_thread(self.create_password_reset_sync, record)

    async def mark_password_reset_used(self, token: str) -> None:
        await asyncio.to_thread(self.mark_password_reset_used_sync, token)
