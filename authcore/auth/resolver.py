"""
Locating the authoritative user record for an email address.

Stored emails are not guaranteed to be normalized: older imports kept
original casing and stray whitespace, and some addresses exist more than once.
Lookups therefore cascade:

1. exact match on lower(trim(email))
2. the raw string or its upper-cased form
3. a bounded scan of the most recent records, compared in Python

Steps 2 and 3 sit behind ``legacy_email_fallback`` and can be switched off once
``normalize_stored_emails`` has been run against the directory.

Soft-deleted accounts are never returned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from authcore.auth.passwords import PasswordHasher
from authcore.config import AuthSettings, clamp_scan_limit
from authcore.db.directory import UserDirectory
from authcore.db.models import UserRecord

logger = logging.getLogger(__name__)

CANDIDATE_LIMIT = 5


def normalize_email(raw: Optional[str]) -> str:
    return (raw or "").strip().lower()


def _live(users: list[UserRecord]) -> list[UserRecord]:
    return [u for u in users if not u.is_deleted]


@dataclass
class CandidateSelection:
    """Result of checking a password against every candidate record."""

    user: Optional[UserRecord] = None
    candidates: list[UserRecord] = field(default_factory=list)
    saw_missing_hash: bool = False
    saw_mismatched_hash: bool = False

    @property
    def matched(self) -> bool:
        return self.user is not None


class CredentialResolver:
    def __init__(self, directory: UserDirectory, hasher: PasswordHasher, settings: AuthSettings):
        self.directory = directory
        self.hasher = hasher
        self.legacy_fallback = settings.legacy_email_fallback
        self.scan_limit = clamp_scan_limit(settings.email_scan_limit)

    async def find_by_email(self, raw: Optional[str], limit: int = CANDIDATE_LIMIT) -> list[UserRecord]:
        """Return candidate records for an email, empty if none."""
        normalized = normalize_email(raw)
        if not normalized:
            return []

        candidates = _live(await self.directory.list({"email": normalized}, order_by="updated_at", limit=limit))
        if candidates or not self.legacy_fallback:
            return candidates

        try:
            candidates = await self.directory.list(
                {"OR": [{"email": raw}, {"email": normalized.upper()}]},
                order_by="updated_at",
                limit=limit,
            )
        except Exception as e:
            logger.warning(f"Secondary email lookup failed: {e}")
            candidates = []
        candidates = _live(candidates)
        if candidates:
            logger.info(f"Email matched via case variant lookup ({len(candidates)} record(s))")
            return candidates

        try:
            recent = await self.directory.list(order_by="created_at", limit=self.scan_limit)
        except Exception as e:
            logger.warning(f"Fallback email scan failed: {e}")
            return []
        candidates = [u for u in _live(recent) if normalize_email(u.email) == normalized]
        if candidates:
            logger.info(f"Email matched via fallback scan: {', '.join(u.id for u in candidates)}")
        return candidates

    async def select_authoritative(self, candidates: list[UserRecord], password: str) -> CandidateSelection:
        """
        Pick the newest candidate whose stored hash verifies.

        Also records whether any candidate had no hash at all, and whether any
        had a hash that did not verify, so login can tell the two apart.
        """
        ordered = sorted(candidates, key=lambda u: u.last_modified, reverse=True)
        selection = CandidateSelection(candidates=ordered)
        for candidate in ordered:
            if not candidate.password_hash:
                selection.saw_missing_hash = True
                continue
            if await self.hasher.verify(password, candidate.password_hash):
                selection.user = candidate
                break
            selection.saw_mismatched_hash = True
        return selection
