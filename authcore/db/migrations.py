"""
One-off maintenance over the user directory.

- normalize_stored_emails: rewrite stored emails to lower(trim(email)) so the
  exact-match lookup finds every account. Once it has run cleanly,
  ``legacy_email_fallback`` can be turned off.
- summarize_hash_formats: count users per stored password-hash scheme.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Iterable

from authcore.auth.passwords import hash_scheme
from authcore.auth.resolver import normalize_email
from authcore.db.directory import DuplicateRecordError, UserDirectory
from authcore.db.models import UserRecord, utcnow

logger = logging.getLogger(__name__)

# Upper bound on rows read in one pass
BACKFILL_BATCH_LIMIT = 100_000


@dataclass
class NormalizationReport:
    """Outcome of an email-normalization pass."""

    scanned: int = 0
    updated: list[str] = field(default_factory=list)
    conflicts: dict[str, list[str]] = field(default_factory=dict)
    failed: list[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def clean(self) -> bool:
        """True when no collisions or failures remain."""
        return not self.conflicts and not self.failed


async def normalize_stored_emails(directory: UserDirectory, dry_run: bool = False) -> NormalizationReport:
    """
    Normalize every stored email.

    Rows whose normalized address is shared with another row are left alone and
    reported as conflicts; those need a manual merge.
    """
    users = await directory.list(order_by="created_at", limit=BACKFILL_BATCH_LIMIT)
    report = NormalizationReport(scanned=len(users), dry_run=dry_run)

    groups: dict[str, list[UserRecord]] = defaultdict(list)
    for user in users:
        groups[normalize_email(user.email)].append(user)

    for normalized, members in groups.items():
        if not normalized:
            continue
        if len(members) > 1:
            report.conflicts[normalized] = [u.id for u in members]
            logger.warning(f"Email collision for {len(members)} users: {', '.join(u.id for u in members)}")
            continue

        user = members[0]
        if user.email == normalized:
            continue
        if dry_run:
            report.updated.append(user.id)
            continue
        try:
            await directory.update(user.id, {"email": normalized, "updated_at": utcnow()})
            report.updated.append(user.id)
        except DuplicateRecordError as e:
            logger.warning(f"Could not normalize email for {user.id}: {e}")
            report.failed.append(user.id)

    logger.info(
        f"Email normalization: scanned={report.scanned} updated={len(report.updated)} "
        f"conflicts={len(report.conflicts)} failed={len(report.failed)} dry_run={dry_run}"
    )
    return report


def summarize_hash_formats(users: Iterable[UserRecord]) -> Counter:
    """Count users per hash scheme: bcrypt, pbkdf2, sha256 or none."""
    return Counter(hash_scheme(user.password_hash) for user in users)
