"""
Logging utilities.

Primary goals:
- Keep passwords, reset links and session tokens out of logs.
- Reduce noisy third-party logs (e.g., httpx request lines from the Supabase client).
"""

from __future__ import annotations

import logging
import re
from typing import Iterable


class RedactSecretsFilter(logging.Filter):
    """
    Best-effort redaction for credentials in log messages.

    Covers key/value pairs, bearer credentials and anything shaped like a
    compact JWT (three base64url segments, the first starting with ``eyJ``).
    """

    _query_param_re = re.compile(r"(?i)\b(token|password|secret|key|apikey)=([^&\s]+)")
    _json_kv_re = re.compile(
        r"(?i)(\"?(token|password|password_hash|passwordHash|secret|key)\"?\s*[:=]\s*)(\"?)[^\"\s,}&]+(\3)"
    )
    _bearer_re = re.compile(r"(?i)\bBearer\s+([A-Za-z0-9._\-]+)")
    _jwt_re = re.compile(r"\beyJ[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+")

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003 (Filter.filter)
        try:
            msg = record.getMessage()
        except Exception:
            return True

        redacted = redact(msg)
        if redacted != msg:
            # Replace the fully formatted message to avoid re-formatting with args.
            record.msg = redacted
            record.args = ()
        return True


def redact(message: str) -> str:
    """Apply every redaction pattern to a message."""
    f = RedactSecretsFilter
    redacted = f._jwt_re.sub("[JWT REDACTED]", message)
    redacted = f._query_param_re.sub(lambda m: f"{m.group(1)}=REDACTED", redacted)
    redacted = f._json_kv_re.sub(lambda m: f"{m.group(1)}{m.group(3)}REDACTED{m.group(4)}", redacted)
    redacted = f._bearer_re.sub("Bearer REDACTED", redacted)
    return redacted


_FILTER_NAME = "authcore_redact_secrets"
_QUIET_LOGGERS = ("httpx", "httpcore", "hpack")


def _attach(target: logging.Filterer, redact_filter: logging.Filter) -> None:
    if not any(getattr(f, "name", None) == _FILTER_NAME for f in target.filters):
        target.addFilter(redact_filter)


def _existing_handlers() -> Iterable[logging.Handler]:
    yield from logging.getLogger().handlers
    for obj in list(logging.Logger.manager.loggerDict.values()):
        if isinstance(obj, logging.Logger):
            yield from obj.handlers


def install_log_safety() -> None:
    """
    Redact credentials on the root logger and every handler installed so far
    (uvicorn's included), and quiet the HTTP client loggers used by the
    Supabase client, whose request lines carry query strings.

    Safe to call more than once.
    """
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    redact_filter = RedactSecretsFilter(_FILTER_NAME)
    _attach(logging.getLogger(), redact_filter)
    for handler in _existing_handlers():
        _attach(handler, redact_filter)
