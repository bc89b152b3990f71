"""
Configuration management for the authentication service.

Loads settings from config.yaml and environment variables into a single
AuthSettings object that is passed to every component.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from authcore.errors import ConfigurationError

# Load environment variables
load_dotenv()

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent
CONFIG_FILE = PROJECT_ROOT / "config.yaml"

# Bounds for the legacy full-table email scan
MIN_EMAIL_SCAN_LIMIT = 500
MAX_EMAIL_SCAN_LIMIT = 1000


def get_config_path() -> Path:
    """Config file location, overridable with AUTHCORE_CONFIG."""
    override = os.getenv("AUTHCORE_CONFIG", "").strip()
    return Path(override) if override else CONFIG_FILE


def load_config(path: Optional[Path] = None) -> dict[str, Any]:
    """Load configuration from YAML file."""
    path = path or get_config_path()
    if path.exists():
        with open(path, "r") as f:
            return yaml.safe_load(f) or {}
    return get_default_config()


def get_default_config() -> dict[str, Any]:
    """Return default configuration if config.yaml doesn't exist."""
    return {
        "app": {
            "name": "Global Goals Jam",
            "url": "http://localhost:8000",
        },
        "auth": {
            "refresh_threshold_hours": 6,
            "legacy_email_fallback": True,
            "email_scan_limit": 1000,
        },
        "directory": {
            "backend": "sql",
            "dual_write_aliases": True,
            "column_style": "snake",
        },
        "mail": {
            "from": "no-reply@localhost",
            "reply_to": None,
        },
    }


def _section(config: dict[str, Any], name: str) -> dict[str, Any]:
    value = config.get(name) or {}
    return value if isinstance(value, dict) else {}


def _env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def clamp_scan_limit(limit: int) -> int:
    """Keep the fallback scan inside its supported window."""
    return max(MIN_EMAIL_SCAN_LIMIT, min(MAX_EMAIL_SCAN_LIMIT, int(limit)))


@dataclass(frozen=True)
class SmtpSettings:
    host: str = "smtp.gmail.com"
    port: int = 587
    user: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = True

    @property
    def is_configured(self) -> bool:
        return bool(self.user and self.password)


@dataclass(frozen=True)
class AuthSettings:
    """
    Settings for the authentication core.

    Built once at startup and injected into TokenCodec, PasswordHasher,
    CredentialResolver, SessionService and RecoveryService.
    """

    signing_secret: Optional[str] = None
    legacy_digest_secret: Optional[str] = None
    refresh_threshold_seconds: int = 6 * 60 * 60
    legacy_email_fallback: bool = True
    email_scan_limit: int = MAX_EMAIL_SCAN_LIMIT
    app_name: str = "Global Goals Jam"
    app_url: str = "http://localhost:8000"
    mail_from: str = "no-reply@localhost"
    mail_reply_to: Optional[str] = None
    database_url: str = "sqlite:///authcore.db"
    directory_backend: str = "sql"
    dual_write_aliases: bool = True
    column_style: str = "snake"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    smtp: SmtpSettings = field(default_factory=SmtpSettings)

    @classmethod
    def from_env(cls, config: Optional[dict[str, Any]] = None) -> "AuthSettings":
        """Build settings from config.yaml, overridden by environment variables."""
        config = load_config() if config is None else config
        app_cfg = _section(config, "app")
        auth_cfg = _section(config, "auth")
        dir_cfg = _section(config, "directory")
        mail_cfg = _section(config, "mail")

        signing_secret = _clean(os.getenv("JWT_SECRET"))
        legacy_secret = _clean(os.getenv("LEGACY_PASSWORD_SECRET")) or signing_secret

        threshold_hours = auth_cfg.get("refresh_threshold_hours", 6)
        threshold_seconds = _env_int("REFRESH_THRESHOLD_SECONDS", int(float(threshold_hours) * 3600))

        scan_limit = _env_int("EMAIL_SCAN_LIMIT", int(auth_cfg.get("email_scan_limit", MAX_EMAIL_SCAN_LIMIT)))

        smtp_user = _clean(os.getenv("SMTP_USER"))
        smtp = SmtpSettings(
            host=os.getenv("SMTP_HOST", "smtp.gmail.com"),
            port=_env_int("SMTP_PORT", 587),
            user=smtp_user,
            password=_clean(os.getenv("SMTP_PASSWORD")),
            use_tls=_env_bool("SMTP_USE_TLS", True),
        )

        return cls(
            signing_secret=signing_secret,
            legacy_digest_secret=legacy_secret,
            refresh_threshold_seconds=threshold_seconds,
            legacy_email_fallback=_env_bool(
                "LEGACY_EMAIL_FALLBACK", bool(auth_cfg.get("legacy_email_fallback", True))
            ),
            email_scan_limit=clamp_scan_limit(scan_limit),
            app_name=os.getenv("APP_NAME", app_cfg.get("name", "Global Goals Jam")),
            app_url=os.getenv("APP_URL", app_cfg.get("url", "http://localhost:8000")).rstrip("/"),
            mail_from=os.getenv("MAIL_FROM") or mail_cfg.get("from") or smtp_user or "no-reply@localhost",
            mail_reply_to=os.getenv("MAIL_REPLY_TO") or mail_cfg.get("reply_to"),
            database_url=get_database_url(),
            directory_backend=os.getenv("DIRECTORY_BACKEND", dir_cfg.get("backend", "sql")).lower(),
            dual_write_aliases=_env_bool(
                "DUAL_WRITE_ALIASES", bool(dir_cfg.get("dual_write_aliases", True))
            ),
            column_style=os.getenv("DIRECTORY_COLUMN_STYLE", dir_cfg.get("column_style", "snake")).lower(),
            supabase_url=_clean(os.getenv("SUPABASE_URL")),
            supabase_key=_clean(os.getenv("SUPABASE_SERVICE_KEY")),
            smtp=smtp,
        )

    @property
    def is_configured(self) -> bool:
        """True when a signing secret is present."""
        return bool(self.signing_secret and self.signing_secret.strip())

    def require_signing_secret(self) -> str:
        """Return the signing secret or raise ConfigurationError."""
        if not self.is_configured:
            raise ConfigurationError("JWT_SECRET is not configured")
        return self.signing_secret

    def with_overrides(self, **changes: Any) -> "AuthSettings":
        return replace(self, **changes)

    def describe(self) -> dict[str, Any]:
        """Settings summary safe for display (secrets masked)."""
        return {
            "signing_secret": "set" if self.is_configured else "MISSING",
            "legacy_digest_secret": "set" if self.legacy_digest_secret else "MISSING",
            "refresh_threshold_seconds": self.refresh_threshold_seconds,
            "legacy_email_fallback": self.legacy_email_fallback,
            "email_scan_limit": self.email_scan_limit,
            "app_url": self.app_url,
            "mail_from": self.mail_from,
            "directory_backend": self.directory_backend,
            "dual_write_aliases": self.dual_write_aliases,
            "column_style": self.column_style,
            "database_url": self.database_url.split("@")[-1],
            "smtp_configured": self.smtp.is_configured,
        }


def get_database_url() -> str:
    """Get database URL from environment or default."""
    default_db = f"sqlite:///{PROJECT_ROOT / 'authcore.db'}"
    return os.getenv("DATABASE_URL", default_db)
