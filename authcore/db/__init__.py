"""Persistence layer: the UserDirectory contract and its adapters."""

from authcore.config import AuthSettings
from authcore.db.directory import DuplicateRecordError, UserDirectory
from authcore.db.models import PasswordResetRecord, Role, UserRecord
from authcore.errors import ConfigurationError


def create_directory(settings: AuthSettings) -> UserDirectory:
    """Build the directory adapter selected by ``directory_backend``."""
    if settings.directory_backend == "supabase":
        from authcore.db.supabase_client import SupabaseUserDirectory

        return SupabaseUserDirectory.from_settings(settings)
    if settings.directory_backend == "sql":
        from authcore.db.sql_directory import SqlUserDirectory

        return SqlUserDirectory(settings.database_url)
    raise ConfigurationError(f"Unknown directory backend: {settings.directory_backend}")


__all__ = [
    "create_directory",
    "DuplicateRecordError",
    "PasswordResetRecord",
    "Role",
    "UserDirectory",
    "UserRecord",
]
