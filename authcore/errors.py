"""
Exception types shared by the authentication services and the web layer.
"""

from __future__ import annotations

from typing import Any


class ConfigurationError(RuntimeError):
    """Raised when required process configuration is missing."""


class AuthError(Exception):
    """
    A user-facing failure with an HTTP status and a stable error code.

    The web layer renders it as ``{"error": message, "code": code, **extra}``.
    """

    def __init__(self, status_code: int, code: str, message: str, **extra: Any):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.extra = extra

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message, "code": self.code}
        body.update(self.extra)
        return body

    def __repr__(self) -> str:
        return f"<AuthError({self.status_code}, code='{self.code}')>"


def validation_error(message: str, code: str = "invalid_input") -> AuthError:
    """400 for user-correctable input problems."""
    return AuthError(400, code, message)
