"""
Error taxonomy shared by the gateways, the services and the HTTP layer.

Gateways raise these; services turn them into result objects where callers
expect a result instead of an exception (auth, upload).
"""
from __future__ import annotations

from typing import Dict, Optional


class DuetError(Exception):
    """Base class for every failure the app reports to a caller."""

    def __init__(self, message: str, *, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status


class AuthError(DuetError):
    """Invalid credentials, duplicate registration, rejected token."""


class StorageError(DuetError):
    """Blob upload failure."""


class DataError(DuetError):
    """Select/insert/delete failure."""


class ValidationError(DuetError):
    """Client-side input check failed; ``errors`` maps field name -> message."""

    def __init__(self, errors: Dict[str, str]):
        super().__init__("; ".join(f"{k}: {v}" for k, v in errors.items()))
        self.errors = errors


INVALID_LOGIN_MESSAGE = "Invalid email or password"
ALREADY_REGISTERED_MESSAGE = "This email is already registered. Try logging in!"


def friendly_auth_message(error: BaseException) -> str:
    """Map the two well-known auth failures to friendlier text; pass others through."""
    raw = getattr(error, "message", None) or str(error)
    if "Invalid login" in raw:
        return INVALID_LOGIN_MESSAGE
    if "already registered" in raw:
        return ALREADY_REGISTERED_MESSAGE
    return raw
