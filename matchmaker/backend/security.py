"""Security helpers for the administrative bearer credential."""

from __future__ import annotations

import hashlib
import secrets

from .errors import Forbidden, Unauthorized


def extract_bearer_token(auth_header: str | None) -> str:
    """Return the token of an ``Authorization: Bearer <token>`` header or ''."""
    raw = (auth_header or "").strip()
    if not raw.lower().startswith("bearer "):
        return ""
    return raw.split(" ", 1)[1].strip()


def verify_token(provided: str, expected: str) -> bool:
    """Constant-time comparison; an unset expected token never matches."""
    if not provided or not expected:
        return False
    return secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def require_admin(provided: str, expected: str) -> None:
    if not expected:
        raise Forbidden("Administrative operations are disabled")
    if not verify_token(provided, expected):
        raise Unauthorized("Invalid authentication token")


def content_hash(payload: bytes) -> str:
    """sha256 hex digest used to fingerprint registration metadata."""
    return hashlib.sha256(payload).hexdigest()
