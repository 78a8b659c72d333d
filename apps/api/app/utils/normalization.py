"""Normalization helpers for user-supplied identity fields."""

import re
from typing import Optional

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_email(email: Optional[str]) -> Optional[str]:
    """
    Normalize email for storage and lookup (trimmed, lowercased).

    Returns None for empty input.
    """
    if not email:
        return None
    return email.strip().lower()


def mailbox_identity(email: Optional[str]) -> str:
    """
    Canonical mailbox used to compare a sender with a requester.

    Lowercases and drops a ``+tag`` suffix from the local part, so
    ``alice+support@gmail.com`` and ``alice@gmail.com`` are the same mailbox.
    """
    normalized = normalize_email(email) or ""
    local, sep, domain = normalized.partition("@")
    if not sep:
        return normalized
    local = local.split("+", 1)[0]
    return f"{local}@{domain}"


def normalize_name(name: Optional[str]) -> Optional[str]:
    """Strip and collapse internal whitespace; None when empty."""
    if not name:
        return None
    cleaned = _WHITESPACE_RE.sub(" ", name).strip()
    return cleaned or None


def display_name_from_email(email: str) -> str:
    """Fallback display name for just-in-time users (local part of the address)."""
    local = email.split("@", 1)[0]
    return local or email
