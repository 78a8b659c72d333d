"""Shared helpers for worker job handlers."""

from __future__ import annotations

from urllib.parse import urlsplit
from uuid import UUID


def mask_email(email: str | None) -> str:
    """Log-safe form of an address: first three characters of the local part."""
    if not email:
        return ""
    local, _, domain = email.partition("@")
    prefix = local[:3] if local else ""
    return f"{prefix}...@{domain}" if domain else f"{prefix}..."


def safe_url(url: str | None) -> str:
    """Drop query string and fragment before logging a URL."""
    if not url:
        return ""
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}{parts.path}"


def uuid_from_payload(payload: dict, key: str) -> UUID:
    value = payload.get(key)
    if not value:
        raise ValueError(f"Missing {key} in job payload")
    return UUID(str(value))
