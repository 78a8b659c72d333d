"""Knowledge cache for AI prompts.

Admin-configured URLs are fetched, reduced to plain text and cached on the
settings row. Fetches are bounded by a hard deadline; a slow or failing URL
is skipped, never retried.
"""

from __future__ import annotations

import html
import logging
import re
from datetime import timedelta

import anyio
import httpx
import nh3
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.models import AppSettings
from app.jobs.utils import safe_url
from app.services import settings_service
from app.utils.datetimes import as_utc, utc_now

logger = logging.getLogger(__name__)

USER_AGENT = "SupportDeskBot/1.0"
MIN_CONTENT_LENGTH = 100
SOURCE_SEPARATOR = "\n\n---\n\n"

_WHITESPACE_RE = re.compile(r"\s+")


def html_to_text(markup: str) -> str:
    # Separate adjacent block elements so words do not run together
    text = nh3.clean(markup.replace("<", " <"), tags=set())  # Strip HTML
    return _WHITESPACE_RE.sub(" ", html.unescape(text)).strip()


def parse_knowledge_urls(urls: list[str] | tuple[str, ...] | str | None) -> list[str]:
    """Accept a list or newline-separated text; keep http(s) URLs only."""
    if not urls:
        return []
    if isinstance(urls, str):
        urls = urls.split("\n")
    cleaned = (str(url).strip() for url in urls)
    return [url for url in cleaned if url.startswith(("http://", "https://"))]


async def fetch_url_content(url: str, *, timeout: float | None = None) -> str | None:
    """
    Fetch one URL as plain text, truncated to ``KNOWLEDGE_MAX_CHARS``.

    Returns None on any failure or when the deadline passes.
    """
    deadline = timeout or settings.KNOWLEDGE_FETCH_TIMEOUT_SECONDS
    try:
        with anyio.fail_after(deadline):
            async with httpx.AsyncClient(timeout=deadline, follow_redirects=True) as client:
                response = await client.get(
                    url,
                    headers={
                        "User-Agent": USER_AGENT,
                        "Accept": "text/html,text/plain,application/json",
                    },
                )
    except TimeoutError:
        logger.warning("Knowledge fetch timed out for %s", safe_url(url))
        return None
    except httpx.HTTPError as exc:
        logger.warning("Knowledge fetch failed for %s: %s", safe_url(url), exc)
        return None

    if response.status_code >= 400:
        logger.warning("Knowledge fetch for %s returned %s", safe_url(url), response.status_code)
        return None

    text = response.text
    if "text/html" in response.headers.get("content-type", ""):
        text = html_to_text(text)
    return text[: settings.KNOWLEDGE_MAX_CHARS]


async def fetch_knowledge_content(urls: list[str] | tuple[str, ...] | str | None) -> str | None:
    """Fetch up to ``KNOWLEDGE_MAX_URLS`` sources concurrently and join the useful ones."""
    candidates = parse_knowledge_urls(urls)[: settings.KNOWLEDGE_MAX_URLS]
    if not candidates:
        return None

    logger.info("Fetching knowledge content from %s URLs", len(candidates))
    results: list[str | None] = [None] * len(candidates)

    async def _fetch(index: int, url: str) -> None:
        content = await fetch_url_content(url)
        if content and len(content) > MIN_CONTENT_LENGTH:
            results[index] = f"Source: {url}\n{content}"

    async with anyio.create_task_group() as tg:
        for index, url in enumerate(candidates):
            tg.start_soon(_fetch, index, url)

    contents = [content for content in results if content]
    if not contents:
        return None
    logger.info("Fetched knowledge content from %s of %s URLs", len(contents), len(candidates))
    return SOURCE_SEPARATOR.join(contents)


def is_cache_expired(row: AppSettings, *, now=None) -> bool:
    if row.ai_knowledge_cache_updated_at is None:
        return True
    age = (now or utc_now()) - as_utc(row.ai_knowledge_cache_updated_at)
    return age > timedelta(days=row.ai_knowledge_refresh_days)


async def refresh_knowledge(db: Session, row: AppSettings | None = None) -> str | None:
    """Re-fetch the configured URLs and store the result (None clears the cache)."""
    row = row or settings_service.get_app_settings(db)
    content = await fetch_knowledge_content(row.ai_knowledge_urls)
    row.ai_knowledge_cache = content
    row.ai_knowledge_cache_updated_at = utc_now()
    db.commit()
    return content


async def get_knowledge_content(db: Session, row: AppSettings | None = None) -> str | None:
    """Cached knowledge text, refreshed when older than ``ai_knowledge_refresh_days``."""
    row = row or settings_service.get_app_settings(db)
    if not parse_knowledge_urls(row.ai_knowledge_urls):
        return None
    if row.ai_knowledge_cache and not is_cache_expired(row):
        return row.ai_knowledge_cache
    try:
        return await refresh_knowledge(db, row)
    except Exception:
        db.rollback()
        logger.exception("Knowledge refresh failed; continuing without knowledge")
        return None
