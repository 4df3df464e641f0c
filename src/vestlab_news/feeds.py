"""RSS news adapter: fetch one feed and normalize its entries."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Any, List, Optional, Sequence, Union

import feedparser
import httpx

from ._http import build_client, get_with_retry, log_fetch_failure
from .models import NewsRecord
from .registry import NewsSource
from .timeutil import normalize_to_utc, to_utc_iso, utc_now

logger = logging.getLogger(__name__)


def _first_url(media: Any) -> Optional[str]:
    if isinstance(media, dict):
        media = [media]
    if not isinstance(media, list):
        return None
    for item in media:
        if isinstance(item, dict) and item.get("url"):
            return str(item["url"])
    return None


def _author(entry: Any) -> Optional[str]:
    names = [
        str(a.get("name")).strip()
        for a in entry.get("authors") or []
        if isinstance(a, dict) and a.get("name")
    ]
    if len(names) > 1:
        return ", ".join(names)
    author = entry.get("author")
    if author:
        return str(author).strip()
    return names[0] if names else None


def _tags(entry: Any) -> Optional[str]:
    terms = [
        str(t.get("term")).strip()
        for t in entry.get("tags") or []
        if isinstance(t, dict) and t.get("term")
    ]
    return ",".join(terms) if terms else None


def normalize_entry(
    source_name: str, entry: Any, *, now: Optional[datetime] = None
) -> Optional[NewsRecord]:
    """Map one parsed feed entry to a NewsRecord; None when title/link missing."""
    title = (entry.get("title") or "").strip()
    link = (entry.get("link") or "").strip()
    if not title or not link:
        return None
    current = now or utc_now()
    published_raw = entry.get("published") or entry.get("updated")
    description = entry.get("summary") or entry.get("description")
    return NewsRecord(
        source=source_name,
        title=title,
        url=link,
        published_at=normalize_to_utc(published_raw, now=current),
        crawled_at=to_utc_iso(current),
        author=_author(entry),
        image_url=_first_url(entry.get("media_content")) or _first_url(entry.get("media_thumbnail")),
        tags=_tags(entry),
        description=description.strip() if isinstance(description, str) else None,
    )


def parse_feed(
    source_name: str, document: Union[str, bytes], *, now: Optional[datetime] = None
) -> List[NewsRecord]:
    """Parse an RSS/Atom document into NewsRecords; malformed entries are dropped.

    Pass raw bytes where possible so the encoding declared in the XML wins.
    """
    parsed = feedparser.parse(document)
    if parsed.get("bozo") and not parsed.entries:
        raise ValueError(f"unparseable feed: {parsed.get('bozo_exception')}")
    records: List[NewsRecord] = []
    for entry in parsed.entries:
        record = normalize_entry(source_name, entry, now=now)
        if record is not None:
            records.append(record)
    return records


def fetch_feed(
    source: NewsSource,
    client: Optional[httpx.Client] = None,
    *,
    now: Optional[datetime] = None,
) -> List[NewsRecord]:
    """Fetch and normalize one feed. Never raises; failures yield []."""
    owns_client = client is None
    active = client or build_client()
    try:
        logger.info("Fetching RSS from %s", source.url)
        response = get_with_retry(active, source.url)
        records = parse_feed(source.name, response.content, now=now)
        logger.info("Fetched %d items from %s", len(records), source.name)
        return records
    except Exception as exc:  # isolate-and-continue per source
        log_fetch_failure(source.name, exc)
        return []
    finally:
        if owns_client:
            active.close()


def fetch_feeds(
    sources: Sequence[NewsSource],
    client: Optional[httpx.Client] = None,
    *,
    max_workers: int = 4,
    now: Optional[datetime] = None,
) -> dict[str, List[NewsRecord]]:
    """Fetch several feeds concurrently; returns records keyed by source name."""
    if max_workers < 1:
        raise ValueError("max_workers must be >= 1.")
    if not sources:
        return {}
    owns_client = client is None
    active = client or build_client()
    results: dict[str, List[NewsRecord]] = {}
    try:
        with ThreadPoolExecutor(max_workers=min(max_workers, len(sources))) as executor:
            future_map = {
                executor.submit(fetch_feed, source, active, now=now): source
                for source in sources
            }
            for future in as_completed(future_map):
                results[future_map[future].name] = future.result()
    finally:
        if owns_client:
            active.close()
    return results
