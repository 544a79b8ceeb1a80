"""Utility helpers for the Discover service."""

from __future__ import annotations

import re
from datetime import date
from typing import Any

YOUTUBE_WATCH_URL = "https://www.youtube.com/watch?v={key}"

LIST_PREFIX_RE = re.compile(r"^\s*(?:\d+[.)]\s*|[-*•]\s*)")


def parse_date(value: Any) -> date | None:
    """Return a date parsed from an ISO string, or ``None`` when unusable."""

    if not isinstance(value, str) or len(value) < 10:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def build_image_url(path: str | None, base_url: str) -> str | None:
    if not path:
        return None
    if path.startswith("http"):
        return path
    return f"{base_url}{path}"


def youtube_watch_url(key: str) -> str:
    return YOUTUBE_WATCH_URL.format(key=key)


def split_titles(content: str) -> list[str]:
    """Split a comma separated model answer into clean, unique titles."""

    titles: list[str] = []
    seen: set[str] = set()
    for raw in re.split(r",|\n", content):
        title = LIST_PREFIX_RE.sub("", raw).strip().strip("\"'*").strip()
        if not title:
            continue
        marker = title.casefold()
        if marker in seen:
            continue
        seen.add(marker)
        titles.append(title)
    return titles
