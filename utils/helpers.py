"""Utility helper functions."""

from __future__ import annotations

import re
from typing import Iterator, List, TypeVar
from urllib.parse import urlparse

T = TypeVar("T")


def slugify(text: str) -> str:
    """Lower-case, hyphenate whitespace and drop anything outside [a-z0-9-]."""
    text = text.lower()
    text = re.sub(r"\s+", "-", text)
    return re.sub(r"[^a-z0-9-]", "", text)


def base_path(path: str) -> str:
    """Strip the query string from a path."""
    return path.split("?", 1)[0]


def url_path(url: str) -> str:
    """Return the path component of an absolute URL ('/' when empty)."""
    return urlparse(url).path or "/"


def page_name_from_path(path: str) -> str:
    """Build a display name from the last non-empty path segment.

    ``/app/event_types`` -> ``Event Types``; ``/`` -> ``Home``.
    """
    parts = [p for p in base_path(path).split("/") if p]
    last = parts[-1] if parts else "Home"
    last = re.sub(r"[-_]", " ", last)
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), last)


def chunk_list(lst: List[T], size: int) -> Iterator[List[T]]:
    """Yield successive chunks of a given size from a list."""
    for i in range(0, len(lst), size):
        yield lst[i : i + size]


def crawl_blob_key(product_name: str, page_name: str, timestamp_ms: int) -> str:
    """Storage key for a crawl-mode screenshot."""
    return f"{slugify(product_name)}-{slugify(page_name)}-{timestamp_ms}.png"


def recording_blob_key(session_id: str, flow_id: str, step_number: int) -> str:
    """Deterministic storage key for a recording-mode screenshot."""
    return f"{session_id}/{flow_id}/{step_number}.png"
