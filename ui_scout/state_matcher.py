from __future__ import annotations

"""Stable screen fingerprints built from the structural skeleton of a capture."""

import hashlib
from typing import Iterable, Optional
from urllib.parse import urlparse

from .knowledge import Element


def _canonicalize(elements: Iterable[Element], limit: int = 256) -> str:
    """`type:id:label` for each element (children included), ignoring values and other dynamic content."""
    parts: list[str] = []

    def walk(items: Iterable[Element]) -> None:
        for element in items:
            if len(parts) >= limit:
                return
            parts.append(f"{element.type.value}:{element.id or ''}:{element.label or ''}")
            walk(element.children)

    walk(elements)
    return "|".join(parts)


def signature(elements: Iterable[Element], url: Optional[str] = None) -> str:
    """Return a SHA-256 fingerprint for a captured element list.

    Typed values are ignored so filling a field does not mint a new screen. For web
    pages the URL path (and query string, which SPA routers use) is mixed in so that
    structurally identical pages at different routes stay distinct.
    """
    canon = _canonicalize(elements)
    route = ""
    if url:
        parsed = urlparse(url)
        route = parsed.path
        if parsed.query:
            route += "?" + parsed.query
    combined = f"{canon}|{route}"
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()
