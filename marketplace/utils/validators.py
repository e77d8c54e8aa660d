"""Input normalisation for catalog requests."""

from __future__ import annotations

import re
from typing import Iterable

_DOCUMENT_ID = re.compile(r"^[A-Za-z0-9_-]{1,128}$")

# (pattern, url template) tried in order; first match wins
_VIDEO_PATTERNS = [
    (re.compile(r"youtube\.com/shorts/([^\"/\s?]+)", re.I), "https://www.youtube.com/shorts/{0}"),
    (re.compile(r"youtube(?:-nocookie)?\.com/embed/([^\"&\s?]+)", re.I), "https://www.youtube.com/watch?v={0}"),
    (re.compile(r"youtu\.be/([^\"&\s?]+)", re.I), "https://www.youtube.com/watch?v={0}"),
    (re.compile(r"youtube\.com/watch\?v=([^\"&\s?]+)", re.I), "https://www.youtube.com/watch?v={0}"),
    (re.compile(r"instagram\.com/(p|reel|tv)/([^\"/\s?]+)", re.I), "https://www.instagram.com/{0}/{1}/"),
]


def is_valid_document_id(value: str) -> bool:
    return bool(_DOCUMENT_ID.match(value))


def clean_document_id(value: str | None) -> str | None:
    """Stripped ID, or None when the value cannot be a document ID."""
    if value is None:
        return None
    value = value.strip()
    return value if is_valid_document_id(value) else None


def parse_string_list(value: str | Iterable[str] | None) -> list[str]:
    """Accept a list, a comma-separated string, or a single string."""
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",") if "," in value else [value]
    else:
        items = [str(v) for v in value if v is not None]
    return [item.strip() for item in items if item.strip()]


def parse_bool_flag(value: str | None) -> bool | None:
    if value is None:
        return None
    lowered = str(value).strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return None


def parse_int(value: str | int | None, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return default


def extract_video_url(html: str | None) -> str:
    """Canonical video URL embedded in free-form HTML, or ''."""
    if not html:
        return ""
    for pattern, template in _VIDEO_PATTERNS:
        match = pattern.search(html)
        if match:
            return template.format(*match.groups())
    return ""
