"""Small helpers shared by the transport and resource clients."""

import os
import re
from typing import List, Sequence, TypeVar
from urllib.parse import urlparse

T = TypeVar("T")

_UUID_RE = re.compile(
    r"[0-9a-fA-F]{8}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{12}"
)


def is_uuid_string(value: str) -> bool:
    """Return True for 32 hex digits, with or without standard hyphenation."""
    return bool(_UUID_RE.fullmatch(value))


def is_file_path(value: str) -> bool:
    """Return True if value names an existing non-directory path."""
    try:
        return os.path.exists(value) and not os.path.isdir(value)
    except (OSError, ValueError):
        return False


def looks_like_path(value: str) -> bool:
    return "/" in value or "\\" in value or value.startswith(".")


def is_http_url(value: str) -> bool:
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def chunked(items: Sequence[T], size: int) -> List[List[T]]:
    """Split items into consecutive chunks of at most ``size`` elements.

    A non-positive size, or one that already covers every item, yields a
    single chunk (an empty one when there are no items).

    Example:
        >>> chunked([1, 2, 3, 4, 5], 2)
        [[1, 2], [3, 4], [5]]
    """
    items = list(items)
    if size <= 0 or size >= len(items):
        return [items]
    return [items[i : i + size] for i in range(0, len(items), size)]
