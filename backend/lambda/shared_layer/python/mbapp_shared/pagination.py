"""mbapp_shared.pagination — Cursor codec and filtered pagination helpers.

Every list endpoint hands out the store's native continuation key as an
opaque ``next`` token. The codec wraps that key verbatim (compact JSON,
base64) and never looks inside it. A token that cannot be decoded is
treated as "start from the first page", never as an error.

The filtered loop serves endpoints that promise ``limit`` results *after*
in-memory filtering while the store only limits results *before* filtering.
When it fills up partway through a store page, its ``next`` token records
that page's store cursor plus how many of its items were consumed, so the
rest of the page is scanned on resume.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAGES = 10
# Keys of a token that resumes partway through a store page.
RESUME_CURSOR_KEY = "k"
RESUME_SKIP_KEY = "skip"

_TRUE_VALUES = {"true", "1", "yes"}
_FALSE_VALUES = {"false", "0", "no"}

Page = Dict[str, Any]
Predicate = Callable[[Dict[str, Any]], bool]


class InvalidQueryParameter(ValueError):
    """A query parameter holds a value the endpoint cannot interpret."""

    def __init__(self, name: str, value: Any):
        super().__init__(f"Invalid {name} value")
        self.name = name
        self.value = value


# ---------------------------------------------------------------------------
# Cursor codec
# ---------------------------------------------------------------------------


def encode_cursor(native_key: Optional[Any]) -> Optional[str]:
    """Encode a store continuation key as an opaque token (None when absent or unserializable)."""
    if native_key is None:
        return None
    try:
        raw = json.dumps(native_key, separators=(",", ":"))
    except (TypeError, ValueError, RecursionError) as exc:
        logger.warning("cursor encode failed: %s", exc)
        return None
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def decode_cursor(token: Optional[str]) -> Optional[Any]:
    """Decode a token from encode_cursor; malformed input yields None."""
    if not token:
        return None
    try:
        raw = base64.b64decode(str(token), validate=True)
        return json.loads(raw.decode("utf-8"))
    except (binascii.Error, ValueError, TypeError, RecursionError):
        logger.info("ignoring undecodable cursor")
        return None


# ---------------------------------------------------------------------------
# Query parameter parsing
# ---------------------------------------------------------------------------


def parse_boolean(value: Optional[str], name: str = "value") -> Optional[bool]:
    """Parse a boolean query parameter.

    Returns None when the parameter is absent. Raises InvalidQueryParameter
    for anything outside true/1/yes and false/0/no.
    """
    if value is None:
        return None
    normalized = str(value).strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise InvalidQueryParameter(name, value)


def parse_limit(raw: Optional[str], default: int, minimum: int = 1, maximum: int = 100) -> int:
    try:
        value = int(str(raw).strip()) if raw not in (None, "") else default
    except ValueError:
        value = default
    return max(minimum, min(maximum, value))


def parse_csv_set(raw: Optional[str]) -> set[str]:
    """Lowercased, non-empty members of a comma-separated parameter."""
    if not raw:
        return set()
    return {part.strip().lower() for part in str(raw).split(",") if part.strip()}


# ---------------------------------------------------------------------------
# Page shapes
# ---------------------------------------------------------------------------


def normalize_page(response: Any) -> Page:
    """Normalize list responses (items/rows/data/bare list) to {"items", "next"}."""
    if isinstance(response, list):
        return {"items": list(response), "next": None}
    if not isinstance(response, dict):
        return {"items": [], "next": None}
    for key in ("items", "rows", "data"):
        if key in response:
            raw = response[key]
            if isinstance(raw, list):
                items = list(raw)
            elif isinstance(raw, dict):
                items = list(raw.values())
            else:
                items = []
            return {"items": items, "next": response.get("next") or None}
    return {"items": [], "next": response.get("next") or None}


# ---------------------------------------------------------------------------
# Filtered pagination loop
# ---------------------------------------------------------------------------


def _resume_point(start: Optional[str]) -> Tuple[Optional[str], int]:
    """Split a ``next`` token into (store cursor, items of that page already consumed)."""
    decoded = decode_cursor(start) if start else None
    if isinstance(decoded, dict) and set(decoded) == {RESUME_CURSOR_KEY, RESUME_SKIP_KEY}:
        skip = decoded[RESUME_SKIP_KEY]
        store_cursor = decoded[RESUME_CURSOR_KEY]
        return (
            store_cursor if isinstance(store_cursor, str) and store_cursor else None,
            skip if isinstance(skip, int) and skip > 0 else 0,
        )
    return start or None, 0


def collect_filtered_page(
    fetch_page: Callable[[Optional[str]], Page],
    predicates: Iterable[Predicate],
    limit: int,
    start: Optional[str] = None,
    max_pages: int = DEFAULT_MAX_PAGES,
) -> Page:
    """Fetch store pages until ``limit`` items pass every predicate.

    Stops when enough items are collected, when the store has no further
    pages, or after ``max_pages`` fetches. A capped result returns the last
    store cursor. A result that fills up partway through a page returns a
    resume token pointing into that page, so no later match on it is lost.
    ``fetch_page`` must return the same page for the same cursor.
    """
    checks = list(predicates)
    collected: List[Dict[str, Any]] = []
    cursor, skip = _resume_point(start)
    pages = 0

    while pages < max_pages and len(collected) < limit:
        page = normalize_page(fetch_page(cursor))
        pages += 1
        items = page["items"]
        for index in range(skip, len(items)):
            if not all(check(items[index]) for check in checks):
                continue
            collected.append(items[index])
            if len(collected) >= limit and index + 1 < len(items):
                resume = encode_cursor({RESUME_CURSOR_KEY: cursor, RESUME_SKIP_KEY: index + 1})
                return {"items": collected, "next": resume}
        skip = 0
        cursor = page["next"] or None
        if not cursor:
            break

    if cursor and pages >= max_pages and len(collected) < limit:
        logger.info("filtered pagination hit page cap: pages=%s collected=%s", pages, len(collected))

    return {"items": collected, "next": cursor}
