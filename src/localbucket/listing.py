"""Prefix collapsing and pagination for object, version and upload listings.

All functions operate on raw keys. URL encoding of the returned values is
applied by the caller after the page has been cut.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Generic, TypeVar
from urllib.parse import quote

T = TypeVar("T")


def _identity(value):
    return value


def collapse_common_prefixes(
    query_prefix: str | None, delimiter: str | None, keys: Iterable[str]
) -> list[str]:
    """Group keys sharing the segment between ``query_prefix`` and ``delimiter``.

    For every key starting with ``query_prefix`` the first ``delimiter`` at or
    after ``len(query_prefix)`` ends its common prefix (delimiter included).
    Each distinct prefix is reported once, in first-seen order.

    Args:
        query_prefix: The listing prefix; empty or None matches every key.
        delimiter: The grouping delimiter; empty or None disables grouping.
        keys: Candidate keys.

    Returns:
        The common prefixes.
    """
    if not delimiter:
        return []
    prefix = query_prefix or ""
    seen: dict[str, None] = {}
    for key in keys:
        if not key.startswith(prefix):
            continue
        pos = key.find(delimiter, len(prefix))
        if pos >= 0:
            seen.setdefault(key[: pos + len(delimiter)], None)
    return list(seen)


def filter_by_prefixes(
    items: Iterable[T], common_prefixes: list[str], key: Callable[[T], str] = _identity
) -> list[T]:
    """Drop every item whose key falls under one of ``common_prefixes``."""
    if not common_prefixes:
        return list(items)
    prefixes = tuple(common_prefixes)
    return [item for item in items if not key(item).startswith(prefixes)]


def filter_after(
    items: Iterable[T], marker: str | None, key: Callable[[T], str] = _identity
) -> list[T]:
    """Keep items whose key sorts strictly after ``marker``."""
    if not marker:
        return list(items)
    return [item for item in items if key(item) > marker]


def url_encode_ignore_slashes(value: str | None) -> str | None:
    """Percent-encode ``value``, leaving ``/`` untouched."""
    if value is None:
        return None
    return quote(value, safe="/")


@dataclass
class Page(Generic[T]):
    """One page of a listing.

    Attributes:
        items: Leaf entries on this page.
        common_prefixes: Collapsed prefixes.
        is_truncated: Whether more leaf entries follow.
    """

    items: list[T] = field(default_factory=list)
    common_prefixes: list[str] = field(default_factory=list)
    is_truncated: bool = False

    @property
    def last(self) -> T | None:
        return self.items[-1] if self.items else None


def paginate(
    items: list[T],
    prefix: str | None,
    delimiter: str | None,
    max_keys: int,
    key: Callable[[T], str] = _identity,
) -> Page[T]:
    """Collapse ``items`` and cut the first ``max_keys`` leaf entries.

    ``items`` must already be sorted and filtered past any marker. Only leaf
    entries count toward ``max_keys``; common prefixes are always reported.
    """
    if max_keys <= 0:
        return Page()
    common_prefixes = collapse_common_prefixes(prefix, delimiter, (key(item) for item in items))
    leaves = filter_by_prefixes(items, common_prefixes, key)
    page = Page(items=leaves, common_prefixes=common_prefixes)
    if len(leaves) > max_keys:
        page.items = leaves[:max_keys]
        page.is_truncated = True
    return page


class ContinuationTokens:
    """Single-use opaque tokens mapped to the key a page stopped after."""

    def __init__(self) -> None:
        self._positions: dict[str, str] = {}

    def issue(self, last_key: str) -> str:
        token = str(uuid.uuid4())
        self._positions[token] = last_key
        return token

    def consume(self, token: str) -> str | None:
        """Return the position behind ``token`` and forget it."""
        return self._positions.pop(token, None)

    def __len__(self) -> int:
        return len(self._positions)
