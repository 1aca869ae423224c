"""Conditional request evaluation (If-Match, If-None-Match, If-(Un)Modified-Since)."""

from __future__ import annotations

import email.utils
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from localbucket.errors import NoSuchKey, NotModified, PreconditionFailed

if TYPE_CHECKING:
    from localbucket.store.models import ObjectMetadata

logger = logging.getLogger(__name__)

WILDCARD = "*"


def strip_etag_quotes(etag: str) -> str:
    """Strip surrounding double quotes and optional W/ prefix from an ETag."""
    etag = etag.strip()
    if etag.startswith("W/"):
        etag = etag[2:]
    if etag.startswith('"') and etag.endswith('"'):
        etag = etag[1:-1]
    return etag


def parse_http_date(date_str: str | None) -> datetime | None:
    """Parse an HTTP date string into a timezone-aware datetime, or None."""
    if not date_str:
        return None
    try:
        parsed = email.utils.parsedate_to_datetime(date_str)
    except (ValueError, TypeError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _split_etags(header: str | list[str] | None) -> list[str] | None:
    if header is None:
        return None
    values = header.split(",") if isinstance(header, str) else header
    return [strip_etag_quotes(value) for value in values if value.strip()]


@dataclass
class Preconditions:
    """Parsed conditional request headers.

    ``if_match`` and ``if_none_match`` hold unquoted ETags (or ``*``).
    """

    if_match: list[str] | None = None
    if_none_match: list[str] | None = None
    if_modified_since: datetime | None = None
    if_unmodified_since: datetime | None = None

    @classmethod
    def from_headers(
        cls,
        if_match: str | list[str] | None = None,
        if_none_match: str | list[str] | None = None,
        if_modified_since: str | None = None,
        if_unmodified_since: str | None = None,
    ) -> "Preconditions":
        return cls(
            if_match=_split_etags(if_match),
            if_none_match=_split_etags(if_none_match),
            if_modified_since=parse_http_date(if_modified_since),
            if_unmodified_since=parse_http_date(if_unmodified_since),
        )

    @property
    def empty(self) -> bool:
        return (
            not self.if_match
            and not self.if_none_match
            and self.if_modified_since is None
            and self.if_unmodified_since is None
        )


def evaluate_preconditions(
    conditions: Preconditions | None,
    metadata: ObjectMetadata | None,
    for_read: bool = True,
) -> None:
    """Evaluate conditional request headers against object metadata.

    Evaluation order (per HTTP/1.1):
        1. If-Match -> PreconditionFailed on mismatch
        2. If-Unmodified-Since -> PreconditionFailed if modified after date
           (only when If-Match is absent)
        3. If-None-Match -> NotModified on match
        4. If-Modified-Since -> NotModified if not modified
           (only when If-None-Match is absent)

    Args:
        conditions: The parsed headers, or None.
        metadata: The current object version, or None if it does not exist.
        for_read: False for copies and writes, where every failed condition
            is reported as PreconditionFailed.

    Raises:
        NoSuchKey: If-Match was given but the object does not exist.
        PreconditionFailed: A precondition did not hold.
        NotModified: A read precondition reports the cached copy is current.
    """
    if conditions is None or conditions.empty:
        return

    if metadata is None or metadata.delete_marker:
        if conditions.if_match:
            raise NoSuchKey()
        return

    not_modified: type[Exception] = NotModified if for_read else PreconditionFailed
    etag = strip_etag_quotes(metadata.etag)
    mtime = metadata.last_modified_datetime.replace(microsecond=0)

    if conditions.if_match:
        if WILDCARD not in conditions.if_match and etag not in conditions.if_match:
            logger.debug("Object %s does not match etag %s", metadata.key, etag)
            raise PreconditionFailed()
    elif conditions.if_unmodified_since is not None:
        if mtime > conditions.if_unmodified_since.astimezone(timezone.utc):
            logger.debug(
                "Object %s modified since %s", metadata.key, conditions.if_unmodified_since
            )
            raise PreconditionFailed()

    if conditions.if_none_match:
        if WILDCARD in conditions.if_none_match or etag in conditions.if_none_match:
            logger.debug("Object %s has an ETag matching If-None-Match", metadata.key)
            raise not_modified()
    elif conditions.if_modified_since is not None:
        if mtime <= conditions.if_modified_since.astimezone(timezone.utc):
            logger.debug(
                "Object %s not modified since %s", metadata.key, conditions.if_modified_since
            )
            raise not_modified()
