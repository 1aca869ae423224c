"""S3 input validation helpers for localbucket.

These functions enforce S3 naming and parameter rules independently of the
services that call them, so they can be unit-tested in isolation.

Each function raises an appropriate ``S3Error`` subclass on invalid input.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from localbucket.errors import (
    InvalidArgument,
    InvalidBucketName,
    InvalidPartNumber,
    InvalidRequest,
    InvalidTag,
    KeyTooLongError,
)

if TYPE_CHECKING:
    from localbucket.store.models import Retention, Tag

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# S3 bucket naming rules:
#   - 3-63 characters
#   - lowercase letters, digits, hyphens, and periods
#   - must start and end with a letter or digit
#   - must not be formatted as an IP address
#   - no consecutive periods ("..") allowed

_BUCKET_RE = re.compile(r"^[a-z0-9][a-z0-9.\-]{1,61}[a-z0-9]$")
_IP_RE = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")

_MAX_KEY_BYTES = 1024
_MAX_MAX_KEYS = 1000

MIN_PART_NUMBER = 1
MAX_PART_NUMBER = 10000

_TAG_ALLOWED_CHARS = re.compile(r"[\w+ \-=.:/@]*")
_MAX_TAGS = 50
_MAX_TAG_KEY_LENGTH = 128
_MAX_TAG_VALUE_LENGTH = 256
_DISALLOWED_TAG_KEY_PREFIX = "aws:"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_bucket_name(name: str) -> None:
    """Validate an S3 bucket name against AWS naming rules.

    Args:
        name: The candidate bucket name.

    Raises:
        InvalidBucketName: If the name violates any S3 bucket naming rule.
    """
    if len(name) < 3 or len(name) > 63:
        raise InvalidBucketName(name)

    if not _BUCKET_RE.match(name):
        raise InvalidBucketName(name)

    if _IP_RE.match(name):
        raise InvalidBucketName(name)

    if ".." in name:
        raise InvalidBucketName(name)


def validate_object_key(key: str) -> None:
    """Validate an S3 object key.

    Args:
        key: The object key string.

    Raises:
        InvalidArgument: If the key is empty.
        KeyTooLongError: If the key exceeds 1024 bytes when UTF-8 encoded.
    """
    if not key:
        raise InvalidArgument("Object key must not be empty")
    if len(key.encode("utf-8")) > _MAX_KEY_BYTES:
        raise KeyTooLongError()


def validate_max_keys(value: int | str | None, default: int = _MAX_MAX_KEYS) -> int:
    """Validate and normalise a ``max-keys`` style page size.

    Negative values are rejected; values above 1000 are clamped to 1000.

    Args:
        value: The requested page size, or None for the default.
        default: Value used when ``value`` is None.

    Returns:
        An integer in the range [0, 1000].

    Raises:
        InvalidArgument: If the value is not an integer or is negative.
    """
    if value is None:
        return default
    try:
        n = int(value)
    except (ValueError, TypeError):
        raise InvalidArgument("maxKeys should be non-negative")

    if n < 0:
        raise InvalidArgument("maxKeys should be non-negative")

    return min(n, _MAX_MAX_KEYS)


def validate_encoding_type(encoding_type: str | None) -> str | None:
    """Only ``url`` (or no encoding) is accepted.

    Raises:
        InvalidArgument: On any other value.
    """
    if encoding_type is None or encoding_type == "":
        return None
    if encoding_type != "url":
        raise InvalidArgument("encodingtype can only be none or 'url'")
    return encoding_type


def validate_part_number(part_number: int | str) -> int:
    """Parse and range-check a multipart part number.

    Args:
        part_number: The part number, possibly still a string.

    Returns:
        The part number as an int.

    Raises:
        InvalidPartNumber: If it is not an integer within 1..10000.
    """
    try:
        number = int(part_number)
    except (ValueError, TypeError):
        raise InvalidPartNumber()
    if not MIN_PART_NUMBER <= number <= MAX_PART_NUMBER:
        raise InvalidPartNumber()
    return number


def validate_tags(tags: Iterable[Tag]) -> None:
    """Check a tag set against the S3 tag restrictions.

    Raises:
        InvalidTag: On too many tags, duplicate keys, ``aws:`` keys, or
            keys/values with bad length or characters.
    """
    tags = list(tags)
    if len(tags) > _MAX_TAGS:
        raise InvalidTag()

    seen: set[str] = set()
    for tag in tags:
        if tag.key in seen:
            raise InvalidTag()
        seen.add(tag.key)

        if tag.key.startswith(_DISALLOWED_TAG_KEY_PREFIX):
            raise InvalidTag()
        if not 1 <= len(tag.key) <= _MAX_TAG_KEY_LENGTH:
            raise InvalidTag()
        if len(tag.value) > _MAX_TAG_VALUE_LENGTH:
            raise InvalidTag()
        if not _TAG_ALLOWED_CHARS.fullmatch(tag.key) or not _TAG_ALLOWED_CHARS.fullmatch(tag.value):
            raise InvalidTag()


def validate_retention(retention: Retention) -> None:
    """The retain-until date must lie in the future.

    Raises:
        InvalidRequest: If the date is in the past.
    """
    until = retention.retain_until_date
    if until.tzinfo is None:
        until = until.replace(tzinfo=timezone.utc)
    if until <= datetime.now(timezone.utc):
        raise InvalidRequest("The retain until date must be in the future!")
