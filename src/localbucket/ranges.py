"""Byte range parsing for ranged reads and part copies."""

from __future__ import annotations

import re
from typing import NamedTuple

from localbucket.errors import InvalidRange

_RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$")


class ByteRange(NamedTuple):
    """An inclusive byte range ``[start, end]`` within an object."""

    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def content_range(self, total: int) -> str:
        """Value for a ``Content-Range`` response header."""
        return f"bytes {self.start}-{self.end}/{total}"


def parse_range_header(header: str | None, total: int) -> ByteRange | None:
    """Parse an HTTP Range header into inclusive byte offsets.

    Supports three forms:
        - bytes=start-end  (both specified)
        - bytes=start-     (from start to end of object)
        - bytes=-suffix    (last N bytes)

    Args:
        header: The Range header value, e.g. "bytes=0-4".
        total: The total size of the object in bytes.

    Returns:
        A ByteRange, or None if the header is absent or cannot be parsed
        (the whole object is served in that case).

    Raises:
        InvalidRange: If the parsed range is not satisfiable.
    """
    if not header or not header.startswith("bytes="):
        return None

    # only a single range is supported
    if "," in header:
        return None

    m = _RANGE_RE.match(header)
    if not m:
        return None

    start_str, end_str = m.group(1), m.group(2)

    if not start_str and not end_str:
        raise InvalidRange()

    if not start_str:
        suffix_length = int(end_str)
        if suffix_length == 0 or total == 0:
            raise InvalidRange()
        suffix_length = min(suffix_length, total)
        return ByteRange(total - suffix_length, total - 1)

    start = int(start_str)
    if start >= total:
        raise InvalidRange()

    if not end_str:
        return ByteRange(start, total - 1)

    end = int(end_str)
    if start > end:
        raise InvalidRange()
    return ByteRange(start, min(end, total - 1))


def parse_copy_source_range(header: str | None, total: int) -> ByteRange | None:
    """Parse ``x-amz-copy-source-range`` (``bytes=first-last``, both required).

    The end offset is clamped to the source length.

    Raises:
        InvalidRange: If the header is malformed or starts beyond the source.
    """
    if not header:
        return None
    m = _RANGE_RE.match(header)
    if not m or not m.group(1) or not m.group(2):
        raise InvalidRange(
            "The x-amz-copy-source-range value must be of the form bytes=first-last."
        )
    start, end = int(m.group(1)), int(m.group(2))
    if start > end or start >= total:
        raise InvalidRange()
    return ByteRange(start, min(end, total - 1))
