"""Decoder for the ``aws-chunked`` upload body envelope.

Wire format, repeated until a zero-length chunk::

    <hex-length>[;key=value[;...]]\\r\\n
    <payload of hex-length bytes>\\r\\n

The zero-length chunk may be followed by trailing headers (``name:value``
lines) ended by an empty line, any other line or the end of the stream.
Chunk signatures are parsed over but never verified.
"""

from __future__ import annotations

import io
from typing import IO

from localbucket.checksums import (
    ChecksumAlgorithm,
    checksum_from_headers,
    encode_digest,
    get_checksum,
)
from localbucket.errors import IncompleteBody, InvalidRequest

# Longest accepted chunk header or trailer line (bytes).
_MAX_LINE = 8 * 1024

_CRLF = b"\r\n"


class AwsChunkedDecoder(io.RawIOBase):
    """Pull-based reader returning the decoded payload of an aws-chunked stream.

    Chunk headers are parsed lazily, only once the previous chunk has been
    consumed. When a checksum algorithm is given, every decoded byte is fed
    into a rolling checksum which becomes available once the reader has
    returned end-of-stream. The reader cannot be rewound.

    Attributes:
        checksum_algorithm: Algorithm of the rolling checksum, if any.
    """

    def __init__(
        self, stream: IO[bytes], checksum_algorithm: ChecksumAlgorithm | None = None
    ) -> None:
        """Wrap ``stream``.

        Args:
            stream: The raw, still encoded request body.
            checksum_algorithm: Compute this checksum over the decoded bytes.
        """
        super().__init__()
        self._stream = stream
        self._chunk_remaining = 0
        self._finished = False
        self._chunks = 0
        self._decoded_length = 0
        self._trailing_headers: dict[str, str] = {}
        self.checksum_algorithm = checksum_algorithm
        self._rolling = get_checksum(checksum_algorithm) if checksum_algorithm else None
        self._checksum: str | None = None

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    @property
    def chunks(self) -> int:
        """Number of non-empty chunks decoded so far."""
        return self._chunks

    @property
    def decoded_length(self) -> int:
        """Number of payload bytes returned so far."""
        return self._decoded_length

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def trailing_headers(self) -> dict[str, str]:
        """Trailer headers, lower-cased names. Only available once fully read."""
        if not self._finished:
            raise AttributeError(
                "The stream has not been fully read yet, the trailing headers are not available."
            )
        return self._trailing_headers

    @property
    def checksum(self) -> str | None:
        """Base64 rolling checksum of the decoded payload. Only available once fully read."""
        if not self._finished:
            raise AttributeError(
                "The stream has not been fully read yet, the checksum is not available."
            )
        return self._checksum

    def trailing_checksum(self) -> tuple[ChecksumAlgorithm | None, str | None]:
        """The ``x-amz-checksum-<algo>`` trailer, if the client sent one."""
        return checksum_from_headers(self.trailing_headers, self.checksum_algorithm)

    def readinto(self, b) -> int:
        with memoryview(b) as view, view.cast("B") as byte_view:
            data = self.read(len(byte_view))
            byte_view[: len(data)] = data
        return len(data)

    def read(self, size: int = -1) -> bytes:
        """Return at most ``size`` decoded bytes.

        Never reads across a chunk boundary, so fewer bytes than requested
        may be returned while data is left. ``b""`` means end-of-stream.

        Raises:
            IncompleteBody: If the underlying stream ends inside a header or payload.
            InvalidRequest: If a chunk header is malformed.
        """
        if self.closed:
            raise ValueError("I/O operation on closed file.")
        if size is None or size < 0:
            return self.readall()
        if not size or self._finished:
            return b""

        if self._chunk_remaining == 0:
            self._chunk_remaining = self._read_chunk_header()
            if self._chunk_remaining == 0:
                self._finish()
                return b""
            self._chunks += 1

        data = self._stream.read(min(size, self._chunk_remaining))
        if not data:
            raise IncompleteBody("Encoded stream ended before the end-of-stream marker was reached")

        self._chunk_remaining -= len(data)
        self._decoded_length += len(data)
        if self._rolling is not None:
            self._rolling.update(data)

        if self._chunk_remaining == 0:
            self._consume_chunk_terminator()

        return data

    def _read_line(self) -> bytes:
        line = self._stream.readline(_MAX_LINE)
        if not line.endswith(b"\n"):
            if len(line) >= _MAX_LINE:
                raise InvalidRequest("Chunk header line too long")
            raise IncompleteBody("Encoded stream ended inside a chunk header")
        return line.rstrip(_CRLF)

    def _read_chunk_header(self) -> int:
        line = self._read_line()
        size_token = line.split(b";", 1)[0].strip()
        try:
            size = int(size_token, 16)
        except ValueError:
            raise InvalidRequest(f"Invalid chunk size: {size_token[:32]!r}")
        if size < 0:
            raise InvalidRequest(f"Invalid chunk size: {size_token[:32]!r}")
        return size

    def _consume_chunk_terminator(self) -> None:
        terminator = self._stream.read(2)
        if len(terminator) < 2:
            raise IncompleteBody("Encoded stream ended before the chunk terminator")
        if terminator != _CRLF:
            raise InvalidRequest("Chunk payload is longer than its declared size")

    def _finish(self) -> None:
        # trailers are optional and end at the first line that is not ``name:value``
        while line := self._stream.readline(_MAX_LINE):
            name, sep, value = line.strip().partition(b":")
            name = name.strip()
            if not sep or not name:
                break
            try:
                name_text, value_text = name.decode("ascii"), value.strip().decode("ascii")
            except UnicodeDecodeError:
                break
            self._trailing_headers[name_text.lower()] = value_text
        if self._rolling is not None:
            self._checksum = encode_digest(self._rolling)
        self._finished = True
