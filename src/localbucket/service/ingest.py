"""Spooling of upload bodies into the store's staging area.

Bodies are drained into ``{root}/.staging/{uuid}.tmp.body`` while MD5 and
the requested flexible checksum are computed, then verified against the
values the client sent. The ``.tmp.`` marker lets the startup sweep remove
spool files orphaned by a crash.
"""

from __future__ import annotations

import io
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import IO

from localbucket import metrics
from localbucket.checksums import (
    ChecksumAlgorithm,
    checksum_file,
    encode_digest,
    get_checksum,
    parse_algorithm,
    verify_checksum,
    verify_content_md5,
)
from localbucket.codec import AwsChunkedDecoder
from localbucket.errors import IncompleteBody
from localbucket.store.files import io_errors, spool_stream

logger = logging.getLogger(__name__)

STAGING_DIR = ".staging"


@dataclass
class IngestedBody:
    """A request body spooled to disk.

    Attributes:
        path: The spool file.
        size: Decoded size in bytes.
        md5: Hex MD5 of the decoded bytes.
        checksum_algorithm: Algorithm of ``checksum``, if one was requested.
        checksum: Base64 checksum computed over the decoded bytes.
    """

    path: Path
    size: int
    md5: str
    checksum_algorithm: ChecksumAlgorithm | None = None
    checksum: str | None = None

    def discard(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError:
            logger.warning("Could not remove spool file %s", self.path, exc_info=True)


def ingest_body(
    body: IO[bytes] | bytes,
    staging: Path,
    aws_chunked: bool = False,
    checksum_algorithm: ChecksumAlgorithm | str | None = None,
    checksum: str | None = None,
    content_md5: str | None = None,
    decoded_length: int | None = None,
) -> IngestedBody:
    """Drain ``body`` into a new spool file and verify its digests.

    Args:
        body: The request body, raw bytes or a readable binary stream.
        staging: Directory receiving the spool file.
        aws_chunked: Decode the aws-chunked envelope while reading.
        checksum_algorithm: Flexible checksum to compute.
        checksum: Client checksum to verify; for aws-chunked bodies the
            trailer value is used when this is omitted.
        content_md5: Base64 ``Content-MD5`` to verify.
        decoded_length: Expected decoded size (``x-amz-decoded-content-length``).

    Returns:
        The spooled body. The caller owns the file and must ``discard()`` it.

    Raises:
        IncompleteBody: If the body is shorter than announced.
        BadDigest: If ``content_md5`` does not match.
        BadChecksum: If the checksum does not match.
        StorageIOError: If the spool file cannot be written.
    """
    if isinstance(body, (bytes, bytearray)):
        body = io.BytesIO(body)
    algorithm = parse_algorithm(checksum_algorithm)
    path = staging / f"{uuid.uuid4()}.tmp.body"

    rolling = None
    stream: IO[bytes] = body
    if aws_chunked:
        stream = AwsChunkedDecoder(body, algorithm)
    elif algorithm is not None:
        rolling = get_checksum(algorithm)

    try:
        with io_errors("spooling request body"):
            size, md5 = spool_stream(stream, path, rolling)

        computed = None
        if isinstance(stream, AwsChunkedDecoder):
            trailer_algorithm, trailer_value = stream.trailing_checksum()
            if algorithm is None and trailer_algorithm is not None:
                algorithm = trailer_algorithm
                with io_errors("checksumming request body"):
                    computed = checksum_file(path, algorithm)
            elif algorithm is not None:
                computed = stream.checksum
            checksum = checksum or trailer_value
        elif rolling is not None:
            computed = encode_digest(rolling)

        if decoded_length is not None and size != decoded_length:
            raise IncompleteBody()
        if content_md5:
            verify_content_md5(content_md5, md5)
        if algorithm is not None and checksum:
            verify_checksum(computed, checksum, algorithm)
    except Exception:
        path.unlink(missing_ok=True)
        raise

    metrics.count_bytes(metrics.bytes_received_total, size)
    return IngestedBody(path, size, md5, algorithm, computed)
