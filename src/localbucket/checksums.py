"""Checksum and ETag helpers.

Flexible checksums (CRC32, CRC32C, CRC64NVME, SHA1, SHA256) are exchanged
base64 encoded. CRC32C and CRC64NVME come from botocore's CRT-backed
implementations, so ``botocore[crt]`` must be installed.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
from enum import Enum
from pathlib import Path
from typing import Protocol

from botocore.httpchecksum import (
    Crc32Checksum,
    CrtCrc32cChecksum,
    CrtCrc64NvmeChecksum,
    Sha1Checksum,
    Sha256Checksum,
)

from localbucket.errors import BadChecksum, BadDigest, InvalidRequest

_CHUNK_SIZE = 64 * 1024

CHECKSUM_HEADER_PREFIX = "x-amz-checksum-"


class ChecksumAlgorithm(str, Enum):
    CRC32 = "CRC32"
    CRC32C = "CRC32C"
    CRC64NVME = "CRC64NVME"
    SHA1 = "SHA1"
    SHA256 = "SHA256"

    @property
    def header(self) -> str:
        """The request/trailer header carrying this checksum."""
        return f"{CHECKSUM_HEADER_PREFIX}{self.value.lower()}"


class ChecksumType(str, Enum):
    COMPOSITE = "COMPOSITE"
    FULL_OBJECT = "FULL_OBJECT"


class ChecksumHash(Protocol):
    """Common surface of hashlib objects and botocore checksum classes."""

    def update(self, chunk: bytes) -> None: ...

    def digest(self) -> bytes: ...


def parse_algorithm(value: str | ChecksumAlgorithm | None) -> ChecksumAlgorithm | None:
    """Parse a checksum algorithm name, case-insensitively.

    Raises:
        InvalidRequest: If the name is not a supported algorithm.
    """
    if value is None or value == "":
        return None
    if isinstance(value, ChecksumAlgorithm):
        return value
    try:
        return ChecksumAlgorithm(value.upper())
    except ValueError:
        raise InvalidRequest(
            "Checksum algorithm provided is unsupported. Please try again with any of the "
            "valid types: [CRC32, CRC32C, CRC64NVME, SHA1, SHA256]"
        )


def default_checksum_type(algorithm: ChecksumAlgorithm | None) -> ChecksumType | None:
    """CRC64NVME only supports full-object checksums; the rest default to composite."""
    if algorithm is None:
        return None
    if algorithm is ChecksumAlgorithm.CRC64NVME:
        return ChecksumType.FULL_OBJECT
    return ChecksumType.COMPOSITE


def get_checksum(algorithm: ChecksumAlgorithm) -> ChecksumHash:
    """Return a fresh rolling checksum for ``algorithm``."""
    match algorithm:
        case ChecksumAlgorithm.CRC32:
            return Crc32Checksum()
        case ChecksumAlgorithm.CRC32C:
            return CrtCrc32cChecksum()
        case ChecksumAlgorithm.CRC64NVME:
            return CrtCrc64NvmeChecksum()
        case ChecksumAlgorithm.SHA1:
            return Sha1Checksum()
        case ChecksumAlgorithm.SHA256:
            return Sha256Checksum()
    raise InvalidRequest(f"Unsupported checksum algorithm: {algorithm}")


def encode_digest(checksum: ChecksumHash) -> str:
    return base64.b64encode(checksum.digest()).decode()


def checksum_bytes(data: bytes, algorithm: ChecksumAlgorithm) -> str:
    """Base64 checksum of an in-memory payload."""
    checksum = get_checksum(algorithm)
    checksum.update(data)
    return encode_digest(checksum)


def checksum_file(path: Path, algorithm: ChecksumAlgorithm) -> str:
    """Base64 checksum of a file, read in 64 KB chunks."""
    checksum = get_checksum(algorithm)
    with open(path, "rb") as f:
        while chunk := f.read(_CHUNK_SIZE):
            checksum.update(chunk)
    return encode_digest(checksum)


def md5_file(path: Path) -> str:
    """Hex MD5 of a file."""
    md5 = hashlib.md5()
    with open(path, "rb") as f:
        while chunk := f.read(_CHUNK_SIZE):
            md5.update(chunk)
    return md5.hexdigest()


def composite_checksum(part_checksums: list[str], algorithm: ChecksumAlgorithm) -> str:
    """Checksum-of-checksums for a composite multipart upload.

    The raw digests of every part are concatenated and checksummed again,
    followed by ``-`` and the part count.

    Args:
        part_checksums: Base64 checksums of each part, in part order.
        algorithm: The upload's checksum algorithm.

    Returns:
        A string like ``"AAAAAA==-3"``.
    """
    combined = get_checksum(algorithm)
    for value in part_checksums:
        combined.update(base64.b64decode(value))
    return f"{encode_digest(combined)}-{len(part_checksums)}"


def multipart_etag(part_etags: list[str]) -> str:
    """Compute the S3 multipart ETag from individual part ETags.

    The binary MD5 digests of each part are concatenated, the MD5 of the
    concatenation is taken, and a dash plus the part count is appended.
    This is not the MD5 of the assembled content.

    Args:
        part_etags: Hex ETag strings of each part, quoted or not.

    Returns:
        An unquoted ETag string, e.g. ``"abc123...-3"``.
    """
    binary_md5s = b""
    for etag in part_etags:
        binary_md5s += binascii.unhexlify(etag.strip('"'))
    final_md5 = hashlib.md5(binary_md5s).hexdigest()
    return f"{final_md5}-{len(part_etags)}"


def verify_checksum(expected: str, actual: str | None, algorithm: ChecksumAlgorithm) -> None:
    """Raise BadChecksum unless the client value matches the computed one."""
    if actual is None or expected != actual:
        raise BadChecksum(algorithm.value)


def verify_content_md5(content_md5: str, md5_hex: str) -> None:
    """Compare a base64 Content-MD5 header with a hex digest.

    Raises:
        BadDigest: If the header is malformed or does not match.
    """
    try:
        expected = base64.b64decode(content_md5, validate=True).hex()
    except (binascii.Error, ValueError):
        raise BadDigest()
    if expected != md5_hex:
        raise BadDigest()


def checksum_from_headers(
    headers: dict[str, str], algorithm: ChecksumAlgorithm | None = None
) -> tuple[ChecksumAlgorithm | None, str | None]:
    """Find a ``x-amz-checksum-<algo>`` entry in request headers or trailers.

    Args:
        headers: Header mapping; names are matched case-insensitively.
        algorithm: Restrict the lookup to this algorithm when given.

    Returns:
        ``(algorithm, value)`` or ``(None, None)`` when absent.
    """
    lowered = {name.lower(): value for name, value in headers.items()}
    candidates = [algorithm] if algorithm is not None else list(ChecksumAlgorithm)
    for candidate in candidates:
        value = lowered.get(candidate.header)
        if value:
            return candidate, value.strip()
    return None, None
