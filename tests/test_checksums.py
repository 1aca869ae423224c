"""Tests for checksum and ETag helpers."""

import base64
import hashlib

import pytest

from localbucket.checksums import (
    ChecksumAlgorithm,
    ChecksumType,
    checksum_bytes,
    checksum_file,
    checksum_from_headers,
    composite_checksum,
    default_checksum_type,
    md5_file,
    multipart_etag,
    parse_algorithm,
    verify_checksum,
    verify_content_md5,
)
from localbucket.errors import BadChecksum, BadDigest, InvalidRequest


class TestParseAlgorithm:
    """Tests for parse_algorithm()."""

    def test_case_insensitive(self):
        """Algorithm names are matched case-insensitively."""
        assert parse_algorithm("crc32c") is ChecksumAlgorithm.CRC32C

    def test_none(self):
        """Absent values parse to None."""
        assert parse_algorithm(None) is None
        assert parse_algorithm("") is None

    def test_unsupported(self):
        """Unknown algorithms are rejected."""
        with pytest.raises(InvalidRequest):
            parse_algorithm("MD4")

    def test_header_name(self):
        """Each algorithm knows its header."""
        assert ChecksumAlgorithm.SHA256.header == "x-amz-checksum-sha256"


class TestDefaultChecksumType:
    """Tests for default_checksum_type()."""

    def test_crc64nvme_full_object(self):
        """CRC64NVME only supports full-object checksums."""
        assert default_checksum_type(ChecksumAlgorithm.CRC64NVME) is ChecksumType.FULL_OBJECT

    def test_others_composite(self):
        """Other algorithms default to composite checksums."""
        assert default_checksum_type(ChecksumAlgorithm.SHA1) is ChecksumType.COMPOSITE

    def test_none(self):
        """No algorithm, no type."""
        assert default_checksum_type(None) is None


class TestChecksumValues:
    """Tests for computed checksum values."""

    def test_crc32_known_value(self):
        """CRC32 of 'hello world' is 0x0d4a1185."""
        assert checksum_bytes(b"hello world", ChecksumAlgorithm.CRC32) == "DUoRhQ=="

    def test_sha256_matches_hashlib(self):
        """SHA256 values are base64 encoded digests."""
        expected = base64.b64encode(hashlib.sha256(b"payload").digest()).decode()
        assert checksum_bytes(b"payload", ChecksumAlgorithm.SHA256) == expected

    @pytest.mark.parametrize("algorithm", list(ChecksumAlgorithm))
    def test_file_matches_bytes(self, tmp_path, algorithm):
        """Streaming a file gives the same checksum as the in-memory helper."""
        data = b"x" * 200_000
        path = tmp_path / "data"
        path.write_bytes(data)
        assert checksum_file(path, algorithm) == checksum_bytes(data, algorithm)

    def test_md5_file(self, tmp_path):
        """md5_file returns the hex MD5."""
        path = tmp_path / "data"
        path.write_bytes(b"hello")
        assert md5_file(path) == hashlib.md5(b"hello").hexdigest()


class TestMultipartEtag:
    """Tests for multipart_etag()."""

    def test_md5_of_binary_digests(self):
        """The ETag is the MD5 of the concatenated binary part MD5s plus the part count."""
        e1 = hashlib.md5(b"aa").hexdigest()
        e2 = hashlib.md5(b"bb").hexdigest()
        expected = hashlib.md5(bytes.fromhex(e1) + bytes.fromhex(e2)).hexdigest() + "-2"
        assert multipart_etag([e1, e2]) == expected

    def test_quoted_etags(self):
        """Quoted part ETags are accepted."""
        e1 = hashlib.md5(b"aa").hexdigest()
        assert multipart_etag([f'"{e1}"']) == multipart_etag([e1])

    def test_not_md5_of_content(self):
        """The multipart ETag differs from the MD5 of the assembled content."""
        e1 = hashlib.md5(b"aa").hexdigest()
        e2 = hashlib.md5(b"bb").hexdigest()
        assert not multipart_etag([e1, e2]).startswith(hashlib.md5(b"aabb").hexdigest())


class TestCompositeChecksum:
    """Tests for composite_checksum()."""

    def test_checksum_of_checksums(self):
        """The composite value checksums the raw part digests and appends the count."""
        parts = [
            checksum_bytes(b"aa", ChecksumAlgorithm.SHA256),
            checksum_bytes(b"bb", ChecksumAlgorithm.SHA256),
        ]
        raw = base64.b64decode(parts[0]) + base64.b64decode(parts[1])
        expected = checksum_bytes(raw, ChecksumAlgorithm.SHA256) + "-2"
        assert composite_checksum(parts, ChecksumAlgorithm.SHA256) == expected


class TestVerification:
    """Tests for the verify helpers."""

    def test_verify_checksum_mismatch(self):
        """A differing value raises BadChecksum."""
        with pytest.raises(BadChecksum):
            verify_checksum("AAAA", "BBBB", ChecksumAlgorithm.CRC32)

    def test_verify_checksum_match(self):
        """Equal values pass."""
        verify_checksum("AAAA", "AAAA", ChecksumAlgorithm.CRC32)

    def test_content_md5_match(self):
        """A correct base64 Content-MD5 passes."""
        digest = hashlib.md5(b"hello")
        verify_content_md5(base64.b64encode(digest.digest()).decode(), digest.hexdigest())

    def test_content_md5_mismatch(self):
        """A wrong Content-MD5 raises BadDigest."""
        wrong = base64.b64encode(hashlib.md5(b"other").digest()).decode()
        with pytest.raises(BadDigest):
            verify_content_md5(wrong, hashlib.md5(b"hello").hexdigest())

    def test_content_md5_malformed(self):
        """A Content-MD5 that is not base64 raises BadDigest."""
        with pytest.raises(BadDigest):
            verify_content_md5("not base64!", hashlib.md5(b"hello").hexdigest())


class TestChecksumFromHeaders:
    """Tests for checksum_from_headers()."""

    def test_finds_any_algorithm(self):
        """Without an algorithm, the first checksum header found is returned."""
        headers = {"X-Amz-Checksum-Sha1": "abc="}
        assert checksum_from_headers(headers) == (ChecksumAlgorithm.SHA1, "abc=")

    def test_restricted_to_algorithm(self):
        """With an algorithm, other checksum headers are ignored."""
        headers = {"x-amz-checksum-sha1": "abc="}
        assert checksum_from_headers(headers, ChecksumAlgorithm.CRC32) == (None, None)
