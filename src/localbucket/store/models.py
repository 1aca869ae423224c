"""Data model types for the localbucket store.

Records persisted as JSON on disk (bucket metadata, object versions, version
chains, multipart upload records) are Pydantic models. Result containers
returned by list and batch operations are plain dataclasses.
"""

from __future__ import annotations

import enum
import hashlib
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from localbucket.checksums import ChecksumAlgorithm, ChecksumType

# Version id reported for objects written while versioning was off.
NULL_VERSION = "null"

STANDARD_STORAGE_CLASS = "STANDARD"


def now_iso() -> str:
    """Current UTC time as ``yyyy-MM-ddTHH:mm:ss.SSSZ``."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def now_millis() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------


class Owner(BaseModel):
    """Canonical user owning buckets, objects and uploads."""

    id: str
    display_name: str = ""


DEFAULT_OWNER = Owner(
    id=hashlib.sha256(b"localbucket").hexdigest(),
    display_name="localbucket",
)


class Tag(BaseModel):
    key: str
    value: str = ""


class Retention(BaseModel):
    """Object lock retention. ``mode`` is GOVERNANCE or COMPLIANCE."""

    mode: str
    retain_until_date: datetime


class LegalHold(BaseModel):
    status: str = "OFF"

    @property
    def active(self) -> bool:
        return self.status == "ON"


class DefaultRetention(BaseModel):
    mode: str
    days: int | None = None
    years: int | None = None


class ObjectLockConfiguration(BaseModel):
    object_lock_enabled: str = "Enabled"
    default_retention: DefaultRetention | None = None


class VersioningConfiguration(BaseModel):
    """Bucket versioning state. ``status`` is Enabled, Suspended or None (never set)."""

    status: str | None = None
    mfa_delete: str | None = None


class LifecycleRule(BaseModel):
    id: str = ""
    prefix: str = ""
    status: str = "Enabled"
    expiration_days: int | None = None
    abort_incomplete_multipart_upload_days: int | None = None


class LifecycleConfiguration(BaseModel):
    rules: list[LifecycleRule] = Field(default_factory=list)


class BucketMetadata(BaseModel):
    """Metadata for a bucket, persisted as ``bucketMetadata.json``.

    Attributes:
        name: The bucket name.
        creation_date: ISO 8601 creation timestamp.
        region: The region the bucket was created in.
        owner: The bucket owner.
        object_lock_enabled: Whether object lock was enabled at creation.
        versioning_configuration: Versioning state, if ever configured.
        object_lock_configuration: Default retention settings.
        lifecycle_configuration: Stored lifecycle rules.
        objects: The key to identifier index.
    """

    name: str
    creation_date: str = Field(default_factory=now_iso)
    region: str = "us-east-1"
    owner: Owner = Field(default_factory=lambda: DEFAULT_OWNER.model_copy())
    object_lock_enabled: bool = False
    versioning_configuration: VersioningConfiguration | None = None
    object_lock_configuration: ObjectLockConfiguration | None = None
    lifecycle_configuration: LifecycleConfiguration | None = None
    objects: dict[str, str] = Field(default_factory=dict)

    @property
    def versioning_enabled(self) -> bool:
        return (
            self.versioning_configuration is not None
            and self.versioning_configuration.status == "Enabled"
        )

    def get_id(self, key: str) -> str | None:
        return self.objects.get(key)


class ObjectMetadata(BaseModel):
    """One stored version of an object.

    Attributes:
        id: The identifier grouping all versions of the key.
        key: The object key.
        size: Content length in bytes (0 for delete markers).
        modification_date: ISO 8601 last-modified timestamp.
        last_modified: Last-modified time in epoch milliseconds.
        etag: Unquoted content hash, or a multipart ETag.
        content_type: MIME type.
        user_metadata: ``x-amz-meta-*`` values without the prefix.
        store_headers: Content-Encoding, Content-Disposition and similar
            headers echoed back on reads.
        encryption_headers: Server-side encryption headers.
        tags: Object tag set.
        storage_class: Storage class, None meaning STANDARD.
        checksum_algorithm: Algorithm of ``checksum``, if any.
        checksum: Base64 checksum value.
        checksum_type: COMPOSITE or FULL_OBJECT.
        retention: Object lock retention.
        legal_hold: Object lock legal hold.
        owner: The object owner.
        version_id: Version id, None when written without versioning.
        delete_marker: Whether this version is a delete marker.
    """

    id: str
    key: str
    size: int = 0
    modification_date: str = Field(default_factory=now_iso)
    last_modified: int = Field(default_factory=now_millis)
    etag: str = ""
    content_type: str | None = None
    user_metadata: dict[str, str] = Field(default_factory=dict)
    store_headers: dict[str, str] = Field(default_factory=dict)
    encryption_headers: dict[str, str] = Field(default_factory=dict)
    tags: list[Tag] = Field(default_factory=list)
    storage_class: str | None = None
    checksum_algorithm: ChecksumAlgorithm | None = None
    checksum: str | None = None
    checksum_type: ChecksumType | None = None
    retention: Retention | None = None
    legal_hold: LegalHold | None = None
    owner: Owner = Field(default_factory=lambda: DEFAULT_OWNER.model_copy())
    version_id: str | None = None
    delete_marker: bool = False

    @property
    def last_modified_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.last_modified / 1000, tz=timezone.utc)

    @property
    def effective_version_id(self) -> str:
        return self.version_id or NULL_VERSION

    @property
    def effective_storage_class(self) -> str:
        return self.storage_class or STANDARD_STORAGE_CLASS


class ObjectVersions(BaseModel):
    """Ordered version chain for one identifier, persisted as ``versions.json``."""

    id: str
    versions: list[str] = Field(default_factory=list)

    @property
    def latest_version(self) -> str | None:
        return self.versions[-1] if self.versions else None

    def create_version(self) -> str:
        version_id = new_id()
        self.versions.append(version_id)
        return version_id

    def delete_version(self, version_id: str) -> None:
        if version_id in self.versions:
            self.versions.remove(version_id)


class UploadState(str, enum.Enum):
    INITIATED = "INITIATED"
    COMPLETED = "COMPLETED"
    ABORTED = "ABORTED"


class MultipartUploadRecord(BaseModel):
    """A multipart upload, persisted as ``multipartMetadata.json``.

    The record outlives completion and abort with its ``state`` set, so a
    late request for the upload is told it is no longer active.

    Attributes:
        upload_id: The upload identifier.
        bucket: The bucket name.
        key: The target key.
        id: Identifier reserved for the key at initiation.
        initiated: ISO 8601 initiation timestamp.
        state: Whether the upload is live, completed or aborted.
    """

    upload_id: str
    bucket: str
    key: str
    id: str
    content_type: str | None = None
    store_headers: dict[str, str] = Field(default_factory=dict)
    user_metadata: dict[str, str] = Field(default_factory=dict)
    encryption_headers: dict[str, str] = Field(default_factory=dict)
    tags: list[Tag] = Field(default_factory=list)
    owner: Owner = Field(default_factory=lambda: DEFAULT_OWNER.model_copy())
    initiator: Owner = Field(default_factory=lambda: DEFAULT_OWNER.model_copy())
    storage_class: str | None = None
    initiated: str = Field(default_factory=now_iso)
    checksum_algorithm: ChecksumAlgorithm | None = None
    checksum_type: ChecksumType | None = None
    state: UploadState = UploadState.INITIATED


# ---------------------------------------------------------------------------
# Operation inputs and results
# ---------------------------------------------------------------------------


@dataclass
class Part:
    """A staged part of a multipart upload.

    Attributes:
        part_number: The part number (1-10000).
        etag: Hex MD5 of the part bytes.
        size: Size in bytes.
        last_modified: ISO 8601 timestamp of the part file.
        checksum: Base64 checksum when the upload declares an algorithm.
    """

    part_number: int
    etag: str
    size: int
    last_modified: str = ""
    checksum: str | None = None


@dataclass
class CompletedPart:
    """A ``(part number, etag)`` pair listed in a completion request."""

    part_number: int
    etag: str
    checksum: str | None = None


@dataclass
class ObjectSummary:
    """A leaf entry of an object listing."""

    key: str
    etag: str
    size: int
    last_modified: str
    storage_class: str = STANDARD_STORAGE_CLASS
    owner: Owner | None = None
    checksum_algorithm: ChecksumAlgorithm | None = None
    checksum_type: ChecksumType | None = None

    @classmethod
    def from_metadata(cls, metadata: ObjectMetadata, fetch_owner: bool = True) -> "ObjectSummary":
        return cls(
            key=metadata.key,
            etag=metadata.etag,
            size=metadata.size,
            last_modified=metadata.modification_date,
            storage_class=metadata.effective_storage_class,
            owner=metadata.owner if fetch_owner else None,
            checksum_algorithm=metadata.checksum_algorithm,
            checksum_type=metadata.checksum_type,
        )


@dataclass
class ObjectVersionEntry:
    """One row of a version listing; delete markers have no etag or size."""

    key: str
    version_id: str
    is_latest: bool
    last_modified: str
    owner: Owner | None = None
    etag: str | None = None
    size: int = 0
    storage_class: str = STANDARD_STORAGE_CLASS
    checksum_algorithm: ChecksumAlgorithm | None = None
    delete_marker: bool = False


@dataclass
class ListBucketResult:
    """Result container for ListObjects (v1, marker based)."""

    name: str
    prefix: str | None = None
    marker: str | None = None
    delimiter: str | None = None
    max_keys: int = 1000
    encoding_type: str | None = None
    is_truncated: bool = False
    next_marker: str | None = None
    contents: list[ObjectSummary] = field(default_factory=list)
    common_prefixes: list[str] = field(default_factory=list)


@dataclass
class ListBucketResultV2:
    """Result container for ListObjectsV2 (continuation token based)."""

    name: str
    prefix: str | None = None
    delimiter: str | None = None
    max_keys: int = 1000
    encoding_type: str | None = None
    continuation_token: str | None = None
    next_continuation_token: str | None = None
    start_after: str | None = None
    is_truncated: bool = False
    contents: list[ObjectSummary] = field(default_factory=list)
    common_prefixes: list[str] = field(default_factory=list)

    @property
    def key_count(self) -> int:
        return len(self.contents) + len(self.common_prefixes)


@dataclass
class ListVersionsResult:
    """Result container for ListObjectVersions."""

    name: str
    prefix: str | None = None
    delimiter: str | None = None
    key_marker: str | None = None
    version_id_marker: str | None = None
    max_keys: int = 1000
    encoding_type: str | None = None
    is_truncated: bool = False
    next_key_marker: str | None = None
    next_version_id_marker: str | None = None
    versions: list[ObjectVersionEntry] = field(default_factory=list)
    delete_markers: list[ObjectVersionEntry] = field(default_factory=list)
    common_prefixes: list[str] = field(default_factory=list)


@dataclass
class ListUploadsResult:
    """Result container for ListMultipartUploads."""

    bucket: str
    prefix: str | None = None
    delimiter: str | None = None
    key_marker: str | None = None
    upload_id_marker: str | None = None
    max_uploads: int = 1000
    encoding_type: str | None = None
    is_truncated: bool = False
    next_key_marker: str | None = None
    next_upload_id_marker: str | None = None
    uploads: list[MultipartUploadRecord] = field(default_factory=list)
    common_prefixes: list[str] = field(default_factory=list)


@dataclass
class ListPartsResult:
    """Result container for ListParts."""

    bucket: str
    key: str
    upload_id: str
    max_parts: int = 1000
    part_number_marker: int | None = None
    next_part_number_marker: int | None = None
    is_truncated: bool = False
    parts: list[Part] = field(default_factory=list)
    owner: Owner | None = None
    initiator: Owner | None = None
    storage_class: str = STANDARD_STORAGE_CLASS
    checksum_algorithm: ChecksumAlgorithm | None = None
    checksum_type: ChecksumType | None = None


@dataclass
class BucketSummary:
    name: str
    creation_date: str
    region: str


@dataclass
class ListBucketsResult:
    """Result container for ListBuckets."""

    buckets: list[BucketSummary] = field(default_factory=list)
    owner: Owner | None = None
    prefix: str | None = None
    continuation_token: str | None = None


@dataclass
class ObjectIdentifier:
    """A key and optional version id addressed by a batch delete."""

    key: str
    version_id: str | None = None


@dataclass
class DeletedObject:
    key: str
    version_id: str | None = None
    delete_marker: bool = False
    delete_marker_version_id: str | None = None


@dataclass
class DeleteError:
    key: str
    code: str
    message: str
    version_id: str | None = None


@dataclass
class DeleteResult:
    """Result container for DeleteObjects."""

    deleted: list[DeletedObject] = field(default_factory=list)
    errors: list[DeleteError] = field(default_factory=list)


@dataclass
class GetObjectResult:
    """Metadata plus a lazily read body for GetObject.

    ``content_range`` is set when a byte range was served.
    """

    metadata: ObjectMetadata
    body: AsyncIterator[bytes]
    content_range: tuple[int, int] | None = None

    @property
    def content_length(self) -> int:
        if self.content_range is None:
            return self.metadata.size
        start, end = self.content_range
        return end - start + 1
