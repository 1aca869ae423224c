"""Object versions and their content on the local filesystem.

Everything belonging to one identifier lives in ``{root}/{bucket}/{id}/``:

    objectMetadata.json, binaryData           the "null" version
    {version}-objectMetadata.json,
    {version}-binaryData                      versions written with versioning on
    versions.json                             ordered version chain

Paths are always derived from ``(bucket, id, version)``; only the
identifier is stored in the bucket index.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

from localbucket.checksums import ChecksumAlgorithm, ChecksumType
from localbucket.store.bucket_store import BucketStore
from localbucket.store.files import (
    atomic_copy_file,
    io_errors,
    iter_file,
    read_model,
    remove_tree,
    write_model,
)
from localbucket.store.locks import LockTable
from localbucket.store.models import (
    DEFAULT_OWNER,
    NULL_VERSION,
    BucketMetadata,
    LegalHold,
    ObjectMetadata,
    ObjectVersions,
    Owner,
    Retention,
    Tag,
    now_iso,
    now_millis,
)

logger = logging.getLogger(__name__)

META_FILE = "objectMetadata.json"
DATA_FILE = "binaryData"
VERSIONS_FILE = "versions.json"


class ObjectStore:
    """Stores object metadata and content per identifier and version.

    Attributes:
        buckets: The bucket store resolving bucket directories.
    """

    def __init__(self, buckets: BucketStore) -> None:
        self.buckets = buckets
        self._locks = LockTable()

    # -- paths -----------------------------------------------------------------

    def object_dir(self, bucket: BucketMetadata, object_id: str) -> Path:
        return self.buckets.bucket_root(bucket.name) / object_id

    def meta_path(self, bucket: BucketMetadata, object_id: str, version_id: str | None) -> Path:
        if version_id is None or version_id == NULL_VERSION:
            return self.object_dir(bucket, object_id) / META_FILE
        return self.object_dir(bucket, object_id) / f"{version_id}-{META_FILE}"

    def data_path(self, bucket: BucketMetadata, object_id: str, version_id: str | None) -> Path:
        if version_id is None or version_id == NULL_VERSION:
            return self.object_dir(bucket, object_id) / DATA_FILE
        return self.object_dir(bucket, object_id) / f"{version_id}-{DATA_FILE}"

    def versions_path(self, bucket: BucketMetadata, object_id: str) -> Path:
        return self.object_dir(bucket, object_id) / VERSIONS_FILE

    def _lock(self, bucket: BucketMetadata, object_id: str):
        return self._locks.hold(f"{bucket.name}/{object_id}")

    # -- reads -----------------------------------------------------------------

    def _read_meta(
        self, bucket: BucketMetadata, object_id: str, version_id: str | None
    ) -> ObjectMetadata | None:
        return read_model(self.meta_path(bucket, object_id, version_id), ObjectMetadata)

    def _read_versions(self, bucket: BucketMetadata, object_id: str) -> ObjectVersions:
        versions = read_model(self.versions_path(bucket, object_id), ObjectVersions)
        return versions if versions is not None else ObjectVersions(id=object_id)

    def _current(self, bucket: BucketMetadata, object_id: str) -> ObjectMetadata | None:
        """The newest of the null version and the latest chained version."""
        versions = self._read_versions(bucket, object_id)
        latest = (
            self._read_meta(bucket, object_id, versions.latest_version)
            if versions.latest_version
            else None
        )
        null = self._read_meta(bucket, object_id, None)
        if latest is None or null is None:
            return latest or null
        return null if null.last_modified > latest.last_modified else latest

    async def get_object_metadata(
        self, bucket: BucketMetadata, object_id: str, version_id: str | None = None
    ) -> ObjectMetadata | None:
        """Return one version of an object.

        Args:
            bucket: The owning bucket.
            object_id: The key's identifier.
            version_id: A version id, ``"null"``, or None for the current version.

        Returns:
            The version's metadata (possibly a delete marker), or None.
        """
        if version_id is None:
            return self._current(bucket, object_id)
        return self._read_meta(bucket, object_id, version_id)

    async def get_object_versions(
        self, bucket: BucketMetadata, object_id: str
    ) -> list[ObjectMetadata]:
        """All versions of an identifier, newest first, including the null version."""
        versions = self._read_versions(bucket, object_id)
        result = []
        for version_id in reversed(versions.versions):
            meta = self._read_meta(bucket, object_id, version_id)
            if meta is not None:
                result.append(meta)
        null = self._read_meta(bucket, object_id, None)
        if null is not None:
            result.append(null)
            result.sort(key=lambda m: m.last_modified, reverse=True)
        return result

    async def get_content(
        self,
        bucket: BucketMetadata,
        metadata: ObjectMetadata,
        offset: int = 0,
        length: int | None = None,
    ) -> AsyncIterator[bytes]:
        """Stream the content of ``metadata`` in 64 KB chunks."""
        path = self.data_path(bucket, metadata.id, metadata.version_id)
        with io_errors(f"reading {metadata.key}"):
            async for chunk in iter_file(path, offset, length):
                yield chunk

    # -- writes ----------------------------------------------------------------

    def _store(
        self,
        bucket: BucketMetadata,
        object_id: str,
        key: str,
        content_path: Path | None,
        *,
        etag: str | None = None,
        delete_marker: bool = False,
        source_range: tuple[int, int | None] = (0, None),
        **fields: Any,
    ) -> ObjectMetadata:
        if content_path is None and not delete_marker:
            raise ValueError(f"No content given for {key}")
        version_id = None
        versions = None
        if bucket.versioning_enabled:
            versions = self._read_versions(bucket, object_id)
            version_id = versions.create_version()

        data = self.data_path(bucket, object_id, version_id)
        with io_errors(f"storing {key} in {bucket.name}"):
            if delete_marker:
                data.unlink(missing_ok=True)
                size = 0
                etag = etag or ""
            else:
                start, length = source_range
                md5 = atomic_copy_file(content_path, data, start, length)
                size = data.stat().st_size
                etag = etag or md5

            metadata = ObjectMetadata(
                id=object_id,
                key=key,
                size=size,
                etag=etag,
                version_id=version_id,
                delete_marker=delete_marker,
                **fields,
            )
            write_model(self.meta_path(bucket, object_id, version_id), metadata)
            # chain last, so the latest version always has its metadata on disk
            if versions is not None:
                write_model(self.versions_path(bucket, object_id), versions)
        return metadata

    async def store_object_metadata(
        self,
        bucket: BucketMetadata,
        object_id: str,
        key: str,
        content_type: str | None,
        store_headers: dict[str, str] | None,
        content_path: Path,
        user_metadata: dict[str, str] | None,
        encryption_headers: dict[str, str] | None,
        etag: str | None,
        tags: list[Tag] | None,
        checksum_algorithm: ChecksumAlgorithm | None,
        checksum: str | None,
        owner: Owner | None,
        storage_class: str | None,
        checksum_type: ChecksumType | None = None,
        retention: Retention | None = None,
        legal_hold: LegalHold | None = None,
    ) -> ObjectMetadata:
        """Persist one version of an object.

        With versioning enabled a new version is appended to the chain;
        otherwise the null version is overwritten.

        Args:
            bucket: The owning bucket.
            object_id: Identifier of the key.
            key: The object key.
            content_type: MIME type.
            store_headers: Headers echoed back on reads.
            content_path: File holding the content; it is copied, not moved.
            user_metadata: User metadata.
            encryption_headers: Server-side encryption headers.
            etag: ETag to record, or None to use the MD5 of the content.
            tags: Tag set.
            checksum_algorithm: Algorithm of ``checksum``.
            checksum: Base64 checksum value.
            owner: Object owner.
            storage_class: Storage class.
            checksum_type: COMPOSITE or FULL_OBJECT.
            retention: Object lock retention.
            legal_hold: Object lock legal hold.

        Returns:
            The stored version.

        Raises:
            ValueError: If ``content_path`` is None.
            StorageIOError: If the content or metadata cannot be written.
        """
        async with self._lock(bucket, object_id):
            metadata = self._store(
                bucket,
                object_id,
                key,
                content_path,
                etag=etag,
                content_type=content_type,
                store_headers=store_headers or {},
                user_metadata=user_metadata or {},
                encryption_headers=encryption_headers or {},
                tags=tags or [],
                checksum_algorithm=checksum_algorithm,
                checksum=checksum,
                checksum_type=checksum_type,
                owner=owner or DEFAULT_OWNER,
                storage_class=storage_class,
                retention=retention,
                legal_hold=legal_hold,
            )
        logger.debug(
            "Stored %s version %s",
            key,
            metadata.effective_version_id,
            extra={"bucket": bucket.name, "key": key, "version_id": metadata.version_id},
        )
        return metadata

    async def delete_object(
        self, bucket: BucketMetadata, object_id: str, version_id: str | None = None
    ) -> bool:
        """Delete a version or the whole object.

        On a versioning-enabled bucket a delete without version id appends a
        delete marker and a delete with a version id removes that version.
        Otherwise the object directory is removed.

        Returns:
            True if the object no longer has any version, meaning the key
            should be unregistered from the bucket.
        """
        async with self._lock(bucket, object_id):
            existing = await self.get_object_metadata(bucket, object_id, version_id)
            if existing is None:
                return False

            if bucket.versioning_enabled and version_id != NULL_VERSION:
                if version_id is None:
                    marker = self._store(
                        bucket,
                        object_id,
                        existing.key,
                        None,
                        delete_marker=True,
                        owner=existing.owner,
                    )
                    logger.info(
                        "Inserted delete marker %s for %s",
                        marker.version_id,
                        existing.key,
                        extra={"bucket": bucket.name, "key": existing.key},
                    )
                    return False
                return self._delete_version(bucket, object_id, version_id)

            if version_id == NULL_VERSION and self._read_versions(bucket, object_id).versions:
                with io_errors(f"deleting null version of {existing.key}"):
                    self.meta_path(bucket, object_id, None).unlink(missing_ok=True)
                    self.data_path(bucket, object_id, None).unlink(missing_ok=True)
                return False

            with io_errors(f"deleting {existing.key}"):
                remove_tree(self.object_dir(bucket, object_id))
            return True

    async def purge_object(self, bucket: BucketMetadata, object_id: str) -> None:
        """Remove every version of an identifier, delete markers included."""
        async with self._lock(bucket, object_id):
            with io_errors(f"purging {object_id} in {bucket.name}"):
                remove_tree(self.object_dir(bucket, object_id))

    def _delete_version(self, bucket: BucketMetadata, object_id: str, version_id: str) -> bool:
        versions = self._read_versions(bucket, object_id)
        versions.delete_version(version_id)
        with io_errors(f"deleting version {version_id}"):
            if not versions.versions and not self.meta_path(bucket, object_id, None).exists():
                remove_tree(self.object_dir(bucket, object_id))
                return True
            write_model(self.versions_path(bucket, object_id), versions)
            self.meta_path(bucket, object_id, version_id).unlink(missing_ok=True)
            self.data_path(bucket, object_id, version_id).unlink(missing_ok=True)
        return False

    async def copy_object(
        self,
        source_bucket: BucketMetadata,
        source_id: str,
        version_id: str | None,
        dest_bucket: BucketMetadata,
        dest_id: str,
        dest_key: str,
        encryption_headers: dict[str, str] | None = None,
        store_headers: dict[str, str] | None = None,
        user_metadata: dict[str, str] | None = None,
        storage_class: str | None = None,
        content_type: str | None = None,
        tags: list[Tag] | None = None,
    ) -> ObjectMetadata | None:
        """Duplicate content and metadata into another identifier.

        Empty override maps fall back to the source's values; the source
        ETag (including a multipart ETag) is preserved.

        Returns:
            The new version, or None if the source version does not exist.
        """
        source = await self.get_object_metadata(source_bucket, source_id, version_id)
        if source is None or source.delete_marker:
            return None
        source_data = self.data_path(source_bucket, source_id, source.version_id)
        async with self._lock(dest_bucket, dest_id):
            return self._store(
                dest_bucket,
                dest_id,
                dest_key,
                source_data,
                etag=source.etag,
                content_type=content_type or source.content_type,
                store_headers=store_headers or source.store_headers,
                user_metadata=user_metadata or source.user_metadata,
                encryption_headers=encryption_headers or source.encryption_headers,
                tags=source.tags if tags is None else tags,
                checksum_algorithm=source.checksum_algorithm,
                checksum=source.checksum,
                checksum_type=source.checksum_type,
                owner=source.owner,
                storage_class=storage_class or source.storage_class,
            )

    async def pretend_to_copy_object(
        self,
        bucket: BucketMetadata,
        object_id: str,
        version_id: str | None,
        encryption_headers: dict[str, str] | None = None,
        store_headers: dict[str, str] | None = None,
        user_metadata: dict[str, str] | None = None,
        storage_class: str | None = None,
        content_type: str | None = None,
    ) -> ObjectMetadata | None:
        """Rewrite metadata of an object copied onto itself; content is untouched.

        Returns:
            The refreshed version, or None if it does not exist.
        """
        async with self._lock(bucket, object_id):
            source = await self.get_object_metadata(bucket, object_id, version_id)
            if source is None or source.delete_marker:
                return None
            refreshed = source.model_copy(
                update={
                    "content_type": content_type or source.content_type,
                    "store_headers": store_headers or source.store_headers,
                    "user_metadata": user_metadata or source.user_metadata,
                    "encryption_headers": encryption_headers or source.encryption_headers,
                    "storage_class": storage_class or source.storage_class,
                    "modification_date": now_iso(),
                    "last_modified": now_millis(),
                }
            )
            with io_errors(f"rewriting metadata of {source.key}"):
                write_model(self.meta_path(bucket, object_id, source.version_id), refreshed)
        return refreshed

    async def _rewrite(
        self,
        bucket: BucketMetadata,
        object_id: str,
        version_id: str | None,
        **updates: Any,
    ) -> ObjectMetadata | None:
        async with self._lock(bucket, object_id):
            metadata = await self.get_object_metadata(bucket, object_id, version_id)
            if metadata is None:
                return None
            updated = metadata.model_copy(update=updates)
            with io_errors(f"rewriting metadata of {metadata.key}"):
                write_model(self.meta_path(bucket, object_id, metadata.version_id), updated)
        return updated

    async def store_object_tags(
        self, bucket: BucketMetadata, object_id: str, version_id: str | None, tags: list[Tag] | None
    ) -> ObjectMetadata | None:
        return await self._rewrite(bucket, object_id, version_id, tags=tags or [])

    async def store_retention(
        self, bucket: BucketMetadata, object_id: str, version_id: str | None, retention: Retention
    ) -> ObjectMetadata | None:
        return await self._rewrite(bucket, object_id, version_id, retention=retention)

    async def store_legal_hold(
        self, bucket: BucketMetadata, object_id: str, version_id: str | None, legal_hold: LegalHold
    ) -> ObjectMetadata | None:
        return await self._rewrite(bucket, object_id, version_id, legal_hold=legal_hold)
