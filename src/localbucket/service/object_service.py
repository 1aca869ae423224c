"""Object-level operations.

Keys are reserved in the bucket index before any content is written. When
the write fails and the reservation was made by the failing call, the key
is unregistered again before the error propagates.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import IO

from localbucket import metrics
from localbucket.conditionals import Preconditions, evaluate_preconditions
from localbucket.errors import (
    AccessDenied,
    InvalidArgument,
    InvalidRequest,
    NoSuchBucket,
    NoSuchKey,
    NoSuchObjectLockConfiguration,
    NoSuchVersion,
    S3Error,
)
from localbucket.metrics import track_operation
from localbucket.ranges import parse_range_header
from localbucket.service.ingest import ingest_body
from localbucket.store.bucket_store import BucketStore
from localbucket.store.models import (
    BucketMetadata,
    DeletedObject,
    DeleteError,
    DeleteResult,
    GetObjectResult,
    LegalHold,
    ObjectIdentifier,
    ObjectMetadata,
    Owner,
    Retention,
    Tag,
)
from localbucket.store.object_store import ObjectStore
from localbucket.validation import validate_object_key, validate_retention, validate_tags

logger = logging.getLogger(__name__)

_DIRECTIVES = ("COPY", "REPLACE")

_SELF_COPY_MESSAGE = (
    "This copy request is illegal because it is trying to copy an object to itself "
    "without changing the object's metadata, storage class, website redirect location "
    "or encryption attributes."
)


def _is_locked(metadata: ObjectMetadata, bypass_governance: bool) -> bool:
    if metadata.legal_hold is not None and metadata.legal_hold.active:
        return True
    retention = metadata.retention
    if retention is None:
        return False
    until = retention.retain_until_date
    if until.tzinfo is None:
        until = until.replace(tzinfo=timezone.utc)
    if until <= datetime.now(timezone.utc):
        return False
    return not (retention.mode == "GOVERNANCE" and bypass_governance)


class ObjectService:
    """Object operations on top of the bucket and object stores.

    Attributes:
        buckets: The bucket store.
        objects: The object store.
        staging: Directory receiving spooled request bodies.
    """

    def __init__(self, buckets: BucketStore, objects: ObjectStore, staging: Path) -> None:
        self.buckets = buckets
        self.objects = objects
        self.staging = staging

    async def _bucket(self, name: str) -> BucketMetadata:
        bucket = await self.buckets.get_bucket_metadata(name)
        if bucket is None:
            raise NoSuchBucket(name)
        return bucket

    async def _resolve(
        self, bucket_name: str, key: str, version_id: str | None = None
    ) -> tuple[BucketMetadata, str, ObjectMetadata]:
        """Find a version, refusing missing objects and delete markers.

        Raises:
            NoSuchBucket: If the bucket does not exist.
            NoSuchKey: If the key is unknown or its current version is a delete marker.
            NoSuchVersion: If ``version_id`` names no version of the key.
        """
        bucket = await self._bucket(bucket_name)
        object_id = bucket.get_id(key)
        if object_id is None:
            raise NoSuchKey(key)
        metadata = await self.objects.get_object_metadata(bucket, object_id, version_id)
        if metadata is None:
            if version_id is not None:
                raise NoSuchVersion(version_id)
            raise NoSuchKey(key)
        if metadata.delete_marker:
            raise NoSuchKey(key)
        return bucket, object_id, metadata

    def _default_retention(self, bucket: BucketMetadata) -> Retention | None:
        configuration = bucket.object_lock_configuration
        if not bucket.object_lock_enabled or configuration is None:
            return None
        default = configuration.default_retention
        if default is None:
            return None
        days = (default.days or 0) + 365 * (default.years or 0)
        return Retention(
            mode=default.mode,
            retain_until_date=datetime.now(timezone.utc) + timedelta(days=days),
        )

    # -- put / get -------------------------------------------------------------

    async def put_object(
        self,
        bucket_name: str,
        key: str,
        body: IO[bytes] | bytes,
        content_type: str | None = None,
        store_headers: dict[str, str] | None = None,
        user_metadata: dict[str, str] | None = None,
        encryption_headers: dict[str, str] | None = None,
        tags: list[Tag] | None = None,
        storage_class: str | None = None,
        checksum_algorithm: str | None = None,
        checksum: str | None = None,
        content_md5: str | None = None,
        aws_chunked: bool = False,
        decoded_length: int | None = None,
        owner: Owner | None = None,
        retention: Retention | None = None,
        legal_hold: LegalHold | None = None,
    ) -> ObjectMetadata:
        """Store a new version of ``key``.

        The body is spooled (decoded first when ``aws_chunked``) while MD5 and
        the requested checksum are computed and verified.

        Args:
            bucket_name: The target bucket.
            key: The object key.
            body: Request body bytes or a readable stream.
            content_type: MIME type.
            store_headers: Content-Encoding, Content-Disposition and similar.
            user_metadata: ``x-amz-meta-*`` values.
            encryption_headers: Server-side encryption headers.
            tags: Tag set.
            storage_class: Storage class.
            checksum_algorithm: Flexible checksum algorithm name.
            checksum: Client checksum value.
            content_md5: Base64 Content-MD5.
            aws_chunked: Whether the body is aws-chunked encoded.
            decoded_length: Expected decoded length of an aws-chunked body.
            owner: Object owner.
            retention: Explicit retention; defaults to the bucket's.
            legal_hold: Legal hold.

        Returns:
            The stored version.

        Raises:
            NoSuchBucket: If the bucket does not exist.
            BadDigest: If Content-MD5 does not match.
            BadChecksum: If the checksum does not match.
        """
        with track_operation("PutObject"):
            bucket = await self._bucket(bucket_name)
            validate_object_key(key)
            if tags:
                validate_tags(tags)

            ingested = ingest_body(
                body,
                self.staging,
                aws_chunked=aws_chunked,
                checksum_algorithm=checksum_algorithm,
                checksum=checksum,
                content_md5=content_md5,
                decoded_length=decoded_length,
            )
            try:
                previous_id = bucket.get_id(key)
                object_id = await self.buckets.add_key_to_bucket(key, bucket_name)
                try:
                    metadata = await self.objects.store_object_metadata(
                        bucket,
                        object_id,
                        key,
                        content_type,
                        store_headers,
                        ingested.path,
                        user_metadata,
                        encryption_headers,
                        ingested.md5,
                        tags,
                        ingested.checksum_algorithm,
                        ingested.checksum,
                        owner,
                        storage_class,
                        retention=retention or self._default_retention(bucket),
                        legal_hold=legal_hold,
                    )
                except Exception:
                    if previous_id is None:
                        await self.buckets.remove_from_bucket(key, bucket_name)
                    raise
            finally:
                ingested.discard()

        logger.info(
            "Stored object %s (%d bytes)",
            key,
            metadata.size,
            extra={"operation": "PutObject", "bucket": bucket_name, "key": key},
        )
        return metadata

    async def head_object(
        self,
        bucket_name: str,
        key: str,
        version_id: str | None = None,
        preconditions: Preconditions | None = None,
    ) -> ObjectMetadata:
        """Return a version's metadata after evaluating preconditions.

        Raises:
            NoSuchKey: If the object does not exist or is deleted.
            NoSuchVersion: If the version does not exist.
            PreconditionFailed: If If-Match or If-Unmodified-Since fails.
            NotModified: If If-None-Match or If-Modified-Since fails.
        """
        with track_operation("HeadObject"):
            _, _, metadata = await self._resolve(bucket_name, key, version_id)
            evaluate_preconditions(preconditions, metadata)
            return metadata

    async def get_object(
        self,
        bucket_name: str,
        key: str,
        version_id: str | None = None,
        preconditions: Preconditions | None = None,
        range_header: str | None = None,
    ) -> GetObjectResult:
        """Return a version's metadata and a lazily streamed body.

        Raises:
            NoSuchKey: If the object does not exist or is deleted.
            NoSuchVersion: If the version does not exist.
            InvalidRange: If ``range_header`` is unsatisfiable.
            PreconditionFailed: If If-Match or If-Unmodified-Since fails.
            NotModified: If If-None-Match or If-Modified-Since fails.
        """
        with track_operation("GetObject"):
            bucket, _, metadata = await self._resolve(bucket_name, key, version_id)
            evaluate_preconditions(preconditions, metadata)

            byte_range = parse_range_header(range_header, metadata.size)
            if byte_range is None:
                body = self.objects.get_content(bucket, metadata)
                return GetObjectResult(metadata, self._count_sent(body))
            body = self.objects.get_content(bucket, metadata, byte_range.start, byte_range.length)
            return GetObjectResult(
                metadata, self._count_sent(body), (byte_range.start, byte_range.end)
            )

    @staticmethod
    async def _count_sent(body: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        async for chunk in body:
            metrics.count_bytes(metrics.bytes_sent_total, len(chunk))
            yield chunk

    # -- delete ----------------------------------------------------------------

    async def delete_object(
        self,
        bucket_name: str,
        key: str,
        version_id: str | None = None,
        bypass_governance: bool = False,
    ) -> DeletedObject:
        """Delete a key or one of its versions.

        On a versioning-enabled bucket a delete without version id adds a
        delete marker. Deleting an unknown key succeeds without effect.

        Returns:
            What was deleted, including the delete marker's version id.

        Raises:
            NoSuchBucket: If the bucket does not exist.
            AccessDenied: If the version is under legal hold or retention.
        """
        with track_operation("DeleteObject"):
            bucket = await self._bucket(bucket_name)
            object_id = bucket.get_id(key)
            if object_id is None:
                return DeletedObject(key=key, version_id=version_id)

            target = await self.objects.get_object_metadata(bucket, object_id, version_id)
            locked = target is not None and _is_locked(target, bypass_governance)
            if version_id is not None and locked:
                raise AccessDenied()

            removed = await self.objects.delete_object(bucket, object_id, version_id)
            if removed:
                await self.buckets.remove_from_bucket(key, bucket_name)

            result = DeletedObject(key=key, version_id=version_id)
            if version_id is None and bucket.versioning_enabled and target is not None:
                marker = await self.objects.get_object_metadata(bucket, object_id)
                if marker is not None and marker.delete_marker:
                    result.delete_marker = True
                    result.delete_marker_version_id = marker.version_id
            elif target is not None and target.delete_marker:
                result.delete_marker = True
                result.delete_marker_version_id = version_id

        logger.info(
            "Deleted %s%s",
            key,
            f" version {version_id}" if version_id else "",
            extra={"operation": "DeleteObject", "bucket": bucket_name, "key": key},
        )
        return result

    async def delete_objects(
        self,
        bucket_name: str,
        identifiers: list[ObjectIdentifier],
        bypass_governance: bool = False,
    ) -> DeleteResult:
        """Delete several keys, collecting per-key results and errors.

        Raises:
            NoSuchBucket: If the bucket does not exist.
        """
        with track_operation("DeleteObjects"):
            await self._bucket(bucket_name)
            result = DeleteResult()
            for identifier in identifiers:
                try:
                    deleted = await self.delete_object(
                        bucket_name, identifier.key, identifier.version_id, bypass_governance
                    )
                except S3Error as exc:
                    logger.warning(
                        "Failed to delete %s: %s",
                        identifier.key,
                        exc.code,
                        extra={"bucket": bucket_name, "key": identifier.key},
                    )
                    result.errors.append(
                        DeleteError(identifier.key, exc.code, exc.message, identifier.version_id)
                    )
                else:
                    result.deleted.append(deleted)
            return result

    # -- copy ------------------------------------------------------------------

    async def copy_object(
        self,
        source_bucket: str,
        source_key: str,
        dest_bucket: str,
        dest_key: str,
        source_version_id: str | None = None,
        metadata_directive: str | None = None,
        content_type: str | None = None,
        store_headers: dict[str, str] | None = None,
        user_metadata: dict[str, str] | None = None,
        encryption_headers: dict[str, str] | None = None,
        storage_class: str | None = None,
        tagging_directive: str | None = None,
        tags: list[Tag] | None = None,
        preconditions: Preconditions | None = None,
    ) -> ObjectMetadata:
        """Copy an object, or rewrite its metadata when copied onto itself.

        Preconditions are evaluated against the source; a NotModified outcome
        is reported as PreconditionFailed.

        Returns:
            The new (or refreshed) version.

        Raises:
            NoSuchBucket: If either bucket does not exist.
            NoSuchKey: If the source does not exist.
            InvalidArgument: On an unknown metadata or tagging directive.
            InvalidRequest: If a self-copy would change nothing.
            PreconditionFailed: If a source precondition fails.
        """
        metadata_directive = (metadata_directive or "COPY").upper()
        tagging_directive = (tagging_directive or "COPY").upper()
        if metadata_directive not in _DIRECTIVES:
            raise InvalidArgument(f"Unknown metadata directive: {metadata_directive}")
        if tagging_directive not in _DIRECTIVES:
            raise InvalidArgument(f"Unknown tagging directive: {tagging_directive}")
        replace = metadata_directive == "REPLACE"

        with track_operation("CopyObject"):
            source, source_id, source_md = await self._resolve(
                source_bucket, source_key, source_version_id
            )
            evaluate_preconditions(preconditions, source_md, for_read=False)

            if source_bucket == dest_bucket and source_key == dest_key:
                if not replace and not storage_class and not encryption_headers:
                    raise InvalidRequest(_SELF_COPY_MESSAGE)
                refreshed = await self.objects.pretend_to_copy_object(
                    source,
                    source_id,
                    source_version_id,
                    encryption_headers,
                    store_headers if replace else None,
                    user_metadata if replace else None,
                    storage_class,
                    content_type if replace else None,
                )
                if refreshed is None:
                    raise NoSuchKey(source_key)
                return refreshed

            if tags is not None and tagging_directive == "REPLACE":
                validate_tags(tags)
            destination = await self._bucket(dest_bucket)
            validate_object_key(dest_key)
            previous_id = destination.get_id(dest_key)
            dest_id = await self.buckets.add_key_to_bucket(dest_key, dest_bucket)
            try:
                copied = await self.objects.copy_object(
                    source,
                    source_id,
                    source_md.version_id,
                    destination,
                    dest_id,
                    dest_key,
                    encryption_headers=encryption_headers,
                    store_headers=store_headers if replace else None,
                    user_metadata=user_metadata if replace else None,
                    storage_class=storage_class,
                    content_type=content_type if replace else None,
                    tags=tags if tagging_directive == "REPLACE" else None,
                )
                if copied is None:
                    raise NoSuchKey(source_key)
            except Exception:
                if previous_id is None:
                    await self.buckets.remove_from_bucket(dest_key, dest_bucket)
                raise

        logger.info(
            "Copied %s/%s to %s/%s",
            source_bucket,
            source_key,
            dest_bucket,
            dest_key,
            extra={"operation": "CopyObject", "bucket": dest_bucket, "key": dest_key},
        )
        return copied

    # -- tagging, retention, legal hold ----------------------------------------

    async def get_object_tagging(
        self, bucket_name: str, key: str, version_id: str | None = None
    ) -> list[Tag]:
        _, _, metadata = await self._resolve(bucket_name, key, version_id)
        return metadata.tags

    async def put_object_tagging(
        self, bucket_name: str, key: str, tags: list[Tag], version_id: str | None = None
    ) -> ObjectMetadata:
        """Replace a version's tag set.

        Raises:
            InvalidTag: If the tag set breaks the tagging rules.
        """
        with track_operation("PutObjectTagging"):
            validate_tags(tags)
            bucket, object_id, metadata = await self._resolve(bucket_name, key, version_id)
            updated = await self.objects.store_object_tags(
                bucket, object_id, metadata.version_id, tags
            )
            if updated is None:
                raise NoSuchKey(key)
            return updated

    async def delete_object_tagging(
        self, bucket_name: str, key: str, version_id: str | None = None
    ) -> None:
        with track_operation("DeleteObjectTagging"):
            bucket, object_id, metadata = await self._resolve(bucket_name, key, version_id)
            await self.objects.store_object_tags(bucket, object_id, metadata.version_id, None)

    def _require_object_lock(self, bucket: BucketMetadata) -> None:
        if not bucket.object_lock_enabled:
            raise InvalidRequest("Bucket is missing Object Lock Configuration")

    async def get_object_retention(
        self, bucket_name: str, key: str, version_id: str | None = None
    ) -> Retention:
        """Raises NoSuchObjectLockConfiguration when the version has no retention."""
        bucket, _, metadata = await self._resolve(bucket_name, key, version_id)
        self._require_object_lock(bucket)
        if metadata.retention is None:
            raise NoSuchObjectLockConfiguration()
        return metadata.retention

    async def put_object_retention(
        self, bucket_name: str, key: str, retention: Retention, version_id: str | None = None
    ) -> ObjectMetadata:
        """Set a version's retention.

        Raises:
            InvalidRequest: If object lock is disabled or the date is in the past.
        """
        with track_operation("PutObjectRetention"):
            bucket, object_id, metadata = await self._resolve(bucket_name, key, version_id)
            self._require_object_lock(bucket)
            validate_retention(retention)
            updated = await self.objects.store_retention(
                bucket, object_id, metadata.version_id, retention
            )
            if updated is None:
                raise NoSuchKey(key)
            return updated

    async def get_object_legal_hold(
        self, bucket_name: str, key: str, version_id: str | None = None
    ) -> LegalHold:
        bucket, _, metadata = await self._resolve(bucket_name, key, version_id)
        self._require_object_lock(bucket)
        if metadata.legal_hold is None:
            raise NoSuchObjectLockConfiguration()
        return metadata.legal_hold

    async def put_object_legal_hold(
        self, bucket_name: str, key: str, legal_hold: LegalHold, version_id: str | None = None
    ) -> ObjectMetadata:
        with track_operation("PutObjectLegalHold"):
            bucket, object_id, metadata = await self._resolve(bucket_name, key, version_id)
            self._require_object_lock(bucket)
            updated = await self.objects.store_legal_hold(
                bucket, object_id, metadata.version_id, legal_hold
            )
            if updated is None:
                raise NoSuchKey(key)
            return updated
