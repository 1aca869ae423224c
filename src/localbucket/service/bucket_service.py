"""Bucket-level operations: lifecycle, configuration and listings."""

from __future__ import annotations

import dataclasses
import logging
from operator import attrgetter

from localbucket.errors import (
    BucketAlreadyOwnedByYou,
    BucketNotEmpty,
    InvalidArgument,
    InvalidRequest,
    NoSuchBucket,
    NoSuchLifecycleConfiguration,
    NoSuchObjectLockConfiguration,
)
from localbucket.listing import (
    ContinuationTokens,
    filter_after,
    paginate,
    url_encode_ignore_slashes,
)
from localbucket.metrics import track_operation
from localbucket.store.bucket_store import BucketStore
from localbucket.store.models import (
    BucketMetadata,
    BucketSummary,
    LifecycleConfiguration,
    ListBucketResult,
    ListBucketResultV2,
    ListBucketsResult,
    ListVersionsResult,
    ObjectLockConfiguration,
    ObjectMetadata,
    ObjectSummary,
    ObjectVersionEntry,
    Owner,
    VersioningConfiguration,
)
from localbucket.store.object_store import ObjectStore
from localbucket.validation import (
    validate_bucket_name,
    validate_encoding_type,
    validate_max_keys,
)

logger = logging.getLogger(__name__)

_VERSIONING_STATES = ("Enabled", "Suspended")


def _encode_summaries(contents: list[ObjectSummary]) -> list[ObjectSummary]:
    return [dataclasses.replace(c, key=url_encode_ignore_slashes(c.key)) for c in contents]


def _encode_prefixes(prefixes: list[str]) -> list[str]:
    return [url_encode_ignore_slashes(p) for p in prefixes]


class BucketService:
    """Bucket operations on top of the bucket and object stores.

    Attributes:
        buckets: The bucket store.
        objects: The object store.
    """

    def __init__(self, buckets: BucketStore, objects: ObjectStore) -> None:
        self.buckets = buckets
        self.objects = objects
        self._list_tokens = ContinuationTokens()
        self._bucket_tokens = ContinuationTokens()

    async def require_bucket(self, name: str) -> BucketMetadata:
        """Return a bucket's metadata.

        Raises:
            NoSuchBucket: If it does not exist.
        """
        bucket = await self.buckets.get_bucket_metadata(name)
        if bucket is None:
            raise NoSuchBucket(name)
        return bucket

    # -- bucket lifecycle ------------------------------------------------------

    async def create_bucket(
        self,
        name: str,
        object_lock_enabled: bool = False,
        owner: Owner | None = None,
        region: str | None = None,
    ) -> BucketMetadata:
        """Create a bucket.

        Raises:
            InvalidBucketName: If the name breaks the naming rules.
            BucketAlreadyOwnedByYou: If the bucket already exists.
        """
        with track_operation("CreateBucket"):
            validate_bucket_name(name)
            if await self.buckets.does_bucket_exist(name):
                raise BucketAlreadyOwnedByYou(name)
            return await self.buckets.create_bucket(name, object_lock_enabled, owner, region)

    async def head_bucket(self, name: str) -> BucketMetadata:
        with track_operation("HeadBucket"):
            return await self.require_bucket(name)

    async def list_buckets(
        self,
        prefix: str | None = None,
        continuation_token: str | None = None,
        max_buckets: int | None = None,
        owner: Owner | None = None,
    ) -> ListBucketsResult:
        """List buckets sorted by name, optionally paged.

        Returns:
            The page; ``continuation_token`` is set when more buckets follow.
        """
        with track_operation("ListBuckets"):
            buckets = await self.buckets.list_buckets()
            if prefix:
                buckets = [b for b in buckets if b.name.startswith(prefix)]
            if continuation_token:
                buckets = filter_after(
                    buckets, self._bucket_tokens.consume(continuation_token), attrgetter("name")
                )

            next_token = None
            if max_buckets is not None and len(buckets) > max_buckets:
                buckets = buckets[:max_buckets]
                if buckets:
                    next_token = self._bucket_tokens.issue(buckets[-1].name)

            return ListBucketsResult(
                buckets=[BucketSummary(b.name, b.creation_date, b.region) for b in buckets],
                owner=owner or (buckets[0].owner if buckets else None),
                prefix=prefix,
                continuation_token=next_token,
            )

    async def delete_bucket(self, name: str) -> None:
        """Delete a bucket without live keys.

        Keys whose only remaining versions are delete markers are purged first.

        Raises:
            NoSuchBucket: If the bucket does not exist.
            BucketNotEmpty: If any key is still registered.
        """
        with track_operation("DeleteBucket"):
            bucket = await self.require_bucket(name)
            for key, object_id in list(bucket.objects.items()):
                versions = await self.objects.get_object_versions(bucket, object_id)
                if versions and all(v.delete_marker for v in versions):
                    await self.objects.purge_object(bucket, object_id)
                    await self.buckets.remove_from_bucket(key, name)

            if not await self.buckets.delete_bucket(name):
                if await self.buckets.does_bucket_exist(name):
                    raise BucketNotEmpty(name)
                raise NoSuchBucket(name)

    # -- configuration ---------------------------------------------------------

    async def get_versioning_configuration(self, name: str) -> VersioningConfiguration | None:
        bucket = await self.require_bucket(name)
        return bucket.versioning_configuration

    async def put_versioning_configuration(
        self, name: str, configuration: VersioningConfiguration
    ) -> BucketMetadata:
        """Enable or suspend versioning.

        Raises:
            InvalidArgument: If the status is neither Enabled nor Suspended.
            InvalidRequest: If versioning would be suspended on an object-lock bucket.
        """
        with track_operation("PutBucketVersioning"):
            bucket = await self.require_bucket(name)
            if configuration.status not in _VERSIONING_STATES:
                raise InvalidArgument(f"Invalid versioning status: {configuration.status}")
            if bucket.object_lock_enabled and configuration.status != "Enabled":
                raise InvalidRequest(
                    "An Object Lock configuration is present on this bucket, "
                    "so the versioning state cannot be changed."
                )
            return await self.buckets.store_versioning_configuration(name, configuration)

    async def get_object_lock_configuration(self, name: str) -> ObjectLockConfiguration:
        """Raises NoSuchObjectLockConfiguration unless object lock is enabled."""
        bucket = await self.require_bucket(name)
        if not bucket.object_lock_enabled or bucket.object_lock_configuration is None:
            raise NoSuchObjectLockConfiguration()
        return bucket.object_lock_configuration

    async def put_object_lock_configuration(
        self, name: str, configuration: ObjectLockConfiguration
    ) -> BucketMetadata:
        with track_operation("PutObjectLockConfiguration"):
            bucket = await self.require_bucket(name)
            if not bucket.object_lock_enabled:
                raise InvalidRequest("Bucket is missing Object Lock Configuration")
            return await self.buckets.store_object_lock_configuration(name, configuration)

    async def get_lifecycle_configuration(self, name: str) -> LifecycleConfiguration:
        bucket = await self.require_bucket(name)
        if bucket.lifecycle_configuration is None:
            raise NoSuchLifecycleConfiguration(name)
        return bucket.lifecycle_configuration

    async def put_lifecycle_configuration(
        self, name: str, configuration: LifecycleConfiguration
    ) -> BucketMetadata:
        with track_operation("PutBucketLifecycle"):
            await self.require_bucket(name)
            return await self.buckets.store_lifecycle_configuration(name, configuration)

    async def delete_lifecycle_configuration(self, name: str) -> None:
        with track_operation("DeleteBucketLifecycle"):
            await self.require_bucket(name)
            await self.buckets.store_lifecycle_configuration(name, None)

    # -- listings --------------------------------------------------------------

    async def _current_objects(
        self, bucket: BucketMetadata, prefix: str | None
    ) -> list[ObjectMetadata]:
        """Current, non-deleted versions of every key under ``prefix``, sorted by key."""
        current = []
        for object_id in await self.buckets.lookup_keys_in_bucket(prefix, bucket.name):
            metadata = await self.objects.get_object_metadata(bucket, object_id)
            if metadata is not None and not metadata.delete_marker:
                current.append(metadata)
        current.sort(key=attrgetter("key"))
        return current

    async def list_objects(
        self,
        name: str,
        prefix: str | None = None,
        delimiter: str | None = None,
        marker: str | None = None,
        encoding_type: str | None = None,
        max_keys: int | str | None = None,
    ) -> ListBucketResult:
        """List objects with marker-based paging.

        Raises:
            NoSuchBucket: If the bucket does not exist.
            InvalidArgument: On a negative ``max_keys`` or unknown ``encoding_type``.
        """
        with track_operation("ListObjects"):
            max_keys = validate_max_keys(max_keys)
            encoding_type = validate_encoding_type(encoding_type)
            bucket = await self.require_bucket(name)

            current = await self._current_objects(bucket, prefix)
            candidates = filter_after(current, marker, attrgetter("key"))
            page = paginate(candidates, prefix, delimiter, max_keys, attrgetter("key"))
            contents = [ObjectSummary.from_metadata(m) for m in page.items]

            result = ListBucketResult(
                name=name,
                prefix=prefix,
                marker=marker,
                delimiter=delimiter,
                max_keys=max_keys,
                encoding_type=encoding_type,
                is_truncated=page.is_truncated,
                next_marker=page.last.key if page.is_truncated and page.last else None,
                contents=contents,
                common_prefixes=page.common_prefixes,
            )
            if encoding_type == "url":
                result.contents = _encode_summaries(result.contents)
                result.prefix = url_encode_ignore_slashes(prefix)
                result.common_prefixes = _encode_prefixes(result.common_prefixes)
            return result

    async def list_objects_v2(
        self,
        name: str,
        prefix: str | None = None,
        delimiter: str | None = None,
        encoding_type: str | None = None,
        start_after: str | None = None,
        max_keys: int | str | None = None,
        continuation_token: str | None = None,
        fetch_owner: bool = False,
    ) -> ListBucketResultV2:
        """List objects with single-use continuation tokens.

        ``start_after`` only applies when no continuation token is given.

        Raises:
            NoSuchBucket: If the bucket does not exist.
            InvalidArgument: On a negative ``max_keys`` or unknown ``encoding_type``.
        """
        with track_operation("ListObjectsV2"):
            max_keys = validate_max_keys(max_keys)
            encoding_type = validate_encoding_type(encoding_type)
            bucket = await self.require_bucket(name)

            if continuation_token is not None:
                after = self._list_tokens.consume(continuation_token)
            else:
                after = start_after
            current = await self._current_objects(bucket, prefix)
            candidates = filter_after(current, after, attrgetter("key"))
            page = paginate(candidates, prefix, delimiter, max_keys, attrgetter("key"))

            next_token = None
            if page.is_truncated and page.last is not None:
                next_token = self._list_tokens.issue(page.last.key)

            result = ListBucketResultV2(
                name=name,
                prefix=prefix,
                delimiter=delimiter,
                max_keys=max_keys,
                encoding_type=encoding_type,
                continuation_token=continuation_token,
                next_continuation_token=next_token,
                start_after=start_after,
                is_truncated=page.is_truncated,
                contents=[ObjectSummary.from_metadata(m, fetch_owner) for m in page.items],
                common_prefixes=page.common_prefixes,
            )
            if encoding_type == "url":
                result.contents = _encode_summaries(result.contents)
                result.prefix = url_encode_ignore_slashes(prefix)
                result.start_after = url_encode_ignore_slashes(start_after)
                result.delimiter = url_encode_ignore_slashes(delimiter)
                result.common_prefixes = _encode_prefixes(result.common_prefixes)
            return result

    async def list_object_versions(
        self,
        name: str,
        prefix: str | None = None,
        delimiter: str | None = None,
        encoding_type: str | None = None,
        max_keys: int | str | None = None,
        key_marker: str | None = None,
        version_id_marker: str | None = None,
    ) -> ListVersionsResult:
        """List every version and delete marker, by key and then newest first.

        Paging continues within ``key_marker`` after ``version_id_marker``
        when both are given, otherwise after ``key_marker``.
        """
        with track_operation("ListObjectVersions"):
            max_keys = validate_max_keys(max_keys)
            encoding_type = validate_encoding_type(encoding_type)
            bucket = await self.require_bucket(name)

            entries: list[ObjectVersionEntry] = []
            for key in sorted(k for k in bucket.objects if not prefix or k.startswith(prefix)):
                if key_marker and (
                    key < key_marker or (key == key_marker and not version_id_marker)
                ):
                    continue
                versions = await self.objects.get_object_versions(bucket, bucket.objects[key])
                rows = [
                    ObjectVersionEntry(
                        key=v.key,
                        version_id=v.effective_version_id,
                        is_latest=index == 0,
                        last_modified=v.modification_date,
                        owner=v.owner,
                        etag=None if v.delete_marker else v.etag,
                        size=v.size,
                        storage_class=v.effective_storage_class,
                        checksum_algorithm=v.checksum_algorithm,
                        delete_marker=v.delete_marker,
                    )
                    for index, v in enumerate(versions)
                ]
                if key == key_marker:
                    ids = [r.version_id for r in rows]
                    if version_id_marker in ids:
                        rows = rows[ids.index(version_id_marker) + 1 :]
                    else:
                        rows = []
                entries.extend(rows)

            page = paginate(entries, prefix, delimiter, max_keys, attrgetter("key"))
            result = ListVersionsResult(
                name=name,
                prefix=prefix,
                delimiter=delimiter,
                key_marker=key_marker,
                version_id_marker=version_id_marker,
                max_keys=max_keys,
                encoding_type=encoding_type,
                is_truncated=page.is_truncated,
                versions=[e for e in page.items if not e.delete_marker],
                delete_markers=[e for e in page.items if e.delete_marker],
                common_prefixes=page.common_prefixes,
            )
            if page.is_truncated and page.last is not None:
                result.next_key_marker = page.last.key
                result.next_version_id_marker = page.last.version_id
            if encoding_type == "url":
                result.versions = [
                    dataclasses.replace(v, key=url_encode_ignore_slashes(v.key))
                    for v in result.versions
                ]
                result.delete_markers = [
                    dataclasses.replace(d, key=url_encode_ignore_slashes(d.key))
                    for d in result.delete_markers
                ]
                result.prefix = url_encode_ignore_slashes(prefix)
                result.common_prefixes = _encode_prefixes(result.common_prefixes)
            return result
