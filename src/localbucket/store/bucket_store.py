"""Bucket metadata and the key to identifier index.

Each bucket is a directory ``{root}/{bucket}`` holding ``bucketMetadata.json``.
The index inside it maps every registered key to the identifier whose
directory groups that key's versions. Read-modify-write cycles on a bucket
file are serialised with a per-bucket lock.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from localbucket import metrics
from localbucket.errors import BucketAlreadyExists, InvalidBucketName, NoSuchBucket
from localbucket.store.files import io_errors, read_model, remove_tree, write_model
from localbucket.store.locks import LockTable
from localbucket.store.models import (
    DEFAULT_OWNER,
    BucketMetadata,
    LifecycleConfiguration,
    ObjectLockConfiguration,
    Owner,
    VersioningConfiguration,
    new_id,
)

logger = logging.getLogger(__name__)

BUCKET_META_FILE = "bucketMetadata.json"


class BucketStore:
    """Persists bucket metadata under ``{root}/{bucket}/bucketMetadata.json``.

    Attributes:
        root: The store root directory.
        region: Region assigned to buckets created without one.
    """

    def __init__(self, root: str | Path, region: str = "us-east-1") -> None:
        """Initialize the bucket store.

        Args:
            root: Root directory of the store.
            region: Default bucket region.
        """
        self.root = Path(root)
        self.region = region
        self._locks = LockTable()

    def bucket_root(self, name: str) -> Path:
        """Return the directory of bucket ``name``.

        Raises:
            InvalidBucketName: If the name would resolve outside the store root.
        """
        if not name or "/" in name or "\\" in name or name in (".", ".."):
            raise InvalidBucketName(name)
        path = self.root / name
        if path.resolve().parent != self.root.resolve():
            raise InvalidBucketName(name)
        return path

    def _meta_path(self, name: str) -> Path:
        return self.bucket_root(name) / BUCKET_META_FILE

    def _read(self, name: str) -> BucketMetadata | None:
        return read_model(self._meta_path(name), BucketMetadata)

    def _require(self, name: str) -> BucketMetadata:
        bucket = self._read(name)
        if bucket is None:
            raise NoSuchBucket(name)
        return bucket

    def _write(self, bucket: BucketMetadata) -> None:
        with io_errors(f"writing metadata of bucket {bucket.name}"):
            write_model(self._meta_path(bucket.name), bucket)

    async def _update(
        self, name: str, mutate: Callable[[BucketMetadata], bool | None]
    ) -> BucketMetadata:
        """Apply ``mutate`` under the bucket lock; persist unless it returns False."""
        async with self._locks.hold(name):
            bucket = self._require(name)
            if mutate(bucket) is not False:
                self._write(bucket)
            return bucket

    async def list_buckets(self) -> list[BucketMetadata]:
        """Return all buckets on disk, sorted by name."""
        if not self.root.is_dir():
            return []
        with io_errors("listing buckets"):
            names = sorted(
                entry.name
                for entry in self.root.iterdir()
                if entry.is_dir() and (entry / BUCKET_META_FILE).is_file()
            )
        buckets = []
        for name in names:
            bucket = self._read(name)
            if bucket is not None:
                buckets.append(bucket)
        return buckets

    async def get_bucket_metadata(self, name: str) -> BucketMetadata | None:
        """Return a bucket's metadata, or None if it does not exist."""
        return self._read(name)

    async def does_bucket_exist(self, name: str) -> bool:
        return self._meta_path(name).is_file()

    async def create_bucket(
        self,
        name: str,
        object_lock_enabled: bool = False,
        owner: Owner | None = None,
        region: str | None = None,
    ) -> BucketMetadata:
        """Create a bucket directory and its metadata file.

        Object-lock buckets start with versioning enabled.

        Args:
            name: The bucket name.
            object_lock_enabled: Whether object lock is enabled.
            owner: The bucket owner (default owner if omitted).
            region: Bucket region (store default if omitted).

        Returns:
            The new bucket's metadata.

        Raises:
            BucketAlreadyExists: If the name is already registered.
        """
        async with self._locks.hold(name):
            if self._meta_path(name).exists():
                raise BucketAlreadyExists(name)
            bucket = BucketMetadata(
                name=name,
                region=region or self.region,
                owner=owner or DEFAULT_OWNER,
                object_lock_enabled=object_lock_enabled,
                versioning_configuration=(
                    VersioningConfiguration(status="Enabled") if object_lock_enabled else None
                ),
                object_lock_configuration=(
                    ObjectLockConfiguration() if object_lock_enabled else None
                ),
            )
            with io_errors(f"creating bucket {name}"):
                self.bucket_root(name).mkdir(parents=True, exist_ok=True)
            self._write(bucket)
        metrics.adjust(metrics.buckets_total, 1)
        logger.info("Created bucket %s", name, extra={"bucket": name})
        return bucket

    async def add_key_to_bucket(self, key: str, bucket_name: str) -> str:
        """Register ``key`` and return its identifier.

        Idempotent: an already registered key returns its existing identifier.
        The registration is persisted before any content is written, so
        callers can roll back with ``remove_from_bucket``.

        Raises:
            NoSuchBucket: If the bucket does not exist.
        """
        async with self._locks.hold(bucket_name):
            bucket = self._require(bucket_name)
            existing = bucket.objects.get(key)
            if existing is not None:
                return existing
            object_id = new_id()
            bucket.objects[key] = object_id
            self._write(bucket)
        metrics.adjust(metrics.objects_total, 1)
        logger.debug(
            "Registered key %s as %s", key, object_id, extra={"bucket": bucket_name, "key": key}
        )
        return object_id

    async def remove_from_bucket(self, key: str, bucket_name: str) -> bool:
        """Unregister ``key``. Returns whether it was registered."""
        async with self._locks.hold(bucket_name):
            bucket = self._read(bucket_name)
            if bucket is None or key not in bucket.objects:
                return False
            del bucket.objects[key]
            self._write(bucket)
        metrics.adjust(metrics.objects_total, -1)
        logger.debug("Unregistered key %s", key, extra={"bucket": bucket_name, "key": key})
        return True

    async def lookup_keys_in_bucket(self, prefix: str | None, bucket_name: str) -> list[str]:
        """Identifiers of every key starting with ``prefix`` (all keys if empty).

        Ordering is unspecified.

        Raises:
            NoSuchBucket: If the bucket does not exist.
        """
        bucket = self._require(bucket_name)
        if not prefix:
            return list(bucket.objects.values())
        return [oid for key, oid in bucket.objects.items() if key.startswith(prefix)]

    async def store_versioning_configuration(
        self, bucket_name: str, configuration: VersioningConfiguration
    ) -> BucketMetadata:
        def apply(bucket: BucketMetadata) -> None:
            bucket.versioning_configuration = configuration

        return await self._update(bucket_name, apply)

    async def store_object_lock_configuration(
        self, bucket_name: str, configuration: ObjectLockConfiguration
    ) -> BucketMetadata:
        def apply(bucket: BucketMetadata) -> None:
            bucket.object_lock_configuration = configuration

        return await self._update(bucket_name, apply)

    async def store_lifecycle_configuration(
        self, bucket_name: str, configuration: LifecycleConfiguration | None
    ) -> BucketMetadata:
        def apply(bucket: BucketMetadata) -> None:
            bucket.lifecycle_configuration = configuration

        return await self._update(bucket_name, apply)

    async def is_bucket_empty(self, bucket_name: str) -> bool:
        return not self._require(bucket_name).objects

    async def delete_bucket(self, bucket_name: str) -> bool:
        """Remove a bucket whose index is empty.

        Returns:
            True if the bucket was deleted, False if it is missing or still
            has registered keys.
        """
        async with self._locks.hold(bucket_name):
            bucket = self._read(bucket_name)
            if bucket is None or bucket.objects:
                return False
            with io_errors(f"deleting bucket {bucket_name}"):
                remove_tree(self.bucket_root(bucket_name))
        metrics.adjust(metrics.buckets_total, -1)
        logger.info("Deleted bucket %s", bucket_name, extra={"bucket": bucket_name})
        return True
