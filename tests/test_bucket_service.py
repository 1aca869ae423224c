"""Tests for bucket operations and object listings."""

import pytest

from localbucket.errors import (
    BucketAlreadyOwnedByYou,
    BucketNotEmpty,
    InvalidArgument,
    InvalidBucketName,
    InvalidRequest,
    NoSuchBucket,
    NoSuchLifecycleConfiguration,
    NoSuchObjectLockConfiguration,
)
from localbucket.store.models import (
    DefaultRetention,
    LifecycleConfiguration,
    LifecycleRule,
    ObjectLockConfiguration,
    VersioningConfiguration,
)


async def _put_keys(object_service, bucket, keys):
    for key in keys:
        await object_service.put_object(bucket, key, key.encode())


class TestBucketLifecycle:
    """Tests for create, head, list and delete."""

    async def test_create_and_head(self, bucket_service):
        """A created bucket can be found again."""
        await bucket_service.create_bucket("alpha")
        bucket = await bucket_service.head_bucket("alpha")
        assert bucket.name == "alpha"

    async def test_create_existing(self, bucket_service, bucket):
        """Creating an existing bucket reports it is already owned."""
        with pytest.raises(BucketAlreadyOwnedByYou):
            await bucket_service.create_bucket(bucket)

    async def test_invalid_name(self, bucket_service):
        """Bucket names are validated."""
        with pytest.raises(InvalidBucketName):
            await bucket_service.create_bucket("Not_Valid")

    async def test_head_missing(self, bucket_service):
        """Heading a missing bucket fails."""
        with pytest.raises(NoSuchBucket):
            await bucket_service.head_bucket("missing")

    async def test_list_buckets_paged(self, bucket_service):
        """Bucket listings page with single-use continuation tokens."""
        for name in ("alpha", "beta", "gamma"):
            await bucket_service.create_bucket(name)
        first = await bucket_service.list_buckets(max_buckets=2)
        assert [b.name for b in first.buckets] == ["alpha", "beta"]
        assert first.continuation_token is not None
        rest = await bucket_service.list_buckets(
            continuation_token=first.continuation_token, max_buckets=2
        )
        assert [b.name for b in rest.buckets] == ["gamma"]
        assert rest.continuation_token is None

    async def test_list_buckets_prefix(self, bucket_service):
        """Bucket listings filter by name prefix."""
        for name in ("app-logs", "app-data", "backup"):
            await bucket_service.create_bucket(name)
        result = await bucket_service.list_buckets(prefix="app-")
        assert [b.name for b in result.buckets] == ["app-data", "app-logs"]

    async def test_delete_empty(self, bucket_service, bucket):
        """An empty bucket can be deleted."""
        await bucket_service.delete_bucket(bucket)
        with pytest.raises(NoSuchBucket):
            await bucket_service.head_bucket(bucket)

    async def test_delete_not_empty(self, bucket_service, object_service, bucket):
        """A bucket holding objects cannot be deleted."""
        await object_service.put_object(bucket, "k", b"data")
        with pytest.raises(BucketNotEmpty):
            await bucket_service.delete_bucket(bucket)

    async def test_delete_missing(self, bucket_service):
        """Deleting a missing bucket fails."""
        with pytest.raises(NoSuchBucket):
            await bucket_service.delete_bucket("missing")

    async def test_delete_with_only_delete_markers(
        self, bucket_service, object_service, versioned_bucket
    ):
        """Keys left with nothing but delete markers do not keep a bucket alive."""
        stored = await object_service.put_object(versioned_bucket, "k", b"data")
        await object_service.delete_object(versioned_bucket, "k")
        await object_service.delete_object(versioned_bucket, "k", version_id=stored.version_id)
        await bucket_service.delete_bucket(versioned_bucket)
        with pytest.raises(NoSuchBucket):
            await bucket_service.head_bucket(versioned_bucket)

    async def test_delete_with_hidden_versions(
        self, bucket_service, object_service, versioned_bucket
    ):
        """A key hidden by a delete marker still has versions and keeps the bucket."""
        await object_service.put_object(versioned_bucket, "k", b"data")
        await object_service.delete_object(versioned_bucket, "k")
        with pytest.raises(BucketNotEmpty):
            await bucket_service.delete_bucket(versioned_bucket)


class TestBucketConfiguration:
    """Tests for versioning, object lock and lifecycle configuration."""

    async def test_versioning_round_trip(self, bucket_service, bucket):
        """Versioning status is stored and returned."""
        assert await bucket_service.get_versioning_configuration(bucket) is None
        await bucket_service.put_versioning_configuration(
            bucket, VersioningConfiguration(status="Enabled")
        )
        configuration = await bucket_service.get_versioning_configuration(bucket)
        assert configuration.status == "Enabled"

    async def test_invalid_versioning_status(self, bucket_service, bucket):
        """Only Enabled and Suspended are valid states."""
        with pytest.raises(InvalidArgument):
            await bucket_service.put_versioning_configuration(
                bucket, VersioningConfiguration(status="Off")
            )

    async def test_object_lock_bucket_cannot_suspend(self, bucket_service):
        """Versioning stays enabled on object-lock buckets."""
        await bucket_service.create_bucket("locked", object_lock_enabled=True)
        with pytest.raises(InvalidRequest):
            await bucket_service.put_versioning_configuration(
                "locked", VersioningConfiguration(status="Suspended")
            )

    async def test_object_lock_configuration(self, bucket_service, bucket):
        """Object lock configuration requires an object-lock bucket."""
        with pytest.raises(NoSuchObjectLockConfiguration):
            await bucket_service.get_object_lock_configuration(bucket)
        with pytest.raises(InvalidRequest):
            await bucket_service.put_object_lock_configuration(bucket, ObjectLockConfiguration())

        await bucket_service.create_bucket("locked", object_lock_enabled=True)
        configuration = ObjectLockConfiguration(
            default_retention=DefaultRetention(mode="GOVERNANCE", days=1)
        )
        await bucket_service.put_object_lock_configuration("locked", configuration)
        stored = await bucket_service.get_object_lock_configuration("locked")
        assert stored.default_retention.days == 1

    async def test_lifecycle(self, bucket_service, bucket):
        """Lifecycle configuration can be stored, read and removed."""
        with pytest.raises(NoSuchLifecycleConfiguration):
            await bucket_service.get_lifecycle_configuration(bucket)
        configuration = LifecycleConfiguration(
            rules=[LifecycleRule(id="expire-logs", prefix="logs/", expiration_days=7)]
        )
        await bucket_service.put_lifecycle_configuration(bucket, configuration)
        stored = await bucket_service.get_lifecycle_configuration(bucket)
        assert stored.rules[0].id == "expire-logs"
        await bucket_service.delete_lifecycle_configuration(bucket)
        with pytest.raises(NoSuchLifecycleConfiguration):
            await bucket_service.get_lifecycle_configuration(bucket)


class TestListObjects:
    """Tests for ListObjects (marker based)."""

    async def test_pagination(self, bucket_service, object_service, bucket):
        """Five keys with max_keys=2 come back in three pages."""
        keys = ["k1", "k2", "k3", "k4", "k5"]
        await _put_keys(object_service, bucket, keys)

        seen = []
        marker = None
        pages = 0
        while True:
            page = await bucket_service.list_objects(bucket, marker=marker, max_keys=2)
            pages += 1
            seen.extend(c.key for c in page.contents)
            if not page.is_truncated:
                break
            marker = page.next_marker
        assert seen == keys
        assert pages == 3

    async def test_delimiter(self, bucket_service, object_service, bucket):
        """Keys under a delimiter collapse into one common prefix."""
        await _put_keys(object_service, bucket, ["a", "b/1", "b/2", "c"])
        result = await bucket_service.list_objects(bucket, delimiter="/")
        assert [c.key for c in result.contents] == ["a", "c"]
        assert result.common_prefixes == ["b/"]
        assert result.is_truncated is False

    async def test_prefix(self, bucket_service, object_service, bucket):
        """Only keys under the prefix are listed."""
        await _put_keys(object_service, bucket, ["docs/a", "docs/b", "img/c"])
        result = await bucket_service.list_objects(bucket, prefix="docs/")
        assert [c.key for c in result.contents] == ["docs/a", "docs/b"]

    async def test_zero_max_keys(self, bucket_service, object_service, bucket):
        """max_keys 0 returns an empty, untruncated page."""
        await _put_keys(object_service, bucket, ["a"])
        result = await bucket_service.list_objects(bucket, max_keys=0)
        assert result.contents == []
        assert result.is_truncated is False

    async def test_negative_max_keys(self, bucket_service, bucket):
        """Negative max_keys is rejected."""
        with pytest.raises(InvalidArgument):
            await bucket_service.list_objects(bucket, max_keys=-1)

    async def test_invalid_encoding_type(self, bucket_service, bucket):
        """Only url encoding is supported."""
        with pytest.raises(InvalidArgument):
            await bucket_service.list_objects(bucket, encoding_type="xml")

    async def test_url_encoding(self, bucket_service, object_service, bucket):
        """Keys and prefixes are percent-encoded after paging."""
        await _put_keys(object_service, bucket, ["a b/c", "plain+key"])
        result = await bucket_service.list_objects(bucket, delimiter="/", encoding_type="url")
        assert [c.key for c in result.contents] == ["plain%2Bkey"]
        assert result.common_prefixes == ["a%20b/"]

    async def test_missing_bucket(self, bucket_service):
        """Listing a missing bucket fails."""
        with pytest.raises(NoSuchBucket):
            await bucket_service.list_objects("missing")

    async def test_deleted_keys_hidden(self, bucket_service, object_service, versioned_bucket):
        """Keys whose current version is a delete marker are not listed."""
        await _put_keys(object_service, versioned_bucket, ["keep", "drop"])
        await object_service.delete_object(versioned_bucket, "drop")
        result = await bucket_service.list_objects(versioned_bucket)
        assert [c.key for c in result.contents] == ["keep"]


class TestListObjectsV2:
    """Tests for ListObjectsV2 (continuation tokens)."""

    async def test_pagination(self, bucket_service, object_service, bucket):
        """Five keys with max_keys=2 come back in three pages via tokens."""
        keys = ["k1", "k2", "k3", "k4", "k5"]
        await _put_keys(object_service, bucket, keys)

        seen = []
        token = None
        pages = 0
        while True:
            page = await bucket_service.list_objects_v2(
                bucket, max_keys=2, continuation_token=token
            )
            pages += 1
            seen.extend(c.key for c in page.contents)
            assert page.key_count == len(page.contents)
            if not page.is_truncated:
                assert page.next_continuation_token is None
                break
            token = page.next_continuation_token
        assert seen == keys
        assert pages == 3

    async def test_start_after(self, bucket_service, object_service, bucket):
        """start_after skips keys up to and including it."""
        await _put_keys(object_service, bucket, ["a", "b", "c"])
        result = await bucket_service.list_objects_v2(bucket, start_after="a")
        assert [c.key for c in result.contents] == ["b", "c"]

    async def test_token_takes_precedence(self, bucket_service, object_service, bucket):
        """start_after is ignored when a continuation token is given."""
        await _put_keys(object_service, bucket, ["a", "b", "c", "d"])
        first = await bucket_service.list_objects_v2(bucket, max_keys=1)
        second = await bucket_service.list_objects_v2(
            bucket, start_after="c", continuation_token=first.next_continuation_token
        )
        assert [c.key for c in second.contents] == ["b", "c", "d"]

    async def test_fetch_owner(self, bucket_service, object_service, bucket):
        """Owners are only included when requested."""
        await _put_keys(object_service, bucket, ["a"])
        without = await bucket_service.list_objects_v2(bucket)
        with_owner = await bucket_service.list_objects_v2(bucket, fetch_owner=True)
        assert without.contents[0].owner is None
        assert with_owner.contents[0].owner is not None

    async def test_prefixes_reported_with_leaves(self, bucket_service, object_service, bucket):
        """Common prefixes are reported even when the leaves fill the page."""
        await _put_keys(object_service, bucket, ["a", "b/1", "b/2", "c"])
        result = await bucket_service.list_objects_v2(bucket, delimiter="/", max_keys=2)
        assert [c.key for c in result.contents] == ["a", "c"]
        assert result.common_prefixes == ["b/"]
        assert result.key_count == 3


class TestListObjectVersions:
    """Tests for ListObjectVersions."""

    async def test_versions_newest_first(self, bucket_service, object_service, versioned_bucket):
        """Versions are grouped by key, newest first, with is_latest on the first."""
        v1 = await object_service.put_object(versioned_bucket, "a", b"1")
        v2 = await object_service.put_object(versioned_bucket, "a", b"2")
        b1 = await object_service.put_object(versioned_bucket, "b", b"1")

        result = await bucket_service.list_object_versions(versioned_bucket)
        assert [(v.key, v.version_id) for v in result.versions] == [
            ("a", v2.version_id),
            ("a", v1.version_id),
            ("b", b1.version_id),
        ]
        assert [v.is_latest for v in result.versions] == [True, False, True]

    async def test_delete_markers(self, bucket_service, object_service, versioned_bucket):
        """Delete markers are reported separately and are the latest entry."""
        await object_service.put_object(versioned_bucket, "a", b"1")
        deleted = await object_service.delete_object(versioned_bucket, "a")

        result = await bucket_service.list_object_versions(versioned_bucket)
        assert len(result.delete_markers) == 1
        marker = result.delete_markers[0]
        assert marker.version_id == deleted.delete_marker_version_id
        assert marker.is_latest is True
        assert marker.etag is None
        assert result.versions[0].is_latest is False

    async def test_null_version_listed(self, bucket_service, object_service, bucket):
        """Objects written before versioning report the null version."""
        await object_service.put_object(bucket, "a", b"old")
        await bucket_service.put_versioning_configuration(
            bucket, VersioningConfiguration(status="Enabled")
        )
        await object_service.put_object(bucket, "a", b"new")
        result = await bucket_service.list_object_versions(bucket)
        assert [v.version_id for v in result.versions][-1] == "null"
        assert len(result.versions) == 2

    async def test_paging_within_key(self, bucket_service, object_service, versioned_bucket):
        """Paging with key and version markers resumes inside a key's versions."""
        for body in (b"1", b"2", b"3"):
            await object_service.put_object(versioned_bucket, "a", body)
        await object_service.put_object(versioned_bucket, "b", b"1")

        seen = []
        key_marker = version_marker = None
        while True:
            page = await bucket_service.list_object_versions(
                versioned_bucket,
                max_keys=2,
                key_marker=key_marker,
                version_id_marker=version_marker,
            )
            seen.extend((v.key, v.version_id) for v in page.versions)
            if not page.is_truncated:
                break
            key_marker, version_marker = page.next_key_marker, page.next_version_id_marker

        assert [key for key, _ in seen] == ["a", "a", "a", "b"]
        assert len(set(seen)) == 4

    async def test_key_marker_alone_skips_key(
        self, bucket_service, object_service, versioned_bucket
    ):
        """A key marker without version marker starts after that key."""
        await object_service.put_object(versioned_bucket, "a", b"1")
        await object_service.put_object(versioned_bucket, "b", b"1")
        result = await bucket_service.list_object_versions(versioned_bucket, key_marker="a")
        assert [v.key for v in result.versions] == ["b"]
