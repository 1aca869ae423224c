"""Shared pytest fixtures for localbucket tests.

Every test gets fresh stores rooted in its own ``tmp_path``. The minimum
part size is lowered so multipart tests can use small parts; tests of the
size rule build their own store with the default.
"""

import pytest

from localbucket.service.bucket_service import BucketService
from localbucket.service.ingest import STAGING_DIR
from localbucket.service.multipart_service import MultipartService
from localbucket.service.object_service import ObjectService
from localbucket.store import create_stores
from localbucket.store.models import VersioningConfiguration

TEST_MIN_PART_SIZE = 1


@pytest.fixture
def root(tmp_path):
    """The store root for one test."""
    path = tmp_path / "store"
    path.mkdir()
    return path


@pytest.fixture
def staging(root):
    """Spool directory for request bodies."""
    path = root / STAGING_DIR
    path.mkdir()
    return path


@pytest.fixture
def stores(root):
    """``(buckets, objects, multiparts)`` sharing one root."""
    return create_stores(root, min_part_size=TEST_MIN_PART_SIZE)


@pytest.fixture
def bucket_store(stores):
    return stores[0]


@pytest.fixture
def object_store(stores):
    return stores[1]


@pytest.fixture
def multipart_store(stores):
    return stores[2]


@pytest.fixture
def bucket_service(stores):
    buckets, objects, _ = stores
    return BucketService(buckets, objects)


@pytest.fixture
def object_service(stores, staging):
    buckets, objects, _ = stores
    return ObjectService(buckets, objects, staging)


@pytest.fixture
def multipart_service(stores, staging):
    buckets, _, multiparts = stores
    return MultipartService(buckets, multiparts, staging)


@pytest.fixture
async def bucket(bucket_service):
    """A plain bucket named ``test-bucket``."""
    await bucket_service.create_bucket("test-bucket")
    return "test-bucket"


@pytest.fixture
async def versioned_bucket(bucket_service):
    """A bucket named ``versioned-bucket`` with versioning enabled."""
    await bucket_service.create_bucket("versioned-bucket")
    await bucket_service.put_versioning_configuration(
        "versioned-bucket", VersioningConfiguration(status="Enabled")
    )
    return "versioned-bucket"
