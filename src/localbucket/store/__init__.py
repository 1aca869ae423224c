"""Filesystem-backed bucket, object and multipart stores."""

from pathlib import Path

from localbucket.store.bucket_store import BucketStore
from localbucket.store.cleaner import StoreCleaner
from localbucket.store.multipart_store import MIN_PART_SIZE, MultipartStore
from localbucket.store.object_store import ObjectStore

__all__ = [
    "BucketStore",
    "create_stores",
    "MultipartStore",
    "ObjectStore",
    "StoreCleaner",
]


def create_stores(
    root: str | Path, region: str = "us-east-1", min_part_size: int = MIN_PART_SIZE
) -> tuple[BucketStore, ObjectStore, MultipartStore]:
    """Create the three stores sharing one root directory.

    Args:
        root: The store root.
        region: Region assigned to new buckets.
        min_part_size: Minimum size of non-final multipart parts.

    Returns:
        ``(buckets, objects, multiparts)``.
    """
    buckets = BucketStore(root, region)
    objects = ObjectStore(buckets)
    multiparts = MultipartStore(buckets, objects, min_part_size)
    return buckets, objects, multiparts
