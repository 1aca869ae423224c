"""Application factory wiring the stores and services of localbucket."""

from __future__ import annotations

import logging
import tempfile
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from localbucket import metrics
from localbucket.config import LocalBucketConfig
from localbucket.logging_config import configure_logging
from localbucket.service.bucket_service import BucketService
from localbucket.service.ingest import STAGING_DIR
from localbucket.service.multipart_service import MultipartService
from localbucket.service.object_service import ObjectService
from localbucket.store import StoreCleaner, create_stores
from localbucket.store.bucket_store import BucketStore
from localbucket.store.files import clean_temp_files
from localbucket.store.multipart_store import MIN_PART_SIZE, MultipartStore
from localbucket.store.object_store import ObjectStore

logger = logging.getLogger(__name__)


class LocalBucketApp:
    """Holds the stores and services for one store root.

    Nothing touches the disk until :meth:`start` is awaited. An empty
    ``config.store.root`` makes ``start`` create a fresh temporary root.

    Attributes:
        config: The application configuration.
        root: The store root, set by ``start``.
        buckets: Bucket store.
        objects: Object store.
        multiparts: Multipart store.
        bucket_service: Bucket operations and listings.
        object_service: Object operations.
        multipart_service: Multipart operations.
    """

    def __init__(self, config: LocalBucketConfig, min_part_size: int = MIN_PART_SIZE) -> None:
        self.config = config
        self.min_part_size = min_part_size
        self.root: Path | None = None
        self.buckets: BucketStore | None = None
        self.objects: ObjectStore | None = None
        self.multiparts: MultipartStore | None = None
        self.bucket_service: BucketService | None = None
        self.object_service: ObjectService | None = None
        self.multipart_service: MultipartService | None = None
        self.cleaner: StoreCleaner | None = None

    async def start(self) -> None:
        """Prepare the store root and build the stores and services.

        Orphan temp files from an interrupted run are removed, gauges are
        seeded from disk and the configured initial buckets are created.
        """
        store_config = self.config.store
        configure_logging(self.config.logging.level, self.config.logging.format)

        if store_config.root:
            self.root = Path(store_config.root)
        else:
            self.root = Path(tempfile.mkdtemp(prefix="localbucket-"))
        self.root.mkdir(parents=True, exist_ok=True)
        staging = self.root / STAGING_DIR
        staging.mkdir(exist_ok=True)
        clean_temp_files(self.root)

        if self.config.observability.metrics:
            metrics.init_metrics()

        self.buckets, self.objects, self.multiparts = create_stores(
            self.root, store_config.region, self.min_part_size
        )
        self.bucket_service = BucketService(self.buckets, self.objects)
        self.object_service = ObjectService(self.buckets, self.objects, staging)
        self.multipart_service = MultipartService(self.buckets, self.multiparts, staging)
        self.cleaner = StoreCleaner(self.root, store_config.retain_files_on_exit)

        await self._seed_gauges()
        for name in store_config.initial_buckets:
            if not await self.buckets.does_bucket_exist(name):
                await self.bucket_service.create_bucket(name)
                logger.info("Created initial bucket %s", name, extra={"bucket": name})

        logger.info("Store initialized at %s", self.root)

    async def _seed_gauges(self) -> None:
        if metrics.buckets_total is None:
            return
        existing = await self.buckets.list_buckets()
        uploads = 0
        for bucket in existing:
            uploads += len(await self.multiparts.list_multipart_uploads(bucket))
        metrics.buckets_total.set(len(existing))
        metrics.objects_total.set(sum(len(bucket.objects) for bucket in existing))
        metrics.multipart_uploads_active.set(uploads)

    async def stop(self) -> None:
        """Remove the store root unless ``retain_files_on_exit`` is set."""
        if self.cleaner is not None:
            self.cleaner.cleanup()
        logger.info("Store stopped")

    @asynccontextmanager
    async def lifespan(self) -> AsyncIterator[LocalBucketApp]:
        """Run the app between ``start`` and ``stop``."""
        await self.start()
        try:
            yield self
        finally:
            await self.stop()


def create_app(config: LocalBucketConfig, min_part_size: int = MIN_PART_SIZE) -> LocalBucketApp:
    """Create the application for ``config``.

    Args:
        config: The application configuration.
        min_part_size: Minimum size of non-final multipart parts.

    Returns:
        An unstarted LocalBucketApp.
    """
    return LocalBucketApp(config, min_part_size)
