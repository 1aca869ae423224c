"""Tests for the application factory and its start/stop lifecycle."""

import logging

import pytest
from prometheus_client import REGISTRY

from localbucket.app import create_app
from localbucket.config import LocalBucketConfig, ObservabilityConfig, StoreConfig
from localbucket.service.ingest import STAGING_DIR


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    level, handlers = root.level, root.handlers[:]
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _config(root="", retain=False, buckets=(), metrics_enabled=False):
    return LocalBucketConfig(
        store=StoreConfig(
            root=str(root), retain_files_on_exit=retain, initial_buckets=list(buckets)
        ),
        observability=ObservabilityConfig(metrics=metrics_enabled),
    )


class TestStart:
    """Tests for LocalBucketApp.start()."""

    async def test_unstarted(self, tmp_path):
        """Nothing exists before start."""
        app = create_app(_config(tmp_path / "data"))
        assert app.bucket_service is None
        assert not (tmp_path / "data").exists()

    async def test_creates_root_and_staging(self, tmp_path):
        """start creates the root and its staging directory."""
        app = create_app(_config(tmp_path / "data", retain=True))
        await app.start()
        assert (tmp_path / "data" / STAGING_DIR).is_dir()
        assert app.root == tmp_path / "data"

    async def test_initial_buckets(self, tmp_path):
        """Configured buckets are created once and survive a restart."""
        config = _config(tmp_path / "data", retain=True, buckets=["seed-one", "seed-two"])
        app = create_app(config)
        await app.start()
        listing = await app.bucket_service.list_buckets()
        assert [b.name for b in listing.buckets] == ["seed-one", "seed-two"]
        await app.stop()

        again = create_app(config)
        await again.start()
        listing = await again.bucket_service.list_buckets()
        assert [b.name for b in listing.buckets] == ["seed-one", "seed-two"]

    async def test_orphan_spool_files_removed(self, tmp_path):
        """Temp files left by an interrupted run are swept on start."""
        staging = tmp_path / "data" / STAGING_DIR
        staging.mkdir(parents=True)
        (staging / "leftover.tmp.body").write_bytes(b"partial")
        await create_app(_config(tmp_path / "data", retain=True)).start()
        assert list(staging.iterdir()) == []

    async def test_services_share_root(self, tmp_path):
        """Objects written through the app land under its root."""
        app = create_app(_config(tmp_path / "data", retain=True, buckets=["seed"]))
        await app.start()
        await app.object_service.put_object("seed", "k", b"data")
        result = await app.object_service.get_object("seed", "k")
        assert b"".join([c async for c in result.body]) == b"data"

    async def test_gauges_seeded(self, tmp_path):
        """Bucket and object gauges reflect what is already on disk."""
        config = _config(tmp_path / "data", retain=True, buckets=["seed"], metrics_enabled=True)
        app = create_app(config)
        await app.start()
        await app.object_service.put_object("seed", "a", b"1")
        await app.object_service.put_object("seed", "b", b"2")

        await create_app(config).start()
        assert REGISTRY.get_sample_value("localbucket_buckets_total") == 1
        assert REGISTRY.get_sample_value("localbucket_objects_total") == 2


class TestStop:
    """Tests for LocalBucketApp.stop()."""

    async def test_temporary_root_removed(self):
        """A temporary root is deleted on stop."""
        app = create_app(_config())
        await app.start()
        root = app.root
        assert root.is_dir()
        await app.stop()
        assert not root.exists()

    async def test_retain_files(self, tmp_path):
        """retain_files_on_exit keeps the root."""
        app = create_app(_config(tmp_path / "data", retain=True))
        await app.start()
        await app.stop()
        assert (tmp_path / "data").is_dir()

    async def test_lifespan(self, tmp_path):
        """lifespan starts the app and removes the root when done."""
        app = create_app(_config(tmp_path / "data"))
        async with app.lifespan() as running:
            assert running is app
            assert (tmp_path / "data").is_dir()
        assert not (tmp_path / "data").exists()
