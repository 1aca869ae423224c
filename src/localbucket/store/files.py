"""Filesystem primitives shared by the stores.

Crash-only design:
    - Atomic writes via temp-fsync-rename pattern.
    - Never acknowledge before data is fsync'd to disk.
    - Startup cleans orphan ``.tmp.`` files left by interrupted writes.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import uuid
from collections.abc import AsyncIterator, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO, TypeVar

from pydantic import BaseModel, ValidationError

from localbucket.checksums import ChecksumHash
from localbucket.errors import StorageIOError

logger = logging.getLogger(__name__)

# Streaming chunk size: 64 KB
CHUNK_SIZE = 64 * 1024

ModelT = TypeVar("ModelT", bound=BaseModel)


@contextmanager
def io_errors(action: str) -> Iterator[None]:
    """Re-raise filesystem failures as StorageIOError."""
    try:
        yield
    except OSError as exc:
        logger.error("Storage I/O failure while %s: %s", action, exc)
        raise StorageIOError(f"Storage I/O failure while {action}") from exc


def _temp_path(path: Path) -> Path:
    return path.with_name(f"{path.name}.tmp.{uuid.uuid4().hex[:8]}")


def _unlink_quietly(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.warning("Could not remove temp file %s", path, exc_info=True)


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` via temp file, fsync and rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = _temp_path(path)
    try:
        fd = os.open(str(tmp), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
        try:
            os.write(fd, data)
            os.fsync(fd)
        finally:
            os.close(fd)
        tmp.replace(path)
    except Exception:
        _unlink_quietly(tmp)
        raise


def atomic_copy_file(source: Path, dest: Path, start: int = 0, length: int | None = None) -> str:
    """Copy ``length`` bytes of ``source`` from ``start`` into ``dest`` atomically.

    Args:
        source: File to read.
        dest: Final destination path.
        start: Byte offset in ``source``.
        length: Number of bytes, or None for the rest of the file.

    Returns:
        The hex MD5 of the copied bytes.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = _temp_path(dest)
    md5 = hashlib.md5()
    try:
        with open(source, "rb") as src, open(tmp, "wb") as out:
            if start:
                src.seek(start)
            remaining = length
            while True:
                to_read = CHUNK_SIZE if remaining is None else min(CHUNK_SIZE, remaining)
                if to_read <= 0:
                    break
                chunk = src.read(to_read)
                if not chunk:
                    break
                out.write(chunk)
                md5.update(chunk)
                if remaining is not None:
                    remaining -= len(chunk)
            out.flush()
            os.fsync(out.fileno())
        tmp.replace(dest)
    except Exception:
        _unlink_quietly(tmp)
        raise
    return md5.hexdigest()


def atomic_concat_files(sources: list[Path], dest: Path) -> None:
    """Concatenate ``sources`` in order into ``dest`` atomically."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = _temp_path(dest)
    try:
        with open(tmp, "wb") as out:
            for source in sources:
                with open(source, "rb") as src:
                    shutil.copyfileobj(src, out, CHUNK_SIZE)
            out.flush()
            os.fsync(out.fileno())
        tmp.replace(dest)
    except Exception:
        _unlink_quietly(tmp)
        raise


def spool_stream(
    stream: IO[bytes], dest: Path, checksum: ChecksumHash | None = None
) -> tuple[int, str]:
    """Drain ``stream`` into ``dest`` while hashing.

    Args:
        stream: Readable binary source, consumed to end-of-stream.
        dest: File to create.
        checksum: Optional rolling checksum updated with every chunk.

    Returns:
        ``(size, md5_hex)`` of the written bytes.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    md5 = hashlib.md5()
    size = 0
    with open(dest, "wb") as out:
        while chunk := stream.read(CHUNK_SIZE):
            out.write(chunk)
            md5.update(chunk)
            if checksum is not None:
                checksum.update(chunk)
            size += len(chunk)
        out.flush()
        os.fsync(out.fileno())
    return size, md5.hexdigest()


def write_model(path: Path, model: BaseModel) -> None:
    """Persist a Pydantic model as JSON atomically."""
    atomic_write_bytes(path, model.model_dump_json(indent=2).encode("utf-8"))


def read_model(path: Path, model_type: type[ModelT]) -> ModelT | None:
    """Load a Pydantic model from JSON, or None if the file does not exist.

    Raises:
        StorageIOError: If the file cannot be read or does not validate.
    """
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise StorageIOError(f"Could not read metadata file {path.name}") from exc
    try:
        return model_type.model_validate_json(raw)
    except ValidationError as exc:
        raise StorageIOError(f"Corrupt metadata file {path}") from exc


async def iter_file(path: Path, offset: int = 0, length: int | None = None) -> AsyncIterator[bytes]:
    """Yield 64 KB chunks of ``path`` from ``offset`` up to ``length`` bytes.

    Args:
        path: The file to read.
        offset: Byte offset to start reading from.
        length: Number of bytes to read, or None for all remaining.

    Yields:
        Chunks of bytes from the file.
    """
    remaining = length

    with open(path, "rb") as f:
        if offset > 0:
            f.seek(offset)

        while True:
            if remaining is not None:
                to_read = min(CHUNK_SIZE, remaining)
                if to_read <= 0:
                    break
            else:
                to_read = CHUNK_SIZE

            chunk = f.read(to_read)
            if not chunk:
                break

            yield chunk

            if remaining is not None:
                remaining -= len(chunk)


def remove_tree(path: Path) -> None:
    """Remove a directory tree; a missing directory is not an error."""
    if path.exists():
        shutil.rmtree(path)


def clean_temp_files(root: Path) -> int:
    """Remove orphan temp files left by interrupted atomic writes.

    Returns:
        The number of files removed.
    """
    count = 0
    for dirpath, _dirnames, filenames in os.walk(root):
        for fname in filenames:
            if ".tmp." in fname:
                try:
                    os.unlink(os.path.join(dirpath, fname))
                    count += 1
                except OSError:
                    logger.warning("Could not remove orphan temp file %s", fname, exc_info=True)
    if count > 0:
        logger.info("Cleaned %d orphan temp files on startup", count)
    return count
