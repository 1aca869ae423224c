"""Multipart upload staging and assembly.

Uploads stage under ``{root}/{bucket}/multiparts/{upload_id}/``: the record
lives in ``multipartMetadata.json`` and every part in ``{n}.part``. The key's
identifier is reserved in the bucket index at initiation and shared with the
object produced by completion.

Completion and abort keep the record with its ``state`` set and drop the
staged parts. Every mutating call takes the upload's lock and re-reads the
record once it holds it, so of a racing complete and abort exactly one
succeeds.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path

from localbucket import metrics
from localbucket.checksums import (
    ChecksumAlgorithm,
    ChecksumType,
    checksum_file,
    composite_checksum,
    default_checksum_type,
    md5_file,
    multipart_etag,
    verify_checksum,
)
from localbucket.errors import (
    BadRequest,
    EntityTooSmall,
    InvalidPart,
    InvalidPartOrder,
    NoSuchKey,
    NoSuchUpload,
    NoSuchVersion,
    UploadNotActive,
)
from localbucket.ranges import ByteRange
from localbucket.store.bucket_store import BucketStore
from localbucket.store.files import (
    atomic_concat_files,
    atomic_copy_file,
    io_errors,
    read_model,
    write_model,
)
from localbucket.store.locks import LockTable
from localbucket.store.models import (
    DEFAULT_OWNER,
    BucketMetadata,
    CompletedPart,
    ListPartsResult,
    MultipartUploadRecord,
    ObjectMetadata,
    Owner,
    Part,
    Tag,
    UploadState,
    new_id,
)
from localbucket.store.object_store import ObjectStore
from localbucket.validation import validate_part_number

logger = logging.getLogger(__name__)

MULTIPARTS_DIR = "multiparts"
UPLOAD_META_FILE = "multipartMetadata.json"
PART_SUFFIX = ".part"

# Minimum size of every part but the last: 5 MiB
MIN_PART_SIZE = 5 * 1024 * 1024


def _format_mtime(path: Path) -> str:
    mtime = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
    return mtime.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


class MultipartStore:
    """Multipart upload engine on top of the bucket and object stores.

    Attributes:
        buckets: Bucket store holding the key index.
        objects: Object store receiving completed uploads.
        min_part_size: Minimum size of every requested part except the last.
        locks: Per-upload locks.
    """

    def __init__(
        self,
        buckets: BucketStore,
        objects: ObjectStore,
        min_part_size: int = MIN_PART_SIZE,
    ) -> None:
        self.buckets = buckets
        self.objects = objects
        self.min_part_size = min_part_size
        self.locks = LockTable()

    # -- paths -----------------------------------------------------------------

    def uploads_dir(self, bucket_name: str) -> Path:
        return self.buckets.bucket_root(bucket_name) / MULTIPARTS_DIR

    def upload_dir(self, bucket_name: str, upload_id: str) -> Path:
        if not upload_id or "/" in upload_id or "\\" in upload_id or upload_id in (".", ".."):
            raise NoSuchUpload(upload_id)
        return self.uploads_dir(bucket_name) / upload_id

    def part_path(self, bucket_name: str, upload_id: str, part_number: int) -> Path:
        return self.upload_dir(bucket_name, upload_id) / f"{part_number}{PART_SUFFIX}"

    # -- records ---------------------------------------------------------------

    def _read_record(self, bucket_name: str, upload_id: str) -> MultipartUploadRecord | None:
        path = self.upload_dir(bucket_name, upload_id) / UPLOAD_META_FILE
        return read_model(path, MultipartUploadRecord)

    def _require(
        self, bucket_name: str, upload_id: str, key: str | None = None
    ) -> MultipartUploadRecord:
        record = self._read_record(bucket_name, upload_id)
        if record is None or (key is not None and record.key != key):
            raise NoSuchUpload(upload_id)
        return record

    def _require_live(self, bucket_name: str, upload_id: str, key: str) -> MultipartUploadRecord:
        record = self._require(bucket_name, upload_id, key)
        if record.state is not UploadState.INITIATED:
            raise UploadNotActive(upload_id)
        return record

    def _retire(self, bucket_name: str, record: MultipartUploadRecord, state: UploadState) -> None:
        upload_dir = self.upload_dir(bucket_name, record.upload_id)
        with io_errors(f"closing upload {record.upload_id}"):
            write_model(upload_dir / UPLOAD_META_FILE, record.model_copy(update={"state": state}))
        metrics.adjust(metrics.multipart_uploads_active, -1)

    def _drop_parts(self, bucket_name: str, upload_id: str) -> None:
        """Delete everything in the upload directory but the record."""
        for entry in self.upload_dir(bucket_name, upload_id).iterdir():
            if entry.name != UPLOAD_META_FILE:
                entry.unlink(missing_ok=True)

    async def create_multipart_upload(
        self,
        bucket: BucketMetadata,
        key: str,
        content_type: str | None = None,
        store_headers: dict[str, str] | None = None,
        owner: Owner | None = None,
        initiator: Owner | None = None,
        user_metadata: dict[str, str] | None = None,
        encryption_headers: dict[str, str] | None = None,
        tags: list[Tag] | None = None,
        storage_class: str | None = None,
        checksum_type: ChecksumType | None = None,
        checksum_algorithm: ChecksumAlgorithm | None = None,
    ) -> MultipartUploadRecord:
        """Reserve the key's identifier and write a new upload record.

        If the record cannot be written, a reservation made by this call is
        released again.

        Returns:
            The new upload record.

        Raises:
            NoSuchBucket: If the bucket does not exist.
            StorageIOError: If the record cannot be written.
        """
        current = await self.buckets.get_bucket_metadata(bucket.name)
        newly_reserved = current is not None and current.get_id(key) is None
        object_id = await self.buckets.add_key_to_bucket(key, bucket.name)

        if checksum_type is None:
            checksum_type = default_checksum_type(checksum_algorithm)
        owner = owner or DEFAULT_OWNER
        record = MultipartUploadRecord(
            upload_id=new_id(),
            bucket=bucket.name,
            key=key,
            id=object_id,
            content_type=content_type,
            store_headers=store_headers or {},
            user_metadata=user_metadata or {},
            encryption_headers=encryption_headers or {},
            tags=tags or [],
            storage_class=storage_class,
            checksum_algorithm=checksum_algorithm,
            checksum_type=checksum_type if checksum_algorithm is not None else None,
            owner=owner,
            initiator=initiator or owner,
        )
        try:
            with io_errors(f"creating multipart upload for {key}"):
                upload_dir = self.upload_dir(bucket.name, record.upload_id)
                write_model(upload_dir / UPLOAD_META_FILE, record)
        except Exception:
            if newly_reserved:
                await self.buckets.remove_from_bucket(key, bucket.name)
            raise

        metrics.adjust(metrics.multipart_uploads_active, 1)
        logger.info(
            "Initiated multipart upload %s for %s",
            record.upload_id,
            key,
            extra={"bucket": bucket.name, "key": key, "upload_id": record.upload_id},
        )
        return record

    async def list_multipart_uploads(
        self, bucket: BucketMetadata, prefix: str | None = None
    ) -> list[MultipartUploadRecord]:
        """Live uploads of a bucket whose key starts with ``prefix``; unordered."""
        uploads_dir = self.uploads_dir(bucket.name)
        if not uploads_dir.is_dir():
            return []
        uploads = []
        with io_errors(f"listing multipart uploads of {bucket.name}"):
            entries = [entry for entry in uploads_dir.iterdir() if entry.is_dir()]
        for entry in entries:
            record = self._read_record(bucket.name, entry.name)
            if record is None or record.state is not UploadState.INITIATED:
                continue
            if prefix and not record.key.startswith(prefix):
                continue
            uploads.append(record)
        return uploads

    # -- parts -----------------------------------------------------------------

    async def put_part(
        self,
        bucket: BucketMetadata,
        key: str,
        upload_id: str,
        part_number: int | str,
        content_path: Path,
    ) -> str:
        """Stage ``content_path`` as part ``part_number``, replacing a prior part.

        Returns:
            The hex MD5 of the part, its ETag.

        Raises:
            InvalidPartNumber: If the part number is outside 1..10000.
            NoSuchUpload: If the upload does not exist.
            UploadNotActive: If the upload was completed or aborted.
        """
        number = validate_part_number(part_number)
        self._require_live(bucket.name, upload_id, key)
        async with self.locks.hold(upload_id):
            self._require_live(bucket.name, upload_id, key)
            with io_errors(f"storing part {number} of upload {upload_id}"):
                dest = self.part_path(bucket.name, upload_id, number)
                etag = atomic_copy_file(content_path, dest)
        logger.debug(
            "Stored part %d of upload %s",
            number,
            upload_id,
            extra={"bucket": bucket.name, "key": key, "upload_id": upload_id},
        )
        return etag

    async def copy_part(
        self,
        source_bucket: BucketMetadata,
        source_key: str,
        source_version_id: str | None,
        byte_range: ByteRange | None,
        part_number: int | str,
        dest_bucket: BucketMetadata,
        dest_key: str,
        upload_id: str,
    ) -> str:
        """Stage a byte range of an existing object as a part.

        The range end is clamped to the source length.

        Returns:
            The hex MD5 of the copied bytes.

        Raises:
            NoSuchKey: If the source key cannot be resolved.
            NoSuchVersion: If the requested source version does not exist.
            NoSuchUpload: If the upload does not exist.
            UploadNotActive: If the upload was completed or aborted.
        """
        number = validate_part_number(part_number)
        self._require_live(dest_bucket.name, upload_id, dest_key)
        source_id = source_bucket.get_id(source_key)
        if source_id is None:
            raise NoSuchKey(source_key)
        source = await self.objects.get_object_metadata(source_bucket, source_id, source_version_id)
        if source is None or source.delete_marker:
            if source_version_id is not None:
                raise NoSuchVersion(source_version_id)
            raise NoSuchKey(source_key)

        start, length = 0, None
        if byte_range is not None:
            start = byte_range.start
            length = min(byte_range.end, source.size - 1) - start + 1

        source_data = self.objects.data_path(source_bucket, source_id, source.version_id)
        async with self.locks.hold(upload_id):
            self._require_live(dest_bucket.name, upload_id, dest_key)
            with io_errors(f"copying part {number} of upload {upload_id}"):
                return atomic_copy_file(
                    source_data,
                    self.part_path(dest_bucket.name, upload_id, number),
                    start,
                    length,
                )

    def _staged_parts(self, bucket_name: str, record: MultipartUploadRecord) -> list[Part]:
        parts = []
        with io_errors(f"reading parts of upload {record.upload_id}"):
            for entry in self.upload_dir(bucket_name, record.upload_id).iterdir():
                number = entry.name[: -len(PART_SUFFIX)]
                if not entry.name.endswith(PART_SUFFIX) or not number.isdigit():
                    continue
                checksum = None
                if record.checksum_algorithm is not None:
                    checksum = checksum_file(entry, record.checksum_algorithm)
                parts.append(
                    Part(
                        part_number=int(number),
                        etag=md5_file(entry),
                        size=entry.stat().st_size,
                        last_modified=_format_mtime(entry),
                        checksum=checksum,
                    )
                )
        parts.sort(key=lambda p: p.part_number)
        return parts

    async def list_parts(
        self,
        bucket: BucketMetadata,
        key: str,
        upload_id: str,
        part_number_marker: int | None = None,
        max_parts: int = 1000,
    ) -> ListPartsResult:
        """One page of staged parts after ``part_number_marker``.

        Raises:
            NoSuchUpload: If the upload does not exist for ``key``.
        """
        record = self._require(bucket.name, upload_id, key)
        if record.state is not UploadState.INITIATED:
            raise NoSuchUpload(upload_id)
        parts = self._staged_parts(bucket.name, record)
        if part_number_marker is not None:
            parts = [p for p in parts if p.part_number > part_number_marker]

        result = ListPartsResult(
            bucket=bucket.name,
            key=key,
            upload_id=upload_id,
            max_parts=max_parts,
            part_number_marker=part_number_marker,
            owner=record.owner,
            initiator=record.initiator,
            storage_class=record.storage_class or "STANDARD",
            checksum_algorithm=record.checksum_algorithm,
            checksum_type=record.checksum_type,
        )
        if len(parts) > max_parts:
            parts = parts[:max_parts]
            result.is_truncated = True
            result.next_part_number_marker = parts[-1].part_number if parts else None
        result.parts = parts
        return result

    # -- completion ------------------------------------------------------------

    def _verify_parts(
        self, record: MultipartUploadRecord, requested: list[CompletedPart], staged: list[Part]
    ) -> list[Part]:
        """Match requested parts against staged ones and check order and sizes."""
        by_number = {p.part_number: p for p in staged}
        selected = []
        for requested_part in requested:
            stored = by_number.get(requested_part.part_number)
            if stored is None or stored.etag != requested_part.etag.strip('"'):
                logger.debug(
                    "Part %d of upload %s not found or ETag mismatch",
                    requested_part.part_number,
                    record.upload_id,
                    extra={"upload_id": record.upload_id},
                )
                raise InvalidPart()
            selected.append(stored)

        prev_pn = 0
        for requested_part in requested:
            if requested_part.part_number <= prev_pn:
                raise InvalidPartOrder()
            prev_pn = requested_part.part_number

        for part in selected[:-1]:
            if part.size < self.min_part_size:
                raise EntityTooSmall(
                    f"Your proposed upload is smaller than the minimum allowed size. "
                    f"Part {part.part_number} has size {part.size} bytes."
                )
        return selected

    def _verify_part_checksums(
        self,
        record: MultipartUploadRecord,
        requested: list[CompletedPart],
        selected: list[Part],
        checksum_type: ChecksumType | None,
    ) -> None:
        algorithm = record.checksum_algorithm
        if algorithm is None:
            return
        if checksum_type is not None and checksum_type != record.checksum_type:
            raise BadRequest(
                f"The upload was created using the {record.checksum_type.value} checksum mode. "
                "The complete request must use the same checksum mode."
            )
        for requested_part, stored in zip(requested, selected):
            if not requested_part.checksum:
                raise BadRequest(
                    f"The upload was created using a {algorithm.value} checksum. "
                    "The complete request must include the checksum for each part. "
                    f"It was missing for part {requested_part.part_number} in the request."
                )
            if requested_part.checksum != stored.checksum:
                raise InvalidPart()

    async def complete_multipart_upload(
        self,
        bucket: BucketMetadata,
        key: str,
        upload_id: str,
        requested_parts: list[CompletedPart],
        encryption_headers: dict[str, str] | None = None,
        checksum: str | None = None,
        checksum_algorithm: ChecksumAlgorithm | None = None,
        checksum_type: ChecksumType | None = None,
    ) -> ObjectMetadata:
        """Validate the requested parts and assemble them into one object version.

        All validation happens before any byte is concatenated. If assembly
        or persistence fails, the upload stays live and may be completed again.

        Args:
            bucket: The owning bucket.
            key: The upload's key.
            upload_id: The upload id.
            requested_parts: ``(part number, etag)`` pairs in request order.
            encryption_headers: Overrides the encryption headers of the upload.
            checksum: Whole-object checksum supplied by the client.
            checksum_algorithm: Algorithm of ``checksum``; defaults to the upload's.
            checksum_type: Checksum mode asserted by the client.

        Returns:
            The stored object version, whose ETag is the multipart ETag.

        Raises:
            NoSuchUpload: If the upload does not exist for ``key``.
            UploadNotActive: If it was completed or aborted.
            InvalidPart: If a part is missing or its ETag/checksum differs.
            InvalidPartOrder: If part numbers are not strictly ascending.
            EntityTooSmall: If a part other than the last is too small.
            BadRequest: If part checksums are missing or the mode differs.
            BadChecksum: If ``checksum`` does not match.
        """
        self._require_live(bucket.name, upload_id, key)
        async with self.locks.hold(upload_id):
            record = self._require_live(bucket.name, upload_id, key)
            staged = self._staged_parts(bucket.name, record)
            selected = self._verify_parts(record, requested_parts, staged)
            self._verify_part_checksums(record, requested_parts, selected, checksum_type)

            algorithm = record.checksum_algorithm or checksum_algorithm
            upload_dir = self.upload_dir(bucket.name, upload_id)
            assembled = upload_dir / f"assembled.tmp.{uuid.uuid4().hex[:8]}"
            try:
                with io_errors(f"assembling upload {upload_id}"):
                    atomic_concat_files(
                        [self.part_path(bucket.name, upload_id, p.part_number) for p in selected],
                        assembled,
                    )
                final_checksum, final_type = self._final_checksum(
                    record, selected, assembled, algorithm, checksum
                )
                etag = multipart_etag([p.etag for p in selected])

                current = await self.buckets.get_bucket_metadata(bucket.name) or bucket
                object_id = await self.buckets.add_key_to_bucket(key, bucket.name)
                metadata = await self.objects.store_object_metadata(
                    current,
                    object_id,
                    key,
                    record.content_type,
                    record.store_headers,
                    assembled,
                    record.user_metadata,
                    encryption_headers or record.encryption_headers,
                    etag,
                    record.tags,
                    algorithm,
                    final_checksum,
                    record.owner,
                    record.storage_class,
                    final_type,
                )
            finally:
                assembled.unlink(missing_ok=True)

            self._retire(bucket.name, record, UploadState.COMPLETED)
            try:
                self._drop_parts(bucket.name, upload_id)
            except OSError:
                logger.warning(
                    "Failed to clean up part files for upload %s after completion: %s/%s",
                    upload_id,
                    bucket.name,
                    key,
                    exc_info=True,
                )

        logger.info(
            "Completed multipart upload %s with %d parts",
            upload_id,
            len(selected),
            extra={"bucket": bucket.name, "key": key, "upload_id": upload_id},
        )
        return metadata

    def _final_checksum(
        self,
        record: MultipartUploadRecord,
        selected: list[Part],
        assembled: Path,
        algorithm: ChecksumAlgorithm | None,
        client_checksum: str | None,
    ) -> tuple[str | None, ChecksumType | None]:
        if algorithm is None:
            return None, None
        if record.checksum_algorithm is None:
            checksum_type = ChecksumType.FULL_OBJECT
        else:
            checksum_type = record.checksum_type or default_checksum_type(algorithm)
        if checksum_type is ChecksumType.FULL_OBJECT:
            with io_errors(f"checksumming upload {record.upload_id}"):
                computed = checksum_file(assembled, algorithm)
            if client_checksum:
                verify_checksum(computed, client_checksum, algorithm)
            return computed, checksum_type

        computed = composite_checksum([p.checksum or "" for p in selected], algorithm)
        if client_checksum:
            expected = computed if "-" in client_checksum else computed.rsplit("-", 1)[0]
            verify_checksum(expected, client_checksum, algorithm)
        return computed, checksum_type

    # -- abort -----------------------------------------------------------------

    async def abort_multipart_upload(
        self, bucket: BucketMetadata, key: str, upload_id: str
    ) -> bool:
        """Discard staged parts and release the key reservation if unused.

        Aborting an already aborted upload is a no-op.

        Returns:
            True if this call aborted the upload, False if it already was.

        Raises:
            NoSuchUpload: If the upload does not exist for ``key``.
            UploadNotActive: If the upload was completed.
        """
        self._require(bucket.name, upload_id, key)
        async with self.locks.hold(upload_id):
            record = self._require(bucket.name, upload_id, key)
            if record.state is UploadState.ABORTED:
                return False
            if record.state is UploadState.COMPLETED:
                raise UploadNotActive(upload_id)
            self._retire(bucket.name, record, UploadState.ABORTED)
            with io_errors(f"aborting upload {upload_id}"):
                self._drop_parts(bucket.name, upload_id)
            await self._release_reservation(bucket.name, record)

        logger.info(
            "Aborted multipart upload %s",
            upload_id,
            extra={"bucket": bucket.name, "key": key, "upload_id": upload_id},
        )
        return True

    async def _release_reservation(self, bucket_name: str, record: MultipartUploadRecord) -> None:
        """Unregister the key unless it has versions or another live upload."""
        bucket = await self.buckets.get_bucket_metadata(bucket_name)
        if bucket is None:
            return
        object_id = bucket.get_id(record.key)
        if object_id is None:
            return
        if await self.objects.get_object_metadata(bucket, object_id) is not None:
            return
        if any(u.key == record.key for u in await self.list_multipart_uploads(bucket, record.key)):
            return
        await self.buckets.remove_from_bucket(record.key, bucket_name)
