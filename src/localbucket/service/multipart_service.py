"""Multipart upload operations exposed to the request adapter."""

from __future__ import annotations

import logging
from operator import attrgetter
from pathlib import Path
from typing import IO

from localbucket.checksums import ChecksumAlgorithm, ChecksumType, parse_algorithm
from localbucket.conditionals import Preconditions, evaluate_preconditions
from localbucket.errors import InvalidArgument, NoSuchBucket, NoSuchKey, NoSuchVersion
from localbucket.listing import paginate, url_encode_ignore_slashes
from localbucket.metrics import track_operation
from localbucket.ranges import parse_copy_source_range
from localbucket.service.ingest import ingest_body
from localbucket.store.bucket_store import BucketStore
from localbucket.store.models import (
    BucketMetadata,
    CompletedPart,
    ListPartsResult,
    ListUploadsResult,
    MultipartUploadRecord,
    ObjectMetadata,
    Owner,
    Part,
    Tag,
    now_iso,
)
from localbucket.store.multipart_store import MultipartStore
from localbucket.validation import (
    validate_encoding_type,
    validate_max_keys,
    validate_object_key,
    validate_part_number,
    validate_tags,
)

logger = logging.getLogger(__name__)


def _upload_sort_key(upload: MultipartUploadRecord) -> tuple[str, str]:
    return upload.key, upload.upload_id


class MultipartService:
    """Multipart operations on top of the multipart store.

    Attributes:
        buckets: The bucket store.
        multiparts: The multipart store.
        staging: Directory receiving spooled part bodies.
    """

    def __init__(self, buckets: BucketStore, multiparts: MultipartStore, staging: Path) -> None:
        self.buckets = buckets
        self.multiparts = multiparts
        self.staging = staging

    async def _bucket(self, name: str) -> BucketMetadata:
        bucket = await self.buckets.get_bucket_metadata(name)
        if bucket is None:
            raise NoSuchBucket(name)
        return bucket

    async def create_multipart_upload(
        self,
        bucket_name: str,
        key: str,
        content_type: str | None = None,
        store_headers: dict[str, str] | None = None,
        owner: Owner | None = None,
        initiator: Owner | None = None,
        user_metadata: dict[str, str] | None = None,
        encryption_headers: dict[str, str] | None = None,
        tags: list[Tag] | None = None,
        storage_class: str | None = None,
        checksum_type: ChecksumType | str | None = None,
        checksum_algorithm: ChecksumAlgorithm | str | None = None,
    ) -> MultipartUploadRecord:
        """Start an upload and reserve the key's identifier.

        Raises:
            NoSuchBucket: If the bucket does not exist.
            InvalidArgument: On an unknown checksum type.
        """
        with track_operation("CreateMultipartUpload"):
            bucket = await self._bucket(bucket_name)
            validate_object_key(key)
            if tags:
                validate_tags(tags)
            algorithm = parse_algorithm(checksum_algorithm)
            if checksum_type is not None:
                try:
                    checksum_type = ChecksumType(str(checksum_type).upper())
                except ValueError:
                    raise InvalidArgument(f"Invalid checksum type: {checksum_type}")
            return await self.multiparts.create_multipart_upload(
                bucket,
                key,
                content_type,
                store_headers,
                owner,
                initiator,
                user_metadata,
                encryption_headers,
                tags,
                storage_class,
                checksum_type,
                algorithm,
            )

    async def upload_part(
        self,
        bucket_name: str,
        key: str,
        upload_id: str,
        part_number: int | str,
        body: IO[bytes] | bytes,
        content_md5: str | None = None,
        checksum_algorithm: ChecksumAlgorithm | str | None = None,
        checksum: str | None = None,
        aws_chunked: bool = False,
        decoded_length: int | None = None,
    ) -> Part:
        """Stage one part from a request body.

        Returns:
            The staged part with its ETag and, if requested, its checksum.

        Raises:
            InvalidPartNumber: If the part number is outside 1..10000.
            NoSuchUpload: If the upload does not exist.
            UploadNotActive: If the upload was completed or aborted.
            BadDigest: If Content-MD5 does not match.
            BadChecksum: If the checksum does not match.
        """
        with track_operation("UploadPart"):
            number = validate_part_number(part_number)
            bucket = await self._bucket(bucket_name)
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
                etag = await self.multiparts.put_part(bucket, key, upload_id, number, ingested.path)
            finally:
                ingested.discard()
            return Part(
                part_number=number,
                etag=etag,
                size=ingested.size,
                last_modified=now_iso(),
                checksum=ingested.checksum,
            )

    async def upload_part_copy(
        self,
        bucket_name: str,
        key: str,
        upload_id: str,
        part_number: int | str,
        source_bucket: str,
        source_key: str,
        source_version_id: str | None = None,
        copy_source_range: str | None = None,
        preconditions: Preconditions | None = None,
    ) -> Part:
        """Stage a byte range of an existing object as a part.

        Raises:
            NoSuchKey: If the source object does not exist.
            NoSuchVersion: If the source version does not exist.
            InvalidRange: If the copy range is malformed or unsatisfiable.
            PreconditionFailed: If a source precondition fails.
        """
        with track_operation("UploadPartCopy"):
            number = validate_part_number(part_number)
            bucket = await self._bucket(bucket_name)
            source = await self._bucket(source_bucket)
            source_id = source.get_id(source_key)
            if source_id is None:
                raise NoSuchKey(source_key)
            source_md = await self.multiparts.objects.get_object_metadata(
                source, source_id, source_version_id
            )
            if source_md is None or source_md.delete_marker:
                if source_version_id is not None:
                    raise NoSuchVersion(source_version_id)
                raise NoSuchKey(source_key)
            evaluate_preconditions(preconditions, source_md, for_read=False)

            byte_range = parse_copy_source_range(copy_source_range, source_md.size)
            etag = await self.multiparts.copy_part(
                source,
                source_key,
                source_md.version_id,
                byte_range,
                number,
                bucket,
                key,
                upload_id,
            )
            size = byte_range.length if byte_range is not None else source_md.size
            return Part(part_number=number, etag=etag, size=size, last_modified=now_iso())

    async def list_parts(
        self,
        bucket_name: str,
        key: str,
        upload_id: str,
        part_number_marker: int | str | None = None,
        max_parts: int | str | None = None,
    ) -> ListPartsResult:
        """One page of staged parts in ascending part number order."""
        with track_operation("ListParts"):
            bucket = await self._bucket(bucket_name)
            marker = None
            if part_number_marker is not None:
                try:
                    marker = int(part_number_marker)
                except (TypeError, ValueError):
                    raise InvalidArgument("Part number marker must be an integer")
            return await self.multiparts.list_parts(
                bucket, key, upload_id, marker, validate_max_keys(max_parts)
            )

    async def complete_multipart_upload(
        self,
        bucket_name: str,
        key: str,
        upload_id: str,
        parts: list[CompletedPart],
        encryption_headers: dict[str, str] | None = None,
        checksum: str | None = None,
        checksum_algorithm: ChecksumAlgorithm | str | None = None,
        checksum_type: ChecksumType | str | None = None,
    ) -> ObjectMetadata:
        """Assemble the requested parts into the final object.

        Raises:
            InvalidPart: If a part is missing or its ETag differs.
            InvalidPartOrder: If part numbers are not ascending.
            EntityTooSmall: If a part other than the last is too small.
            UploadNotActive: If the upload was completed or aborted.
        """
        with track_operation("CompleteMultipartUpload"):
            bucket = await self._bucket(bucket_name)
            if checksum_type is not None:
                try:
                    checksum_type = ChecksumType(str(checksum_type).upper())
                except ValueError:
                    raise InvalidArgument(f"Invalid checksum type: {checksum_type}")
            return await self.multiparts.complete_multipart_upload(
                bucket,
                key,
                upload_id,
                parts,
                encryption_headers,
                checksum,
                parse_algorithm(checksum_algorithm),
                checksum_type,
            )

    async def abort_multipart_upload(self, bucket_name: str, key: str, upload_id: str) -> None:
        """Discard an upload; aborting twice is a no-op.

        Raises:
            NoSuchUpload: If the upload does not exist.
            UploadNotActive: If the upload was already completed.
        """
        with track_operation("AbortMultipartUpload"):
            bucket = await self._bucket(bucket_name)
            await self.multiparts.abort_multipart_upload(bucket, key, upload_id)

    async def list_multipart_uploads(
        self,
        bucket_name: str,
        prefix: str | None = None,
        delimiter: str | None = None,
        key_marker: str | None = None,
        upload_id_marker: str | None = None,
        max_uploads: int | str | None = None,
        encoding_type: str | None = None,
    ) -> ListUploadsResult:
        """List live uploads ordered by key, then upload id.

        Uploads after ``(key_marker, upload_id_marker)`` are returned; prefix
        collapsing and truncation work as for object listings.
        """
        with track_operation("ListMultipartUploads"):
            max_uploads = validate_max_keys(max_uploads)
            encoding_type = validate_encoding_type(encoding_type)
            bucket = await self._bucket(bucket_name)

            uploads = sorted(
                await self.multiparts.list_multipart_uploads(bucket, prefix), key=_upload_sort_key
            )
            if key_marker:
                uploads = [
                    u
                    for u in uploads
                    if u.key > key_marker
                    or (u.key == key_marker and upload_id_marker and u.upload_id > upload_id_marker)
                ]
            page = paginate(uploads, prefix, delimiter, max_uploads, attrgetter("key"))

            result = ListUploadsResult(
                bucket=bucket_name,
                prefix=prefix,
                delimiter=delimiter,
                key_marker=key_marker,
                upload_id_marker=upload_id_marker,
                max_uploads=max_uploads,
                encoding_type=encoding_type,
                is_truncated=page.is_truncated,
                uploads=page.items,
                common_prefixes=page.common_prefixes,
            )
            if page.is_truncated and page.last is not None:
                result.next_key_marker = page.last.key
                result.next_upload_id_marker = page.last.upload_id
            if encoding_type == "url":
                result.uploads = [
                    u.model_copy(update={"key": url_encode_ignore_slashes(u.key)})
                    for u in result.uploads
                ]
                result.prefix = url_encode_ignore_slashes(prefix)
                result.common_prefixes = [
                    url_encode_ignore_slashes(p) for p in result.common_prefixes
                ]
            return result
