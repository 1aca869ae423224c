"""S3-compatible error definitions for localbucket."""


class S3Error(Exception):
    """An S3-compatible error with code, message, and HTTP status.

    Attributes:
        code: The S3 error code string (e.g. "NoSuchBucket", "InvalidPart").
        message: Human-readable error description.
        http_status: The HTTP status code the wire layer should return.
        extra_fields: Additional key-value pairs for the error response body.
    """

    def __init__(
        self,
        code: str,
        message: str,
        http_status: int = 400,
        extra_fields: dict[str, str] | None = None,
    ) -> None:
        """Initialize the S3 error.

        Args:
            code: S3 error code.
            message: Error description.
            http_status: HTTP status code (default 400).
            extra_fields: Optional extra response fields.
        """
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra_fields = extra_fields or {}


# -- Not found ----------------------------------------------------------------


class NoSuchBucket(S3Error):
    """The specified bucket does not exist."""

    def __init__(self, bucket: str = "") -> None:
        super().__init__(
            code="NoSuchBucket",
            message="The specified bucket does not exist.",
            http_status=404,
            extra_fields={"BucketName": bucket} if bucket else {},
        )


class NoSuchKey(S3Error):
    """The specified key does not exist."""

    def __init__(self, key: str = "") -> None:
        super().__init__(
            code="NoSuchKey",
            message="The specified key does not exist.",
            http_status=404,
            extra_fields={"Key": key} if key else {},
        )


class NoSuchVersion(S3Error):
    """The version ID does not match an existing version."""

    def __init__(self, version_id: str = "") -> None:
        super().__init__(
            code="NoSuchVersion",
            message="The version ID specified in the request does not match an existing version.",
            http_status=404,
            extra_fields={"VersionId": version_id} if version_id else {},
        )


class NoSuchUpload(S3Error):
    """The specified multipart upload does not exist."""

    def __init__(self, upload_id: str = "") -> None:
        super().__init__(
            code="NoSuchUpload",
            message=(
                "The specified multipart upload does not exist. The upload ID might be "
                "invalid, or the multipart upload might have been aborted or completed."
            ),
            http_status=404,
            extra_fields={"UploadId": upload_id} if upload_id else {},
        )


class NoSuchLifecycleConfiguration(S3Error):
    """The bucket has no lifecycle configuration."""

    def __init__(self, bucket: str = "") -> None:
        super().__init__(
            code="NoSuchLifecycleConfiguration",
            message="The lifecycle configuration does not exist.",
            http_status=404,
            extra_fields={"BucketName": bucket} if bucket else {},
        )


class NoSuchObjectLockConfiguration(S3Error):
    """The object carries neither a retention nor a legal hold."""

    def __init__(
        self, message: str = "The specified object does not have a ObjectLock configuration"
    ) -> None:
        super().__init__(code="NotFound", message=message, http_status=404)


# -- Conflicts ----------------------------------------------------------------


class BucketAlreadyExists(S3Error):
    """The requested bucket name is already in use."""

    def __init__(self, bucket: str = "") -> None:
        super().__init__(
            code="BucketAlreadyExists",
            message="The requested bucket name is not available.",
            http_status=409,
            extra_fields={"BucketName": bucket} if bucket else {},
        )


class BucketAlreadyOwnedByYou(S3Error):
    """The bucket already exists and is owned by you."""

    def __init__(self, bucket: str = "") -> None:
        super().__init__(
            code="BucketAlreadyOwnedByYou",
            message="Your previous request to create the named bucket succeeded and you already own it.",
            http_status=409,
            extra_fields={"BucketName": bucket} if bucket else {},
        )


class BucketNotEmpty(S3Error):
    """The bucket is not empty and cannot be deleted."""

    def __init__(self, bucket: str = "") -> None:
        super().__init__(
            code="BucketNotEmpty",
            message="The bucket you tried to delete is not empty.",
            http_status=409,
            extra_fields={"BucketName": bucket} if bucket else {},
        )


class UploadNotActive(S3Error):
    """The multipart upload was completed or aborted by a concurrent request."""

    def __init__(self, upload_id: str = "") -> None:
        super().__init__(
            code="UploadNotActive",
            message="The multipart upload is no longer active. It was completed or aborted.",
            http_status=409,
            extra_fields={"UploadId": upload_id} if upload_id else {},
        )


# -- Invalid input ------------------------------------------------------------


class InvalidArgument(S3Error):
    """An invalid argument was provided."""

    def __init__(self, message: str = "Invalid Argument") -> None:
        super().__init__(code="InvalidArgument", message=message, http_status=400)


class InvalidPartNumber(InvalidArgument):
    """The part number is outside 1..10000."""

    def __init__(
        self, message: str = "Part number must be an integer between 1 and 10000, inclusive"
    ) -> None:
        super().__init__(message)


class InvalidRequest(S3Error):
    """The request is not valid."""

    def __init__(self, message: str = "Invalid Request") -> None:
        super().__init__(code="InvalidRequest", message=message, http_status=400)


class InvalidBucketName(S3Error):
    """The specified bucket name is not valid."""

    def __init__(self, bucket: str = "") -> None:
        super().__init__(
            code="InvalidBucketName",
            message="The specified bucket is not valid.",
            http_status=400,
            extra_fields={"BucketName": bucket} if bucket else {},
        )


class KeyTooLongError(S3Error):
    """The specified key is too long."""

    def __init__(self, message: str = "Your key is too long.") -> None:
        super().__init__(code="KeyTooLongError", message=message, http_status=400)


class InvalidRange(S3Error):
    """The requested range is not satisfiable."""

    def __init__(self, message: str = "The requested range is not satisfiable.") -> None:
        super().__init__(code="RequestedRangeNotSatisfiable", message=message, http_status=416)


class InvalidTag(S3Error):
    """The tag set contains duplicate keys, oversized values or system tags."""

    def __init__(
        self,
        message: str = (
            "Your request contains tag input that is not valid. For example, your request "
            "might contain duplicate keys, keys or values that are too long, or system tags."
        ),
    ) -> None:
        super().__init__(code="InvalidTag", message=message, http_status=400)


# -- Multipart completion -----------------------------------------------------


class InvalidPart(S3Error):
    """One or more of the specified parts could not be found."""

    def __init__(
        self,
        message: str = (
            "One or more of the specified parts could not be found. The part might not have "
            "been uploaded, or the specified entity tag may not match the part's entity tag."
        ),
    ) -> None:
        super().__init__(code="InvalidPart", message=message, http_status=400)


class InvalidPartOrder(S3Error):
    """The list of parts was not in ascending order."""

    def __init__(
        self,
        message: str = (
            "The list of parts was not in ascending order. The parts list must be "
            "specified in order by part number."
        ),
    ) -> None:
        super().__init__(code="InvalidPartOrder", message=message, http_status=400)


class EntityTooSmall(S3Error):
    """The proposed upload is smaller than the minimum allowed object size."""

    def __init__(
        self,
        message: str = (
            "Your proposed upload is smaller than the minimum allowed object size. "
            "Each part must be at least 5 MB in size, except the last part."
        ),
    ) -> None:
        super().__init__(code="EntityTooSmall", message=message, http_status=400)


# -- Conditional requests -----------------------------------------------------


class PreconditionFailed(S3Error):
    """At least one of the preconditions did not hold."""

    def __init__(
        self, message: str = "At least one of the pre-conditions you specified did not hold"
    ) -> None:
        super().__init__(code="PreconditionFailed", message=message, http_status=412)


class NotModified(S3Error):
    """The object was not modified since the given date or still matches the ETag."""

    def __init__(self, message: str = "Not Modified") -> None:
        super().__init__(code="NotModified", message=message, http_status=304)


# -- Integrity ----------------------------------------------------------------


class BadDigest(S3Error):
    """The Content-MD5 did not match the received content."""

    def __init__(
        self,
        message: str = (
            "The Content-MD5 or checksum value that you specified did not match what the "
            "server received."
        ),
    ) -> None:
        super().__init__(code="BadDigest", message=message, http_status=400)


class BadRequest(S3Error):
    """Generic malformed request."""

    def __init__(self, message: str = "Bad Request") -> None:
        super().__init__(code="BadRequest", message=message, http_status=400)


class BadChecksum(BadRequest):
    """A client supplied checksum does not match the received content."""

    def __init__(self, algorithm: str) -> None:
        super().__init__(f"Value for x-amz-checksum-{algorithm.lower()} header is invalid.")
        self.algorithm = algorithm


class IncompleteBody(S3Error):
    """The request body ended before the declared content was received."""

    def __init__(
        self,
        message: str = "You did not provide the number of bytes specified by the Content-Length HTTP header.",
    ) -> None:
        super().__init__(code="IncompleteBody", message=message, http_status=400)


# -- Access / server ----------------------------------------------------------


class AccessDenied(S3Error):
    """Access denied error."""

    def __init__(self, message: str = "Access Denied") -> None:
        super().__init__(code="AccessDenied", message=message, http_status=403)


class InternalError(S3Error):
    """An internal server error occurred."""

    def __init__(self, message: str = "Internal Error") -> None:
        super().__init__(code="InternalError", message=message, http_status=500)


class StorageIOError(InternalError):
    """The underlying filesystem failed while reading or writing store data."""

    def __init__(self, message: str = "Storage I/O failure") -> None:
        super().__init__(message)
