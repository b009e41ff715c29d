from __future__ import annotations
"""Exception taxonomy and the mapping from HTTP responses to S3 errors."""
from dataclasses import dataclass
from enum import Enum
import logging
from typing import Mapping, Optional
from urllib.parse import unquote

LOGGER = logging.getLogger(__name__)

REQUEST_ID_HEADER = "x-amz-request-id"
HOST_ID_HEADER = "x-amz-id-2"


class S3ClientError(Exception):
    """Base class for every error raised by :mod:`s3_client`."""


class ConfigurationError(S3ClientError, ValueError):
    """Raised when a client is constructed with an unusable endpoint or credentials."""


class InvalidArgumentError(S3ClientError, ValueError):
    """Raised before any request is sent when an argument is out of range."""


class InvalidBucketNameError(InvalidArgumentError):
    def __init__(self, bucket: str | None, reason: str = "invalid bucket name"):
        super().__init__(f"{reason}: {bucket!r}")
        self.bucket = bucket


class InvalidObjectNameError(InvalidArgumentError):
    def __init__(self, key: str | None):
        super().__init__(f"invalid object name: {key!r}")
        self.key = key


class InvalidExpiryError(InvalidArgumentError):
    """Raised when a presigned URL expiry falls outside the allowed window."""


class InvalidRangeError(InvalidArgumentError):
    """Raised for a negative offset or a non-positive length."""


class InvalidAclError(InvalidArgumentError):
    """Raised when no canned ACL is supplied."""


class TransportError(S3ClientError):
    """Raised when the HTTP exchange itself fails."""


class NoResponseError(TransportError):
    """Raised when the transport returned without a response."""


class InternalClientError(S3ClientError):
    """Raised when the service answers in a way the client cannot interpret."""


class MessageError(InternalClientError):
    """Raised when a response body is not the XML document the client expects."""


class ObjectAlreadyExistsError(S3ClientError):
    def __init__(self, bucket: str, key: str):
        super().__init__(f"object '{key}' already exists in bucket '{bucket}'")
        self.bucket = bucket
        self.key = key


class DataIntegrityError(S3ClientError):
    """Base class for declared-versus-actual data mismatches during uploads."""


class UnexpectedShortReadError(DataIntegrityError):
    """Raised when the body stream delivers a different amount than declared."""


class InputSizeMismatchError(DataIntegrityError):
    """Raised when the total bytes read differ from the declared object size."""


class PartDigestMismatchError(DataIntegrityError):
    def __init__(self, part_number: int, expected: str, actual: str):
        super().__init__(
            f"part {part_number}: service returned ETag {actual!r}, expected MD5 {expected!r}"
        )
        self.part_number = part_number
        self.expected = expected
        self.actual = actual


class ErrorCode(Enum):
    """S3 error codes known to the client."""

    NO_SUCH_BUCKET = ("NoSuchBucket", "The specified bucket does not exist")
    NO_SUCH_KEY = ("NoSuchKey", "The specified key does not exist")
    RESOURCE_NOT_FOUND = ("ResourceNotFound", "Request resource not found")
    METHOD_NOT_ALLOWED = ("MethodNotAllowed", "The specified method is not allowed against this resource")
    RESOURCE_CONFLICT = ("ResourceConflict", "Request resource conflicts")
    ACCESS_DENIED = ("AccessDenied", "Access denied")
    BUCKET_ALREADY_EXISTS = ("BucketAlreadyExists", "The requested bucket name is not available")
    BUCKET_ALREADY_OWNED_BY_YOU = ("BucketAlreadyOwnedByYou", "Bucket already owned by you")
    BUCKET_NOT_EMPTY = ("BucketNotEmpty", "The bucket you tried to delete is not empty")
    ENTITY_TOO_SMALL = ("EntityTooSmall", "Your proposed upload is smaller than the minimum allowed object size")
    ENTITY_TOO_LARGE = ("EntityTooLarge", "Your proposed upload exceeds the maximum allowed object size")
    INVALID_BUCKET_NAME = ("InvalidBucketName", "The specified bucket is not valid")
    INVALID_PART = ("InvalidPart", "One or more of the specified parts could not be found")
    INVALID_PART_ORDER = ("InvalidPartOrder", "The list of parts was not in ascending order")
    NO_SUCH_UPLOAD = ("NoSuchUpload", "The specified multipart upload does not exist")
    INVALID_DIGEST = ("InvalidDigest", "The Content-MD5 you specified is not valid")
    BAD_DIGEST = ("BadDigest", "The Content-MD5 you specified did not match what was received")
    SIGNATURE_DOES_NOT_MATCH = ("SignatureDoesNotMatch", "The request signature does not match")
    REQUEST_TIME_TOO_SKEWED = ("RequestTimeTooSkewed", "The difference between the request time and the server's time is too large")
    INVALID_ACCESS_KEY_ID = ("InvalidAccessKeyId", "The access key you provided does not exist")
    INVALID_ARGUMENT = ("InvalidArgument", "Invalid argument")
    INVALID_RANGE = ("InvalidRange", "The requested range cannot be satisfied")
    INTERNAL_ERROR = ("InternalError", "We encountered an internal error, please try again")
    NOT_IMPLEMENTED = ("NotImplemented", "A header you provided implies functionality that is not implemented")
    UNKNOWN = ("Unknown", "Unknown error")

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message

    @classmethod
    def from_code(cls, code: str | None) -> "ErrorCode":
        for member in cls:
            if member.code == code:
                return member
        return cls.UNKNOWN


@dataclass(frozen=True)
class ErrorResponse:
    """Immutable description of a failed S3 request."""

    code: ErrorCode
    message: str
    bucket: Optional[str] = None
    key: Optional[str] = None
    resource: Optional[str] = None
    request_id: Optional[str] = None
    host_id: Optional[str] = None
    raw_code: Optional[str] = None


class ErrorResponseError(S3ClientError):
    """Raised when the service rejects a request with a non-2xx status."""

    def __init__(self, response: ErrorResponse):
        super().__init__(f"{response.raw_code or response.code.code}: {response.message}")
        self.response = response

    @property
    def code(self) -> ErrorCode:
        return self.response.code


def split_resource(path: str) -> tuple[str | None, str | None]:
    """Return the ``(bucket, key)`` addressed by a path-style request path."""

    trimmed = (path or "").lstrip("/")
    if not trimmed:
        return None, None
    bucket, _, key = trimmed.partition("/")
    return unquote(bucket), (unquote(key) or None)


def _status_code(status: int, bucket: str | None, key: str | None) -> ErrorCode | None:
    if status == 404:
        if key:
            return ErrorCode.NO_SUCH_KEY
        if bucket:
            return ErrorCode.NO_SUCH_BUCKET
        return ErrorCode.RESOURCE_NOT_FOUND
    if status in (405, 501):
        return ErrorCode.METHOD_NOT_ALLOWED
    if status == 409:
        if bucket:
            return ErrorCode.NO_SUCH_BUCKET
        return ErrorCode.RESOURCE_CONFLICT
    if status == 403:
        return ErrorCode.ACCESS_DENIED
    return None


def error_from_status(status: int, path: str, headers: Mapping[str, str] | None = None) -> ErrorResponseError:
    """Classify a failed metadata-only request from its status code.

    Raises:
        InternalClientError: when the status is not one the service may return
            for a request without a response body.
    """
    headers = headers or {}
    bucket, key = split_resource(path)
    code = _status_code(status, bucket, key)
    if code is None:
        raise InternalClientError(f"unhandled response code {status} for {path}")
    return ErrorResponseError(
        ErrorResponse(
            code=code,
            message=code.message,
            bucket=bucket,
            key=key,
            resource=path,
            request_id=headers.get(REQUEST_ID_HEADER),
            host_id=headers.get(HOST_ID_HEADER),
            raw_code=code.code,
        )
    )


def error_from_body(
    status: int,
    body: bytes | None,
    path: str,
    headers: Mapping[str, str] | None = None,
) -> ErrorResponseError:
    """Classify a failed request from the XML error envelope in its body.

    An empty or unparseable body falls back to status inference; statuses the
    inference does not know become :attr:`ErrorCode.UNKNOWN`.
    """
    from .messages import parse_error

    headers = headers or {}
    bucket, key = split_resource(path)
    document = None
    if body:
        try:
            document = parse_error(body)
        except MessageError:
            LOGGER.debug("Unparseable error body for %s (status %d)", path, status)
    if document is None:
        code = _status_code(status, bucket, key) or ErrorCode.UNKNOWN
        message = code.message if code is not ErrorCode.UNKNOWN else f"HTTP status {status}"
        return ErrorResponseError(
            ErrorResponse(
                code=code,
                message=message,
                bucket=bucket,
                key=key,
                resource=path,
                request_id=headers.get(REQUEST_ID_HEADER),
                host_id=headers.get(HOST_ID_HEADER),
                raw_code=code.code if code is not ErrorCode.UNKNOWN else str(status),
            )
        )
    code = ErrorCode.from_code(document.get("Code"))
    return ErrorResponseError(
        ErrorResponse(
            code=code,
            message=document.get("Message") or code.message,
            bucket=document.get("BucketName") or bucket,
            key=document.get("Key") or key,
            resource=document.get("Resource") or path,
            request_id=document.get("RequestId") or headers.get(REQUEST_ID_HEADER),
            host_id=document.get("HostId") or headers.get(HOST_ID_HEADER),
            raw_code=document.get("Code"),
        )
    )
