from __future__ import annotations
"""Single-shot and resumable multipart object uploads."""
import hashlib
import logging
from typing import TYPE_CHECKING, BinaryIO, Iterator, Optional

from .errors import (
    ErrorCode,
    ErrorResponseError,
    InputSizeMismatchError,
    InvalidArgumentError,
    ObjectAlreadyExistsError,
    PartDigestMismatchError,
    UnexpectedShortReadError,
)
from .models import Part, UploadSession

if TYPE_CHECKING:  # pragma: no cover - import cycle only needed for typing
    from .client import S3Client

LOGGER = logging.getLogger(__name__)

MIN_MULTIPART_SIZE = 5 * 1024 * 1024
MAX_MULTIPART_SIZE = 5 * 1024 * 1024 * 1024
MULTIPART_THRESHOLD = MIN_MULTIPART_SIZE
# One below the 10000 part ceiling so an undersized final part still fits.
PART_COUNT_DIVISOR = 9999
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def calculate_part_size(size: int) -> int:
    """Return ``size / 9999`` clamped to the 5 MiB..5 GiB part size window."""
    return min(max(size // PART_COUNT_DIVISOR, MIN_MULTIPART_SIZE), MAX_MULTIPART_SIZE)


def read_chunk(stream: BinaryIO, size: int) -> bytes:
    """Read up to ``size`` bytes, stopping early only at end of stream."""
    chunks = []
    remaining = size
    while remaining > 0:
        data = stream.read(remaining)
        if not data:
            break
        chunks.append(data)
        remaining -= len(data)
    return b"".join(chunks)


def has_more(stream: BinaryIO) -> bool:
    """Report whether the stream holds another byte; consumes it if so."""
    return bool(stream.read(1))


def md5_digest(data: bytes) -> bytes:
    return hashlib.md5(data).digest()


def etag_matches(etag: Optional[str], digest: bytes) -> bool:
    if not etag:
        return False
    return etag.strip().strip('"').lower() == digest.hex()


class UploadOrchestrator:
    """Decides between a single PUT and a multipart session, and drives either.

    Nothing is retried. A failed multipart upload stays on the service and
    a later call with the same body resumes it, skipping every leading part
    whose ETag matches the MD5 of the corresponding chunk.
    """

    def __init__(self, client: "S3Client", *, logger: logging.Logger | None = None):
        self._client = client
        self._logger = logger or LOGGER

    def put(self, bucket: str, key: str, content_type: str | None, size: int, body: BinaryIO) -> None:
        """Upload ``size`` bytes read from ``body`` to ``bucket``/``key``.

        Raises:
            UnexpectedShortReadError | InputSizeMismatchError: when the stream
                length differs from ``size``.
            ObjectAlreadyExistsError: when the service refuses to overwrite.
            ErrorResponseError | TransportError: on request failures.
        """
        if size is None or size < 0:
            raise InvalidArgumentError(f"object size must be zero or positive, got {size!r}")
        if not content_type or not content_type.strip():
            content_type = DEFAULT_CONTENT_TYPE
        if size > MULTIPART_THRESHOLD:
            self.put_multipart(bucket, key, content_type.strip(), size, body)
        else:
            self.put_single(bucket, key, content_type.strip(), size, body)

    def put_single(self, bucket: str, key: str, content_type: str, size: int, body: BinaryIO) -> None:
        data = read_chunk(body, size)
        if len(data) != size or has_more(body):
            raise UnexpectedShortReadError(
                f"expected exactly {size} byte(s) for '{key}', stream delivered {len(data)}"
                + (" and more" if len(data) == size else "")
            )
        self._logger.debug("Uploading '%s/%s' in a single request (%d bytes)", bucket, key, size)
        try:
            self._client.put_object_data(bucket, key, content_type, data, md5_digest(data))
        except ErrorResponseError as exc:
            if exc.code is ErrorCode.METHOD_NOT_ALLOWED:
                raise ObjectAlreadyExistsError(bucket, key) from exc
            raise

    def find_incomplete_upload(self, bucket: str, key: str) -> Optional[str]:
        """Return the id of the latest in-progress upload for exactly ``key``."""
        upload_id = None
        for result in self._client.list_incomplete_uploads(bucket, prefix=key, recursive=True):
            upload = result.get()
            if upload.key == key:
                upload_id = upload.upload_id
        return upload_id

    def start_session(
        self, bucket: str, key: str, content_type: str, size: int
    ) -> tuple[UploadSession, Iterator[Part]]:
        """Resume the pending session for ``key`` or create a new one.

        Returns the session and a lazy iterator over the parts the service
        already holds for it (empty for a new session).
        """
        part_size = calculate_part_size(size)
        upload_id = self.find_incomplete_upload(bucket, key)
        if upload_id:
            self._logger.debug("Resuming upload %s for '%s/%s'", upload_id, bucket, key)
            existing = (result.get() for result in self._client.list_parts(bucket, key, upload_id))
            resumed = True
        else:
            upload_id = self._client.initiate_multipart_upload(bucket, key, content_type)
            self._logger.debug("Started upload %s for '%s/%s'", upload_id, bucket, key)
            existing = iter(())
            resumed = False
        session = UploadSession(
            bucket=bucket,
            key=key,
            content_type=content_type,
            size=size,
            part_size=part_size,
            upload_id=upload_id,
            resumed=resumed,
        )
        return session, existing

    def put_multipart(
        self, bucket: str, key: str, content_type: str, size: int, body: BinaryIO
    ) -> UploadSession:
        session, existing = self.start_session(bucket, key, content_type, size)
        baseline: Optional[Iterator[Part]] = existing if session.resumed else None
        consumed = 0
        while True:
            chunk = read_chunk(body, session.part_size)
            if not chunk:
                break
            if consumed + len(chunk) > size:
                raise InputSizeMismatchError(f"stream for '{key}' is longer than the declared {size} byte(s)")
            if len(chunk) < session.part_size and len(chunk) != size - consumed:
                raise UnexpectedShortReadError(
                    f"part {session.next_part_number} of '{key}' has {len(chunk)} byte(s), "
                    f"expected {size - consumed}"
                )

            digest = md5_digest(chunk)
            part_number = session.next_part_number
            if baseline is not None:
                previous = next(baseline, None)
                if (
                    previous is not None
                    and previous.part_number == part_number
                    and etag_matches(previous.etag, digest)
                ):
                    self._logger.debug("Part %d of '%s' already uploaded, skipping", part_number, key)
                    session.parts.append(Part(part_number=part_number, etag=previous.etag, size=len(chunk)))
                    consumed += len(chunk)
                    continue
                # Parts after the first mismatch can no longer be trusted.
                baseline = None

            etag = self.upload_part(session, part_number, chunk, digest)
            session.parts.append(Part(part_number=part_number, etag=etag, size=len(chunk)))
            consumed += len(chunk)

        if consumed != size:
            raise InputSizeMismatchError(f"read {consumed} byte(s) for '{key}', declared {size}")
        self._client.complete_multipart_upload(bucket, key, session.upload_id, session.parts)
        self._logger.debug(
            "Completed upload %s for '%s/%s' with %d part(s)",
            session.upload_id,
            bucket,
            key,
            len(session.parts),
        )
        return session

    def upload_part(self, session: UploadSession, part_number: int, chunk: bytes, digest: bytes) -> str:
        etag = self._client.put_object_data(
            session.bucket,
            session.key,
            session.content_type,
            chunk,
            digest,
            upload_id=session.upload_id,
            part_number=part_number,
        )
        if not etag_matches(etag, digest):
            raise PartDigestMismatchError(part_number, digest.hex(), etag or "")
        return etag
