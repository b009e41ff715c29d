import hashlib
import io
import unittest

from s3_client.errors import (
    ErrorCode,
    ErrorResponse,
    ErrorResponseError,
    InputSizeMismatchError,
    ObjectAlreadyExistsError,
    PartDigestMismatchError,
    UnexpectedShortReadError,
)
from s3_client.models import Part, Result, Upload
from s3_client.uploads import (
    MAX_MULTIPART_SIZE,
    MIN_MULTIPART_SIZE,
    UploadOrchestrator,
    calculate_part_size,
    read_chunk,
)

MiB = 1024 * 1024


def _etag(data: bytes) -> str:
    return '"' + hashlib.md5(data).hexdigest() + '"'


class TrickleStream(io.RawIOBase):
    """Returns at most ``step`` bytes per read, like a socket would."""

    def __init__(self, data: bytes, step: int):
        self._data = io.BytesIO(data)
        self._step = step

    def readable(self):
        return True

    def read(self, size=-1):
        return self._data.read(min(size, self._step) if size >= 0 else self._step)


class FakeClient:
    def __init__(self, uploads=None, parts=None, put_errors=None, etag_override=None):
        self.uploads = uploads or []
        self.parts = parts or {}
        self.put_errors = list(put_errors or [])
        self.etag_override = etag_override
        self.put_calls = []
        self.initiate_calls = []
        self.complete_calls = []
        self.list_parts_calls = []

    def list_incomplete_uploads(self, bucket, prefix=None, recursive=True):
        for upload in self.uploads:
            if isinstance(upload, Exception):
                yield Result(error=upload)
                return
            if prefix is None or upload.key.startswith(prefix):
                yield Result(value=upload)

    def list_parts(self, bucket, key, upload_id):
        self.list_parts_calls.append(upload_id)
        for part in self.parts.get(upload_id, []):
            yield Result(value=part)

    def initiate_multipart_upload(self, bucket, key, content_type):
        self.initiate_calls.append((bucket, key, content_type))
        return "new-upload"

    def put_object_data(self, bucket, key, content_type, data, md5, *, upload_id=None, part_number=None):
        self.put_calls.append(
            {
                "bucket": bucket,
                "key": key,
                "content_type": content_type,
                "data": data,
                "md5": md5,
                "upload_id": upload_id,
                "part_number": part_number,
            }
        )
        if self.put_errors:
            raise self.put_errors.pop(0)
        if self.etag_override is not None:
            return self.etag_override
        return _etag(data)

    def complete_multipart_upload(self, bucket, key, upload_id, parts):
        self.complete_calls.append((upload_id, [(part.part_number, part.etag) for part in parts]))


class PartSizeTests(unittest.TestCase):
    def test_small_objects_use_minimum_part_size(self):
        self.assertEqual(MIN_MULTIPART_SIZE, calculate_part_size(5 * MiB + 1))
        self.assertEqual(MIN_MULTIPART_SIZE, calculate_part_size(MIN_MULTIPART_SIZE * 9999))
        self.assertEqual(MIN_MULTIPART_SIZE, calculate_part_size(MIN_MULTIPART_SIZE * 9999 + 9998))

    def test_part_size_grows_between_bounds(self):
        self.assertEqual(MIN_MULTIPART_SIZE + 1, calculate_part_size((MIN_MULTIPART_SIZE + 1) * 9999))

    def test_huge_objects_use_maximum_part_size(self):
        self.assertEqual(MAX_MULTIPART_SIZE, calculate_part_size(MAX_MULTIPART_SIZE * 9999))
        self.assertEqual(MAX_MULTIPART_SIZE - 1, calculate_part_size(MAX_MULTIPART_SIZE * 9999 - 9999))
        self.assertEqual(MAX_MULTIPART_SIZE, calculate_part_size(MAX_MULTIPART_SIZE * 9999 + 9999))


class ReadChunkTests(unittest.TestCase):
    def test_read_chunk_keeps_reading_short_reads(self):
        stream = TrickleStream(b"abcdefghij", step=3)

        self.assertEqual(b"abcdefg", read_chunk(stream, 7))
        self.assertEqual(b"hij", read_chunk(stream, 7))
        self.assertEqual(b"", read_chunk(stream, 7))


class SingleUploadTests(unittest.TestCase):
    def test_small_object_is_one_put_with_md5(self):
        client = FakeClient()
        data = b"hello world"

        UploadOrchestrator(client).put("bucket", "greeting.txt", "text/plain", len(data), io.BytesIO(data))

        self.assertEqual(1, len(client.put_calls))
        call = client.put_calls[0]
        self.assertEqual(data, call["data"])
        self.assertEqual(hashlib.md5(data).digest(), call["md5"])
        self.assertIsNone(call["upload_id"])
        self.assertEqual([], client.initiate_calls)

    def test_threshold_size_is_still_single_put(self):
        client = FakeClient()
        data = b"x" * MIN_MULTIPART_SIZE

        UploadOrchestrator(client).put("bucket", "exact", None, len(data), io.BytesIO(data))

        self.assertEqual(1, len(client.put_calls))
        self.assertEqual("application/octet-stream", client.put_calls[0]["content_type"])

    def test_empty_object(self):
        client = FakeClient()

        UploadOrchestrator(client).put("bucket", "empty", "text/plain", 0, io.BytesIO(b""))

        self.assertEqual(b"", client.put_calls[0]["data"])

    def test_short_stream_fails_before_upload(self):
        client = FakeClient()

        with self.assertRaises(UnexpectedShortReadError):
            UploadOrchestrator(client).put("bucket", "key", "text/plain", 10, io.BytesIO(b"short"))

        self.assertEqual([], client.put_calls)

    def test_long_stream_fails_before_upload(self):
        client = FakeClient()

        with self.assertRaises(UnexpectedShortReadError):
            UploadOrchestrator(client).put("bucket", "key", "text/plain", 5, io.BytesIO(b"too long"))

        self.assertEqual([], client.put_calls)

    def test_method_not_allowed_means_object_exists(self):
        rejection = ErrorResponseError(
            ErrorResponse(code=ErrorCode.METHOD_NOT_ALLOWED, message="not allowed", bucket="bucket", key="key")
        )
        client = FakeClient(put_errors=[rejection])

        with self.assertRaises(ObjectAlreadyExistsError) as ctx:
            UploadOrchestrator(client).put("bucket", "key", "text/plain", 3, io.BytesIO(b"abc"))

        self.assertEqual("key", ctx.exception.key)

    def test_other_errors_propagate(self):
        denied = ErrorResponseError(ErrorResponse(code=ErrorCode.ACCESS_DENIED, message="denied"))
        client = FakeClient(put_errors=[denied])

        with self.assertRaises(ErrorResponseError):
            UploadOrchestrator(client).put("bucket", "key", "text/plain", 3, io.BytesIO(b"abc"))


class MultipartUploadTests(unittest.TestCase):
    def setUp(self):
        self.part_a = b"a" * MIN_MULTIPART_SIZE
        self.part_b = b"b" * MIN_MULTIPART_SIZE
        self.tail = b"c" * 1024
        self.body = self.part_a + self.part_b + self.tail

    def test_new_session_uploads_every_part_in_order(self):
        client = FakeClient()

        session = UploadOrchestrator(client).put_multipart(
            "bucket", "big.bin", "application/octet-stream", len(self.body), io.BytesIO(self.body)
        )

        self.assertEqual([("bucket", "big.bin", "application/octet-stream")], client.initiate_calls)
        self.assertEqual([1, 2, 3], [call["part_number"] for call in client.put_calls])
        self.assertEqual({"new-upload"}, {call["upload_id"] for call in client.put_calls})
        self.assertEqual(len(self.tail), len(client.put_calls[2]["data"]))
        self.assertEqual(
            [("new-upload", [(1, _etag(self.part_a)), (2, _etag(self.part_b)), (3, _etag(self.tail))])],
            client.complete_calls,
        )
        self.assertFalse(session.resumed)
        self.assertEqual(len(self.body), session.uploaded_size)

    def test_put_switches_to_multipart_above_threshold(self):
        client = FakeClient()

        UploadOrchestrator(client).put("bucket", "big.bin", "", len(self.body), io.BytesIO(self.body))

        self.assertEqual(1, len(client.initiate_calls))
        self.assertEqual(1, len(client.complete_calls))

    def test_resume_skips_matching_parts(self):
        uploads = [
            Upload(key="big.bin.old", upload_id="other"),
            Upload(key="big.bin", upload_id="resume-me"),
        ]
        parts = {"resume-me": [Part(1, _etag(self.part_a)), Part(2, _etag(self.part_b))]}
        client = FakeClient(uploads=uploads, parts=parts)

        session = UploadOrchestrator(client).put_multipart(
            "bucket", "big.bin", "application/octet-stream", len(self.body), io.BytesIO(self.body)
        )

        self.assertTrue(session.resumed)
        self.assertEqual([], client.initiate_calls)
        self.assertEqual(["resume-me"], client.list_parts_calls)
        self.assertEqual([3], [call["part_number"] for call in client.put_calls])
        self.assertEqual([1, 2, 3], [number for number, _ in client.complete_calls[0][1]])
        self.assertEqual("resume-me", client.complete_calls[0][0])

    def test_resume_reuploads_from_first_mismatch(self):
        changed_b = b"B" * MIN_MULTIPART_SIZE
        body = self.part_a + changed_b + self.tail
        parts = {
            "resume-me": [
                Part(1, _etag(self.part_a)),
                Part(2, _etag(self.part_b)),
                Part(3, _etag(self.tail)),
            ]
        }
        client = FakeClient(uploads=[Upload(key="big.bin", upload_id="resume-me")], parts=parts)

        UploadOrchestrator(client).put_multipart("bucket", "big.bin", "x/y", len(body), io.BytesIO(body))

        self.assertEqual([2, 3], [call["part_number"] for call in client.put_calls])
        self.assertEqual(
            [(1, _etag(self.part_a)), (2, _etag(changed_b)), (3, _etag(self.tail))],
            client.complete_calls[0][1],
        )

    def test_latest_matching_session_is_adopted(self):
        uploads = [Upload(key="big.bin", upload_id="first"), Upload(key="big.bin", upload_id="second")]
        client = FakeClient(uploads=uploads)

        UploadOrchestrator(client).put_multipart(
            "bucket", "big.bin", "x/y", len(self.body), io.BytesIO(self.body)
        )

        self.assertEqual(["second"], client.list_parts_calls)

    def test_session_discovery_error_propagates(self):
        denied = ErrorResponseError(ErrorResponse(code=ErrorCode.ACCESS_DENIED, message="denied"))
        client = FakeClient(uploads=[denied])

        with self.assertRaises(ErrorResponseError):
            UploadOrchestrator(client).put_multipart(
                "bucket", "big.bin", "x/y", len(self.body), io.BytesIO(self.body)
            )

        self.assertEqual([], client.put_calls)

    def test_short_final_chunk_fails(self):
        client = FakeClient()
        declared = len(self.body) + 10

        with self.assertRaises(UnexpectedShortReadError):
            UploadOrchestrator(client).put_multipart(
                "bucket", "big.bin", "x/y", declared, io.BytesIO(self.body)
            )

        self.assertEqual([], client.complete_calls)
        self.assertEqual([1, 2], [call["part_number"] for call in client.put_calls])

    def test_stream_ending_on_part_boundary_early_fails(self):
        client = FakeClient()
        body = self.part_a + self.part_b
        declared = len(body) + MIN_MULTIPART_SIZE

        with self.assertRaises(InputSizeMismatchError):
            UploadOrchestrator(client).put_multipart("bucket", "big.bin", "x/y", declared, io.BytesIO(body))

        self.assertEqual([], client.complete_calls)

    def test_stream_longer_than_declared_fails(self):
        client = FakeClient()
        declared = len(self.part_a) + len(self.tail)
        body = self.part_a + self.tail + b"extra"

        with self.assertRaises(InputSizeMismatchError):
            UploadOrchestrator(client).put_multipart("bucket", "big.bin", "x/y", declared, io.BytesIO(body))

        self.assertEqual([], client.complete_calls)

    def test_part_etag_must_match_local_digest(self):
        client = FakeClient(etag_override='"00000000000000000000000000000000"')

        with self.assertRaises(PartDigestMismatchError) as ctx:
            UploadOrchestrator(client).put_multipart(
                "bucket", "big.bin", "x/y", len(self.body), io.BytesIO(self.body)
            )

        self.assertEqual(1, ctx.exception.part_number)
        self.assertEqual([], client.complete_calls)


if __name__ == "__main__":
    unittest.main()
