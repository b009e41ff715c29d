from __future__ import annotations
"""Decoding and encoding of the S3 XML envelopes."""
from datetime import datetime, timezone
from typing import Iterable, Optional
from xml.etree import ElementTree as ET

from .errors import MessageError
from .models import Bucket, Item, ListingPage, Part, Upload

S3_NAMESPACE = "http://s3.amazonaws.com/doc/2006-03-01/"


def _parse(body: bytes | str) -> ET.Element:
    try:
        return ET.fromstring(body)
    except ET.ParseError as exc:
        raise MessageError(f"malformed XML response: {exc}") from exc


def _local_name(element: ET.Element) -> str:
    return element.tag.rsplit("}", 1)[-1]


def _findall(element: ET.Element, path: str) -> list[ET.Element]:
    return element.findall("/".join(f"{{*}}{name}" for name in path.split("/")))


def _findtext(element: ET.Element, path: str) -> Optional[str]:
    found = element.find("/".join(f"{{*}}{name}" for name in path.split("/")))
    if found is None:
        return None
    return found.text or ""


def _to_bool(value: Optional[str]) -> bool:
    return (value or "").strip().lower() == "true"


def _to_int(value: Optional[str], default: int = 0) -> int:
    try:
        return int(value) if value else default
    except ValueError as exc:
        raise MessageError(f"expected an integer, got {value!r}") from exc


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO8601 timestamp such as ``2009-10-12T17:50:30.000Z``."""
    if not value:
        return None
    for pattern in ("%Y-%m-%dT%H:%M:%S.%fZ", "%Y-%m-%dT%H:%M:%SZ"):
        try:
            return datetime.strptime(value, pattern).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    raise MessageError(f"unrecognised timestamp {value!r}")


def _expect_root(root: ET.Element, name: str) -> None:
    if _local_name(root) != name:
        raise MessageError(f"expected <{name}> document, got <{_local_name(root)}>")


def parse_error(body: bytes | str) -> dict[str, str]:
    """Return the fields of an ``<Error>`` envelope."""
    root = _parse(body)
    _expect_root(root, "Error")
    return {_local_name(child): (child.text or "") for child in root}


def is_error_document(body: bytes | str) -> bool:
    try:
        return _local_name(_parse(body)) == "Error"
    except MessageError:
        return False


def parse_list_buckets(body: bytes | str) -> list[Bucket]:
    root = _parse(body)
    _expect_root(root, "ListAllMyBucketsResult")
    return [
        Bucket(
            name=_findtext(node, "Name") or "",
            creation_date=parse_timestamp(_findtext(node, "CreationDate")),
        )
        for node in _findall(root, "Buckets/Bucket")
    ]


def parse_list_objects(body: bytes | str) -> ListingPage[Item]:
    root = _parse(body)
    _expect_root(root, "ListBucketResult")
    items = [
        Item(
            key=_findtext(node, "Key") or "",
            last_modified=parse_timestamp(_findtext(node, "LastModified")),
            etag=_findtext(node, "ETag"),
            size=_to_int(_findtext(node, "Size")),
            storage_class=_findtext(node, "StorageClass"),
        )
        for node in _findall(root, "Contents")
    ]
    return ListingPage(
        items=items,
        prefixes=[_findtext(node, "Prefix") or "" for node in _findall(root, "CommonPrefixes")],
        is_truncated=_to_bool(_findtext(root, "IsTruncated")),
        next_marker=_findtext(root, "NextMarker") or None,
    )


def parse_list_multipart_uploads(body: bytes | str) -> ListingPage[Upload]:
    root = _parse(body)
    _expect_root(root, "ListMultipartUploadsResult")
    uploads = [
        Upload(
            key=_findtext(node, "Key") or "",
            upload_id=_findtext(node, "UploadId"),
            initiated=parse_timestamp(_findtext(node, "Initiated")),
            storage_class=_findtext(node, "StorageClass"),
        )
        for node in _findall(root, "Upload")
    ]
    return ListingPage(
        items=uploads,
        prefixes=[_findtext(node, "Prefix") or "" for node in _findall(root, "CommonPrefixes")],
        is_truncated=_to_bool(_findtext(root, "IsTruncated")),
        next_key_marker=_findtext(root, "NextKeyMarker") or None,
        next_upload_id_marker=_findtext(root, "NextUploadIdMarker") or None,
    )


def parse_list_parts(body: bytes | str) -> ListingPage[Part]:
    root = _parse(body)
    _expect_root(root, "ListPartsResult")
    parts = [
        Part(
            part_number=_to_int(_findtext(node, "PartNumber")),
            etag=_findtext(node, "ETag") or "",
            size=_to_int(_findtext(node, "Size")),
            last_modified=parse_timestamp(_findtext(node, "LastModified")),
        )
        for node in _findall(root, "Part")
    ]
    return ListingPage(
        items=parts,
        is_truncated=_to_bool(_findtext(root, "IsTruncated")),
        next_marker=_findtext(root, "NextPartNumberMarker") or None,
    )


def parse_initiate_multipart_upload(body: bytes | str) -> str:
    root = _parse(body)
    _expect_root(root, "InitiateMultipartUploadResult")
    upload_id = _findtext(root, "UploadId")
    if not upload_id:
        raise MessageError("InitiateMultipartUploadResult carries no UploadId")
    return upload_id


def parse_access_control_policy(body: bytes | str) -> list[tuple[Optional[str], str]]:
    """Return ``(grantee URI, permission)`` pairs; the URI is ``None`` for canonical users."""
    root = _parse(body)
    _expect_root(root, "AccessControlPolicy")
    grants = []
    for node in _findall(root, "AccessControlList/Grant"):
        grants.append((_findtext(node, "Grantee/URI"), _findtext(node, "Permission") or ""))
    return grants


def build_complete_multipart_upload(parts: Iterable[Part]) -> bytes:
    root = ET.Element("CompleteMultipartUpload", xmlns=S3_NAMESPACE)
    for part in parts:
        node = ET.SubElement(root, "Part")
        ET.SubElement(node, "PartNumber").text = str(part.part_number)
        ET.SubElement(node, "ETag").text = part.etag
    return ET.tostring(root, encoding="utf-8")


def build_create_bucket_configuration(region: str) -> bytes:
    root = ET.Element("CreateBucketConfiguration", xmlns=S3_NAMESPACE)
    ET.SubElement(root, "LocationConstraint").text = region
    return ET.tostring(root, encoding="utf-8")
