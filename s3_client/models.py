from __future__ import annotations
"""Data models representing buckets, objects, uploads and listing pages."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class Acl(Enum):
    """Canned ACLs accepted by ``x-amz-acl``."""

    PRIVATE = "private"
    PUBLIC_READ = "public-read"
    PUBLIC_READ_WRITE = "public-read-write"
    AUTHENTICATED_READ = "authenticated-read"

    def __str__(self) -> str:
        return self.value


@dataclass
class Bucket:
    name: str
    creation_date: Optional[datetime] = None


@dataclass
class Item:
    """An object in a listing, or a common prefix when ``is_dir`` is set."""

    key: str
    last_modified: Optional[datetime] = None
    etag: Optional[str] = None
    size: Optional[int] = None
    storage_class: Optional[str] = None
    is_dir: bool = False


@dataclass
class Upload:
    """An in-progress multipart upload, or a common prefix when ``is_dir`` is set."""

    key: str
    upload_id: Optional[str] = None
    initiated: Optional[datetime] = None
    storage_class: Optional[str] = None
    is_dir: bool = False


@dataclass
class Part:
    """A part already stored in a multipart upload."""

    part_number: int
    etag: str
    size: int = 0
    last_modified: Optional[datetime] = None


@dataclass
class ObjectStat:
    """Metadata about a single object."""

    bucket: str
    key: str
    size: Optional[int] = None
    last_modified: Optional[datetime] = None
    etag: Optional[str] = None
    content_type: Optional[str] = None


@dataclass
class ListingPage(Generic[T]):
    """One decoded page of a listing response.

    Only the continuation fields relevant to the listing kind are populated:
    ``next_marker`` for object listings (``NextMarker``) and part listings
    (``NextPartNumberMarker``), the key/upload-id pair for upload listings.
    """

    items: list[T] = field(default_factory=list)
    prefixes: list[str] = field(default_factory=list)
    is_truncated: bool = False
    next_marker: Optional[str] = None
    next_key_marker: Optional[str] = None
    next_upload_id_marker: Optional[str] = None


@dataclass(frozen=True)
class Result(Generic[T]):
    """A listing element: either a value or the error that ended the listing."""

    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def get(self) -> T:
        """Return the value, raising the stored error if there is one."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


@dataclass
class UploadSession:
    """Local state of one multipart upload while the body is streamed."""

    bucket: str
    key: str
    content_type: str
    size: int
    part_size: int
    upload_id: str
    resumed: bool = False
    parts: list[Part] = field(default_factory=list)

    @property
    def next_part_number(self) -> int:
        return len(self.parts) + 1

    @property
    def uploaded_size(self) -> int:
        return sum(part.size for part in self.parts)
