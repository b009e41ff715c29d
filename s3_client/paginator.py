from __future__ import annotations
"""Lazy, forward-only pagination over marker-based S3 listings."""
from dataclasses import dataclass
import logging
from typing import Callable, Generic, Iterator, Mapping, Optional, TypeVar

from .errors import InternalClientError, S3ClientError
from .models import ListingPage, Result

T = TypeVar("T")

MAX_PAGE_SIZE = 1000
DIRECTORY_DELIMITER = "/"

LOGGER = logging.getLogger(__name__)

Markers = dict[str, Optional[str]]
PageFetch = Callable[[Mapping[str, Optional[str]]], ListingPage[T]]


def clamp_page_size(size: int | None) -> int:
    """Limit a requested page size to the 1000 entries the service allows."""
    if size is None or size <= 0 or size >= MAX_PAGE_SIZE:
        return MAX_PAGE_SIZE
    return int(size)


def delimiter_for(recursive: bool) -> str | None:
    """Non-recursive listings group keys by ``/`` to emulate directories."""
    return None if recursive else DIRECTORY_DELIMITER


@dataclass(frozen=True)
class MarkerPolicy:
    """How one listing kind derives its next continuation marker(s) from a page."""

    name: str
    advance: Callable[[ListingPage, Optional[str]], Markers]


def _advance_object_marker(page: ListingPage, delimiter: str | None) -> Markers:
    # The last key does not mark the next position once keys are grouped.
    if delimiter is not None and page.next_marker:
        return {"marker": page.next_marker}
    positions = [item.key for item in page.items]
    if delimiter is not None:
        positions.extend(page.prefixes)
    if not positions:
        return {"marker": page.next_marker}
    return {"marker": max(positions) if delimiter is not None else positions[-1]}


def _advance_upload_markers(page: ListingPage, delimiter: str | None) -> Markers:
    return {
        "key-marker": page.next_key_marker,
        "upload-id-marker": page.next_upload_id_marker,
    }


def _advance_part_number_marker(page: ListingPage, delimiter: str | None) -> Markers:
    marker = page.next_marker
    if not marker and page.items:
        marker = str(page.items[-1].part_number)
    return {"part-number-marker": marker}


OBJECT_MARKER = MarkerPolicy("marker", _advance_object_marker)
UPLOAD_MARKERS = MarkerPolicy("key-marker/upload-id-marker", _advance_upload_markers)
PART_NUMBER_MARKER = MarkerPolicy("part-number-marker", _advance_part_number_marker)


class Paginator(Generic[T]):
    """Pull-based page sequence driven by an explicit marker state machine.

    Each call to :func:`next` performs exactly one blocking page fetch. The
    sequence ends after the first non-truncated page, or permanently after
    the first fetch that raises. Only the current page is ever held.
    """

    def __init__(
        self,
        fetch: PageFetch[T],
        policy: MarkerPolicy,
        *,
        delimiter: str | None = None,
        logger: logging.Logger | None = None,
    ):
        self._fetch = fetch
        self._policy = policy
        self._delimiter = delimiter
        self._logger = logger or LOGGER
        self._markers: Markers = {}
        self._exhausted = False
        self._pending_error: S3ClientError | None = None
        self._page_count = 0

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def __iter__(self) -> "Paginator[T]":
        return self

    def __next__(self) -> ListingPage[T]:
        if self._pending_error is not None:
            error, self._pending_error = self._pending_error, None
            self._exhausted = True
            raise error
        if self._exhausted:
            raise StopIteration
        try:
            page = self._fetch(dict(self._markers))
        except Exception:
            self._exhausted = True
            raise
        self._page_count += 1
        self._logger.debug(
            "Fetched %s page %d (%d item(s), %d prefix(es), truncated=%s)",
            self._policy.name,
            self._page_count,
            len(page.items),
            len(page.prefixes),
            page.is_truncated,
        )
        if not page.is_truncated:
            self._exhausted = True
            return page

        markers = self._policy.advance(page, self._delimiter)
        if not any(markers.values()) or markers == self._markers:
            # Fetching again would return the same page forever.
            self._pending_error = InternalClientError(
                f"truncated {self._policy.name} listing did not advance its marker"
            )
        else:
            self._markers = markers
        return page

    def results(self, directory: Callable[[str], T] | None = None) -> Iterator[Result[T]]:
        """Flatten pages into results, ending with one error result on failure.

        ``directory`` turns a common prefix into a synthetic item; prefixes
        are skipped when it is not given.
        """
        try:
            for page in self:
                for item in page.items:
                    yield Result(value=item)
                if directory is not None:
                    for prefix in page.prefixes:
                        yield Result(value=directory(prefix))
        except S3ClientError as exc:
            self._logger.debug("%s listing ended with error: %s", self._policy.name, exc)
            yield Result(error=exc)
