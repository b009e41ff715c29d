from __future__ import annotations
"""HTTP transport boundary: executes already-signed requests."""
from dataclasses import dataclass, field
import logging
from typing import Any, Mapping, Optional, Protocol
from urllib.parse import urlunsplit

import certifi
import urllib3
from urllib3.exceptions import HTTPError
from urllib3.util import Timeout

from .errors import NoResponseError, TransportError
from .signer import get_canonical_query_string

LOGGER = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 60.0
DEFAULT_READ_TIMEOUT = 300.0


@dataclass
class HttpRequest:
    """A request addressed by its parts; ``path`` is already URI-encoded."""

    method: str
    scheme: str
    host: str
    path: str
    query: list[tuple[str, str]] = field(default_factory=list)
    headers: dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None

    @property
    def url(self) -> str:
        return urlunsplit(
            (self.scheme, self.host, self.path or "/", get_canonical_query_string(self.query), "")
        )


@dataclass
class HttpResponse:
    """Status, headers and either the buffered body or a live stream."""

    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    data: bytes = b""
    stream: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def close(self) -> None:
        if self.stream is not None:
            self.stream.close()
            release = getattr(self.stream, "release_conn", None)
            if release is not None:
                release()


class Transport(Protocol):
    def send(self, request: HttpRequest, *, stream: bool = False) -> HttpResponse:
        ...


class Urllib3Transport:
    """Default transport backed by a :class:`urllib3.PoolManager`.

    Redirects are never followed: a redirected request would carry a
    signature computed for a different host or path. Nothing is retried.
    """

    def __init__(
        self,
        *,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        verify_tls: bool = True,
        pool_manager: urllib3.PoolManager | None = None,
    ):
        self._http = pool_manager or urllib3.PoolManager(
            timeout=Timeout(connect=connect_timeout, read=read_timeout),
            cert_reqs="CERT_REQUIRED" if verify_tls else "CERT_NONE",
            ca_certs=certifi.where(),
            retries=False,
        )

    def send(self, request: HttpRequest, *, stream: bool = False) -> HttpResponse:
        try:
            response = self._http.urlopen(
                request.method,
                request.url,
                body=request.body,
                headers=request.headers,
                redirect=False,
                retries=False,
                preload_content=not stream,
            )
        except HTTPError as exc:
            raise TransportError(f"{request.method} {request.host}{request.path} failed: {exc}") from exc
        if response is None:
            raise NoResponseError(f"no response for {request.method} {request.host}{request.path}")
        if stream:
            return HttpResponse(status=response.status, headers=response.headers, stream=response)
        return HttpResponse(status=response.status, headers=response.headers, data=response.data or b"")

    def close(self) -> None:
        self._http.clear()
