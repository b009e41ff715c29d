from __future__ import annotations
"""Path-style client for S3-compatible object storage services."""
import base64
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
import ipaddress
import logging
import re
from typing import TYPE_CHECKING, BinaryIO, Callable, Iterator, Mapping, Optional
from urllib.parse import quote, urlsplit

from .errors import (
    ConfigurationError,
    ErrorCode,
    ErrorResponseError,
    InternalClientError,
    InvalidAclError,
    InvalidArgumentError,
    InvalidBucketNameError,
    InvalidObjectNameError,
    InvalidRangeError,
    MessageError,
    TransportError,
    error_from_body,
    error_from_status,
)
from .messages import (
    build_complete_multipart_upload,
    build_create_bucket_configuration,
    is_error_document,
    parse_access_control_policy,
    parse_initiate_multipart_upload,
    parse_list_buckets,
    parse_list_multipart_uploads,
    parse_list_objects,
    parse_list_parts,
)
from .models import Acl, Bucket, Item, ObjectStat, Part, Result, Upload
from .paginator import (
    OBJECT_MARKER,
    PART_NUMBER_MARKER,
    UPLOAD_MARKERS,
    Paginator,
    clamp_page_size,
    delimiter_for,
)
from .settings import ClientSettings
from .signer import (
    DEFAULT_REGION,
    MAX_EXPIRY,
    REGIONS,
    Credentials,
    get_region,
    hash_payload,
    presign_v4,
    sign_v4,
    to_amz_date,
    validate_expiry,
)
from .transport import HttpRequest, HttpResponse, Transport, Urllib3Transport
from .uploads import UploadOrchestrator, md5_digest
from .useragent import default_user_agent, with_app_info

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .policy import PostPolicy
    from .profiles import ConnectionProfile

LOGGER = logging.getLogger(__name__)

DEFAULT_PORTS = {"http": 80, "https": 443}
AMAZON_SUFFIX = ".amazonaws.com"
_HOST_LABEL = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?$")

ALL_USERS_URI = "http://acs.amazonaws.com/groups/global/AllUsers"
AUTHENTICATED_USERS_URI = "http://acs.amazonaws.com/groups/global/AuthenticatedUsers"


def _is_valid_host(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        pass
    if len(host) > 253:
        return False
    return all(_HOST_LABEL.match(label) for label in host.rstrip(".").split("."))


def _check_amazon_host(host: str) -> None:
    lowered = host.lower()
    if lowered.endswith(AMAZON_SUFFIX) and lowered not in REGIONS:
        raise ConfigurationError(
            f"Amazon S3 endpoint must be s3.amazonaws.com or a regional s3 host, got '{host}'"
        )


def _parse_endpoint(endpoint: str, port: int, secure: bool) -> tuple[str, str, int | None]:
    """Return ``(scheme, host, port)`` for a URL or bare host endpoint."""
    if not endpoint or not endpoint.strip():
        raise ConfigurationError("endpoint cannot be empty")
    endpoint = endpoint.strip()
    if "://" in endpoint:
        parts = urlsplit(endpoint)
        if parts.scheme not in DEFAULT_PORTS:
            raise ConfigurationError(f"unsupported endpoint scheme '{parts.scheme}'")
        if parts.path not in ("", "/") or parts.query or parts.fragment:
            raise ConfigurationError(f"endpoint URL must not carry a path or query: '{endpoint}'")
        if parts.username or parts.password:
            raise ConfigurationError("endpoint URL must not embed credentials")
        try:
            url_port = parts.port
        except ValueError as exc:
            raise ConfigurationError(f"invalid port in endpoint '{endpoint}'") from exc
        host = parts.hostname
        if not host or not _is_valid_host(host):
            raise ConfigurationError(f"invalid endpoint host in '{endpoint}'")
        _check_amazon_host(host)
        return parts.scheme, host, url_port

    host = endpoint[1:-1] if endpoint.startswith("[") and endpoint.endswith("]") else endpoint
    if not _is_valid_host(host):
        raise ConfigurationError(f"invalid endpoint host '{endpoint}'")
    _check_amazon_host(host)
    if port is None or port < 0 or port > 65535:
        raise ConfigurationError(f"port must be between 0 and 65535, got {port!r}")
    return ("https" if secure else "http"), host, (port or None)


def _netloc(scheme: str, host: str, port: int | None) -> str:
    if ":" in host:
        host = f"[{host}]"
    if port and port != DEFAULT_PORTS[scheme]:
        return f"{host}:{port}"
    return host


def _check_bucket(bucket: str | None) -> None:
    if bucket is None or not bucket.strip():
        raise InvalidBucketNameError(bucket, "bucket name cannot be empty")


def _check_key(key: str | None) -> None:
    if key is None or not key.strip():
        raise InvalidObjectNameError(key)


def _to_acl(acl: Acl | str | None) -> Acl:
    if acl is None:
        raise InvalidAclError("acl cannot be empty")
    if isinstance(acl, Acl):
        return acl
    try:
        return Acl(str(acl))
    except ValueError:
        raise InvalidAclError(f"unknown canned acl {acl!r}") from None


class S3Client:
    """Blocking client for one S3-compatible endpoint.

    Requests are path-style (``/bucket/key``) and signed with Signature
    Version 4 when credentials are configured. Endpoint, credentials and
    region are fixed at construction.
    """

    def __init__(
        self,
        endpoint: str,
        port: int = 0,
        access_key: str | None = None,
        secret_key: str | None = None,
        secure: bool = True,
        region: str | None = None,
        *,
        settings: ClientSettings | None = None,
        transport: Transport | None = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        scheme, host, resolved_port = _parse_endpoint(endpoint, port, secure)
        if bool(access_key) != bool(secret_key):
            raise ConfigurationError("access key and secret key must be given together")
        self._scheme = scheme
        self._hostname = host
        self._netloc = _netloc(scheme, host, resolved_port)
        self._credentials = Credentials(access_key, secret_key) if access_key else None
        self._region = (region or "").strip() or get_region(host)
        self._settings = settings or ClientSettings()
        self._transport = transport or Urllib3Transport(
            connect_timeout=self._settings.connect_timeout,
            read_timeout=self._settings.read_timeout,
            verify_tls=self._settings.verify_tls,
        )
        self._logger = logger or LOGGER
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._user_agent = with_app_info(
            default_user_agent(), self._settings.app_name, self._settings.app_version
        )
        self._uploads = UploadOrchestrator(self, logger=self._logger)

    @classmethod
    def from_profile(
        cls,
        profile: "ConnectionProfile",
        settings: ClientSettings | None = None,
        transport: Transport | None = None,
        logger: logging.Logger | None = None,
    ) -> "S3Client":
        """Build a client from a saved connection profile."""
        return cls(
            profile.endpoint_url,
            access_key=profile.access_key or None,
            secret_key=profile.secret_key or None,
            region=profile.region or None,
            settings=settings,
            transport=transport,
            logger=logger,
        )

    @property
    def url(self) -> str:
        return f"{self._scheme}://{self._netloc}/"

    @property
    def region(self) -> str:
        return self._region

    @property
    def user_agent(self) -> str:
        return self._user_agent

    @property
    def anonymous(self) -> bool:
        return self._credentials is None

    def set_app_info(self, name: str | None, version: str | None) -> None:
        """Append ``name/version`` to the user agent sent with every request."""
        self._user_agent = with_app_info(self._user_agent, name, version)

    def close(self) -> None:
        """Release pooled connections held by the transport."""
        close = getattr(self._transport, "close", None)
        if close is not None:
            close()

    # Buckets

    def list_buckets(self) -> list[Bucket]:
        response = self._execute("GET")
        return parse_list_buckets(response.data)

    def bucket_exists(self, bucket: str) -> bool:
        try:
            self._execute("HEAD", bucket)
        except ErrorResponseError as exc:
            if exc.code is ErrorCode.NO_SUCH_BUCKET:
                return False
            raise
        return True

    def make_bucket(self, bucket: str, acl: Acl | str | None = Acl.PRIVATE) -> None:
        """Create ``bucket`` in the client's region with a canned ACL."""
        acl = Acl.PRIVATE if acl is None else _to_acl(acl)
        headers = {"x-amz-acl": str(acl)}
        body = None
        if self._region != DEFAULT_REGION:
            body = build_create_bucket_configuration(self._region)
            headers["Content-MD5"] = base64.b64encode(md5_digest(body)).decode("ascii")
        self._execute("PUT", bucket, headers=headers, body=body)

    def remove_bucket(self, bucket: str) -> None:
        self._execute("DELETE", bucket)

    def get_bucket_acl(self, bucket: str) -> Acl:
        response = self._execute("GET", bucket, query=[("acl", "")])
        grants = parse_access_control_policy(response.data)
        if len(grants) == 1:
            if grants[0][1] == "FULL_CONTROL":
                return Acl.PRIVATE
        elif len(grants) == 2:
            for uri, permission in grants:
                if uri == AUTHENTICATED_USERS_URI and permission == "READ":
                    return Acl.AUTHENTICATED_READ
                if uri == ALL_USERS_URI and permission == "READ":
                    return Acl.PUBLIC_READ
        elif len(grants) == 3:
            for uri, permission in grants:
                if uri == ALL_USERS_URI and permission == "WRITE":
                    return Acl.PUBLIC_READ_WRITE
        raise InternalClientError(f"unrecognised access control policy for bucket '{bucket}': {grants}")

    def set_bucket_acl(self, bucket: str, acl: Acl | str | None) -> None:
        acl = _to_acl(acl)
        self._execute("PUT", bucket, query=[("acl", "")], headers={"x-amz-acl": str(acl)})

    # Objects

    def stat_object(self, bucket: str, key: str) -> ObjectStat:
        _check_key(key)
        response = self._execute("HEAD", bucket, key)
        headers = response.headers
        length = headers.get("Content-Length")
        modified = headers.get("Last-Modified")
        try:
            size = int(length) if length is not None else None
            last_modified = parsedate_to_datetime(modified) if modified else None
        except (TypeError, ValueError) as exc:
            raise MessageError(f"malformed metadata headers for '{key}': {exc}") from exc
        return ObjectStat(
            bucket=bucket,
            key=key,
            size=size,
            last_modified=last_modified,
            etag=headers.get("ETag"),
            content_type=headers.get("Content-Type"),
        )

    def get_object(self, bucket: str, key: str) -> BinaryIO:
        """Return the streaming object body; the caller must close it.

        The stream is the transport's own response object, so failures while
        reading it surface as that library's errors (for the default
        transport, ``urllib3.exceptions.HTTPError`` subclasses such as
        ``ProtocolError`` or ``ReadTimeoutError``), not as ``TransportError``.
        """
        _check_key(key)
        response = self._execute("GET", bucket, key, stream=True)
        return response.stream

    def get_partial_object(
        self, bucket: str, key: str, offset: int, length: int | None = None
    ) -> BinaryIO:
        """Return a stream over ``length`` bytes starting at ``offset``.

        Without ``length`` the object is read to its end, which costs an
        extra metadata request. Read errors behave as for :meth:`get_object`.
        """
        if offset is None or offset < 0:
            raise InvalidRangeError(f"offset must be zero or positive, got {offset!r}")
        if length is not None and length <= 0:
            raise InvalidRangeError(f"length must be positive, got {length!r}")
        _check_bucket(bucket)
        _check_key(key)
        if length is None:
            stat = self.stat_object(bucket, key)
            length = (stat.size or 0) - offset
            if length <= 0:
                raise InvalidRangeError(f"offset {offset} is beyond the end of '{key}'")
        headers = {"Range": f"bytes={offset}-{offset + length - 1}"}
        response = self._execute("GET", bucket, key, headers=headers, stream=True)
        return response.stream

    def remove_object(self, bucket: str, key: str) -> None:
        _check_key(key)
        self._execute("DELETE", bucket, key)

    def put_object(
        self,
        bucket: str,
        key: str,
        content_type: str | None,
        size: int,
        body: BinaryIO,
    ) -> None:
        """Upload an object, switching to a resumable multipart upload above 5 MiB."""
        _check_bucket(bucket)
        _check_key(key)
        self._uploads.put(bucket, key, content_type, size, body)

    # Presigned access

    def presigned_get_object(
        self,
        bucket: str,
        key: str,
        expires: int = MAX_EXPIRY,
        response_headers: Mapping[str, str] | None = None,
    ) -> str:
        """Return a GET URL valid for ``expires`` seconds.

        ``response_headers`` become ``response-*`` overrides such as
        ``{"response-content-type": "text/plain"}``.
        """
        query = [(name, value) for name, value in (response_headers or {}).items()]
        return self._presign("GET", bucket, key, expires, query)

    def presigned_put_object(self, bucket: str, key: str, expires: int = MAX_EXPIRY) -> str:
        return self._presign("PUT", bucket, key, expires)

    def presigned_post_policy(self, policy: "PostPolicy") -> dict:
        """Return the form action URL and the signed fields for ``policy``."""
        credentials = self._require_credentials()
        fields = policy.form_data(credentials, self._region, self._clock())
        return {"url": f"{self._scheme}://{self._netloc}{self._resource_path(policy.bucket)}", "fields": fields}

    # Listings

    def list_objects(
        self, bucket: str, prefix: str | None = None, recursive: bool = True
    ) -> Iterator[Result[Item]]:
        """Lazily list objects, one page per request.

        Non-recursive listings yield a directory item per common prefix.
        Failures end the sequence with a single error result.
        """
        _check_bucket(bucket)
        delimiter = delimiter_for(recursive)
        page_size = clamp_page_size(self._settings.page_size)

        def fetch(markers):
            query = [("max-keys", str(page_size))]
            query.extend(self._listing_query(prefix, delimiter, markers))
            return parse_list_objects(self._execute("GET", bucket, query=query).data)

        paginator = Paginator(fetch, OBJECT_MARKER, delimiter=delimiter, logger=self._logger)
        return paginator.results(lambda common: Item(key=common, is_dir=True))

    def list_incomplete_uploads(
        self, bucket: str, prefix: str | None = None, recursive: bool = True
    ) -> Iterator[Result[Upload]]:
        _check_bucket(bucket)
        delimiter = delimiter_for(recursive)
        page_size = clamp_page_size(self._settings.page_size)

        def fetch(markers):
            query = [("uploads", ""), ("max-uploads", str(page_size))]
            query.extend(self._listing_query(prefix, delimiter, markers))
            return parse_list_multipart_uploads(self._execute("GET", bucket, query=query).data)

        paginator = Paginator(fetch, UPLOAD_MARKERS, delimiter=delimiter, logger=self._logger)
        return paginator.results(lambda common: Upload(key=common, is_dir=True))

    def list_parts(self, bucket: str, key: str, upload_id: str) -> Iterator[Result[Part]]:
        _check_bucket(bucket)
        _check_key(key)
        if not upload_id:
            raise InvalidArgumentError("upload id cannot be empty")
        page_size = clamp_page_size(self._settings.page_size)

        def fetch(markers):
            query = [("uploadId", upload_id), ("max-parts", str(page_size))]
            query.extend(self._listing_query(None, None, markers))
            return parse_list_parts(self._execute("GET", bucket, key, query=query).data)

        return Paginator(fetch, PART_NUMBER_MARKER, logger=self._logger).results()

    def remove_incomplete_upload(self, bucket: str, key: str) -> None:
        """Abort every in-progress multipart upload whose key is exactly ``key``."""
        _check_key(key)
        upload_ids = [
            upload.upload_id
            for upload in (result.get() for result in self.list_incomplete_uploads(bucket, prefix=key))
            if upload.key == key and upload.upload_id
        ]
        for upload_id in upload_ids:
            self.abort_multipart_upload(bucket, key, upload_id)

    # Multipart session primitives

    def initiate_multipart_upload(self, bucket: str, key: str, content_type: str) -> str:
        _check_key(key)
        response = self._execute(
            "POST",
            bucket,
            key,
            query=[("uploads", "")],
            headers={"Content-Type": content_type},
        )
        return parse_initiate_multipart_upload(response.data)

    def put_object_data(
        self,
        bucket: str,
        key: str,
        content_type: str,
        data: bytes,
        md5: bytes,
        *,
        upload_id: str | None = None,
        part_number: int | None = None,
    ) -> str:
        """PUT one object body or, given ``upload_id``, one part; returns its ETag."""
        _check_key(key)
        query = []
        if upload_id is not None:
            query = [("partNumber", str(part_number)), ("uploadId", upload_id)]
        headers = {
            "Content-Type": content_type,
            "Content-MD5": base64.b64encode(md5).decode("ascii"),
        }
        response = self._execute("PUT", bucket, key, query=query, headers=headers, body=data)
        return response.headers.get("ETag") or ""

    def upload_part(
        self, bucket: str, key: str, upload_id: str, part_number: int, data: bytes
    ) -> Part:
        etag = self.put_object_data(
            bucket,
            key,
            "application/octet-stream",
            data,
            md5_digest(data),
            upload_id=upload_id,
            part_number=part_number,
        )
        return Part(part_number=part_number, etag=etag, size=len(data))

    def complete_multipart_upload(
        self, bucket: str, key: str, upload_id: str, parts: list[Part]
    ) -> None:
        _check_key(key)
        body = build_complete_multipart_upload(parts)
        path = self._resource_path(bucket, key)
        response = self._execute(
            "POST",
            bucket,
            key,
            query=[("uploadId", upload_id)],
            headers={"Content-Type": "application/xml"},
            body=body,
        )
        # The service reports a failed assembly inside a 200 response.
        if is_error_document(response.data):
            raise error_from_body(response.status, response.data, path, response.headers)

    def abort_multipart_upload(self, bucket: str, key: str, upload_id: str) -> None:
        _check_key(key)
        self._execute("DELETE", bucket, key, query=[("uploadId", upload_id)])

    # Request plumbing

    def _require_credentials(self) -> Credentials:
        if self._credentials is None:
            raise ConfigurationError("presigning requires an access key and secret key")
        return self._credentials

    def _resource_path(self, bucket: str | None = None, key: str | None = None) -> str:
        if bucket is None:
            return "/"
        _check_bucket(bucket)
        path = "/" + quote(bucket, safe="")
        if key is not None:
            _check_key(key)
            path += "/" + quote(key, safe="/")
        return path

    @staticmethod
    def _listing_query(
        prefix: str | None, delimiter: str | None, markers: Mapping[str, Optional[str]]
    ) -> list[tuple[str, str]]:
        query = []
        if prefix:
            query.append(("prefix", prefix))
        if delimiter:
            query.append(("delimiter", delimiter))
        query.extend((name, value) for name, value in markers.items() if value)
        return query

    def _presign(
        self,
        method: str,
        bucket: str,
        key: str,
        expires: int,
        query: list[tuple[str, str]] | None = None,
    ) -> str:
        expires = validate_expiry(expires)
        credentials = self._require_credentials()
        _check_key(key)
        return presign_v4(
            method=method,
            scheme=self._scheme,
            host=self._netloc,
            path=self._resource_path(bucket, key),
            query=query or [],
            credentials=credentials,
            region=self._region,
            date=self._clock(),
            expires=expires,
        )

    def _new_request(
        self,
        method: str,
        path: str,
        query: list[tuple[str, str]],
        headers: Mapping[str, str] | None,
        body: bytes | None,
    ) -> HttpRequest:
        date = self._clock()
        request_headers = {
            "Host": self._netloc,
            "User-Agent": self._user_agent,
            "x-amz-date": to_amz_date(date),
        }
        request_headers.update(headers or {})
        if method in ("PUT", "POST"):
            body = body or b""
            request_headers["Content-Length"] = str(len(body))
        if self._credentials is not None:
            payload_hash = hash_payload(body)
            request_headers["x-amz-content-sha256"] = payload_hash
            request_headers = sign_v4(
                method=method,
                path=path,
                query=query,
                headers=request_headers,
                credentials=self._credentials,
                region=self._region,
                date=date,
                payload_hash=payload_hash,
            )
        return HttpRequest(
            method=method,
            scheme=self._scheme,
            host=self._netloc,
            path=path,
            query=list(query),
            headers=request_headers,
            body=body,
        )

    def _execute(
        self,
        method: str,
        bucket: str | None = None,
        key: str | None = None,
        *,
        query: list[tuple[str, str]] | None = None,
        headers: Mapping[str, str] | None = None,
        body: bytes | None = None,
        stream: bool = False,
    ) -> HttpResponse:
        """Sign and send one request, raising the mapped error for a non-2xx status."""
        path = self._resource_path(bucket, key)
        request = self._new_request(method, path, query or [], headers, body)
        self._logger.debug("%s %s://%s%s", method, self._scheme, self._netloc, path)
        try:
            response = self._transport.send(request, stream=stream)
        except OSError as exc:
            raise TransportError(f"{method} {self._netloc}{path} failed: {exc}") from exc
        self._logger.debug("%s %s -> %d", method, path, response.status)
        if response.ok:
            return response
        if method == "HEAD":
            raise error_from_status(response.status, path, response.headers)
        data = response.data
        if response.stream is not None:
            try:
                data = response.stream.read()
            finally:
                response.close()
        raise error_from_body(response.status, data, path, response.headers)
