from __future__ import annotations
"""AWS Signature Version 4 signing for headers, presigned URLs and POST policies.

The canonical request is::

    HTTPMethod\\n
    CanonicalURI\\n
    CanonicalQueryString\\n
    CanonicalHeaders\\n
    SignedHeaders\\n
    HashedPayload

and the signing key is derived from the secret key through a chain of
HMAC-SHA256 operations: kSecret -> kDate -> kRegion -> kService -> kSigning.
"""
from dataclasses import dataclass, field
from datetime import datetime
import hashlib
import hmac
from typing import Iterable, Mapping
from urllib.parse import quote

from .errors import InvalidExpiryError

ALGORITHM = "AWS4-HMAC-SHA256"
SERVICE = "s3"
TERMINATOR = "aws4_request"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
EMPTY_SHA256 = hashlib.sha256(b"").hexdigest()

MIN_EXPIRY = 1
MAX_EXPIRY = 7 * 24 * 3600

DEFAULT_REGION = "us-east-1"
REGIONS = {
    "s3.amazonaws.com": "us-east-1",
    "s3-external-1.amazonaws.com": "us-east-1",
    "s3-us-west-1.amazonaws.com": "us-west-1",
    "s3-us-west-2.amazonaws.com": "us-west-2",
    "s3-eu-west-1.amazonaws.com": "eu-west-1",
    "s3-eu-central-1.amazonaws.com": "eu-central-1",
    "s3-ap-southeast-1.amazonaws.com": "ap-southeast-1",
    "s3-ap-southeast-2.amazonaws.com": "ap-southeast-2",
    "s3-ap-northeast-1.amazonaws.com": "ap-northeast-1",
    "s3-sa-east-1.amazonaws.com": "sa-east-1",
}

# Headers rewritten by proxies or produced by the signature itself.
_UNSIGNED_HEADERS = frozenset({"authorization"})


@dataclass(frozen=True)
class Credentials:
    """Access/secret key pair used to sign every request."""

    access_key: str
    secret_key: str = field(repr=False)


def get_region(host: str) -> str:
    """Return the signing region for an endpoint host."""
    return REGIONS.get((host or "").lower(), DEFAULT_REGION)


def to_amz_date(date: datetime) -> str:
    return date.strftime("%Y%m%dT%H%M%SZ")


def to_date_stamp(date: datetime) -> str:
    return date.strftime("%Y%m%d")


def sign(key: bytes, msg: str) -> bytes:
    """HMAC-SHA256 signing helper"""
    return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()


def get_signature_key(secret_key: str, date_stamp: str, region: str, service: str = SERVICE) -> bytes:
    """Derive the signing key for a date, region and service."""
    k_date = sign(("AWS4" + secret_key).encode("utf-8"), date_stamp)
    k_region = sign(k_date, region)
    k_service = sign(k_region, service)
    return sign(k_service, TERMINATOR)


def hash_payload(payload: bytes | None) -> str:
    """Calculate the SHA256 hex digest of a request body."""
    if not payload:
        return EMPTY_SHA256
    return hashlib.sha256(payload).hexdigest()


def get_scope(date: datetime, region: str, service: str = SERVICE) -> str:
    return f"{to_date_stamp(date)}/{region}/{service}/{TERMINATOR}"


def get_credential(access_key: str, date: datetime, region: str) -> str:
    return f"{access_key}/{get_scope(date, region)}"


def get_canonical_query_string(query: Iterable[tuple[str, str]]) -> str:
    """Encode and sort query parameters by name, then value."""
    encoded = sorted(
        (quote(name, safe=""), quote(value or "", safe=""))
        for name, value in query
    )
    return "&".join(f"{name}={value}" for name, value in encoded)


def get_canonical_headers(headers: Mapping[str, str]) -> tuple[str, str]:
    """Return the canonical header block and the signed-headers list.

    Names are lower-cased and sorted; values are trimmed with internal runs
    of whitespace collapsed to a single space.
    """
    entries = sorted(
        (name.lower(), " ".join(str(value).split()))
        for name, value in headers.items()
        if name.lower() not in _UNSIGNED_HEADERS
    )
    canonical = "".join(f"{name}:{value}\n" for name, value in entries)
    signed_headers = ";".join(name for name, _ in entries)
    return canonical, signed_headers


def create_canonical_request(
    method: str,
    path: str,
    query: Iterable[tuple[str, str]],
    headers: Mapping[str, str],
    payload_hash: str,
) -> tuple[str, str]:
    """Build the canonical request; ``path`` must already be URI-encoded."""
    canonical_headers, signed_headers = get_canonical_headers(headers)
    canonical_request = "\n".join(
        [
            method.upper(),
            path or "/",
            get_canonical_query_string(query),
            canonical_headers,
            signed_headers,
            payload_hash,
        ]
    )
    return canonical_request, signed_headers


def create_string_to_sign(canonical_request: str, date: datetime, scope: str) -> str:
    hashed_canonical = hashlib.sha256(canonical_request.encode("utf-8")).hexdigest()
    return "\n".join([ALGORITHM, to_amz_date(date), scope, hashed_canonical])


def calculate_signature(signing_key: bytes, string_to_sign: str) -> str:
    return hmac.new(signing_key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()


def validate_expiry(expires: int) -> int:
    """Return ``expires`` when it lies within one second and seven days."""
    try:
        value = int(expires)
    except (TypeError, ValueError):
        raise InvalidExpiryError(f"expiry must be an integer number of seconds, got {expires!r}") from None
    if value < MIN_EXPIRY or value > MAX_EXPIRY:
        raise InvalidExpiryError(
            f"expiry must be between {MIN_EXPIRY} and {MAX_EXPIRY} seconds, got {value}"
        )
    return value


def sign_v4(
    *,
    method: str,
    path: str,
    query: Iterable[tuple[str, str]],
    headers: Mapping[str, str],
    credentials: Credentials,
    region: str,
    date: datetime,
    payload_hash: str,
) -> dict[str, str]:
    """Return a copy of ``headers`` with the ``Authorization`` header added.

    ``headers`` must already carry ``Host``, ``x-amz-date`` and
    ``x-amz-content-sha256``; all of them are covered by the signature.
    """
    canonical_request, signed_headers = create_canonical_request(
        method, path, query, headers, payload_hash
    )
    scope = get_scope(date, region)
    string_to_sign = create_string_to_sign(canonical_request, date, scope)
    signing_key = get_signature_key(credentials.secret_key, to_date_stamp(date), region)
    signature = calculate_signature(signing_key, string_to_sign)

    signed = dict(headers)
    signed["Authorization"] = (
        f"{ALGORITHM} Credential={credentials.access_key}/{scope}, "
        f"SignedHeaders={signed_headers}, Signature={signature}"
    )
    return signed


def presign_v4(
    *,
    method: str,
    scheme: str,
    host: str,
    path: str,
    query: Iterable[tuple[str, str]] = (),
    credentials: Credentials,
    region: str,
    date: datetime,
    expires: int,
) -> str:
    """Return a URL whose query string carries a signature valid for ``expires`` seconds.

    Raises:
        InvalidExpiryError: before anything is signed, when ``expires`` is out of range.
    """
    expires = validate_expiry(expires)
    params = list(query)
    params.extend(
        [
            ("X-Amz-Algorithm", ALGORITHM),
            ("X-Amz-Credential", get_credential(credentials.access_key, date, region)),
            ("X-Amz-Date", to_amz_date(date)),
            ("X-Amz-Expires", str(expires)),
            ("X-Amz-SignedHeaders", "host"),
        ]
    )
    canonical_request, _ = create_canonical_request(
        method, path, params, {"host": host}, UNSIGNED_PAYLOAD
    )
    string_to_sign = create_string_to_sign(canonical_request, date, get_scope(date, region))
    signing_key = get_signature_key(credentials.secret_key, to_date_stamp(date), region)
    signature = calculate_signature(signing_key, string_to_sign)
    return (
        f"{scheme}://{host}{path or '/'}?{get_canonical_query_string(params)}"
        f"&X-Amz-Signature={signature}"
    )


def post_presign_v4(policy_base64: str, credentials: Credentials, region: str, date: datetime) -> str:
    """Sign a base64-encoded POST policy document."""
    signing_key = get_signature_key(credentials.secret_key, to_date_stamp(date), region)
    return calculate_signature(signing_key, policy_base64)
