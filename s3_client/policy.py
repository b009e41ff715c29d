from __future__ import annotations
"""Browser form-upload policies signed with Signature Version 4."""
import base64
from datetime import datetime, timezone
import json
from typing import Any

from .errors import InvalidArgumentError, InvalidBucketNameError, InvalidObjectNameError
from .signer import ALGORITHM, Credentials, get_credential, post_presign_v4, to_amz_date


def _to_expiration(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


class PostPolicy:
    """Conditions a browser POST upload must satisfy.

    A key condition (exact or prefix) is mandatory before signing.
    """

    def __init__(self, bucket: str, expiration: datetime):
        if not bucket or not bucket.strip():
            raise InvalidBucketNameError(bucket)
        self._bucket = bucket
        self._expiration = expiration
        self._conditions: list[list[Any]] = []
        self._form_fields: dict[str, str] = {"bucket": bucket}
        self._key_set = False

    @property
    def bucket(self) -> str:
        return self._bucket

    def set_key(self, key: str) -> None:
        if not key or not key.strip():
            raise InvalidObjectNameError(key)
        self._conditions.append(["eq", "$key", key])
        self._form_fields["key"] = key
        self._key_set = True

    def set_key_starts_with(self, prefix: str) -> None:
        if not prefix or not prefix.strip():
            raise InvalidObjectNameError(prefix)
        self._conditions.append(["starts-with", "$key", prefix])
        self._form_fields["key"] = prefix
        self._key_set = True

    def set_content_type(self, content_type: str) -> None:
        if not content_type or not content_type.strip():
            raise InvalidArgumentError("content type cannot be empty")
        self._conditions.append(["eq", "$Content-Type", content_type])
        self._form_fields["Content-Type"] = content_type

    def set_content_length_range(self, lower_limit: int, upper_limit: int) -> None:
        if lower_limit < 0 or upper_limit < 0:
            raise InvalidArgumentError("content length limits cannot be negative")
        if lower_limit > upper_limit:
            raise InvalidArgumentError("lower limit cannot be greater than upper limit")
        self._conditions.append(["content-length-range", lower_limit, upper_limit])

    def form_data(self, credentials: Credentials, region: str, date: datetime) -> dict[str, str]:
        """Return the signed form fields, including the base64 policy document."""
        if not self._key_set:
            raise InvalidArgumentError("key condition must be set")
        credential = get_credential(credentials.access_key, date, region)
        amz_date = to_amz_date(date)
        conditions = [["eq", "$bucket", self._bucket], *self._conditions]
        conditions.append(["eq", "$x-amz-algorithm", ALGORITHM])
        conditions.append(["eq", "$x-amz-credential", credential])
        conditions.append(["eq", "$x-amz-date", amz_date])
        document = {"expiration": _to_expiration(self._expiration), "conditions": conditions}
        policy = base64.b64encode(json.dumps(document).encode("utf-8")).decode("ascii")

        fields = dict(self._form_fields)
        fields.update(
            {
                "policy": policy,
                "x-amz-algorithm": ALGORITHM,
                "x-amz-credential": credential,
                "x-amz-date": amz_date,
                "x-amz-signature": post_presign_v4(policy, credentials, region, date),
            }
        )
        return fields
