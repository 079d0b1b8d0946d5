"""V1 signatures: HMAC-SHA1 over a fixed template string."""

from __future__ import annotations

import base64
import hashlib
import hmac
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Mapping

from ossclient.common.config import Credentials
from ossclient.common.errors import InvalidArgumentError
from ossclient.infra.signing.base import SignedAuthorization, SigningRequest, header_value
from ossclient.infra.signing.canonical import (
    HeaderValue,
    canonicalized_oss_headers,
    canonicalized_resource,
)

SECURITY_TOKEN_HEADER = "x-oss-security-token"
SECURITY_TOKEN_PARAM = "security-token"


def rfc1123_date(now: datetime) -> str:
    return format_datetime(now.astimezone(timezone.utc), usegmt=True)


def build_string_to_sign(
    method: str,
    headers: Mapping[str, HeaderValue],
    date: str,
    resource: str,
) -> str:
    return (
        f"{method.upper()}\n"
        f"{header_value(headers, 'Content-MD5')}\n"
        f"{header_value(headers, 'Content-Type')}\n"
        f"{date}\n"
        f"{canonicalized_oss_headers(headers)}"
        f"{resource}"
    )


def compute_signature(secret: str, string_to_sign: str) -> str:
    digest = hmac.new(
        secret.encode("utf-8"), string_to_sign.encode("utf-8"), hashlib.sha1
    ).digest()
    return base64.b64encode(digest).decode("ascii")


class SignerV1:
    version = "v1"

    def sign_headers(
        self,
        request: SigningRequest,
        credentials: Credentials,
        now: datetime,
    ) -> SignedAuthorization:
        credentials.ensure_usable()
        added: dict[str, str] = {"Date": rfc1123_date(now)}
        if credentials.security_token:
            added[SECURITY_TOKEN_HEADER] = credentials.security_token

        headers = {**request.headers, **added}
        string_to_sign = build_string_to_sign(
            request.method,
            headers,
            added["Date"],
            canonicalized_resource(request.bucket, request.object_key, request.query),
        )
        signature = compute_signature(credentials.access_key_secret, string_to_sign)
        added["Authorization"] = f"OSS {credentials.access_key_id}:{signature}"
        return SignedAuthorization(headers=added)

    def sign_query(
        self,
        request: SigningRequest,
        credentials: Credentials,
        now: datetime,
        expires_in: int,
    ) -> SignedAuthorization:
        credentials.ensure_usable()
        if int(expires_in) < 1:
            raise InvalidArgumentError("expires_in must be a positive number of seconds")
        expires = str(int(now.timestamp()) + int(expires_in))
        query = dict(request.query)
        added: dict[str, str] = {}
        if credentials.security_token:
            added[SECURITY_TOKEN_PARAM] = credentials.security_token
            query[SECURITY_TOKEN_PARAM] = credentials.security_token

        string_to_sign = build_string_to_sign(
            request.method,
            request.headers,
            expires,
            canonicalized_resource(request.bucket, request.object_key, query),
        )
        added.update(
            {
                "OSSAccessKeyId": credentials.access_key_id,
                "Expires": expires,
                "Signature": compute_signature(
                    credentials.access_key_secret, string_to_sign
                ),
            }
        )
        return SignedAuthorization(query=added)
