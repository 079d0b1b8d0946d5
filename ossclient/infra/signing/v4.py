"""V4 signatures: HMAC-SHA256 with a date/region/service scoped signing key.

The signing key is derived by chaining HMACs::

    k_date    = HMAC("aliyun_v4" + secret, date)
    k_region  = HMAC(k_date, region)
    k_service = HMAC(k_region, "oss")
    k_signing = HMAC(k_service, "aliyun_v4_request")

and the signature is the hex HMAC of the string to sign under ``k_signing``.
"""

from __future__ import annotations

import hashlib
import hmac
from datetime import datetime, timezone
from typing import Mapping

from ossclient.common.config import Credentials
from ossclient.common.errors import InvalidArgumentError
from ossclient.infra.signing.base import SignedAuthorization, SigningRequest
from ossclient.infra.signing.canonical import (
    UNSIGNED_PAYLOAD,
    CanonicalRequest,
    HeaderValue,
    QueryValue,
    build_canonical_request,
)

ALGORITHM = "OSS4-HMAC-SHA256"
SERVICE = "oss"
TERMINATOR = "aliyun_v4_request"
KEY_PREFIX = "aliyun_v4"

MAX_PRESIGN_EXPIRES = 7 * 24 * 3600


def _hmac_sha256(key: bytes, msg: str) -> bytes:
    return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()


def format_timestamp(now: datetime) -> str:
    return now.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def credential_scope(date: str, region: str) -> str:
    return f"{date}/{region}/{SERVICE}/{TERMINATOR}"


def derive_signing_key(secret: str, date: str, region: str) -> bytes:
    key = _hmac_sha256(f"{KEY_PREFIX}{secret}".encode("utf-8"), date)
    key = _hmac_sha256(key, region)
    key = _hmac_sha256(key, SERVICE)
    return _hmac_sha256(key, TERMINATOR)


def build_string_to_sign(timestamp: str, scope: str, canonical: CanonicalRequest) -> str:
    return f"{ALGORITHM}\n{timestamp}\n{scope}\n{canonical.digest()}"


def compute_signature(signing_key: bytes, string_to_sign: str) -> str:
    return hmac.new(
        signing_key, string_to_sign.encode("utf-8"), hashlib.sha256
    ).hexdigest()


class SignerV4:
    version = "v4"

    def __init__(self, *, sign_payload: bool = False) -> None:
        self._sign_payload = sign_payload

    def payload_hash(self, payload: bytes | None) -> str:
        if self._sign_payload and payload is not None:
            return hashlib.sha256(payload).hexdigest()
        return UNSIGNED_PAYLOAD

    def _sign(
        self,
        request: SigningRequest,
        credentials: Credentials,
        timestamp: str,
        *,
        query: Mapping[str, QueryValue],
        headers: Mapping[str, HeaderValue],
        payload_hash: str,
    ) -> tuple[str, str]:
        date = timestamp[:8]
        scope = credential_scope(date, credentials.region)
        canonical = build_canonical_request(
            request.method,
            bucket=request.bucket,
            object_key=request.object_key,
            query=query,
            headers=headers,
            additional_headers=request.additional_headers,
            payload_hash=payload_hash,
        )
        signing_key = derive_signing_key(credentials.access_key_secret, date, credentials.region)
        signature = compute_signature(
            signing_key, build_string_to_sign(timestamp, scope, canonical)
        )
        return scope, signature

    def sign_headers(
        self,
        request: SigningRequest,
        credentials: Credentials,
        now: datetime,
    ) -> SignedAuthorization:
        credentials.ensure_usable(require_region=True)
        timestamp = format_timestamp(now)
        payload_hash = self.payload_hash(request.payload)
        added: dict[str, str] = {
            "x-oss-date": timestamp,
            "x-oss-content-sha256": payload_hash,
        }
        if credentials.security_token:
            added["x-oss-security-token"] = credentials.security_token

        scope, signature = self._sign(
            request,
            credentials,
            timestamp,
            query=request.query,
            headers={**request.headers, **added},
            payload_hash=payload_hash,
        )
        fields = [f"Credential={credentials.access_key_id}/{scope}"]
        if request.additional_headers:
            additional = sorted({name.strip().lower() for name in request.additional_headers})
            fields.append(f"AdditionalHeaders={';'.join(additional)}")
        fields.append(f"Signature={signature}")
        added["Authorization"] = f"{ALGORITHM} {','.join(fields)}"
        return SignedAuthorization(headers=added)

    def sign_query(
        self,
        request: SigningRequest,
        credentials: Credentials,
        now: datetime,
        expires_in: int,
    ) -> SignedAuthorization:
        credentials.ensure_usable(require_region=True)
        if not 1 <= int(expires_in) <= MAX_PRESIGN_EXPIRES:
            raise InvalidArgumentError(
                f"expires_in must be between 1 and {MAX_PRESIGN_EXPIRES} seconds"
            )
        timestamp = format_timestamp(now)
        added: dict[str, str] = {
            "x-oss-signature-version": ALGORITHM,
            "x-oss-credential": (
                f"{credentials.access_key_id}/"
                f"{credential_scope(timestamp[:8], credentials.region)}"
            ),
            "x-oss-date": timestamp,
            "x-oss-expires": str(int(expires_in)),
        }
        if request.additional_headers:
            additional = sorted({name.strip().lower() for name in request.additional_headers})
            added["x-oss-additional-headers"] = ";".join(additional)
        if credentials.security_token:
            added["x-oss-security-token"] = credentials.security_token

        _, signature = self._sign(
            request,
            credentials,
            timestamp,
            query={**request.query, **added},
            headers=request.headers,
            payload_hash=UNSIGNED_PAYLOAD,
        )
        added["x-oss-signature"] = signature
        return SignedAuthorization(query=added)
