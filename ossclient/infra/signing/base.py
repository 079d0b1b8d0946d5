"""Signer protocol and the value types shared by both signature versions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Mapping, Protocol

from ossclient.common.config import Credentials
from ossclient.common.errors import ConfigurationError
from ossclient.infra.signing.canonical import HeaderValue, QueryValue

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def header_value(headers: Mapping[str, HeaderValue], name: str) -> str:
    """Case-insensitive header lookup returning ``""`` when absent."""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value if isinstance(value, str) else ",".join(value)
    return ""


@dataclass(frozen=True, slots=True)
class SigningRequest:
    """Everything a signer needs to know about one outgoing request."""

    method: str
    bucket: str | None
    object_key: str | None
    query: Mapping[str, QueryValue] = field(default_factory=dict)
    headers: Mapping[str, HeaderValue] = field(default_factory=dict)
    additional_headers: tuple[str, ...] = ()
    # In-memory body, or None for streamed payloads.
    payload: bytes | None = None


@dataclass(frozen=True, slots=True)
class SignedAuthorization:
    """Headers or query parameters to add to the request being signed."""

    headers: Mapping[str, str] = field(default_factory=dict)
    query: Mapping[str, str] = field(default_factory=dict)


class Signer(Protocol):
    """Common capability of the V1 and V4 signature algorithms."""

    version: str

    def sign_headers(
        self,
        request: SigningRequest,
        credentials: Credentials,
        now: datetime,
    ) -> SignedAuthorization:
        """Return the headers carrying the request's authorization."""
        ...

    def sign_query(
        self,
        request: SigningRequest,
        credentials: Credentials,
        now: datetime,
        expires_in: int,
    ) -> SignedAuthorization:
        """Return the query parameters of a pre-signed URL valid for ``expires_in`` seconds."""
        ...


def create_signer(version: str, *, sign_payload: bool = False) -> Signer:
    from ossclient.infra.signing.v1 import SignerV1
    from ossclient.infra.signing.v4 import SignerV4

    normalized = (version or "").strip().lower()
    if normalized == "v1":
        return SignerV1()
    if normalized == "v4":
        return SignerV4(sign_payload=sign_payload)
    raise ConfigurationError(f"Unsupported signature version: {version!r}")
