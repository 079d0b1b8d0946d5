"""Canonical request construction.

Builds the exact strings that request signatures are computed over. Both
signature versions consume the helpers here:

- V4 signs a full canonical request (method, URI, query, headers, payload
  descriptor) through ``build_canonical_request``.
- V1 signs a fixed template whose variable parts are the canonicalized
  ``x-oss-`` headers and the canonicalized resource.

Ordering never depends on mapping insertion order: every collection is
sorted before it is serialised.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence, Union
from urllib.parse import quote

HEADER_PREFIX = "x-oss-"

UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"

HeaderValue = Union[str, Sequence[str]]
QueryValue = Union[str, int, None]

# Headers signed by V4 in addition to the x-oss-* family.
V4_DEFAULT_SIGNED_HEADERS = frozenset({"content-type", "content-md5"})

# Query parameters that take part in the V1 canonicalized resource.
V1_SUBRESOURCES = frozenset(
    {
        "acl",
        "append",
        "asyncFetch",
        "bucketInfo",
        "callback",
        "callback-var",
        "cname",
        "comp",
        "continuation-token",
        "cors",
        "delete",
        "encryption",
        "endTime",
        "group",
        "inventory",
        "inventoryId",
        "lifecycle",
        "link",
        "live",
        "location",
        "logging",
        "objectInfo",
        "objectMeta",
        "partNumber",
        "policy",
        "position",
        "qos",
        "referer",
        "replication",
        "replicationLocation",
        "replicationProgress",
        "requestPayment",
        "response-cache-control",
        "response-content-disposition",
        "response-content-encoding",
        "response-content-language",
        "response-content-type",
        "response-expires",
        "restore",
        "security-token",
        "sequential",
        "startTime",
        "stat",
        "status",
        "symlink",
        "tagging",
        "uploadId",
        "uploads",
        "versionId",
        "versioning",
        "versions",
        "vod",
        "website",
        "x-oss-process",
        "x-oss-traffic-limit",
    }
)


def uri_encode(value: str, *, encode_slash: bool = True) -> str:
    """Percent-encode ``value`` as UTF-8, keeping only unreserved characters.

    Unreserved characters are ``A-Z a-z 0-9 - _ . ~``; everything else
    becomes ``%XX`` with uppercase hex. ``/`` is kept when ``encode_slash``
    is false so object keys keep their path structure.
    """
    return quote(value, safe="" if encode_slash else "/")


def _query_text(value: QueryValue) -> str:
    if value is None:
        return ""
    return str(value)


def canonical_query_string(query: Mapping[str, QueryValue] | None) -> str:
    """Serialise query parameters sorted by encoded name, then value.

    Parameters without a value (``None`` or ``""``) appear as the bare name,
    e.g. ``uploads``.
    """
    if not query:
        return ""
    encoded = sorted(
        (uri_encode(str(key)), uri_encode(_query_text(value)))
        for key, value in query.items()
    )
    return "&".join(f"{key}={value}" if value else key for key, value in encoded)


def _header_text(value: HeaderValue) -> str:
    if isinstance(value, str):
        return value.strip()
    return ",".join(str(item).strip() for item in value)


def normalize_headers(headers: Mapping[str, HeaderValue] | None) -> list[tuple[str, str]]:
    """Lower-case and trim names, trim values, comma-join multi-valued headers."""
    if not headers:
        return []
    merged: dict[str, str] = {}
    for name, value in headers.items():
        key = name.strip().lower()
        text = _header_text(value)
        if key in merged:
            merged[key] = f"{merged[key]},{text}"
        else:
            merged[key] = text
    return sorted(merged.items())


def canonical_header_items(
    headers: Mapping[str, HeaderValue] | None,
    additional_headers: Iterable[str] = (),
) -> list[tuple[str, str]]:
    """Return the V4 signed header subset, sorted by name."""
    extra = {name.strip().lower() for name in additional_headers}
    return [
        (name, value)
        for name, value in normalize_headers(headers)
        if name.startswith(HEADER_PREFIX)
        or name in V4_DEFAULT_SIGNED_HEADERS
        or name in extra
    ]


def canonical_uri(bucket: str | None, object_key: str | None) -> str:
    if not bucket:
        return "/"
    if not object_key:
        return f"/{bucket}/"
    return f"/{bucket}/{uri_encode(object_key, encode_slash=False)}"


@dataclass(frozen=True, slots=True)
class CanonicalRequest:
    """Immutable canonical form of one request for V4 signing."""

    method: str
    resource_path: str
    query: tuple[tuple[str, str], ...]
    headers: tuple[tuple[str, str], ...]
    additional_headers: tuple[str, ...]
    payload_hash: str

    def canonical_query(self) -> str:
        return canonical_query_string(dict(self.query))

    def canonical_headers(self) -> str:
        return "".join(f"{name}:{value}\n" for name, value in self.headers)

    def serialize(self) -> str:
        return "\n".join(
            [
                self.method,
                self.resource_path,
                self.canonical_query(),
                self.canonical_headers(),
                ";".join(self.additional_headers),
                self.payload_hash,
            ]
        )

    def digest(self) -> str:
        return hashlib.sha256(self.serialize().encode("utf-8")).hexdigest()


def build_canonical_request(
    method: str,
    *,
    bucket: str | None,
    object_key: str | None,
    query: Mapping[str, QueryValue] | None = None,
    headers: Mapping[str, HeaderValue] | None = None,
    additional_headers: Iterable[str] = (),
    payload_hash: str = UNSIGNED_PAYLOAD,
) -> CanonicalRequest:
    additional = tuple(sorted({name.strip().lower() for name in additional_headers}))
    return CanonicalRequest(
        method=method.upper(),
        resource_path=canonical_uri(bucket, object_key),
        query=tuple(
            sorted((str(key), _query_text(value)) for key, value in (query or {}).items())
        ),
        headers=tuple(canonical_header_items(headers, additional)),
        additional_headers=additional,
        payload_hash=payload_hash,
    )


def canonicalized_oss_headers(headers: Mapping[str, HeaderValue] | None) -> str:
    """V1: sorted ``x-oss-*`` headers, one ``name:value`` line each."""
    return "".join(
        f"{name}:{value}\n"
        for name, value in normalize_headers(headers)
        if name.startswith(HEADER_PREFIX)
    )


def canonicalized_resource(
    bucket: str | None,
    object_key: str | None,
    query: Mapping[str, QueryValue] | None = None,
) -> str:
    """V1: ``/bucket/key`` plus whitelisted sub-resources, unencoded."""
    if not bucket:
        resource = "/"
    else:
        resource = f"/{bucket}/{object_key or ''}"

    subresources = sorted(
        (str(key), _query_text(value))
        for key, value in (query or {}).items()
        if str(key) in V1_SUBRESOURCES
    )
    if not subresources:
        return resource
    joined = "&".join(f"{key}={value}" if value else key for key, value in subresources)
    return f"{resource}?{joined}"
