"""OSS storage client implementation.

This module provides the object storage client used by the multipart
orchestrator. It composes three collaborators handed in at construction:

- a ``Signer`` (V1 or V4) producing authorization headers and signed URLs,
- a ``RequestExecutor`` wrapping the HTTP transport with cancellation,
  progress reporting and in-flight bookkeeping,
- a clock supplying signing timestamps.

Dependencies:
    - httpx (through ``HttpxTransport``)
"""

from __future__ import annotations

import base64
import hashlib
import logging
from typing import TYPE_CHECKING, AsyncIterable, Mapping, Sequence

from ossclient.common.errors import (
    ConfigurationError,
    InvalidArgumentError,
    RemoteServiceError,
    StorageError,
)
from ossclient.infra.http.cancel import CancelToken
from ossclient.infra.http.executor import RequestExecutor
from ossclient.infra.http.registry import InFlightRegistry
from ossclient.infra.http.transport import (
    HttpResponse,
    HttpxTransport,
    ProgressCallback,
    RequestBody,
    Transport,
)
from ossclient.infra.signing.base import Clock, Signer, SigningRequest, create_signer, utc_now
from ossclient.infra.signing.canonical import QueryValue, uri_encode
from ossclient.infra.storage.client import (
    MAX_OBJECT_KEY_BYTES,
    MAX_PART_NUMBER,
    MIN_PART_NUMBER,
    CompletedPart,
    ListPartsResult,
    MultipartUpload,
)
from ossclient.infra.storage.payloads import (
    build_complete_body,
    parse_list_parts,
    parse_upload_id,
)

if TYPE_CHECKING:
    from ossclient.common.config import Settings

logger = logging.getLogger("ossclient.storage")

MAX_LIST_PARTS = 1000


def upload_request_prefix(bucket: str, object_key: str, upload_id: str) -> str:
    """Request-key prefix shared by every part request of one upload."""
    return f"{bucket}/{object_key}:{upload_id}:"


def part_request_key(bucket: str, object_key: str, upload_id: str, part_number: int) -> str:
    return f"{upload_request_prefix(bucket, object_key, upload_id)}{part_number}"


def validate_object_key(object_key: str) -> None:
    if not isinstance(object_key, str) or not object_key:
        raise InvalidArgumentError("object_key must not be empty")
    if object_key.startswith(("/", "\\")):
        raise InvalidArgumentError("object_key must not start with '/' or '\\'")
    try:
        encoded = object_key.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise InvalidArgumentError("object_key must be valid UTF-8") from exc
    if len(encoded) > MAX_OBJECT_KEY_BYTES:
        raise InvalidArgumentError(
            f"object_key must be at most {MAX_OBJECT_KEY_BYTES} bytes"
        )


def validate_part_number(part_number: int) -> None:
    if (
        isinstance(part_number, bool)
        or not isinstance(part_number, int)
        or not MIN_PART_NUMBER <= part_number <= MAX_PART_NUMBER
    ):
        raise InvalidArgumentError(
            f"part_number must be between {MIN_PART_NUMBER} and {MAX_PART_NUMBER}"
        )


def validate_upload_id(upload_id: str) -> None:
    if not isinstance(upload_id, str) or not upload_id.strip():
        raise InvalidArgumentError("upload_id must not be empty")


def _split_endpoint(endpoint: str) -> tuple[str, str]:
    value = endpoint.strip().rstrip("/")
    if "://" in value:
        scheme, host = value.split("://", 1)
        return scheme.lower(), host
    return "https", value


class OSSStorageClient:
    """Object storage client for multipart uploads and pre-signed URLs.

    Raises ``ConfigurationError`` at construction when credentials or the
    endpoint are missing, so no request is ever attempted without them.
    """

    def __init__(
        self,
        *,
        settings: "Settings",
        transport: Transport | None = None,
        registry: InFlightRegistry | None = None,
        signer: Signer | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._settings = settings
        self._credentials = settings.credentials()
        self._signer = signer or create_signer(
            settings.OSS_SIGNATURE_VERSION, sign_payload=settings.OSS_SIGN_PAYLOAD
        )
        self._credentials.ensure_usable(require_region=self._signer.version == "v4")
        self._clock = clock or utc_now
        self._scheme, self._host = _split_endpoint(self._credentials.endpoint)
        self._executor = RequestExecutor(
            transport or HttpxTransport(timeout=settings.OSS_REQUEST_TIMEOUT),
            registry=registry,
            enable_metrics=settings.ENABLE_METRICS,
        )

    @property
    def executor(self) -> RequestExecutor:
        return self._executor

    @property
    def registry(self) -> InFlightRegistry:
        return self._executor.registry

    @property
    def signer(self) -> Signer:
        return self._signer

    async def aclose(self) -> None:
        await self._executor.transport.aclose()

    async def __aenter__(self) -> "OSSStorageClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def resolve_bucket(self, bucket: str | None) -> str:
        resolved = (bucket or self._settings.OSS_BUCKET or "").strip()
        if not resolved:
            raise ConfigurationError("OSS bucket is required")
        return resolved

    def build_url(
        self,
        *,
        bucket: str,
        object_key: str | None,
        query: Mapping[str, QueryValue] | None = None,
    ) -> str:
        path = f"/{uri_encode(object_key, encode_slash=False)}" if object_key else "/"
        if self._settings.OSS_PATH_STYLE:
            url = f"{self._scheme}://{self._host}/{bucket}{path}"
        else:
            url = f"{self._scheme}://{bucket}.{self._host}{path}"
        if query:
            pairs = sorted((str(key), "" if value is None else str(value)) for key, value in query.items())
            url += "?" + "&".join(
                f"{uri_encode(key)}={uri_encode(value)}" if value else uri_encode(key)
                for key, value in pairs
            )
        return url

    def sign_request(
        self,
        *,
        method: str,
        bucket: str,
        object_key: str | None,
        query: Mapping[str, QueryValue] | None = None,
        headers: Mapping[str, str] | None = None,
        payload: bytes | None = None,
    ) -> dict[str, str]:
        """Return ``headers`` extended with the request's authorization headers."""
        request = SigningRequest(
            method=method.upper(),
            bucket=bucket,
            object_key=object_key,
            query=dict(query or {}),
            headers=dict(headers or {}),
            payload=payload,
        )
        signed = self._signer.sign_headers(request, self._credentials, self._clock())
        return {**(headers or {}), **signed.headers}

    def presign_url(
        self,
        *,
        method: str,
        object_key: str,
        expires_in: int | None = None,
        bucket: str | None = None,
        query: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> str:
        """Generate a pre-signed URL; ``headers`` must be sent with the request."""
        validate_object_key(object_key)
        resolved = self.resolve_bucket(bucket)
        expires = int(
            expires_in if expires_in is not None else self._settings.OSS_PRESIGN_EXPIRES_SECONDS
        )
        request = SigningRequest(
            method=method.upper(),
            bucket=resolved,
            object_key=object_key,
            query=dict(query or {}),
            headers=dict(headers or {}),
        )
        signed = self._signer.sign_query(request, self._credentials, self._clock(), expires)
        return self.build_url(
            bucket=resolved,
            object_key=object_key,
            query={**(query or {}), **signed.query},
        )

    def presign_download(
        self,
        *,
        object_key: str,
        expires_in: int | None = None,
        bucket: str | None = None,
        filename: str | None = None,
    ) -> str:
        """Generate a pre-signed GET URL for downloading an object."""
        query: dict[str, str] = {}
        if filename:
            # Escape quotes in filename for Content-Disposition header
            safe_filename = filename.replace('"', '\\"')
            query["response-content-disposition"] = f'attachment; filename="{safe_filename}"'
        return self.presign_url(
            method="GET",
            object_key=object_key,
            expires_in=expires_in,
            bucket=bucket,
            query=query,
        )

    async def _call(
        self,
        *,
        action: str,
        request_key: str,
        method: str,
        bucket: str,
        object_key: str,
        query: Mapping[str, QueryValue] | None = None,
        headers: Mapping[str, str] | None = None,
        body: RequestBody = None,
        payload: bytes | None = b"",
        cancel_token: CancelToken | None = None,
        on_send_progress: ProgressCallback | None = None,
        on_receive_progress: ProgressCallback | None = None,
    ) -> HttpResponse:
        async def operation(token: CancelToken) -> HttpResponse:
            signed_headers = self.sign_request(
                method=method,
                bucket=bucket,
                object_key=object_key,
                query=query,
                headers=headers,
                payload=payload,
            )
            return await self._executor.send(
                method=method,
                url=self.build_url(bucket=bucket, object_key=object_key, query=query),
                headers=signed_headers,
                body=body,
                cancel_token=token,
                on_send_progress=on_send_progress,
                on_receive_progress=on_receive_progress,
            )

        response = await self._executor.execute(request_key, cancel_token, operation)
        if not response.is_success:
            raise RemoteServiceError.from_response(
                action,
                status_code=response.status_code,
                headers=response.headers,
                body=response.body,
            )
        return response

    async def init_multipart_upload(
        self,
        *,
        object_key: str,
        bucket: str | None = None,
        content_type: str | None = None,
        metadata: Mapping[str, str] | None = None,
        cancel_token: CancelToken | None = None,
    ) -> MultipartUpload:
        """Initialize a multipart upload session."""
        validate_object_key(object_key)
        resolved = self.resolve_bucket(bucket)
        headers: dict[str, str] = {}
        if content_type:
            headers["Content-Type"] = content_type
        for name, value in (metadata or {}).items():
            headers[f"x-oss-meta-{name.lower()}"] = str(value)

        response = await self._call(
            action="create multipart upload",
            request_key=f"{resolved}/{object_key}:initiate",
            method="POST",
            bucket=resolved,
            object_key=object_key,
            query={"uploads": None},
            headers=headers,
            cancel_token=cancel_token,
        )
        upload_id = parse_upload_id(response.body)
        logger.info(
            "multipart upload initiated bucket=%s key=%s upload_id=%s",
            resolved,
            object_key,
            upload_id,
            extra={"extra": {"bucket": resolved, "object_key": object_key, "upload_id": upload_id}},
        )
        return MultipartUpload(upload_id=upload_id, bucket=resolved, object_key=object_key)

    async def _upload_part(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        part_number: int,
        body: RequestBody,
        content_length: int,
        payload: bytes | None,
        headers: Mapping[str, str] | None,
        cancel_token: CancelToken | None,
        on_send_progress: ProgressCallback | None,
        on_receive_progress: ProgressCallback | None,
    ) -> CompletedPart:
        # Content-Length always reflects the body actually sent.
        part_headers = {
            name: value
            for name, value in (headers or {}).items()
            if name.lower() != "content-length"
        }
        part_headers["Content-Length"] = str(content_length)
        response = await self._call(
            action=f"upload part {part_number}",
            request_key=part_request_key(bucket, object_key, upload_id, part_number),
            method="PUT",
            bucket=bucket,
            object_key=object_key,
            query={"partNumber": str(part_number), "uploadId": upload_id},
            headers=part_headers,
            body=body,
            payload=payload,
            cancel_token=cancel_token,
            on_send_progress=on_send_progress,
            on_receive_progress=on_receive_progress,
        )
        etag = response.headers.get("ETag") or response.headers.get("etag")
        if not etag:
            raise StorageError("OSS response missing ETag")
        return CompletedPart(part_number=part_number, etag=etag)

    async def upload_part(
        self,
        *,
        object_key: str,
        upload_id: str,
        part_number: int,
        data: bytes,
        bucket: str | None = None,
        headers: Mapping[str, str] | None = None,
        cancel_token: CancelToken | None = None,
        on_send_progress: ProgressCallback | None = None,
        on_receive_progress: ProgressCallback | None = None,
    ) -> CompletedPart:
        """Upload one in-memory part; the ETag is taken from the response headers.

        Extra ``headers`` such as ``Content-MD5`` or ``x-oss-traffic-limit``
        are sent and signed with the part.
        """
        validate_object_key(object_key)
        validate_part_number(part_number)
        validate_upload_id(upload_id)
        if not data:
            raise InvalidArgumentError("part data must not be empty")
        resolved = self.resolve_bucket(bucket)
        data = bytes(data)
        return await self._upload_part(
            bucket=resolved,
            object_key=object_key,
            upload_id=upload_id,
            part_number=part_number,
            body=data,
            content_length=len(data),
            payload=data,
            headers=headers,
            cancel_token=cancel_token,
            on_send_progress=on_send_progress,
            on_receive_progress=on_receive_progress,
        )

    async def upload_part_stream(
        self,
        *,
        object_key: str,
        upload_id: str,
        part_number: int,
        stream: AsyncIterable[bytes],
        content_length: int,
        bucket: str | None = None,
        headers: Mapping[str, str] | None = None,
        cancel_token: CancelToken | None = None,
        on_send_progress: ProgressCallback | None = None,
        on_receive_progress: ProgressCallback | None = None,
    ) -> CompletedPart:
        """Upload one part from a byte stream; the payload is signed as unsigned."""
        validate_object_key(object_key)
        validate_part_number(part_number)
        validate_upload_id(upload_id)
        if isinstance(content_length, bool) or not isinstance(content_length, int) or content_length <= 0:
            raise InvalidArgumentError("content_length must be greater than 0")
        resolved = self.resolve_bucket(bucket)
        return await self._upload_part(
            bucket=resolved,
            object_key=object_key,
            upload_id=upload_id,
            part_number=part_number,
            body=stream,
            content_length=content_length,
            payload=None,
            headers=headers,
            cancel_token=cancel_token,
            on_send_progress=on_send_progress,
            on_receive_progress=on_receive_progress,
        )

    async def complete_multipart_upload(
        self,
        *,
        object_key: str,
        upload_id: str,
        parts: Sequence[CompletedPart],
        bucket: str | None = None,
        cancel_token: CancelToken | None = None,
    ) -> None:
        """Complete a multipart upload by combining all parts."""
        validate_object_key(object_key)
        validate_upload_id(upload_id)
        if not parts:
            raise InvalidArgumentError("parts must not be empty")
        seen: set[int] = set()
        for part in parts:
            validate_part_number(part.part_number)
            if part.part_number in seen:
                raise InvalidArgumentError(f"duplicate part_number {part.part_number}")
            if not part.etag:
                raise InvalidArgumentError(f"part {part.part_number} has no ETag")
            seen.add(part.part_number)

        resolved = self.resolve_bucket(bucket)
        body = build_complete_body(parts)
        await self._call(
            action="complete multipart upload",
            request_key=f"{resolved}/{object_key}:{upload_id}/complete",
            method="POST",
            bucket=resolved,
            object_key=object_key,
            query={"uploadId": upload_id},
            headers={
                "Content-Type": "application/xml",
                "Content-Length": str(len(body)),
                "Content-MD5": base64.b64encode(hashlib.md5(body).digest()).decode("ascii"),
            },
            body=body,
            payload=body,
            cancel_token=cancel_token,
        )
        logger.info(
            "multipart upload completed bucket=%s key=%s upload_id=%s parts=%s",
            resolved,
            object_key,
            upload_id,
            len(parts),
            extra={
                "extra": {
                    "bucket": resolved,
                    "object_key": object_key,
                    "upload_id": upload_id,
                    "parts": len(parts),
                }
            },
        )

    async def abort_multipart_upload(
        self,
        *,
        object_key: str,
        upload_id: str,
        bucket: str | None = None,
    ) -> None:
        """Abort a multipart upload and clean up uploaded parts.

        In-flight part requests of the upload are cancelled before the
        abort request is sent.
        """
        validate_object_key(object_key)
        validate_upload_id(upload_id)
        resolved = self.resolve_bucket(bucket)
        cancelled = self.registry.cancel_matching(
            upload_request_prefix(resolved, object_key, upload_id),
            reason="multipart upload aborted",
        )
        await self._call(
            action="abort multipart upload",
            request_key=f"{resolved}/{object_key}:{upload_id}/abort",
            method="DELETE",
            bucket=resolved,
            object_key=object_key,
            query={"uploadId": upload_id},
        )
        logger.info(
            "multipart upload aborted bucket=%s key=%s upload_id=%s cancelled_parts=%s",
            resolved,
            object_key,
            upload_id,
            cancelled,
            extra={
                "extra": {
                    "bucket": resolved,
                    "object_key": object_key,
                    "upload_id": upload_id,
                    "cancelled_parts": cancelled,
                }
            },
        )

    async def list_parts(
        self,
        *,
        object_key: str,
        upload_id: str,
        bucket: str | None = None,
        max_parts: int | None = None,
        part_number_marker: int | None = None,
    ) -> ListPartsResult:
        """List the parts stored so far for an upload, one page at a time."""
        validate_object_key(object_key)
        validate_upload_id(upload_id)
        query: dict[str, QueryValue] = {"uploadId": upload_id}
        if max_parts is not None:
            if not 1 <= int(max_parts) <= MAX_LIST_PARTS:
                raise InvalidArgumentError(f"max_parts must be between 1 and {MAX_LIST_PARTS}")
            query["max-parts"] = str(int(max_parts))
        if part_number_marker is not None:
            query["part-number-marker"] = str(int(part_number_marker))

        resolved = self.resolve_bucket(bucket)
        response = await self._call(
            action="list parts",
            request_key=f"{resolved}/{object_key}:{upload_id}/list",
            method="GET",
            bucket=resolved,
            object_key=object_key,
            query=query,
        )
        return parse_list_parts(response.body)
