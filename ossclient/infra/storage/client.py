"""Storage client protocol and data types.

This module defines the abstract interface for multipart uploads and
pre-signed URLs against the object storage service.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterable, Mapping, Protocol, Sequence

from ossclient.infra.http.cancel import CancelToken
from ossclient.infra.http.transport import ProgressCallback

MIN_PART_NUMBER = 1
MAX_PART_NUMBER = 10000
MAX_OBJECT_KEY_BYTES = 1023


@dataclass(frozen=True, slots=True)
class CompletedPart:
    """Represents a completed part in a multipart upload."""

    part_number: int
    etag: str


@dataclass(frozen=True, slots=True)
class MultipartUpload:
    """Result of initiating a multipart upload."""

    upload_id: str
    bucket: str
    object_key: str


@dataclass(frozen=True, slots=True)
class UploadedPart:
    """A part as reported by the service when listing an upload."""

    part_number: int
    etag: str
    size_bytes: int
    last_modified: datetime | None = None


@dataclass(frozen=True, slots=True)
class ListPartsResult:
    """One page of parts for an in-progress multipart upload."""

    upload_id: str
    parts: tuple[UploadedPart, ...]
    is_truncated: bool
    next_part_number_marker: int | None


class StorageClient(Protocol):
    """Protocol defining the multipart interface of the storage backend.

    ``bucket`` defaults to the client's configured bucket when omitted.
    """

    async def init_multipart_upload(
        self,
        *,
        object_key: str,
        bucket: str | None = None,
        content_type: str | None = None,
        metadata: Mapping[str, str] | None = None,
        cancel_token: CancelToken | None = None,
    ) -> MultipartUpload:
        """Initialize a multipart upload session.

        Returns:
            MultipartUpload containing the upload_id for subsequent operations.

        Raises:
            InvalidArgumentError: If the object key is malformed.
            RemoteServiceError: If the service rejects the request.
        """
        ...

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
        """Upload one part held in memory.

        Raises:
            InvalidArgumentError: For an out-of-range part number, empty
                upload id or empty data.
            RequestCancelledError: If the cancel token fires.
            RemoteServiceError: If the service rejects the part.
        """
        ...

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
        """Upload one part read from a byte stream of known length."""
        ...

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
        ...

    async def abort_multipart_upload(
        self,
        *,
        object_key: str,
        upload_id: str,
        bucket: str | None = None,
    ) -> None:
        """Abort a multipart upload and cancel its in-flight part requests."""
        ...

    async def list_parts(
        self,
        *,
        object_key: str,
        upload_id: str,
        bucket: str | None = None,
        max_parts: int | None = None,
        part_number_marker: int | None = None,
    ) -> ListPartsResult:
        """List parts already stored for an upload."""
        ...

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
        """Generate a pre-signed URL for ``method`` on ``object_key``."""
        ...
