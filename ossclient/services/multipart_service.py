"""Multipart upload orchestration.

``MultipartUploadSession`` drives one upload through its lifecycle::

    UNINITIATED -> INITIATED -> PARTS_IN_PROGRESS -> COMPLETING -> COMPLETED
                        \\               /
                         +-> ABORTED <-+

Parts may be uploaded concurrently for different part numbers; the session
only records the ETag of each part once its request succeeds. Failed remote
calls leave the session state untouched.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import AsyncIterable, Mapping, Sequence

from ossclient.common.errors import (
    InvalidArgumentError,
    InvalidUploadStateError,
    StorageError,
)
from ossclient.infra.http.cancel import CancelToken
from ossclient.infra.http.transport import ProgressCallback
from ossclient.infra.storage.client import CompletedPart, MultipartUpload, StorageClient

logger = logging.getLogger("ossclient.multipart")


class UploadState(str, Enum):
    UNINITIATED = "uninitiated"
    INITIATED = "initiated"
    PARTS_IN_PROGRESS = "parts_in_progress"
    COMPLETING = "completing"
    COMPLETED = "completed"
    ABORTED = "aborted"


_OPEN_STATES = (UploadState.INITIATED, UploadState.PARTS_IN_PROGRESS)


class MultipartUploadSession:
    """State machine for one multipart upload against a ``StorageClient``."""

    def __init__(
        self,
        storage: StorageClient,
        object_key: str,
        *,
        bucket: str | None = None,
        upload_id: str | None = None,
    ) -> None:
        self._storage = storage
        self._object_key = object_key
        self._bucket = bucket
        self._upload_id = upload_id
        self._parts: dict[int, str] = {}
        self._state = UploadState.INITIATED if upload_id else UploadState.UNINITIATED

    @classmethod
    async def resume(
        cls,
        storage: StorageClient,
        object_key: str,
        upload_id: str,
        *,
        bucket: str | None = None,
        page_size: int | None = None,
    ) -> "MultipartUploadSession":
        """Rebuild a session for an existing upload from the service's part list."""
        session = cls(storage, object_key, bucket=bucket, upload_id=upload_id)
        marker: int | None = None
        while True:
            page = await storage.list_parts(
                object_key=object_key,
                upload_id=upload_id,
                bucket=bucket,
                max_parts=page_size,
                part_number_marker=marker,
            )
            for part in page.parts:
                session._parts[part.part_number] = part.etag
            if not page.is_truncated or page.next_part_number_marker is None:
                break
            if marker is not None and page.next_part_number_marker <= marker:
                raise StorageError(
                    f"part listing did not advance past marker {marker} for upload {upload_id}"
                )
            marker = page.next_part_number_marker
        if session._parts:
            session._state = UploadState.PARTS_IN_PROGRESS
        return session

    @property
    def state(self) -> UploadState:
        return self._state

    @property
    def object_key(self) -> str:
        return self._object_key

    @property
    def bucket(self) -> str | None:
        return self._bucket

    @property
    def upload_id(self) -> str | None:
        return self._upload_id

    @property
    def parts(self) -> tuple[CompletedPart, ...]:
        """Recorded parts in ascending part-number order."""
        return tuple(
            CompletedPart(part_number=number, etag=etag)
            for number, etag in sorted(self._parts.items())
        )

    def _require(self, *allowed: UploadState, action: str) -> None:
        if self._state not in allowed:
            raise InvalidUploadStateError(
                f"cannot {action} a multipart upload in state {self._state.value}"
            )

    def _require_upload_id(self) -> str:
        if not self._upload_id:
            raise InvalidArgumentError("upload_id must not be empty")
        return self._upload_id

    async def initiate(
        self,
        *,
        content_type: str | None = None,
        metadata: Mapping[str, str] | None = None,
        cancel_token: CancelToken | None = None,
    ) -> MultipartUpload:
        self._require(UploadState.UNINITIATED, action="initiate")
        upload = await self._storage.init_multipart_upload(
            object_key=self._object_key,
            bucket=self._bucket,
            content_type=content_type,
            metadata=metadata,
            cancel_token=cancel_token,
        )
        self._upload_id = upload.upload_id
        self._bucket = upload.bucket
        self._state = UploadState.INITIATED
        return upload

    def _record(self, part: CompletedPart) -> CompletedPart:
        if self._state not in _OPEN_STATES:
            # Finished after the session was aborted; nothing left to record into.
            logger.warning(
                "discarding part finished after session closed key=%s upload_id=%s part=%s state=%s",
                self._object_key,
                self._upload_id,
                part.part_number,
                self._state.value,
            )
            return part
        self._parts[part.part_number] = part.etag
        self._state = UploadState.PARTS_IN_PROGRESS
        return part

    async def upload_part(
        self,
        part_number: int,
        data: bytes,
        *,
        headers: Mapping[str, str] | None = None,
        cancel_token: CancelToken | None = None,
        on_send_progress: ProgressCallback | None = None,
        on_receive_progress: ProgressCallback | None = None,
    ) -> CompletedPart:
        self._require(*_OPEN_STATES, action="upload a part to")
        part = await self._storage.upload_part(
            object_key=self._object_key,
            upload_id=self._require_upload_id(),
            part_number=part_number,
            data=data,
            bucket=self._bucket,
            headers=headers,
            cancel_token=cancel_token,
            on_send_progress=on_send_progress,
            on_receive_progress=on_receive_progress,
        )
        return self._record(part)

    async def upload_part_stream(
        self,
        part_number: int,
        stream: AsyncIterable[bytes],
        content_length: int,
        *,
        headers: Mapping[str, str] | None = None,
        cancel_token: CancelToken | None = None,
        on_send_progress: ProgressCallback | None = None,
        on_receive_progress: ProgressCallback | None = None,
    ) -> CompletedPart:
        self._require(*_OPEN_STATES, action="upload a part to")
        part = await self._storage.upload_part_stream(
            object_key=self._object_key,
            upload_id=self._require_upload_id(),
            part_number=part_number,
            stream=stream,
            content_length=content_length,
            bucket=self._bucket,
            headers=headers,
            cancel_token=cancel_token,
            on_send_progress=on_send_progress,
            on_receive_progress=on_receive_progress,
        )
        return self._record(part)

    async def complete(
        self,
        parts: Sequence[CompletedPart] | None = None,
        *,
        cancel_token: CancelToken | None = None,
    ) -> None:
        """Assemble the object from ``parts`` (default: every recorded part)."""
        self._require(*_OPEN_STATES, action="complete")
        upload_id = self._require_upload_id()
        ordered = sorted(parts if parts is not None else self.parts, key=lambda p: p.part_number)
        if not ordered:
            raise InvalidArgumentError("cannot complete a multipart upload without parts")

        previous = self._state
        self._state = UploadState.COMPLETING
        try:
            await self._storage.complete_multipart_upload(
                object_key=self._object_key,
                upload_id=upload_id,
                parts=ordered,
                bucket=self._bucket,
                cancel_token=cancel_token,
            )
        except BaseException:
            self._state = previous
            raise
        self._parts = {part.part_number: part.etag for part in ordered}
        self._state = UploadState.COMPLETED

    async def abort(self) -> None:
        self._require(*_OPEN_STATES, action="abort")
        await self._storage.abort_multipart_upload(
            object_key=self._object_key,
            upload_id=self._require_upload_id(),
            bucket=self._bucket,
        )
        self._state = UploadState.ABORTED
