"""Tests for the multipart upload session."""

from __future__ import annotations

import asyncio
import base64
import hashlib
from unittest.mock import AsyncMock, MagicMock

import pytest

from ossclient.common.errors import (
    InvalidArgumentError,
    InvalidUploadStateError,
    RemoteServiceError,
    RequestCancelledError,
    StorageError,
)
from ossclient.infra.http.cancel import CancelToken
from ossclient.infra.storage.client import CompletedPart, ListPartsResult, UploadedPart
from ossclient.services.multipart_service import MultipartUploadSession, UploadState

FIVE_MB = 5 * 1024 * 1024


@pytest.fixture
def session(storage):
    return MultipartUploadSession(storage, "videos/a.mp4")


class TestMultipartUploadSession:
    @pytest.mark.asyncio
    async def test_full_upload(self, session, fake_oss):
        assert session.state is UploadState.UNINITIATED

        upload = await session.initiate(content_type="video/mp4")
        assert session.state is UploadState.INITIATED
        assert session.upload_id == upload.upload_id
        assert session.bucket == "examplebucket"

        second = await session.upload_part(2, b"b" * FIVE_MB)
        first = await session.upload_part(1, b"a" * FIVE_MB)
        assert session.state is UploadState.PARTS_IN_PROGRESS
        assert session.parts == (first, second)

        await session.complete()

        assert session.state is UploadState.COMPLETED
        stored = fake_oss.objects["examplebucket/videos/a.mp4"]
        assert stored["part_numbers"] == [1, 2]
        assert stored["data"] == b"a" * FIVE_MB + b"b" * FIVE_MB
        assert stored["content_type"] == "video/mp4"

    @pytest.mark.asyncio
    async def test_concurrent_parts(self, session, fake_oss):
        await session.initiate()

        await asyncio.gather(
            *(session.upload_part(number, bytes([number]) * 1024) for number in (3, 1, 2))
        )

        assert [part.part_number for part in session.parts] == [1, 2, 3]
        await session.complete()
        assert fake_oss.objects["examplebucket/videos/a.mp4"]["part_numbers"] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_reupload_keeps_latest_etag(self, session):
        await session.initiate()
        old = await session.upload_part(1, b"old")
        new = await session.upload_part(1, b"new")

        assert old.etag != new.etag
        assert session.parts == (new,)

    @pytest.mark.asyncio
    async def test_stream_part(self, session, fake_oss):
        await session.initiate()

        async def chunks():
            yield b"abc"
            yield b"def"

        part = await session.upload_part_stream(1, chunks(), 6)
        assert session.parts == (part,)

    @pytest.mark.asyncio
    async def test_upload_before_initiate(self, session, fake_oss):
        with pytest.raises(InvalidUploadStateError):
            await session.upload_part(1, b"data")
        assert fake_oss.requests == []

    @pytest.mark.asyncio
    async def test_initiate_twice(self, session):
        await session.initiate()
        with pytest.raises(InvalidUploadStateError):
            await session.initiate()

    @pytest.mark.asyncio
    async def test_complete_without_parts(self, session):
        await session.initiate()
        with pytest.raises(InvalidArgumentError):
            await session.complete()
        assert session.state is UploadState.INITIATED

    @pytest.mark.asyncio
    async def test_operations_after_complete(self, session):
        await session.initiate()
        await session.upload_part(1, b"data")
        await session.complete()

        with pytest.raises(InvalidUploadStateError):
            await session.upload_part(2, b"more")
        with pytest.raises(InvalidUploadStateError):
            await session.abort()
        with pytest.raises(InvalidUploadStateError):
            await session.complete()

    @pytest.mark.asyncio
    async def test_remote_failure_leaves_state_unchanged(self, session, fake_oss):
        await session.initiate()
        part = await session.upload_part(1, b"data")
        fake_oss.fail_next("complete", 500, "InternalError")

        with pytest.raises(RemoteServiceError) as excinfo:
            await session.complete()

        assert excinfo.value.status_code == 500
        assert session.state is UploadState.PARTS_IN_PROGRESS
        assert session.parts == (part,)

        await session.complete()
        assert session.state is UploadState.COMPLETED

    @pytest.mark.asyncio
    async def test_failed_part_is_not_recorded(self, session, fake_oss):
        await session.initiate()
        fake_oss.fail_next("upload_part", 403, "AccessDenied")

        with pytest.raises(RemoteServiceError):
            await session.upload_part(1, b"data")

        assert session.state is UploadState.INITIATED
        assert session.parts == ()

    @pytest.mark.asyncio
    async def test_pre_cancelled_part_never_sent(self, session, fake_oss):
        await session.initiate()
        token = CancelToken()
        token.cancel()

        with pytest.raises(RequestCancelledError):
            await session.upload_part(1, b"data", cancel_token=token)

        assert fake_oss.requests_for("upload_part") == []
        assert session.parts == ()

    @pytest.mark.asyncio
    async def test_abort_cancels_in_flight_parts(self, session, storage, fake_oss):
        fake_oss.hold_parts = asyncio.Event()
        fake_oss.part_started = asyncio.Event()
        upload = await session.initiate()

        pending = asyncio.create_task(session.upload_part(1, b"x" * 1024))
        await fake_oss.part_started.wait()
        assert len(storage.registry) == 1

        await session.abort()

        with pytest.raises(RequestCancelledError, match="multipart upload aborted"):
            await pending
        assert session.state is UploadState.ABORTED
        assert session.parts == ()
        assert len(storage.registry) == 0
        assert fake_oss.uploads[upload.upload_id]["aborted"] is True

    @pytest.mark.asyncio
    async def test_resume_collects_all_pages(self, storage, fake_oss):
        upload = await storage.init_multipart_upload(object_key="videos/a.mp4")
        for number in (1, 2, 3):
            await storage.upload_part(
                object_key="videos/a.mp4",
                upload_id=upload.upload_id,
                part_number=number,
                data=bytes([number]) * 10,
            )

        session = await MultipartUploadSession.resume(
            storage, "videos/a.mp4", upload.upload_id, page_size=1
        )

        assert session.state is UploadState.PARTS_IN_PROGRESS
        assert [part.part_number for part in session.parts] == [1, 2, 3]
        assert len(fake_oss.requests_for("list_parts")) == 3

        await session.complete()
        assert fake_oss.objects["examplebucket/videos/a.mp4"]["part_numbers"] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_complete_with_explicit_subset(self, session, fake_oss):
        await session.initiate()
        first = await session.upload_part(1, b"a")
        await session.upload_part(2, b"b")

        await session.complete([CompletedPart(first.part_number, first.etag)])

        assert session.parts == (first,)
        assert fake_oss.objects["examplebucket/videos/a.mp4"]["data"] == b"a"

    @pytest.mark.asyncio
    async def test_part_headers_are_forwarded(self, session, fake_oss):
        await session.initiate()
        digest = base64.b64encode(hashlib.md5(b"data").digest()).decode()

        await session.upload_part(1, b"data", headers={"Content-MD5": digest})

        assert fake_oss.requests_for("upload_part")[0].headers["Content-MD5"] == digest

    @pytest.mark.asyncio
    async def test_resume_stops_when_marker_does_not_advance(self):
        stuck = ListPartsResult(
            upload_id="u1",
            parts=(UploadedPart(part_number=1, etag='"e1"', size_bytes=10),),
            is_truncated=True,
            next_part_number_marker=1,
        )
        storage = MagicMock()
        storage.list_parts = AsyncMock(return_value=stuck)

        with pytest.raises(StorageError, match="did not advance"):
            await MultipartUploadSession.resume(storage, "videos/a.mp4", "u1")

        assert storage.list_parts.await_count == 2
