"""In-memory fake of the OSS multipart API for httpx.MockTransport."""

from __future__ import annotations

import asyncio
import hashlib
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any

import httpx


def _xml(root: str, **children: Any) -> bytes:
    node = ET.Element(root)
    for name, value in children.items():
        ET.SubElement(node, name).text = str(value)
    return ET.tostring(node, encoding="utf-8", xml_declaration=True)


def error_response(status_code: int, code: str, message: str = "") -> httpx.Response:
    body = _xml(
        "Error",
        Code=code,
        Message=message or code,
        RequestId="fake-request-id",
    )
    return httpx.Response(
        status_code,
        content=body,
        headers={"Content-Type": "application/xml", "x-oss-request-id": "fake-request-id"},
    )


@dataclass
class FakeOSSService:
    """Records every request and keeps multipart uploads in memory.

    ``hold_parts`` (an ``asyncio.Event``) blocks part uploads until it is set;
    ``part_started`` is set whenever a part upload reaches the handler.
    """

    uploads: dict[str, dict[str, Any]] = field(default_factory=dict)
    objects: dict[str, dict[str, Any]] = field(default_factory=dict)
    requests: list[httpx.Request] = field(default_factory=list)
    failures: dict[str, tuple[int, str]] = field(default_factory=dict)
    hold_parts: asyncio.Event | None = None
    part_started: asyncio.Event | None = None
    _upload_counter: int = field(default=0)

    def fail_next(self, action: str, status_code: int = 500, code: str = "InternalError") -> None:
        self.failures[action] = (status_code, code)

    def requests_for(self, action: str) -> list[httpx.Request]:
        return [request for request in self.requests if self._action(request) == action]

    @staticmethod
    def _action(request: httpx.Request) -> str:
        params = request.url.params
        if request.method == "POST" and "uploads" in params:
            return "initiate"
        if request.method == "PUT" and "partNumber" in params:
            return "upload_part"
        if request.method == "POST" and "uploadId" in params:
            return "complete"
        if request.method == "DELETE" and "uploadId" in params:
            return "abort"
        if request.method == "GET" and "uploadId" in params:
            return "list_parts"
        return "unknown"

    @staticmethod
    def _locate(request: httpx.Request) -> tuple[str, str]:
        host = request.url.host
        path = request.url.path.lstrip("/")
        if host.startswith("oss-"):
            bucket, _, key = path.partition("/")
            return bucket, key
        return host.split(".", 1)[0], path

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if "Authorization" not in request.headers:
            return error_response(403, "AccessDenied", "missing Authorization")

        action = self._action(request)
        if action in self.failures:
            status_code, code = self.failures.pop(action)
            return error_response(status_code, code)

        bucket, key = self._locate(request)
        if action == "initiate":
            return self._initiate(request, bucket, key)
        if action == "upload_part":
            if self.part_started is not None:
                self.part_started.set()
            if self.hold_parts is not None:
                await self.hold_parts.wait()
            return self._upload_part(request)
        if action == "complete":
            return self._complete(request, bucket, key)
        if action == "abort":
            return self._abort(request)
        if action == "list_parts":
            return self._list_parts(request, bucket, key)
        return error_response(400, "InvalidRequest", f"unsupported {request.method}")

    def _initiate(self, request: httpx.Request, bucket: str, key: str) -> httpx.Response:
        self._upload_counter += 1
        upload_id = f"fake-upload-{self._upload_counter}"
        self.uploads[upload_id] = {
            "bucket": bucket,
            "object_key": key,
            "content_type": request.headers.get("Content-Type"),
            "metadata": {
                name[len("x-oss-meta-"):]: value
                for name, value in request.headers.items()
                if name.lower().startswith("x-oss-meta-")
            },
            "parts": {},
            "completed": False,
            "aborted": False,
        }
        return httpx.Response(
            200,
            content=_xml("InitiateMultipartUploadResult", Bucket=bucket, Key=key, UploadId=upload_id),
        )

    def _upload(self, request: httpx.Request) -> dict[str, Any] | None:
        upload = self.uploads.get(request.url.params.get("uploadId", ""))
        if upload is None or upload["completed"] or upload["aborted"]:
            return None
        return upload

    def _upload_part(self, request: httpx.Request) -> httpx.Response:
        upload = self._upload(request)
        if upload is None:
            return error_response(404, "NoSuchUpload")
        data = request.content
        etag = f'"{hashlib.md5(data).hexdigest().upper()}"'
        upload["parts"][int(request.url.params["partNumber"])] = {"etag": etag, "data": data}
        return httpx.Response(200, headers={"ETag": etag, "x-oss-request-id": "fake-request-id"})

    def _complete(self, request: httpx.Request, bucket: str, key: str) -> httpx.Response:
        upload = self._upload(request)
        if upload is None:
            return error_response(404, "NoSuchUpload")
        root = ET.fromstring(request.content)
        listed = [
            (int(node.findtext("PartNumber") or 0), node.findtext("ETag") or "")
            for node in root.findall("Part")
        ]
        numbers = [number for number, _ in listed]
        if numbers != sorted(numbers):
            return error_response(400, "InvalidPartOrder")
        for number, etag in listed:
            stored = upload["parts"].get(number)
            if stored is None or stored["etag"] != etag:
                return error_response(400, "InvalidPart", f"part {number}")

        upload["completed"] = True
        self.objects[f"{bucket}/{key}"] = {
            "bucket": bucket,
            "object_key": key,
            "content_type": upload["content_type"],
            "part_numbers": numbers,
            "data": b"".join(upload["parts"][number]["data"] for number in numbers),
        }
        return httpx.Response(
            200,
            content=_xml("CompleteMultipartUploadResult", Bucket=bucket, Key=key, ETag='"fake"'),
        )

    def _abort(self, request: httpx.Request) -> httpx.Response:
        upload = self._upload(request)
        if upload is None:
            return error_response(404, "NoSuchUpload")
        upload["aborted"] = True
        return httpx.Response(204)

    def _list_parts(self, request: httpx.Request, bucket: str, key: str) -> httpx.Response:
        upload_id = request.url.params.get("uploadId", "")
        upload = self._upload(request)
        if upload is None:
            return error_response(404, "NoSuchUpload")
        max_parts = int(request.url.params.get("max-parts", "1000"))
        marker = int(request.url.params.get("part-number-marker", "0"))
        numbers = [number for number in sorted(upload["parts"]) if number > marker]
        page, rest = numbers[:max_parts], numbers[max_parts:]

        root = ET.Element("ListPartsResult")
        ET.SubElement(root, "Bucket").text = bucket
        ET.SubElement(root, "Key").text = key
        ET.SubElement(root, "UploadId").text = upload_id
        ET.SubElement(root, "IsTruncated").text = "true" if rest else "false"
        if rest:
            ET.SubElement(root, "NextPartNumberMarker").text = str(page[-1])
        for number in page:
            stored = upload["parts"][number]
            node = ET.SubElement(root, "Part")
            ET.SubElement(node, "PartNumber").text = str(number)
            ET.SubElement(node, "LastModified").text = "2024-01-02T03:04:05.000Z"
            ET.SubElement(node, "ETag").text = stored["etag"]
            ET.SubElement(node, "Size").text = str(len(stored["data"]))
        return httpx.Response(200, content=ET.tostring(root, encoding="utf-8"))
