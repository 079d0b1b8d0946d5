"""XML bodies exchanged with the service for multipart operations."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from datetime import datetime
from typing import Sequence

from ossclient.common.errors import StorageError
from ossclient.infra.storage.client import CompletedPart, ListPartsResult, UploadedPart


def _parse(body: bytes, expected_root: str) -> ET.Element:
    try:
        root = ET.fromstring(body)
    except ET.ParseError as exc:
        raise StorageError(f"Malformed {expected_root} response: {exc}") from exc
    if root.tag != expected_root:
        raise StorageError(f"Unexpected response root {root.tag!r}, expected {expected_root!r}")
    return root


def build_complete_body(parts: Sequence[CompletedPart]) -> bytes:
    root = ET.Element("CompleteMultipartUpload")
    for part in sorted(parts, key=lambda p: p.part_number):
        node = ET.SubElement(root, "Part")
        ET.SubElement(node, "PartNumber").text = str(int(part.part_number))
        ET.SubElement(node, "ETag").text = part.etag
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)


def parse_upload_id(body: bytes) -> str:
    root = _parse(body, "InitiateMultipartUploadResult")
    upload_id = (root.findtext("UploadId") or "").strip()
    if not upload_id:
        raise StorageError("OSS response missing UploadId")
    return upload_id


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def parse_list_parts(body: bytes) -> ListPartsResult:
    root = _parse(body, "ListPartsResult")
    parts = tuple(
        UploadedPart(
            part_number=int(node.findtext("PartNumber") or 0),
            etag=node.findtext("ETag") or "",
            size_bytes=int(node.findtext("Size") or 0),
            last_modified=_parse_timestamp(node.findtext("LastModified")),
        )
        for node in root.findall("Part")
    )
    marker = (root.findtext("NextPartNumberMarker") or "").strip()
    return ListPartsResult(
        upload_id=root.findtext("UploadId") or "",
        parts=parts,
        is_truncated=(root.findtext("IsTruncated") or "").strip().lower() == "true",
        next_part_number_marker=int(marker) if marker else None,
    )
