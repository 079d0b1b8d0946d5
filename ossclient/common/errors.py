"""Error taxonomy shared by the signing, transport and multipart layers."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Mapping


class StorageError(RuntimeError):
    """Raised when object storage operations fail."""


class ConfigurationError(StorageError):
    """Raised when credentials, endpoint or bucket are missing or unusable."""


class InvalidArgumentError(StorageError, ValueError):
    """Raised for caller errors detected before any network attempt."""


class InvalidUploadStateError(StorageError):
    """Raised when a multipart session does not allow the requested transition."""


class RequestCancelledError(StorageError):
    """Raised when a request's cancel token fires before it terminates."""

    def __init__(self, reason: str = "request cancelled") -> None:
        super().__init__(reason)
        self.reason = reason


class TransportError(StorageError):
    """Raised when the HTTP transport fails to reach the service."""


class RemoteServiceError(StorageError):
    """Raised for non-success responses from the object storage service.

    The raw status and body are always kept; ``code``, ``message`` and
    ``request_id`` are filled from the service's XML error document when
    the body carries one.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        body: bytes = b"",
        code: str | None = None,
        request_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.code = code
        self.request_id = request_id

    @classmethod
    def from_response(
        cls,
        action: str,
        *,
        status_code: int,
        headers: Mapping[str, str],
        body: bytes,
    ) -> "RemoteServiceError":
        code: str | None = None
        detail: str | None = None
        request_id = headers.get("x-oss-request-id")
        if body:
            try:
                root = ET.fromstring(body)
            except ET.ParseError:
                root = None
            if root is not None and root.tag == "Error":
                code = root.findtext("Code")
                detail = root.findtext("Message")
                request_id = root.findtext("RequestId") or request_id

        message = f"Failed to {action}: HTTP {status_code}"
        if code:
            message += f" {code}"
        if detail:
            message += f" ({detail})"
        return cls(
            message,
            status_code=status_code,
            body=body,
            code=code,
            request_id=request_id,
        )
