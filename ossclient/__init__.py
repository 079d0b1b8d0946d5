"""Client for an OSS-style object storage service.

Request signing (V1 and V4), cancellable request execution with progress
reporting, and multipart upload orchestration.
"""

from __future__ import annotations

from ossclient.common.config import Credentials, Settings, get_settings
from ossclient.common.errors import (
    ConfigurationError,
    InvalidArgumentError,
    InvalidUploadStateError,
    RemoteServiceError,
    RequestCancelledError,
    StorageError,
    TransportError,
)
from ossclient.infra.http import CancelToken, InFlightRegistry, Transport
from ossclient.infra.signing import Clock
from ossclient.infra.storage import CompletedPart, MultipartUpload, OSSStorageClient
from ossclient.services import MultipartUploadSession, UploadState

__version__ = "0.1.0"


def create_client(
    settings: Settings | None = None,
    *,
    transport: Transport | None = None,
    clock: Clock | None = None,
) -> OSSStorageClient:
    """Build a storage client from ``settings`` (default: the environment)."""
    return OSSStorageClient(
        settings=settings or get_settings(),
        transport=transport,
        clock=clock,
    )


__all__ = [
    "CancelToken",
    "CompletedPart",
    "ConfigurationError",
    "Credentials",
    "InFlightRegistry",
    "InvalidArgumentError",
    "InvalidUploadStateError",
    "MultipartUpload",
    "MultipartUploadSession",
    "OSSStorageClient",
    "RemoteServiceError",
    "RequestCancelledError",
    "Settings",
    "StorageError",
    "TransportError",
    "UploadState",
    "create_client",
    "get_settings",
]
