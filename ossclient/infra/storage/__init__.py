"""Object storage access layer.

This module provides the storage client protocol and the OSS implementation
used for multipart uploads and pre-signed URLs.
"""

from .client import (
    CompletedPart,
    ListPartsResult,
    MultipartUpload,
    StorageClient,
    UploadedPart,
)
from .oss_client import OSSStorageClient

__all__ = [
    "CompletedPart",
    "ListPartsResult",
    "MultipartUpload",
    "OSSStorageClient",
    "StorageClient",
    "UploadedPart",
]
