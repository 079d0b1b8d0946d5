from .multipart_service import MultipartUploadSession, UploadState

__all__ = [
    "MultipartUploadSession",
    "UploadState",
]
