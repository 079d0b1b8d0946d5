"""Request signing for the object storage service.

Two signature versions share one canonical request builder and one
``Signer`` protocol; ``create_signer`` picks the implementation.
"""

from .base import (
    Clock,
    SignedAuthorization,
    Signer,
    SigningRequest,
    create_signer,
    utc_now,
)
from .canonical import UNSIGNED_PAYLOAD, CanonicalRequest, build_canonical_request
from .v1 import SignerV1
from .v4 import SignerV4

__all__ = [
    "CanonicalRequest",
    "Clock",
    "SignedAuthorization",
    "Signer",
    "SignerV1",
    "SignerV4",
    "SigningRequest",
    "UNSIGNED_PAYLOAD",
    "build_canonical_request",
    "create_signer",
    "utc_now",
]
