"""Request execution: cancel tokens, in-flight bookkeeping and transport."""

from .cancel import CancelToken
from .executor import RequestExecutor
from .registry import InFlightRegistry
from .transport import HttpResponse, HttpxTransport, ProgressCallback, Transport

__all__ = [
    "CancelToken",
    "HttpResponse",
    "HttpxTransport",
    "InFlightRegistry",
    "ProgressCallback",
    "RequestExecutor",
    "Transport",
]
