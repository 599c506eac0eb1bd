"""
RPC layer

- outbound: building and sending requests and notices
- incoming: facades handed to handlers, propagating the transaction id
- middleware: the chain run before exposed handlers
- dispatch: expose and observe registrations
"""

from .context import ServiceContext
from .outbound import send_notice, send_request
from .incoming import IncomingNotice, IncomingRequest, IncomingResponse
from .dispatch import ExposeHandler, ObserveHandler

__all__ = [
    "ServiceContext",
    "send_request",
    "send_notice",
    "IncomingRequest",
    "IncomingNotice",
    "IncomingResponse",
    "ExposeHandler",
    "ObserveHandler",
]
