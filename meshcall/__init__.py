"""
meshcall: request/response and publish/subscribe between named services over NATS

Each service exposes methods on ``<service>.<method>`` subjects, observes notices
on any subject, and threads a transaction id through every causally linked
message. Every exchange is mirrored on ``<service>._LOG.<KIND>.<subject>``.
"""

__version__ = "0.1.0"

from .errors import (
    ConfigError,
    MeshcallError,
    RemoteError,
    RequestTimeoutError,
    TransportError,
    ValidationError,
)
from .envelope import Notice, Request, Response
from .config import ServiceConfig, TransportType
from .service import Service

__all__ = [
    "Service",
    "ServiceConfig",
    "TransportType",
    "Request",
    "Notice",
    "Response",
    "MeshcallError",
    "ConfigError",
    "ValidationError",
    "TransportError",
    "RequestTimeoutError",
    "RemoteError",
]
