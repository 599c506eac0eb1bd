"""
Transport adapter interface

Defines the broker primitives every transport (NATS, in-memory) implements.
The rest of meshcall only talks to the broker through this interface.
"""

import abc
from typing import Any, Awaitable, Callable, Dict, Optional

RawEnvelope = Dict[str, Any]
RequestCallback = Callable[[RawEnvelope, str], Optional[Awaitable[None]]]
NoticeCallback = Callable[[RawEnvelope], Optional[Awaitable[None]]]


class TransportAdapterInterface(abc.ABC):
    """Transport adapter interface, owning one broker connection"""

    @abc.abstractmethod
    async def connect(self) -> None:
        """Establish the broker connection

        Raises:
            TransportConnectionError: connection not established before the connect timeout
        """

    @abc.abstractmethod
    async def send_request(self, envelope: RawEnvelope) -> RawEnvelope:
        """Publish a request on ``envelope["subject"]`` and wait for one correlated reply

        Args:
            envelope: Wire dictionary of the request

        Returns:
            Dict: Decoded reply

        Raises:
            RequestTimeoutError: no reply before the request timeout
            TransportError: any lower level failure
        """

    @abc.abstractmethod
    async def send_notice(self, envelope: RawEnvelope) -> None:
        """Publish a notice on ``envelope["subject"]``, without waiting for delivery"""

    @abc.abstractmethod
    async def send_response(self, reply_to: str, envelope: RawEnvelope) -> None:
        """Publish a response to the reply address of a request"""

    @abc.abstractmethod
    async def expose(self, subject: str, queue: str, on_request: RequestCallback) -> Any:
        """Subscribe a request handler in a queue group

        Messages without a reply address are discarded before ``on_request`` is called.

        Returns:
            Subscription handle
        """

    @abc.abstractmethod
    async def observe(self, subject: str, queue: str, on_notice: NoticeCallback) -> Any:
        """Subscribe a notice handler in a queue group

        Returns:
            Subscription handle
        """

    @abc.abstractmethod
    async def shutdown(self) -> None:
        """Unsubscribe, flush outstanding messages and close the connection. Idempotent."""

    @property
    @abc.abstractmethod
    def is_connected(self) -> bool:
        """Whether the broker connection is currently open"""
