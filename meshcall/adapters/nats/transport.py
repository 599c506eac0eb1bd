"""
NATS transport adapter

Maps the transport primitives onto core NATS: queue-group subscriptions for
expose/observe, request-reply inboxes for correlated requests and plain publishes
for notices and responses. Envelopes travel as JSON.
"""

import asyncio
import inspect
import logging
from typing import Any, Dict, List, Optional

import nats
from nats.errors import Error as NatsError
from nats.errors import NoRespondersError
from nats.errors import TimeoutError as NatsTimeoutError

from meshcall.adapters.adapter_interface import (
    NoticeCallback,
    RawEnvelope,
    RequestCallback,
    TransportAdapterInterface,
)
from meshcall.errors import (
    ProtocolDiscardError,
    RequestTimeoutError,
    TransportConnectionError,
    TransportError,
)
from meshcall.telemetry.metrics import DISCARDED, increment_counter
from meshcall.utils.serialization import bytes_to_envelope, envelope_to_bytes

logger = logging.getLogger(__name__)


class NatsTransport(TransportAdapterInterface):
    """
    NATS transport adapter, owning one NATS connection
    """

    def __init__(self,
                 servers: List[str] = None,
                 timeout_ms: int = 5000,
                 connect_timeout_ms: int = 2000,
                 name: Optional[str] = None,
                 max_reconnect_attempts: int = 60,
                 reconnect_time_wait_ms: int = 2000):
        """Initialize the NATS transport

        Args:
            servers: NATS server urls
            timeout_ms: Request timeout (milliseconds)
            connect_timeout_ms: Time allowed to establish the connection (milliseconds)
            name: Connection name reported to the server
            max_reconnect_attempts: Maximum reconnect attempts after a disconnection
            reconnect_time_wait_ms: Wait between reconnect attempts (milliseconds)
        """
        self.servers = servers or ["nats://localhost:4222"]
        self.timeout_ms = timeout_ms
        self.timeout_seconds = timeout_ms / 1000.0
        self.connect_timeout_seconds = connect_timeout_ms / 1000.0
        self.name = name
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_time_wait_seconds = reconnect_time_wait_ms / 1000.0

        self.nc = None
        self.subscriptions = []
        self._closed = False

        logger.debug(f"NATS transport created, servers: {self.servers}")

    @property
    def is_connected(self) -> bool:
        return self.nc is not None and self.nc.is_connected

    async def connect(self) -> None:
        if self.is_connected:
            return

        options = {
            "servers": self.servers,
            "name": self.name,
            "connect_timeout": self.connect_timeout_seconds,
            "max_reconnect_attempts": self.max_reconnect_attempts,
            "reconnect_time_wait": self.reconnect_time_wait_seconds,
            "error_cb": self._on_error,
            "disconnected_cb": self._on_disconnected,
            "reconnected_cb": self._on_reconnected,
            "closed_cb": self._on_closed,
        }

        try:
            self.nc = await asyncio.wait_for(nats.connect(**options), timeout=self.connect_timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(f"Could not connect to NATS servers {self.servers} within {self.connect_timeout_seconds}s")
            raise TransportConnectionError(f"Could not connect to NATS server on start: {', '.join(self.servers)}")
        except (NatsError, OSError) as e:
            logger.error(f"Connection to NATS servers {self.servers} failed: {str(e)}")
            raise TransportConnectionError(f"Could not connect to NATS server on start: {str(e)}") from e

        self._closed = False
        logger.info(f"Connected to NATS: {self.nc.connected_url.netloc if self.nc.connected_url else self.servers}")

    # Connection callbacks
    async def _on_error(self, error):
        logger.error(f"NATS connection error: {error}")

    async def _on_disconnected(self):
        logger.warning("Disconnected from NATS")

    async def _on_reconnected(self):
        logger.info("Reconnected to NATS")

    async def _on_closed(self):
        logger.info("NATS connection closed")

    def _ensure_connected(self):
        if self.nc is None or self.nc.is_closed:
            raise TransportError("NATS connection is not open")

    async def send_request(self, envelope: RawEnvelope) -> RawEnvelope:
        self._ensure_connected()
        subject = envelope["subject"]

        try:
            reply = await self.nc.request(
                subject,
                envelope_to_bytes(envelope),
                timeout=self.timeout_seconds
            )
        except NoRespondersError:
            # nobody exposes the subject: reported like any unanswered request
            raise RequestTimeoutError(f"The request timed out for subject: {subject} (no responders)")
        except NatsTimeoutError:
            raise RequestTimeoutError(f"The request timed out for subject: {subject} ({self.timeout_ms}ms)")
        except NatsError as e:
            raise TransportError(f"NATS request on {subject} failed: {str(e)}") from e

        try:
            return bytes_to_envelope(reply.data)
        except ProtocolDiscardError as e:
            raise TransportError(f"Invalid reply on {subject}: {str(e)}") from e

    async def _publish(self, subject: str, envelope: RawEnvelope) -> None:
        self._ensure_connected()
        try:
            await self.nc.publish(subject, envelope_to_bytes(envelope))
        except NatsError as e:
            raise TransportError(f"NATS publish on {subject} failed: {str(e)}") from e

    async def send_notice(self, envelope: RawEnvelope) -> None:
        await self._publish(envelope["subject"], envelope)

    async def send_response(self, reply_to: str, envelope: RawEnvelope) -> None:
        await self._publish(reply_to, envelope)

    async def expose(self, subject: str, queue: str, on_request: RequestCallback) -> Any:
        self._ensure_connected()

        async def message_handler(msg):
            # a message without reply address is a notice published on a request subject
            if not msg.reply:
                logger.debug(f"Discarding message without reply subject on {msg.subject}")
                increment_counter(DISCARDED, 1, {"reason": "no_reply", "adapter": "nats"})
                return
            envelope = self._decode(msg)
            if envelope is None:
                return
            result = on_request(envelope, msg.reply)
            if inspect.isawaitable(result):
                await result

        return await self._subscribe(subject, queue, message_handler)

    async def observe(self, subject: str, queue: str, on_notice: NoticeCallback) -> Any:
        self._ensure_connected()

        async def message_handler(msg):
            envelope = self._decode(msg)
            if envelope is None:
                return
            result = on_notice(envelope)
            if inspect.isawaitable(result):
                await result

        return await self._subscribe(subject, queue, message_handler)

    async def _subscribe(self, subject: str, queue: str, handler) -> Any:
        try:
            sub = await self.nc.subscribe(subject, queue=queue, cb=handler)
            # make sure the server knows about the subscription before returning
            await self.nc.flush(timeout=self.timeout_seconds)
        except NatsError as e:
            raise TransportError(f"Subscription to {subject} failed: {str(e)}") from e

        self.subscriptions.append(sub)
        logger.debug(f"Subscribed to {subject}, queue: {queue}")
        return sub

    def _decode(self, msg) -> Optional[Dict[str, Any]]:
        try:
            return bytes_to_envelope(msg.data)
        except ProtocolDiscardError as e:
            logger.debug(f"Discarding undecodable message on {msg.subject}: {str(e)}")
            increment_counter(DISCARDED, 1, {"reason": "decode", "adapter": "nats"})
            return None

    async def shutdown(self) -> None:
        if self._closed or self.nc is None:
            self._closed = True
            return
        self._closed = True

        for sub in self.subscriptions:
            try:
                await sub.unsubscribe()
            except NatsError as e:
                logger.warning(f"Error while unsubscribing: {str(e)}")
        self.subscriptions.clear()

        if not self.nc.is_closed:
            try:
                await self.nc.flush(timeout=self.timeout_seconds)
            except (NatsError, asyncio.TimeoutError) as e:
                logger.warning(f"Error while flushing NATS connection: {str(e)}")
            await self.nc.close()

        logger.info("NATS transport shut down")
