"""In-memory transport for local development and testing.

Reproduces the broker semantics meshcall relies on, inside one process and one
event loop:

    - subject matching with NATS wildcards (``*`` one token, ``>`` the rest)
    - one delivery per queue group (round-robin across its members), a copy for
      every distinct group and for every ungrouped subscriber
    - request/reply through private inboxes with a timeout; replies arriving
      after the timeout find no inbox and are dropped
    - asynchronous delivery: ``publish`` returns before any callback runs

Usage:
    ```python
    broker = InMemoryBroker()
    server = Service(name="server", adapter=InMemoryTransport(broker))
    client = Service(name="client", adapter=InMemoryTransport(broker))
    ```
"""

import asyncio
import inspect
import itertools
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

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

INBOX_PREFIX = "_INBOX"


def subject_matches(pattern: str, subject: str) -> bool:
    """Match a subject against a subscription pattern using NATS wildcard rules"""
    pattern_tokens = pattern.split(".")
    subject_tokens = subject.split(".")
    for index, token in enumerate(pattern_tokens):
        if token == ">":
            return len(subject_tokens) > index
        if index >= len(subject_tokens):
            return False
        if token != "*" and token != subject_tokens[index]:
            return False
    return len(pattern_tokens) == len(subject_tokens)


@dataclass
class InMemoryMessage:
    subject: str
    data: bytes
    reply: str = ""


@dataclass(eq=False)
class InMemorySubscription:
    sid: int
    subject: str
    queue: Optional[str]
    callback: Callable[[InMemoryMessage], Any]
    broker: "InMemoryBroker"

    async def unsubscribe(self) -> None:
        self.broker.unsubscribe(self)


class InMemoryBroker:
    """In-process subject router shared by the in-memory transports of several services"""

    def __init__(self, record: bool = False):
        """
        Args:
            record: Keep every routed message in ``published``, for tests
        """
        self._subscriptions: List[InMemorySubscription] = []
        self._sids = itertools.count(1)
        self._next_member: Dict[tuple, int] = {}
        self._inboxes: Dict[str, asyncio.Future] = {}
        self._tasks = set()
        self.record = record
        self.published: List[InMemoryMessage] = []

    def subscribe(self, subject: str, queue: Optional[str],
                  callback: Callable[[InMemoryMessage], Any]) -> InMemorySubscription:
        sub = InMemorySubscription(next(self._sids), subject, queue or None, callback, self)
        self._subscriptions.append(sub)
        return sub

    def unsubscribe(self, sub: InMemorySubscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, subject: str, data: bytes, reply: str = "") -> None:
        """Route a message to its subscribers. Delivery happens on later loop iterations."""
        message = InMemoryMessage(subject, data, reply)
        if self.record:
            self.published.append(message)

        inbox = self._inboxes.pop(subject, None)
        if inbox is not None:
            if not inbox.done():
                inbox.set_result(data)
            return

        groups: Dict[tuple, List[InMemorySubscription]] = {}
        for sub in self._subscriptions:
            if not subject_matches(sub.subject, subject):
                continue
            if sub.queue is None:
                self._deliver(sub, message)
            else:
                groups.setdefault((sub.subject, sub.queue), []).append(sub)

        for key, members in groups.items():
            index = self._next_member.get(key, 0) % len(members)
            self._next_member[key] = index + 1
            self._deliver(members[index], message)

    def _deliver(self, sub: InMemorySubscription, message: InMemoryMessage) -> None:
        task = asyncio.get_running_loop().create_task(self._run_callback(sub, message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_callback(self, sub: InMemorySubscription, message: InMemoryMessage) -> None:
        if sub not in self._subscriptions:
            return
        try:
            result = sub.callback(message)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Subscriber callback for {sub.subject} failed: {str(e)}")

    async def request(self, subject: str, data: bytes, timeout: float) -> bytes:
        """Publish with a private reply inbox and wait for the first reply"""
        inbox = f"{INBOX_PREFIX}.{uuid.uuid4().hex}"
        future = asyncio.get_running_loop().create_future()
        self._inboxes[inbox] = future
        try:
            self.publish(subject, data, reply=inbox)
            return await asyncio.wait_for(future, timeout=timeout)
        finally:
            self._inboxes.pop(inbox, None)

    async def flush(self) -> None:
        """Wait until every scheduled delivery has run"""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)


_default_broker: Optional[InMemoryBroker] = None


def get_default_broker() -> InMemoryBroker:
    """Process wide broker used when no broker is given explicitly"""
    global _default_broker
    if _default_broker is None:
        _default_broker = InMemoryBroker()
    return _default_broker


class InMemoryTransport(TransportAdapterInterface):
    """Transport adapter over an InMemoryBroker"""

    def __init__(self, broker: Optional[InMemoryBroker] = None, timeout_ms: int = 5000):
        self.broker = broker or get_default_broker()
        self.timeout_ms = timeout_ms
        self.timeout_seconds = timeout_ms / 1000.0
        self.subscriptions: List[InMemorySubscription] = []
        self._connected = False
        self._closed = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        if self._closed:
            raise TransportConnectionError("in-memory transport was shut down")
        self._connected = True
        logger.debug("In-memory transport connected")

    def _ensure_connected(self):
        if not self._connected:
            raise TransportError("in-memory transport is not connected")

    async def send_request(self, envelope: RawEnvelope) -> RawEnvelope:
        self._ensure_connected()
        subject = envelope["subject"]
        try:
            data = await self.broker.request(subject, envelope_to_bytes(envelope), self.timeout_seconds)
        except asyncio.TimeoutError:
            raise RequestTimeoutError(f"The request timed out for subject: {subject} ({self.timeout_ms}ms)")
        try:
            return bytes_to_envelope(data)
        except ProtocolDiscardError as e:
            raise TransportError(f"Invalid reply on {subject}: {str(e)}") from e

    async def send_notice(self, envelope: RawEnvelope) -> None:
        self._ensure_connected()
        self.broker.publish(envelope["subject"], envelope_to_bytes(envelope))

    async def send_response(self, reply_to: str, envelope: RawEnvelope) -> None:
        self._ensure_connected()
        self.broker.publish(reply_to, envelope_to_bytes(envelope))

    async def expose(self, subject: str, queue: str, on_request: RequestCallback) -> Any:
        self._ensure_connected()

        async def message_handler(msg: InMemoryMessage):
            if not msg.reply:
                logger.debug(f"Discarding message without reply subject on {msg.subject}")
                increment_counter(DISCARDED, 1, {"reason": "no_reply", "adapter": "memory"})
                return
            envelope = self._decode(msg)
            if envelope is None:
                return
            result = on_request(envelope, msg.reply)
            if inspect.isawaitable(result):
                await result

        return self._subscribe(subject, queue, message_handler)

    async def observe(self, subject: str, queue: str, on_notice: NoticeCallback) -> Any:
        self._ensure_connected()

        async def message_handler(msg: InMemoryMessage):
            envelope = self._decode(msg)
            if envelope is None:
                return
            result = on_notice(envelope)
            if inspect.isawaitable(result):
                await result

        return self._subscribe(subject, queue, message_handler)

    def _subscribe(self, subject: str, queue: str, handler) -> InMemorySubscription:
        sub = self.broker.subscribe(subject, queue, handler)
        self.subscriptions.append(sub)
        logger.debug(f"Subscribed to {subject}, queue: {queue}")
        return sub

    def _decode(self, msg: InMemoryMessage) -> Optional[Dict[str, Any]]:
        try:
            return bytes_to_envelope(msg.data)
        except ProtocolDiscardError as e:
            logger.debug(f"Discarding undecodable message on {msg.subject}: {str(e)}")
            increment_counter(DISCARDED, 1, {"reason": "decode", "adapter": "memory"})
            return None

    async def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        for sub in self.subscriptions:
            self.broker.unsubscribe(sub)
        self.subscriptions.clear()
        self._connected = False
        logger.debug("In-memory transport shut down")
