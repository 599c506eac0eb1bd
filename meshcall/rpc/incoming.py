"""
Incoming envelope facades

Wrap a received envelope together with the receiving service's context. Besides
the accessors, every facade can send further requests and notices that inherit
its transaction id, so a whole causal chain shares one tx.
"""

import copy
from typing import Any, Mapping, Optional

from meshcall.envelope import Message, MetadataPath, Notice, Request, Response, cast_list, set_path
from meshcall.errors import ValidationError
from meshcall.rpc import outbound
from meshcall.rpc.context import ServiceContext

_MISSING = object()


class IncomingEnvelope:
    """Base facade: accessors plus tx-propagating request/notice helpers"""

    def __init__(self, envelope: Message, context: ServiceContext):
        self._envelope = envelope
        self._context = context

    @property
    def envelope(self) -> Message:
        return self._envelope

    def get_subject(self) -> str:
        return self._envelope.subject

    def get_service(self) -> str:
        return self._envelope.service

    def get_tx(self) -> str:
        return self._envelope.tx

    def get_time(self) -> str:
        return self._envelope.time

    def get_metadata(self, path: Optional[MetadataPath] = None) -> Any:
        return self._envelope.get_metadata(path)

    def to_dict(self):
        return self._envelope.to_dict()

    async def request(self, envelope: Optional[Mapping[str, Any]] = None, **fields) -> "IncomingResponse":
        """Send a request in the same transaction"""
        response = await outbound.send_request(self._context, envelope, inherited_tx=self.get_tx(), **fields)
        return IncomingResponse(response, self._context)

    async def notice(self, envelope: Optional[Mapping[str, Any]] = None, **fields) -> Notice:
        """Send a notice in the same transaction"""
        return await outbound.send_notice(self._context, envelope, inherited_tx=self.get_tx(), **fields)

    invoke = request
    broadcast = notice

    def __repr__(self):
        return f"{type(self).__name__}(subject={self.get_subject()!r}, tx={self.get_tx()!r})"


class IncomingRequest(IncomingEnvelope):
    """Request as seen by an exposed handler and its middleware

    Setters only change this facade's copy of the request.
    """

    _envelope: Request

    def get_args(self):
        return self._envelope.get_args()

    def set_args(self, args: Any) -> "IncomingRequest":
        self._envelope.args = copy.deepcopy(cast_list(args))
        return self

    def set_metadata(self, path: Any, value: Any = _MISSING) -> "IncomingRequest":
        """Replace the whole metadata mapping, or set the value found at ``path``

        ``set_metadata({"user": "x"})`` replaces the mapping;
        ``set_metadata(["auth", "user"], "x")`` sets one nested key.
        """
        if value is _MISSING:
            if not isinstance(path, Mapping):
                raise ValidationError("metadata must be a mapping")
            self._envelope.metadata = copy.deepcopy(dict(path))
        else:
            self._envelope.metadata = set_path(self._envelope.metadata, path, value)
        return self


class IncomingNotice(IncomingEnvelope):
    """Notice as seen by an observing handler"""

    _envelope: Notice

    def get_payload(self) -> Any:
        return self._envelope.get_payload()


class IncomingResponse(IncomingEnvelope):
    """Response as returned to the caller of a request"""

    _envelope: Response

    def get_status_code(self) -> int:
        return self._envelope.status_code

    def is_success(self) -> bool:
        return self._envelope.is_success()

    def get_error(self):
        return self._envelope.get_error()

    def get_to(self) -> Optional[str]:
        return self._envelope.to

    def get_payload(self) -> Any:
        """Return the payload, or raise the remote (or transport) error"""
        return self._envelope.get_payload()
