"""
Envelope model

The three message kinds exchanged over the broker (Request, Notice, Response)
share the Message base fields. Each kind has a wire tag so inbound payloads can be
classified before they are trusted:

    Request:  { subject, service, tx, time, metadata, args, isRequest: true }
    Notice:   { subject, service, tx, time, metadata, payload, isNotice: true }
    Response: { subject, service, tx, time, metadata, statusCode,
                payload?, error?, to?, isResponse: true }
"""

import abc
import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Union

from meshcall.errors import (
    ProtocolDiscardError,
    ValidationError,
    deserialize_error,
    get_status_code,
    serialize_error,
)

REQUEST_TAG = "isRequest"
NOTICE_TAG = "isNotice"
RESPONSE_TAG = "isResponse"

MetadataPath = Union[str, Sequence[str]]


def new_tx() -> str:
    return str(uuid.uuid4())


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def cast_list(value: Any) -> List[Any]:
    """Coerce a value to a list: lists and tuples keep their items, None is empty,
    anything else becomes a single element list."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def get_path(data: Dict[str, Any], path: Optional[MetadataPath]) -> Any:
    """Deep copy of ``data`` or of the value found at ``path`` (a key or a list of keys)"""
    if path is None:
        return copy.deepcopy(data)
    current: Any = data
    for key in cast_list(path):
        if not isinstance(current, dict) or key not in current:
            return None
        current = current[key]
    return copy.deepcopy(current)


def set_path(data: Dict[str, Any], path: MetadataPath, value: Any) -> Dict[str, Any]:
    """Return a copy of ``data`` with ``value`` stored at ``path``"""
    keys = cast_list(path)
    if not keys:
        raise ValidationError("path is required to set a metadata value")
    result = copy.deepcopy(data)
    current = result
    for key in keys[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]
    current[keys[-1]] = copy.deepcopy(value)
    return result


@dataclass
class Message(abc.ABC):
    """Fields shared by every envelope. Not sent on its own."""
    subject: str
    service: str
    tx: Optional[str] = None
    time: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.subject or not isinstance(self.subject, str):
            raise ValidationError("subject is required to create a Message object")
        if not self.service or not isinstance(self.service, str):
            raise ValidationError("service is required to create a Message object")

        self.tx = new_tx() if self.tx is None or self.tx == "" else str(self.tx)
        if self.time is None:
            self.time = utc_timestamp()

        if self.metadata is None:
            self.metadata = {}
        if not isinstance(self.metadata, dict):
            raise ValidationError("metadata must be a mapping")
        self.metadata = copy.deepcopy(self.metadata)

    def get_subject(self) -> str:
        return self.subject

    def get_service(self) -> str:
        return self.service

    def get_tx(self) -> str:
        return self.tx

    def get_time(self) -> str:
        return self.time

    def get_metadata(self, path: Optional[MetadataPath] = None) -> Any:
        return get_path(self.metadata, path)

    def _base_dict(self) -> Dict[str, Any]:
        return {
            "subject": self.subject,
            "service": self.service,
            "tx": self.tx,
            "time": self.time,
            "metadata": copy.deepcopy(self.metadata),
        }

    @abc.abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        """Wire dictionary of the envelope"""


@dataclass
class Request(Message):
    args: Any = field(default_factory=list)

    def __post_init__(self):
        super().__post_init__()
        self.args = copy.deepcopy(cast_list(self.args))

    def get_args(self) -> List[Any]:
        return copy.deepcopy(self.args)

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data["args"] = copy.deepcopy(self.args)
        data[REQUEST_TAG] = True
        return data


@dataclass
class Notice(Message):
    payload: Any = None

    def __post_init__(self):
        super().__post_init__()
        if self.payload is None:
            raise ValidationError("payload is required to create a Notice object")

    def get_payload(self) -> Any:
        return copy.deepcopy(self.payload)

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data["payload"] = copy.deepcopy(self.payload)
        data[NOTICE_TAG] = True
        return data


@dataclass
class Response(Message):
    status_code: int = 200
    payload: Any = None
    error: Optional[Dict[str, Any]] = None
    to: Optional[str] = None

    def __post_init__(self):
        super().__post_init__()
        if not isinstance(self.status_code, int) or isinstance(self.status_code, bool):
            raise ValidationError("statusCode must be an integer")
        if self.status_code == 200:
            if self.error is not None:
                raise ValidationError("a successful Response cannot carry an error")
        else:
            if not isinstance(self.error, dict):
                raise ValidationError("a failed Response requires an error record")
            self.payload = None

    @classmethod
    def success(cls, request: Message, service: str, payload: Any,
                to: Optional[str] = None) -> "Response":
        """Build the 200 Response answering ``request``"""
        return cls(
            subject=request.subject,
            service=service,
            tx=request.tx,
            status_code=200,
            payload=payload,
            to=to,
        )

    @classmethod
    def failure(cls, request: Message, service: str, error: BaseException,
                to: Optional[str] = None) -> "Response":
        """Build the error Response answering ``request``

        The status code comes from the error, 500 when it carries none.
        """
        record = serialize_error(error)
        status_code = get_status_code(error)
        if status_code == 200:
            status_code = 500
        record["statusCode"] = status_code
        return cls(
            subject=request.subject,
            service=service,
            tx=request.tx,
            status_code=status_code,
            error=record,
            to=to,
        )

    def is_success(self) -> bool:
        return self.status_code == 200

    def get_status_code(self) -> int:
        return self.status_code

    def get_error(self) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self.error)

    def get_payload(self) -> Any:
        """Return the payload, or raise the rebuilt remote error if the call failed"""
        if self.status_code == 200:
            return copy.deepcopy(self.payload)
        raise deserialize_error(self.error)

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data["statusCode"] = self.status_code
        if self.status_code == 200:
            data["payload"] = copy.deepcopy(self.payload)
        else:
            data["error"] = copy.deepcopy(self.error)
        if self.to:
            data["to"] = self.to
        data[RESPONSE_TAG] = True
        return data


Envelope = Union[Request, Notice, Response]


def _message_fields(payload: Any, kind: str) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise ProtocolDiscardError(f"{kind} must be an object")
    for key in ("subject", "service", "tx", "time"):
        value = payload.get(key)
        if not value or not isinstance(value, str):
            raise ProtocolDiscardError(f"{key} is required in {kind}")
    metadata = payload.get("metadata", {})
    if metadata is None:
        metadata = {}
    if not isinstance(metadata, dict):
        raise ProtocolDiscardError(f"metadata must be an object in {kind}")
    return {
        "subject": payload["subject"],
        "service": payload["service"],
        "tx": payload["tx"],
        "time": payload["time"],
        "metadata": metadata,
    }


def parse_request(payload: Any) -> Request:
    """Classify an inbound payload as a Request

    Raises:
        ProtocolDiscardError: payload is not a well formed request
    """
    fields = _message_fields(payload, "Request")
    if payload.get(REQUEST_TAG) is not True:
        raise ProtocolDiscardError(f"{REQUEST_TAG} is required in Request")
    if not isinstance(payload.get("args"), list):
        raise ProtocolDiscardError("args is required in Request")
    return Request(args=payload["args"], **fields)


def parse_notice(payload: Any) -> Notice:
    """Classify an inbound payload as a Notice

    Raises:
        ProtocolDiscardError: payload is not a well formed notice
    """
    fields = _message_fields(payload, "Notice")
    if payload.get(NOTICE_TAG) is not True:
        raise ProtocolDiscardError(f"{NOTICE_TAG} is required in Notice")
    if payload.get("payload") is None:
        raise ProtocolDiscardError("payload is required in Notice")
    return Notice(payload=payload["payload"], **fields)


def parse_response(payload: Any) -> Response:
    """Classify an inbound payload as a Response

    Raises:
        ProtocolDiscardError: payload is not a well formed response
    """
    fields = _message_fields(payload, "Response")
    if payload.get(RESPONSE_TAG) is not True:
        raise ProtocolDiscardError(f"{RESPONSE_TAG} is required in Response")
    status_code = payload.get("statusCode")
    if not isinstance(status_code, int) or isinstance(status_code, bool):
        raise ProtocolDiscardError("statusCode is required in Response")
    error = payload.get("error")
    if status_code != 200 and not isinstance(error, dict):
        raise ProtocolDiscardError("error is required in a failed Response")
    return Response(
        status_code=status_code,
        payload=payload.get("payload") if status_code == 200 else None,
        error=error if status_code != 200 else None,
        to=payload.get("to"),
        **fields,
    )


def _classifies(parser, payload: Any) -> bool:
    try:
        parser(payload)
    except (ProtocolDiscardError, ValidationError):
        return False
    return True


def is_message(payload: Any) -> bool:
    try:
        _message_fields(payload, "Message")
    except ProtocolDiscardError:
        return False
    return True


def is_request(payload: Any) -> bool:
    return _classifies(parse_request, payload)


def is_notice(payload: Any) -> bool:
    return _classifies(parse_notice, payload)


def is_response(payload: Any) -> bool:
    return _classifies(parse_response, payload)
