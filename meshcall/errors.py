"""
Error types and error (de)serialization

Every error raised by meshcall derives from MeshcallError and carries an HTTP-like
``status_code``. Errors raised by application handlers are serialized into the
``error`` field of a Response and rebuilt on the caller side by ``deserialize_error``.
"""

import traceback
from typing import Any, Dict, Optional


class MeshcallError(Exception):
    """Base class for all meshcall errors."""

    status_code = 500

    def __init__(self, message: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ConfigError(MeshcallError, ValueError):
    """Raised when a service or handler is configured with missing or invalid values."""


class ValidationError(MeshcallError, ValueError):
    """Raised when an outgoing envelope cannot be built from the given fields."""

    status_code = 400


class ProtocolDiscardError(MeshcallError):
    """Raised when an inbound payload is not the kind of envelope expected.

    Never surfaced to a caller: the dispatch engine drops the message.
    """

    status_code = 400


class MiddlewareContractError(MeshcallError):
    """Raised when a middleware returns something other than the request object."""

    def __init__(self, message: str = "Middleware returned non request object",
                 status_code: Optional[int] = None):
        super().__init__(message, status_code)


class TransportError(MeshcallError):
    """Raised for broker level failures."""

    status_code = 503


class TransportConnectionError(TransportError, ConnectionError):
    """Raised when the broker connection cannot be established."""


class RequestTimeoutError(TransportError, TimeoutError):
    """Raised when no reply arrives before the request timeout."""

    status_code = 504


class RemoteError(MeshcallError):
    """Error raised by a remote handler, rebuilt from its serialized form.

    Attributes:
        name: Class name of the original exception
        stack: Formatted traceback captured by the remote side (may be empty)
    """

    def __init__(self, message: str = "", status_code: Optional[int] = None,
                 name: str = "Error", stack: str = ""):
        super().__init__(message, status_code)
        self.name = name
        self.stack = stack

    def __repr__(self):
        return f"RemoteError(name={self.name!r}, message={self.message!r}, status_code={self.status_code})"


# Library errors rebuilt with their own class on the caller side
_KNOWN_ERRORS = {
    cls.__name__: cls
    for cls in (
        ConfigError,
        ValidationError,
        ProtocolDiscardError,
        MiddlewareContractError,
        TransportError,
        TransportConnectionError,
        RequestTimeoutError,
    )
}


def get_status_code(error: BaseException) -> int:
    """Return the status code carried by an exception, 500 if it carries none."""
    for attr in ("status_code", "statusCode"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return 500


def serialize_error(error: BaseException) -> Dict[str, Any]:
    """Convert an exception into the wire ``error`` record

    Args:
        error: Exception raised by a handler, a middleware or the transport

    Returns:
        Dict: ``{name, message, stack, statusCode}``
    """
    if isinstance(error, RemoteError):
        name = error.name
        stack = error.stack
    else:
        name = type(error).__name__
        stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))

    return {
        "name": name,
        "message": str(error),
        "stack": stack,
        "statusCode": get_status_code(error),
    }


def deserialize_error(record: Dict[str, Any]) -> MeshcallError:
    """Rebuild an exception from a wire ``error`` record

    Library errors come back as their own class; anything else as a RemoteError
    keeping the original name and stack.
    """
    record = record or {}
    message = str(record.get("message", ""))
    name = str(record.get("name") or "Error")
    stack = record.get("stack") or ""
    status_code = record.get("statusCode")
    if not isinstance(status_code, int) or isinstance(status_code, bool):
        status_code = 500

    known = _KNOWN_ERRORS.get(name)
    if known is not None:
        error = known(message, status_code=status_code)
        error.remote_stack = stack
        return error

    return RemoteError(message, status_code=status_code, name=name, stack=stack)
