"""
Envelope serialization/deserialization tools

Provides functionality for converting between envelope dictionaries and the JSON
bytes carried by the broker.
"""

import json
from typing import Any, Dict

from meshcall.errors import ProtocolDiscardError


def envelope_to_bytes(envelope: Dict[str, Any]) -> bytes:
    """Convert an envelope dictionary to UTF-8 JSON bytes

    Values JSON cannot represent natively are converted with ``str``.

    Args:
        envelope: Wire dictionary of a Request, Notice or Response

    Returns:
        bytes: Encoded envelope
    """
    return json.dumps(envelope, default=str).encode("utf-8")


def bytes_to_envelope(data: bytes) -> Dict[str, Any]:
    """Convert UTF-8 JSON bytes to an envelope dictionary

    Args:
        data: Raw message data

    Returns:
        Dict: Decoded envelope

    Raises:
        ProtocolDiscardError: data is not a JSON object
    """
    try:
        envelope = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolDiscardError(f"message is not valid JSON: {e}")

    if not isinstance(envelope, dict):
        raise ProtocolDiscardError("message is not a JSON object")

    return envelope
