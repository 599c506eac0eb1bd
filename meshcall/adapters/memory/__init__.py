"""
In-memory Adapter

Broker-less transport for local development and tests.
"""

from meshcall.adapters.memory.transport import (
    InMemoryBroker,
    InMemoryTransport,
    get_default_broker,
    subject_matches,
)

__all__ = [
    "InMemoryBroker",
    "InMemoryTransport",
    "get_default_broker",
    "subject_matches",
]
