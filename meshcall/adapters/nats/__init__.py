"""
NATS Adapter

Transport adapter over core NATS (nats-py): queue groups for load balancing,
request-reply inboxes for correlation.
"""

from meshcall.adapters.nats.transport import NatsTransport

__all__ = ["NatsTransport"]
