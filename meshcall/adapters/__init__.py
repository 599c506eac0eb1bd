"""
Transport Adapters Module

Adapter implementations providing one interface over different brokers:
- nats: core NATS adapter
- memory: in-process adapter for development and tests
"""

from .adapter_factory import AdapterFactory
from .adapter_interface import TransportAdapterInterface

__all__ = [
    "AdapterFactory",
    "TransportAdapterInterface",
]
