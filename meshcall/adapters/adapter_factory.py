"""
Adapter factory

Creates the transport adapter selected by a service configuration.
"""

from meshcall.adapters.adapter_interface import TransportAdapterInterface
from meshcall.adapters.memory.transport import InMemoryTransport
from meshcall.adapters.nats.transport import NatsTransport
from meshcall.config import ServiceConfig, TransportType
from meshcall.errors import ConfigError


class AdapterFactory:
    """Adapter factory, used to create transport adapter instances"""

    @staticmethod
    def create_transport(config: ServiceConfig) -> TransportAdapterInterface:
        """Create the transport adapter for a service

        Args:
            config: Resolved service configuration

        Returns:
            TransportAdapterInterface: Transport adapter instance

        Raises:
            ConfigError: Unknown transport type
        """
        if config.transport == TransportType.NATS:
            return NatsTransport(
                servers=config.servers,
                timeout_ms=config.timeout_ms,
                connect_timeout_ms=config.connect_timeout_ms,
                name=config.namespace + "." + config.name if config.namespace else config.name,
            )
        elif config.transport == TransportType.MEMORY:
            return InMemoryTransport(timeout_ms=config.timeout_ms)
        else:
            raise ConfigError(f"Invalid transport type: {config.transport}")
