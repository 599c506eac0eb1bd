"""
Shared fixtures: an isolated in-memory broker per test and a factory for services
attached to it.
"""

import asyncio

import pytest

from meshcall import Service
from meshcall.adapters.memory import InMemoryBroker, InMemoryTransport


@pytest.fixture
def broker():
    return InMemoryBroker(record=True)


@pytest.fixture
def make_service(broker):
    """Create a service on the test broker, ignoring MESHCALL_* variables of the host"""

    def factory(name, namespace=None, timeout_ms=1000, **options):
        transport = InMemoryTransport(broker, timeout_ms=timeout_ms)
        return Service(name=name, namespace=namespace, adapter=transport, environ={},
                       timeout_ms=timeout_ms, **options)

    return factory


@pytest.fixture
def settle(broker):
    """Let scheduled deliveries and the handler tasks they spawn run to completion"""

    async def run(rounds=5):
        for _ in range(rounds):
            await broker.flush()
            await asyncio.sleep(0.01)

    return run
