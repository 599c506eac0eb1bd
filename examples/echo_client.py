#!/usr/bin/env python
"""
Echo Client Example

Calls the echo server and publishes a greeting notice. With
``MESHCALL_TRANSPORT=memory`` the server runs in the same process, so no NATS
server is needed:

    MESHCALL_TRANSPORT=memory python examples/echo_client.py
"""

import asyncio
import logging
import os
import sys

# Add project root directory to Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from meshcall import RemoteError, Service
from meshcall.errors import TransportError

from echo_server import build_service

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def run_client(client: Service):
    response = await client.request(subject="echo.reply", args=["hello", 42])
    logger.info(f"echo.reply -> {response.get_payload()} (tx={response.get_tx()})")

    response = await client.request(subject="echo.shout", args=["quiet"], metadata={"caller": "demo"})
    logger.info(f"echo.shout -> {response.get_payload()}")

    # rejected by the server middleware
    response = await client.request(subject="echo.shout", args=["quiet"])
    try:
        response.get_payload()
    except RemoteError as e:
        logger.info(f"echo.shout without caller failed with {e.status_code}: {e}")

    # same transaction as the rejected call
    await client.notice(subject="greeting", payload="hi there", parent=response)


async def main():
    """Run the echo client, with an in-process server when using the memory transport"""
    client = Service(name="echo-client")
    server = build_service() if os.environ.get("MESHCALL_TRANSPORT") == "memory" else None

    try:
        if server is not None:
            await server.ready()
        async with client:
            await run_client(client)
            await asyncio.sleep(0.1)
    except TransportError as e:
        logger.error(f"Echo client failed: {str(e)}")
    finally:
        if server is not None:
            await server.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
