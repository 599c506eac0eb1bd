#!/usr/bin/env python
"""
Echo Server Example

Exposes ``echo.reply`` and ``echo.shout`` and observes the notices published by
the echo client. Needs a NATS server on localhost:4222 (or MESHCALL_SERVERS).
"""

import asyncio
import logging
import os
import signal
import sys

# Add project root directory to Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from meshcall import Service

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def reply(request):
    """Return the request arguments unchanged"""
    logger.info(f"Received echo request tx={request.get_tx()}: {request.get_args()}")
    return request.get_args()


async def shout(request):
    """Upper-case every argument, then announce it in the same transaction"""
    words = [str(arg).upper() for arg in request.get_args()]
    await request.notice(subject="shouted", payload=words)
    return words


def require_caller(request, end):
    """Reject requests carrying no ``caller`` metadata"""
    if not request.get_metadata("caller"):
        raise PermissionError("caller metadata is required")
    return request


def on_greeting(notice):
    logger.info(f"{notice.get_service()} says {notice.get_payload()} (tx={notice.get_tx()})")


def build_service(**options):
    service = Service(name="echo", **options)
    service.expose("reply", reply)
    service.expose("shout", shout, middleware=[require_caller])
    service.observe("echo-client.greeting", on_greeting)
    return service


async def main():
    """Start the echo server and run until interrupted"""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    async with build_service():
        logger.info("Echo server ready, press Ctrl+C to stop")
        await stop.wait()

    logger.info("Server stopped")


if __name__ == "__main__":
    asyncio.run(main())
