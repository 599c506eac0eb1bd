"""
Per-service execution context

Everything a handler invocation needs to send further messages is reachable from
one ServiceContext, passed explicitly to the dispatch engine and the incoming
facades.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, List

from meshcall.adapters.adapter_interface import TransportAdapterInterface
from meshcall.config import ServiceConfig
from meshcall.identity import ServiceIdentity

logger = logging.getLogger(__name__)


class InflightTasks:
    """Tracks the dispatch tasks of one service so shutdown can drain them"""

    def __init__(self):
        self._tasks = set()

    def __len__(self):
        return sum(1 for task in self._tasks if not task.done())

    def spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Dispatch task failed: {error!r}")

    async def drain(self, timeout: float) -> int:
        """Wait up to ``timeout`` seconds for in-flight tasks, then cancel the rest

        Returns:
            int: Number of cancelled tasks
        """
        pending = [task for task in self._tasks if not task.done()]
        if not pending:
            return 0

        if timeout > 0:
            _, still_pending = await asyncio.wait(pending, timeout=timeout)
        else:
            still_pending = set(pending)

        for task in still_pending:
            task.cancel()
        if still_pending:
            await asyncio.gather(*still_pending, return_exceptions=True)
            logger.warning(f"Cancelled {len(still_pending)} in-flight handler(s) on shutdown")
        return len(still_pending)


@dataclass
class ServiceContext:
    identity: ServiceIdentity
    config: ServiceConfig
    transport: TransportAdapterInterface
    tasks: InflightTasks = field(default_factory=InflightTasks)
    middleware: List[Callable[..., Any]] = field(default_factory=list)

    @property
    def full_name(self) -> str:
        return self.identity.full_name
