"""
Middleware chain for exposed handlers

A middleware is called as ``middleware(request, end)`` and may be sync or async.
It either returns the (possibly modified) request to continue the chain, calls
``end(value)`` to answer right away with ``value``, or raises to answer with an
error. Returning anything else breaks the contract.
"""

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from meshcall.errors import MiddlewareContractError
from meshcall.rpc.incoming import IncomingRequest

Middleware = Callable[[IncomingRequest, Callable[[Any], None]], Any]


@dataclass
class ChainOutcome:
    request: IncomingRequest
    ended: bool = False
    value: Any = None


class _End:
    """``end`` callback handed to one middleware step"""

    def __init__(self):
        self.called = False
        self.value = None
        self._waiter = None

    def __call__(self, value: Any = None) -> None:
        if not self.called:
            self.called = True
            self.value = value
            if self._waiter is not None and not self._waiter.done():
                self._waiter.set_result(None)

    def wait(self) -> asyncio.Future:
        """Future resolved once ``end`` has been called"""
        if self._waiter is None:
            self._waiter = asyncio.get_running_loop().create_future()
            if self.called:
                self._waiter.set_result(None)
        return self._waiter


async def _settle(result: Any, end: _End) -> Any:
    # an async step may call end from a callback and never settle itself
    step = asyncio.ensure_future(result)
    try:
        done, _ = await asyncio.wait({step, end.wait()}, return_when=asyncio.FIRST_COMPLETED)
        if step not in done:
            return None
        if end.called:
            if not step.cancelled():
                step.exception()
            return None
        return step.result()
    finally:
        if not step.done():
            step.cancel()


async def run_chain(chain: Iterable[Middleware], request: IncomingRequest) -> ChainOutcome:
    """Run middleware sequentially, in registration order

    A step that calls ``end`` wins over its own return value, even when the
    awaitable it returned has not settled yet.

    Raises:
        MiddlewareContractError: a middleware returned a non request object
        Exception: whatever a middleware raised
    """
    for middleware in chain:
        end = _End()
        result = middleware(request, end)
        if inspect.isawaitable(result):
            result = await _settle(result, end)

        if end.called:
            return ChainOutcome(request, ended=True, value=end.value)
        if not isinstance(result, IncomingRequest):
            raise MiddlewareContractError()
        request = result

    return ChainOutcome(request)
