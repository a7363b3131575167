# farmbasket/services/state_store.py
from __future__ import annotations

import asyncio
import functools
from typing import Callable, Generic, List, Optional, TypeVar

from farmbasket.errors import OrderFlowError
from farmbasket.models.buyer.state_models import BuyerState

T = TypeVar("T")

_CLOSED = object()


class Subscription(Generic[T]):
    """
    Async iterator over published values.
    Starts with the latest value, then yields every publish in order.
    """

    def __init__(self, channel: "Broadcast[T]", queue: asyncio.Queue):
        self._channel = channel
        self._queue = queue
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self) -> T:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def get_nowait(self) -> Optional[T]:
        """Latest queued value without waiting, or None when nothing is pending."""
        if self._queue.empty():
            return None
        item = self._queue.get_nowait()
        return None if item is _CLOSED else item

    def close(self):
        if not self.closed:
            self.closed = True
            self._channel._detach(self._queue)
            self._queue.put_nowait(_CLOSED)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.close()


class Broadcast(Generic[T]):
    """Multicast channel that replays the last value to late subscribers."""

    def __init__(self, initial: T):
        self._value = initial
        self._queues: List[asyncio.Queue] = []

    @property
    def value(self) -> T:
        return self._value

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)

    def publish(self, value: T):
        self._value = value
        for q in list(self._queues):
            q.put_nowait(value)

    def subscribe(self) -> Subscription[T]:
        q: asyncio.Queue = asyncio.Queue()
        q.put_nowait(self._value)
        self._queues.append(q)
        return Subscription(self, q)

    def _detach(self, q: asyncio.Queue):
        if q in self._queues:
            self._queues.remove(q)


class StateStore(Broadcast[BuyerState]):
    """
    Single owner of a session's BuyerState.
    update() reads the current state, computes the next one and publishes it,
    one writer at a time.
    """

    def __init__(self, initial: Optional[BuyerState] = None):
        super().__init__(initial or BuyerState())
        self._lock = asyncio.Lock()

    @property
    def state(self) -> BuyerState:
        return self.value

    async def update(self, fn: Callable[[BuyerState], BuyerState]) -> BuyerState:
        async with self._lock:
            new_state = fn(self._value)
            self.publish(new_state)
            return new_state

    async def patch(self, **fields) -> BuyerState:
        return await self.update(lambda s: s.model_copy(update=fields))

    async def set_error(self, message: Optional[str]) -> BuyerState:
        return await self.patch(error=message)


def records_error(fn):
    """Failed operations leave their message in self.state's error field and re-raise."""

    @functools.wraps(fn)
    async def wrapper(self, *args, **kwargs):
        try:
            return await fn(self, *args, **kwargs)
        except OrderFlowError as e:
            print(f"❌ {fn.__name__}: {e.message}")
            await self.state.set_error(e.message)
            raise

    return wrapper
