"""Bounded notification channel with drop-oldest backpressure."""

import asyncio

from collections import deque
from collections.abc import AsyncIterator
from typing import Generic, TypeVar

T = TypeVar("T")


class SampleChannel(Generic[T]):
    """
    Single-consumer FIFO between the BLE callback and the pipeline.

    Producers never block: when the channel is full the oldest pending item
    is discarded so the consumer always sees the freshest data. Items are
    delivered in the order they were put.

    Example:
        >>> channel = SampleChannel(maxsize=2)
        >>> channel.put_nowait(1); channel.put_nowait(2); channel.put_nowait(3)
        >>> channel.dropped
        1
    """

    def __init__(self, maxsize: int = 256):
        if maxsize < 1:
            raise ValueError(f"maxsize must be positive, got {maxsize}")
        self.maxsize = maxsize
        self._items: deque[T] = deque(maxlen=maxsize)
        self._ready = asyncio.Event()
        self._closed = False
        self.dropped = 0

    def __len__(self) -> int:
        return len(self._items)

    @property
    def closed(self) -> bool:
        return self._closed

    def put_nowait(self, item: T) -> bool:
        """
        Enqueue an item without waiting.

        Returns:
            False if the channel is closed or an older item had to be dropped
        """
        if self._closed:
            return False

        overflow = len(self._items) == self.maxsize
        if overflow:
            self.dropped += 1
        self._items.append(item)
        self._ready.set()
        return not overflow

    async def get(self) -> T | None:
        """Wait for the next item. Returns None once closed and drained."""
        while not self._items:
            if self._closed:
                return None
            self._ready.clear()
            await self._ready.wait()
        return self._items.popleft()

    def close(self) -> None:
        """Stop accepting items and wake the consumer."""
        self._closed = True
        self._ready.set()

    async def __aiter__(self) -> AsyncIterator[T]:
        while True:
            item = await self.get()
            if item is None:
                return
            yield item
