"""Actor mailbox.

Unbounded by default. With a capacity set, ``put_async`` waits for room,
which is the only backpressure a hot map exerts on its submitters.
"""

from __future__ import annotations

import asyncio


class Mailbox[M]:
    """FIFO queue feeding one actor cell.

    Parameters
    ----------
    capacity : int | None
        Messages held before ``put`` fails and ``put_async`` waits.
        ``None`` never blocks.

    Examples
    --------
    >>> box = Mailbox[int](capacity=2)
    >>> box.put(1)
    >>> box.size()
    1
    """

    def __init__(self, capacity: int | None = None) -> None:
        if capacity is None:
            self._queue: asyncio.Queue[M] = asyncio.Queue()
        else:
            self._queue = asyncio.Queue(maxsize=capacity)
        self._capacity = capacity

    @property
    def capacity(self) -> int | None:
        return self._capacity

    def put(self, msg: M) -> None:
        """Enqueue without waiting.

        Raises
        ------
        asyncio.QueueFull
            When a bounded mailbox is at capacity.
        """
        self._queue.put_nowait(msg)

    async def put_async(self, msg: M) -> None:
        """Enqueue, waiting while a bounded mailbox is full."""
        await self._queue.put(msg)

    async def get(self) -> M:
        return await self._queue.get()

    def size(self) -> int:
        return self._queue.qsize()

    def empty(self) -> bool:
        return self._queue.empty()
