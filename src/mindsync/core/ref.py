"""Typed actor references.

``tell`` enqueues without waiting; ``send`` waits for mailbox room when the
target mailbox is bounded.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

type ActorId = str


class ActorRef[M](Protocol):
    """Where messages for one actor are sent."""

    @property
    def id(self) -> ActorId: ...

    def tell(self, msg: M) -> None: ...

    async def send(self, msg: M) -> None: ...


@dataclass(frozen=True)
class LocalActorRef[M]:
    """Reference backed by the receiving cell's enqueue callbacks."""

    id: ActorId
    _deliver: Callable[[Any], None]
    _deliver_async: Callable[[Any], Awaitable[None]] | None = None

    def tell(self, msg: M) -> None:
        self._deliver(msg)

    async def send(self, msg: M) -> None:
        if self._deliver_async is None:
            self._deliver(msg)
            return
        await self._deliver_async(msg)
