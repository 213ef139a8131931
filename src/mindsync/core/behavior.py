"""Behaviors describe what an actor does with its next message.

A behavior is either a message handler, a one-shot setup step that yields
the real handler, or a marker telling the running cell to keep its handler
or to stop.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from mindsync.core.actor import ActorContext


class Signal(Enum):
    receive = auto()
    setup = auto()
    same = auto()
    stopped = auto()


type Handler[M] = Callable[[ActorContext[M], M], Awaitable[Behavior[M]]]
type SetupFactory[M] = Callable[[ActorContext[M]], Awaitable[Behavior[M]]]


@dataclass(frozen=True)
class Behavior[M]:
    """Actor behavior.

    Build one with the static constructors rather than directly. ``fn`` is
    the handler for ``Signal.receive``, the factory for ``Signal.setup``
    and ``None`` for the two markers.

    Examples
    --------
    >>> async def receive(ctx, msg):
    ...     return Behavior.same()
    >>> Behavior.receive(receive).signal
    <Signal.receive: 1>
    """

    signal: Signal
    fn: Callable[..., Awaitable[Behavior[M]]] | None = None

    @staticmethod
    def receive[T](handler: Handler[T]) -> Behavior[T]:
        return Behavior(Signal.receive, handler)

    @staticmethod
    def setup[T](factory: SetupFactory[T]) -> Behavior[T]:
        return Behavior(Signal.setup, factory)

    @staticmethod
    def same() -> Behavior[Any]:
        return _SAME

    @staticmethod
    def stopped() -> Behavior[Any]:
        return _STOPPED


_SAME: Behavior[Any] = Behavior(Signal.same)
_STOPPED: Behavior[Any] = Behavior(Signal.stopped)
