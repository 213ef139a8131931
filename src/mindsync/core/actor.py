"""The cell that runs one actor.

A cell drains its mailbox one message at a time, so a behavior never
observes another message to the same actor between two of its own awaits.
An exception escaping a handler ends the cell; the owner decides whether
to spawn a replacement.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, TYPE_CHECKING

from mindsync.core.behavior import Behavior, Signal
from mindsync.core.mailbox import Mailbox
from mindsync.core.ref import ActorId, ActorRef, LocalActorRef

if TYPE_CHECKING:
    from mindsync.core.system import ActorSystem


class ActorContext[M]:
    """What a behavior sees of the cell running it."""

    __slots__ = ("_ref", "_system", "_log")

    def __init__(self, ref: ActorRef[M], system: ActorSystem, log: logging.Logger) -> None:
        self._ref = ref
        self._system = system
        self._log = log

    @property
    def self(self) -> ActorRef[M]:
        return self._ref

    @property
    def system(self) -> ActorSystem:
        return self._system

    @property
    def log(self) -> logging.Logger:
        return self._log


class ActorCell[M]:
    def __init__(
        self,
        behavior: Behavior[M],
        id: ActorId,
        *,
        system: ActorSystem,
        mailbox: Mailbox[Any] | None = None,
    ) -> None:
        self._id = id
        self._initial = behavior
        self._mailbox: Mailbox[Any] = mailbox or Mailbox()
        self._logger = logging.getLogger(f"mindsync.actor.{id}")
        self._handler: Behavior[M] | None = None
        self._stopped = False
        self._task: asyncio.Task[None] | None = None
        self._ref: ActorRef[M] = LocalActorRef(
            id=id, _deliver=self._enqueue, _deliver_async=self._enqueue_waiting
        )
        self._ctx = ActorContext(self._ref, system, self._logger)

    @property
    def id(self) -> ActorId:
        return self._id

    @property
    def ref(self) -> ActorRef[M]:
        return self._ref

    @property
    def is_stopped(self) -> bool:
        return self._stopped

    def _enqueue(self, msg: M) -> None:
        if self._stopped:
            self._logger.warning("Dropping %s: actor is stopped", type(msg).__name__)
            return
        self._mailbox.put(msg)

    async def _enqueue_waiting(self, msg: M) -> None:
        if self._stopped:
            self._logger.warning("Dropping %s: actor is stopped", type(msg).__name__)
            return
        await self._mailbox.put_async(msg)

    def start(self) -> None:
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"actor:{self._id}"
        )

    async def _become(self, behavior: Behavior[M]) -> None:
        while behavior.signal is Signal.setup:
            if behavior.fn is None:
                msg = f"Actor {self._id} got a setup behavior without a factory"
                raise TypeError(msg)
            behavior = await behavior.fn(self._ctx)
        match behavior.signal:
            case Signal.receive if behavior.fn is None:
                msg = f"Actor {self._id} got a receive behavior without a handler"
                raise TypeError(msg)
            case Signal.receive:
                self._handler = behavior
            case Signal.stopped:
                self._logger.debug("Stopping")
                self._stopped = True
            case Signal.same if self._handler is None:
                msg = f"Actor {self._id} has no behavior to keep"
                raise TypeError(msg)
            case Signal.same:
                pass

    async def _run(self) -> None:
        try:
            await self._become(self._initial)
        except Exception:
            self._logger.exception("Actor %s failed during setup", self._id)
            self._stopped = True
            return

        while not self._stopped:
            msg = await self._mailbox.get()
            if self._stopped:
                break
            handler = self._handler
            if handler is None or handler.fn is None:
                self._stopped = True
                break
            try:
                await self._become(await handler.fn(self._ctx, msg))
            except Exception:
                self._logger.exception(
                    "Actor %s failed on %s", self._id, type(msg).__name__
                )
                self._stopped = True

    async def stop(self) -> None:
        self._stopped = True
        if self._task is None or self._task.done():
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
