"""A flat registry of named actors with request-reply and shutdown."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from mindsync.core.actor import ActorCell
from mindsync.core.behavior import Behavior
from mindsync.core.mailbox import Mailbox
from mindsync.core.ref import ActorRef, LocalActorRef


class ActorSystem:
    """Owns every actor of one process, keyed by a unique name.

    There is no hierarchy and no supervision: a failed actor stays
    registered but invisible to ``lookup`` until ``stop`` removes it.

    Examples
    --------
    >>> async with ActorSystem() as system:
    ...     ref = system.spawn(Behavior.receive(handler), "worker")
    ...     reply = await system.ask(ref, lambda r: Ping(r), timeout=1.0)
    """

    def __init__(self, name: str = "mindsync") -> None:
        self._name = name
        self._cells: dict[str, ActorCell[Any]] = {}
        self._logger = logging.getLogger(f"mindsync.system.{name}")

    @property
    def name(self) -> str:
        return self._name

    async def __aenter__(self) -> ActorSystem:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.shutdown()

    def spawn[M](
        self,
        behavior: Behavior[M],
        name: str,
        *,
        mailbox: Mailbox[M] | None = None,
    ) -> ActorRef[M]:
        if name in self._cells:
            msg = f"Actor '{name}' already exists"
            raise ValueError(msg)
        cell: ActorCell[M] = ActorCell(behavior, name, system=self, mailbox=mailbox)
        self._cells[name] = cell
        cell.start()
        self._logger.debug("Spawned %s", name)
        return cell.ref

    def lookup(self, name: str) -> ActorRef[Any] | None:
        """Return the live actor registered as ``name``, if any."""
        cell = self._cells.get(name)
        return None if cell is None or cell.is_stopped else cell.ref

    async def ask[M, R](
        self,
        ref: ActorRef[M],
        msg_factory: Callable[[ActorRef[R]], M],
        *,
        timeout: float,
    ) -> R:
        """Send ``msg_factory(reply_to)`` to ``ref`` and await the first reply.

        Raises
        ------
        TimeoutError
            If no reply arrives within ``timeout`` seconds.
        """
        reply: asyncio.Future[R] = asyncio.get_running_loop().create_future()

        def resolve(msg: Any) -> None:
            if not reply.done():
                reply.set_result(msg)

        await ref.send(msg_factory(LocalActorRef(id=f"_ask/{id(reply)}", _deliver=resolve)))
        return await asyncio.wait_for(reply, timeout=timeout)

    async def stop(self, name: str) -> bool:
        cell = self._cells.pop(name, None)
        if cell is None:
            return False
        await cell.stop()
        return True

    async def shutdown(self) -> None:
        self._logger.info("Shutting down %d actor(s)", len(self._cells))
        cells, self._cells = list(self._cells.values()), {}
        await asyncio.gather(*(cell.stop() for cell in cells))
