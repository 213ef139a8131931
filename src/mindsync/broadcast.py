"""Fan-out of results to the sessions subscribed to a map.

The core never holds sockets: a ``Session`` is anything that can send a
frame, and the ``ConnectionRegistry`` tracks which sessions follow which
map. Delivery failures are logged and do not affect other sessions.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Protocol

logger = logging.getLogger("mindsync.broadcast")


class Session(Protocol):
    """A connected client, as seen by the core."""

    @property
    def session_id(self) -> str: ...

    @property
    def client_id(self) -> str: ...

    async def send(self, frame: bytes) -> None: ...


class ConnectionRegistry(Protocol):
    def join(self, map_id: str, session: Session) -> None: ...

    def leave(self, map_id: str, session_id: str) -> bool: ...

    def leave_all(self, session_id: str) -> list[str]:
        """Remove a session from every map; returns the maps it had joined."""
        ...

    def sessions(self, map_id: str) -> Sequence[Session]: ...


class InMemoryConnectionRegistry:
    """Registry keyed by map id, then session id."""

    def __init__(self) -> None:
        self._maps: dict[str, dict[str, Session]] = {}

    def join(self, map_id: str, session: Session) -> None:
        self._maps.setdefault(map_id, {})[session.session_id] = session
        logger.debug("Session %s joined map %s", session.session_id, map_id)

    def leave(self, map_id: str, session_id: str) -> bool:
        sessions = self._maps.get(map_id)
        if sessions is None or sessions.pop(session_id, None) is None:
            return False
        if not sessions:
            del self._maps[map_id]
        logger.debug("Session %s left map %s", session_id, map_id)
        return True

    def leave_all(self, session_id: str) -> list[str]:
        return [map_id for map_id in list(self._maps) if self.leave(map_id, session_id)]

    def sessions(self, map_id: str) -> Sequence[Session]:
        return list(self._maps.get(map_id, {}).values())


class Broadcaster:
    def __init__(self, registry: ConnectionRegistry) -> None:
        self._registry = registry

    async def publish(
        self, map_id: str, frame: bytes, *, exclude: str | None = None
    ) -> int:
        """Send ``frame`` to every session on ``map_id`` except ``exclude``.

        Returns the number of sessions the frame reached.
        """
        targets = [s for s in self._registry.sessions(map_id) if s.session_id != exclude]
        if not targets:
            return 0

        results = await asyncio.gather(
            *(s.send(frame) for s in targets), return_exceptions=True
        )
        delivered = 0
        for session, result in zip(targets, results, strict=True):
            if isinstance(result, Exception):
                logger.warning(
                    "Delivery to session %s on map %s failed: %s",
                    session.session_id, map_id, result,
                )
            else:
                delivered += 1
        return delivered
