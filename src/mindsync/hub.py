"""SyncHub: the service facade over map actors, the log and broadcasting.

Every mutation of a map goes through that map's actor; the hub only
routes requests, waits for the reply and then fans results out. Fan-out
runs after the actor has answered, so slow sessions never hold up the
next operation on the map.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import replace
from typing import Any

from mindsync.broadcast import (
    Broadcaster,
    ConnectionRegistry,
    InMemoryConnectionRegistry,
    Session,
)
from mindsync.codec import (
    applied_frame,
    decode_frame,
    error_frame,
    operation_from_frame,
    operations_frame,
    result_frame,
    rolled_back_frame,
    snapshot_frame,
    snapshot_request,
    sync_request,
)
from mindsync.config import MindsyncConfig
from mindsync.core.mailbox import Mailbox
from mindsync.core.ref import ActorRef
from mindsync.core.system import ActorSystem
from mindsync.exceptions import InvalidOperationError, MindsyncError
from mindsync.graph.invariants import (
    GraphStats,
    build_adjacency,
    build_reverse_adjacency,
    connected_components,
    find_ancestors,
    find_descendants,
    find_orphans,
    find_roots,
    graph_stats,
)
from mindsync.graph.model import GraphSnapshot, MapInfo
from mindsync.graph.validation import ValidationReport, validate_graph
from mindsync.map_actor import (
    ApplyOperation,
    Failure,
    GetMapInfo,
    GetSnapshot,
    MapMessage,
    RollbackOperation,
    map_actor,
)
from mindsync.oplog import OperationLog, open_operation_log
from mindsync.operations import (
    MergeResult,
    Operation,
    OperationRecord,
    OperationStats,
    RollbackReason,
    RollbackResult,
)

logger = logging.getLogger("mindsync.hub")


class SyncHub:
    """Entry point for clients, transports and administrative tools.

    Map actors are spawned on first use. Use as an async context manager
    so actors are stopped and an owned log is closed on exit.

    Parameters
    ----------
    config : MindsyncConfig | None
        Hub configuration; defaults apply when omitted.
    log : OperationLog | None
        Operation log to use. When omitted one is opened from
        ``config.journal`` and closed with the hub.
    registry : ConnectionRegistry | None
        Session registry used for broadcasting.

    Examples
    --------
    >>> async with SyncHub() as hub:
    ...     result = await hub.submit(operation)
    """

    def __init__(
        self,
        config: MindsyncConfig | None = None,
        *,
        log: OperationLog | None = None,
        registry: ConnectionRegistry | None = None,
    ) -> None:
        self._config = config or MindsyncConfig()
        self._owns_log = log is None
        self._log = log if log is not None else open_operation_log(self._config.journal)
        self._registry = registry if registry is not None else InMemoryConnectionRegistry()
        self._broadcaster = Broadcaster(self._registry)
        self._system = ActorSystem(self._config.system_name)

    @property
    def log(self) -> OperationLog:
        return self._log

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    async def __aenter__(self) -> SyncHub:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._system.shutdown()
        if self._owns_log:
            self._log.close()

    # Map actors

    @staticmethod
    def _actor_name(map_id: str) -> str:
        return f"map/{map_id}"

    async def _map_ref(self, map_id: str) -> ActorRef[MapMessage]:
        name = self._actor_name(map_id)
        ref = self._system.lookup(name)
        if ref is not None:
            return ref
        # A stopped actor keeps its name until it is removed.
        await self._system.stop(name)
        logger.debug("Starting actor for map %s", map_id)
        return self._system.spawn(
            map_actor(
                map_id,
                self._log,
                merge_config=self._config.merge,
                snapshot_every=self._config.journal.snapshot_every,
            ),
            name,
            mailbox=Mailbox(capacity=self._config.mailbox.capacity),
        )

    async def _ask(self, map_id: str, factory: Callable[[ActorRef[Any]], MapMessage]) -> Any:
        ref = await self._map_ref(map_id)
        reply = await self._system.ask(ref, factory, timeout=self._config.sync.ask_timeout)
        if isinstance(reply, Failure):
            if reply.fatal:
                await self._system.stop(self._actor_name(map_id))
            raise reply.error
        return reply

    # Operations

    async def submit(self, operation: Operation, *, origin: str | None = None) -> MergeResult:
        """Merge ``operation`` into its map and broadcast it when accepted.

        The originating session, ``origin`` or else the operation's
        ``session_id``, does not receive the broadcast.
        """
        result: MergeResult = await self._ask(
            operation.map_id, lambda reply_to: ApplyOperation(operation, reply_to)
        )
        if result.accepted:
            await self._broadcaster.publish(
                operation.map_id,
                applied_frame(operation, result),
                exclude=origin or operation.session_id,
            )
        return result

    async def rollback(self, operation_id: str) -> RollbackResult:
        record = await self._log.get(operation_id)
        if record is None:
            return RollbackResult(
                success=False,
                operation_id=operation_id,
                reason=RollbackReason.not_found,
                detail=f"Operation {operation_id} not found",
            )
        result: RollbackResult = await self._ask(
            record.map_id, lambda reply_to: RollbackOperation(operation_id, reply_to)
        )
        if result.success:
            await self._broadcaster.publish(record.map_id, rolled_back_frame(record.map_id, result))
        return result

    async def rollback_many(self, operation_ids: Iterable[str]) -> list[RollbackResult]:
        """Roll back operations one after the other, in the given order."""
        return [await self.rollback(operation_id) for operation_id in operation_ids]

    # Queries

    async def catch_up(self, map_id: str, since: int) -> list[OperationRecord]:
        """Accepted operations with a server sequence after ``since``, ascending."""
        return await self._log.find_since(map_id, since)

    async def snapshot(self, map_id: str) -> GraphSnapshot:
        return await self._ask(map_id, GetSnapshot)

    async def map_info(self, map_id: str) -> MapInfo:
        return await self._ask(map_id, GetMapInfo)

    async def history(
        self, map_id: str, *, limit: int | None = None, offset: int = 0
    ) -> list[OperationRecord]:
        page = limit if limit is not None else self._config.sync.history_page_size
        return await self._log.find_by_map(map_id, page, offset)

    async def conflicts(self, map_id: str, *, limit: int | None = None) -> list[OperationRecord]:
        page = limit if limit is not None else self._config.sync.history_page_size
        return await self._log.find_conflicts(map_id, page)

    async def operation(self, operation_id: str) -> OperationRecord | None:
        return await self._log.get(operation_id)

    async def operation_stats(self, map_id: str) -> OperationStats:
        return await self._log.summarize(map_id)

    async def validate(self, map_id: str) -> ValidationReport:
        snapshot = await self.snapshot(map_id)
        return validate_graph(map_id, snapshot.nodes, snapshot.edges)

    async def graph_stats(self, map_id: str) -> GraphStats:
        snapshot = await self.snapshot(map_id)
        return graph_stats(snapshot.nodes, snapshot.edges)

    async def descendants(self, map_id: str, node_id: str) -> set[str]:
        snapshot = await self.snapshot(map_id)
        return find_descendants(build_adjacency(snapshot.nodes, snapshot.edges), node_id)

    async def ancestors(self, map_id: str, node_id: str) -> set[str]:
        snapshot = await self.snapshot(map_id)
        return find_ancestors(build_reverse_adjacency(snapshot.nodes, snapshot.edges), node_id)

    async def components(self, map_id: str) -> list[list[str]]:
        snapshot = await self.snapshot(map_id)
        adjacency = build_adjacency(snapshot.nodes, snapshot.edges)
        return connected_components(snapshot.nodes, adjacency)

    async def orphans(self, map_id: str) -> list[str]:
        snapshot = await self.snapshot(map_id)
        adjacency = build_adjacency(snapshot.nodes, snapshot.edges)
        roots = find_roots(snapshot.nodes, build_reverse_adjacency(snapshot.nodes, snapshot.edges))
        return find_orphans(snapshot.nodes, adjacency, roots)

    # Sessions

    async def join(self, map_id: str, session: Session) -> GraphSnapshot:
        """Subscribe ``session`` to ``map_id`` and return the current snapshot."""
        snapshot = await self.snapshot(map_id)
        self._registry.join(map_id, session)
        return snapshot

    def leave(self, map_id: str, session_id: str) -> bool:
        return self._registry.leave(map_id, session_id)

    def disconnect(self, session_id: str) -> list[str]:
        maps = self._registry.leave_all(session_id)
        logger.debug("Session %s disconnected from %d map(s)", session_id, len(maps))
        return maps

    async def handle_frame(self, session: Session, data: bytes) -> bytes:
        """Answer one inbound frame from ``session`` with a reply frame."""
        try:
            frame = decode_frame(data)
            match frame["kind"]:
                case "operation":
                    operation = operation_from_frame(frame)
                    if operation.session_id is None:
                        operation = replace(operation, session_id=session.session_id)
                    result = await self.submit(operation, origin=session.session_id)
                    return result_frame(result)
                case "sync":
                    map_id, since = sync_request(frame)
                    return operations_frame(map_id, await self.catch_up(map_id, since))
                case "snapshot":
                    return snapshot_frame(await self.snapshot(snapshot_request(frame)))
                case kind:
                    msg = f"Unknown frame kind '{kind}'"
                    raise InvalidOperationError(msg)
        except InvalidOperationError as exc:
            logger.info("Invalid frame from session %s: %s", session.session_id, exc)
            return error_frame(str(exc))
        except MindsyncError as exc:
            logger.warning("Request from session %s failed: %s", session.session_id, exc)
            return error_frame(str(exc))
