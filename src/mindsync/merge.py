"""Merge engine: admits, applies and logs operations against one map.

The engine is driven by the map's actor, which hands it one operation at
a time, so everything between the admission checks and the state commit
runs without interleaving. Planning is pure: it inspects ``MapState`` and
returns either a rejection or a ``Mutation``. The mutation is appended to
the operation log first and only installed into the state once the
append has succeeded.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any
from uuid import uuid4

from mindsync.clock import ClockOrdering, VectorClock
from mindsync.config import MergeConfig
from mindsync.graph.invariants import detect_cycle, would_create_cycle
from mindsync.graph.model import Edge, Node, NodeStyle, Position, Shape
from mindsync.graph.state import MapState
from mindsync.oplog import OperationLog
from mindsync.operations import (
    EdgeData,
    MergeResult,
    NodeData,
    Operation,
    OperationKind,
    OperationRecord,
    RejectReason,
)

logger = logging.getLogger("mindsync.merge")


@dataclass(frozen=True)
class Mutation:
    """Entity values an accepted operation installs, plus what it replaces."""

    entity: Node | Edge
    payload: dict[str, Any]
    previous_state: dict[str, Any] | None
    nodes: tuple[Node, ...] = ()
    edges: tuple[Edge, ...] = ()
    node_delta: int = 0
    edge_delta: int = 0
    conflict: bool = False


@dataclass(frozen=True)
class Rejection:
    reason: RejectReason
    detail: str
    cycle: list[str] | None = None


class MergeEngine:
    """Decides accept/reject for incoming operations and commits accepted ones.

    Parameters
    ----------
    log : OperationLog
        Where accepted operations are recorded.
    config : MergeConfig | None
        Label limit and defaults for new nodes.
    now : Callable[[], float]
        Timestamp source for log records.
    """

    def __init__(
        self,
        log: OperationLog,
        config: MergeConfig | None = None,
        *,
        now: Callable[[], float] = time.time,
    ) -> None:
        self._log = log
        self._config = config or MergeConfig()
        self._now = now

    async def merge(self, state: MapState, operation: Operation) -> MergeResult:
        """Admit ``operation`` against ``state``.

        Rejections are returned as values. A failing log append raises
        ``StorageError`` and leaves ``state`` untouched.
        """
        if await self._log.get(operation.operation_id) is not None:
            return self._reject(
                operation, RejectReason.already_exists,
                f"Operation {operation.operation_id} was already applied",
            )

        ordering = operation.clock.compare(state.clock)
        if ordering is ClockOrdering.before:
            return self._reject(
                operation, RejectReason.stale,
                f"Operation clock {operation.clock!r} is older than map clock {state.clock!r}",
            )

        mutation = self.plan(state, operation, map_ordering=ordering)
        if isinstance(mutation, Rejection):
            cycle = tuple(mutation.cycle) if mutation.cycle is not None else None
            return self._reject(operation, mutation.reason, mutation.detail, cycle=cycle)

        sequence = await self._log.next_sequence(state.map_id)
        record = OperationRecord(
            operation_id=operation.operation_id,
            map_id=state.map_id,
            kind=operation.kind,
            entity_id=mutation.entity.id,
            clock=operation.clock,
            client_id=operation.client_id,
            session_id=operation.session_id,
            client_sequence=operation.clock.get(operation.client_id),
            sequence=sequence,
            payload=mutation.payload,
            previous_state=mutation.previous_state,
            timestamp=self._now(),
            conflict=mutation.conflict,
        )
        await self._log.append(record)

        self.commit(state, operation.clock, mutation, sequence)
        logger.debug(
            "Applied %s %s on map %s at sequence %d (clock %r)",
            operation.kind.value, mutation.entity.id, state.map_id, sequence, state.clock,
        )
        return MergeResult(
            accepted=True,
            operation_id=operation.operation_id,
            map_id=state.map_id,
            merged_clock=VectorClock.from_dict(state.clock.to_dict()),
            entity=mutation.entity,
            sequence=sequence,
            conflict=mutation.conflict,
        )

    def replay(self, state: MapState, record: OperationRecord) -> bool:
        """Re-apply a logged operation during recovery, without logging it again."""
        operation = record.to_operation()
        mutation = self.plan(state, operation, map_ordering=operation.clock.compare(state.clock))
        if isinstance(mutation, Rejection):
            logger.warning(
                "Cannot replay %s on map %s: %s",
                record.operation_id, state.map_id, mutation.detail,
            )
            return False
        self.commit(state, record.clock, mutation, record.sequence)
        return True

    @staticmethod
    def commit(state: MapState, clock: VectorClock, mutation: Mutation, sequence: int) -> None:
        state.apply(nodes=mutation.nodes, edges=mutation.edges)
        state.clock = state.clock.merge(clock)
        state.version += 1
        state.stats.node_count += mutation.node_delta
        state.stats.edge_count += mutation.edge_delta
        state.stats.total_operations += 1
        state.last_sequence = max(state.last_sequence, sequence)

    def _reject(
        self,
        operation: Operation,
        reason: RejectReason,
        detail: str,
        *,
        cycle: tuple[str, ...] | None = None,
    ) -> MergeResult:
        logger.info(
            "Rejected %s %s on map %s: %s (%s)",
            operation.kind.value, operation.operation_id, operation.map_id, reason.value, detail,
        )
        return MergeResult.rejected(operation, reason, detail, cycle=cycle)

    # Planning

    def plan(
        self,
        state: MapState,
        operation: Operation,
        *,
        map_ordering: ClockOrdering = ClockOrdering.after,
    ) -> Mutation | Rejection:
        """Check ``operation`` against ``state`` and build its mutation.

        Nothing is changed here; a ``Rejection`` says why the operation
        must not be applied.
        """
        concurrent = map_ordering is ClockOrdering.concurrent
        match operation.kind, operation.data:
            case OperationKind.ADD_NODE, NodeData() as data:
                return self._add_node(state, operation, data, concurrent)
            case OperationKind.UPDATE_NODE, NodeData() as data:
                return self._update_node(state, operation, data, concurrent, move=False)
            case OperationKind.MOVE_NODE, NodeData() as data:
                return self._update_node(state, operation, data, concurrent, move=True)
            case OperationKind.DELETE_NODE, NodeData() as data:
                return self._delete_node(state, operation, data, concurrent)
            case OperationKind.ADD_EDGE, EdgeData() as data:
                return self._add_edge(state, operation, data, concurrent)
            case OperationKind.DELETE_EDGE, EdgeData() as data:
                return self._delete_edge(state, operation, data, concurrent)
            case kind, data:
                msg = f"{kind.value} does not take {type(data).__name__}"
                raise TypeError(msg)

    def _check_node_data(self, data: NodeData) -> Rejection | None:
        if data.label is not None and len(data.label) > self._config.max_label_length:
            return Rejection(
                RejectReason.content_too_long,
                f"Label has {len(data.label)} characters, limit is {self._config.max_label_length}",
            )
        if data.position is not None and not data.position.is_valid():
            return Rejection(RejectReason.invalid_position, f"Invalid position {data.position}")
        return None

    def _add_node(
        self, state: MapState, operation: Operation, data: NodeData, concurrent: bool
    ) -> Mutation | Rejection:
        invalid = self._check_node_data(data)
        if invalid is not None:
            return invalid
        node_id = data.node_id or f"node_{uuid4().hex}"
        existing = state.node(node_id)
        if existing is not None and not existing.deleted:
            return Rejection(RejectReason.already_exists, f"Node {node_id} already exists")

        node = Node(
            id=node_id,
            map_id=state.map_id,
            label=data.label if data.label is not None else self._config.default_label,
            position=data.position or Position(),
            style=NodeStyle(
                color=data.color or self._config.default_color,
                shape=data.shape or Shape(self._config.default_shape),
            ),
            clock=operation.clock,
            created_by=operation.client_id,
            last_modified_by=operation.client_id,
            version=existing.version + 1 if existing is not None else 1,
        )
        return Mutation(
            entity=node,
            payload=replace(
                data,
                node_id=node_id,
                label=node.label,
                position=node.position,
                color=node.style.color,
                shape=node.style.shape,
            ).to_dict(),
            previous_state=None,
            nodes=(node,),
            node_delta=1,
            conflict=concurrent,
        )

    def _update_node(
        self,
        state: MapState,
        operation: Operation,
        data: NodeData,
        concurrent: bool,
        *,
        move: bool,
    ) -> Mutation | Rejection:
        if move and data.position is None:
            return Rejection(RejectReason.invalid_position, "MOVE_NODE without a position")
        invalid = self._check_node_data(data)
        if invalid is not None:
            return invalid
        node = state.active_node(data.node_id) if data.node_id else None
        if node is None:
            return Rejection(RejectReason.not_found, f"Node {data.node_id} not found")

        # Whole-record last-writer-wins: ties favour the incoming write.
        ordering = operation.clock.compare(node.clock)
        if ordering is ClockOrdering.before:
            return Rejection(
                RejectReason.stale,
                f"Node {node.id} was already updated by a newer write ({node.clock!r})",
            )

        if move:
            data = NodeData(node_id=node.id, position=data.position)
        style = NodeStyle(
            color=data.color if data.color is not None else node.style.color,
            shape=data.shape if data.shape is not None else node.style.shape,
        )
        updated = replace(
            node,
            label=data.label if data.label is not None else node.label,
            position=data.position if data.position is not None else node.position,
            style=style,
            clock=node.clock.merge(operation.clock),
            last_modified_by=operation.client_id,
            version=node.version + 1,
        )
        return Mutation(
            entity=updated,
            payload=data.to_dict(),
            previous_state=node.to_dict(),
            nodes=(updated,),
            conflict=concurrent or ordering is ClockOrdering.concurrent,
        )

    def _delete_node(
        self, state: MapState, operation: Operation, data: NodeData, concurrent: bool
    ) -> Mutation | Rejection:
        node = state.active_node(data.node_id) if data.node_id else None
        if node is None:
            return Rejection(RejectReason.not_found, f"Node {data.node_id} not found")

        incident = state.incident_edges(node.id)
        deleted = replace(
            node,
            deleted=True,
            clock=node.clock.merge(operation.clock),
            last_modified_by=operation.client_id,
            version=node.version + 1,
        )
        cascaded = tuple(
            replace(
                edge,
                deleted=True,
                clock=edge.clock.merge(operation.clock),
                last_modified_by=operation.client_id,
                version=edge.version + 1,
            )
            for edge in incident
        )
        previous = node.to_dict()
        previous["incident_edges"] = [e.to_dict() for e in incident]
        return Mutation(
            entity=deleted,
            payload=NodeData(node_id=node.id).to_dict(),
            previous_state=previous,
            nodes=(deleted,),
            edges=cascaded,
            node_delta=-1,
            edge_delta=-len(cascaded),
            conflict=concurrent,
        )

    def _add_edge(
        self, state: MapState, operation: Operation, data: EdgeData, concurrent: bool
    ) -> Mutation | Rejection:
        source, target = data.source, data.target
        for endpoint in (source, target):
            if endpoint is None or state.active_node(endpoint) is None:
                return Rejection(RejectReason.not_found, f"Node {endpoint} not found")
        if source == target:
            return Rejection(RejectReason.self_loop, f"Edge from {source} to itself")

        duplicate = state.edge_between(source, target)
        if duplicate is not None:
            return Rejection(
                RejectReason.duplicate_edge,
                f"Edge {duplicate.id} already connects {source} and {target}",
            )

        edge_id = data.edge_id or f"edge_{uuid4().hex}"
        existing = state.edge(edge_id)
        if existing is not None and not existing.deleted:
            return Rejection(RejectReason.already_exists, f"Edge {edge_id} already exists")

        if would_create_cycle(state.children, source, target, reverse_adjacency=state.parents):
            candidate = {node_id: list(children) for node_id, children in state.children.items()}
            candidate[source].append(target)
            cycle = detect_cycle(candidate, start=target)
            return Rejection(
                RejectReason.would_create_cycle,
                f"Edge {source} -> {target} would close a cycle",
                cycle=cycle,
            )

        edge = Edge(
            id=edge_id,
            map_id=state.map_id,
            source=source,
            target=target,
            clock=operation.clock,
            created_by=operation.client_id,
            last_modified_by=operation.client_id,
            version=existing.version + 1 if existing is not None else 1,
        )
        return Mutation(
            entity=edge,
            payload=EdgeData(edge_id=edge_id, source=source, target=target).to_dict(),
            previous_state=None,
            edges=(edge,),
            edge_delta=1,
            conflict=concurrent,
        )

    def _delete_edge(
        self, state: MapState, operation: Operation, data: EdgeData, concurrent: bool
    ) -> Mutation | Rejection:
        if data.edge_id is not None:
            edge = state.active_edge(data.edge_id)
        elif data.source is not None and data.target is not None:
            edge = state.edge_between(data.source, data.target)
        else:
            edge = None
        if edge is None:
            missing = data.edge_id or f"{data.source} -> {data.target}"
            return Rejection(RejectReason.not_found, f"Edge {missing} not found")

        deleted = replace(
            edge,
            deleted=True,
            clock=edge.clock.merge(operation.clock),
            last_modified_by=operation.client_id,
            version=edge.version + 1,
        )
        return Mutation(
            entity=deleted,
            payload=EdgeData(edge_id=edge.id, source=edge.source, target=edge.target).to_dict(),
            previous_state=edge.to_dict(),
            edges=(deleted,),
            edge_delta=-1,
            conflict=concurrent,
        )
