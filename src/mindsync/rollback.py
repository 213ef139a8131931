"""Rollback engine: reverses one logged operation against a map.

Reversal only needs the log record (``previous_state`` and the resolved
payload), never external state. Rollback is a new event: it bumps the map
version and leaves the map clock alone. Later operations on the same
entity are reported as dependents and left as they are.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, replace

from mindsync.graph.invariants import would_create_cycle
from mindsync.graph.model import Edge, Node, NodeStyle, Position, Shape
from mindsync.graph.state import MapState
from mindsync.oplog import OperationLog
from mindsync.operations import (
    OperationKind,
    OperationRecord,
    OperationStatus,
    RollbackReason,
    RollbackResult,
)

logger = logging.getLogger("mindsync.rollback")


@dataclass(frozen=True)
class Reversal:
    entity: Node | Edge | None
    nodes: tuple[Node, ...] = ()
    edges: tuple[Edge, ...] = ()
    node_delta: int = 0
    edge_delta: int = 0


@dataclass(frozen=True)
class Refusal:
    reason: RollbackReason
    detail: str


def _restored_fields(node: Node, previous: dict, changed: dict) -> Node:
    """``node`` with the fields an update changed put back to ``previous``."""
    style = NodeStyle.from_dict(previous["style"])
    return replace(
        node,
        label=previous["label"] if changed.get("label") is not None else node.label,
        position=(
            Position.from_dict(previous["position"])
            if changed.get("position") is not None else node.position
        ),
        style=NodeStyle(
            color=style.color if changed.get("color") is not None else node.style.color,
            shape=style.shape if changed.get("shape") is not None else node.style.shape,
        ),
    )


class RollbackEngine:
    """Reverses applied operations and marks them ``rolled_back``.

    Parameters
    ----------
    log : OperationLog
        The log holding the records to reverse.
    now : Callable[[], float]
        Timestamp source for ``rolled_back_at``.
    """

    def __init__(self, log: OperationLog, *, now: Callable[[], float] = time.time) -> None:
        self._log = log
        self._now = now

    async def rollback(self, state: MapState, operation_id: str) -> RollbackResult:
        record = await self._log.get(operation_id)
        if record is None or record.map_id != state.map_id:
            return self._refuse(operation_id, Refusal(
                RollbackReason.not_found, f"Operation {operation_id} not found",
            ))
        if record.status is OperationStatus.rolled_back:
            return self._refuse(operation_id, Refusal(
                RollbackReason.already_rolled_back,
                f"Operation {operation_id} was already rolled back",
            ))

        reversal = self.plan(state, record)
        if isinstance(reversal, Refusal):
            return self._refuse(operation_id, reversal)

        dependents = tuple(
            r.operation_id
            for r in await self._log.find_by_entity(state.map_id, record.entity_id)
            if r.sequence > record.sequence and r.status is OperationStatus.applied
        )
        updated = await self._log.mark_rolled_back(operation_id, self._now())

        state.apply(nodes=reversal.nodes, edges=reversal.edges)
        state.version += 1
        state.stats.node_count += reversal.node_delta
        state.stats.edge_count += reversal.edge_delta
        logger.info(
            "Rolled back %s %s on map %s (%d dependent operation(s) left applied)",
            record.kind.value, record.entity_id, state.map_id, len(dependents),
        )
        return RollbackResult(
            success=True,
            operation_id=operation_id,
            operation=updated or replace(record, status=OperationStatus.rolled_back),
            entity=reversal.entity,
            dependents=dependents,
        )

    def _refuse(self, operation_id: str, refusal: Refusal) -> RollbackResult:
        logger.info("Cannot roll back %s: %s", operation_id, refusal.detail)
        return RollbackResult(
            success=False,
            operation_id=operation_id,
            reason=refusal.reason,
            detail=refusal.detail,
        )

    def plan(self, state: MapState, record: OperationRecord) -> Reversal | Refusal:
        match record.kind:
            case OperationKind.ADD_NODE:
                return self._undo_add_node(state, record)
            case OperationKind.UPDATE_NODE | OperationKind.MOVE_NODE:
                return self._undo_update_node(state, record)
            case OperationKind.DELETE_NODE:
                return self._undo_delete_node(state, record)
            case OperationKind.ADD_EDGE:
                return self._undo_add_edge(state, record)
            case OperationKind.DELETE_EDGE:
                return self._undo_delete_edge(state, record)

    def _undo_add_node(self, state: MapState, record: OperationRecord) -> Reversal | Refusal:
        node = state.node(record.entity_id)
        if node is None:
            return Refusal(RollbackReason.not_found, f"Node {record.entity_id} not found")
        if node.deleted:
            return Reversal(entity=node)

        # Edges attached after the add would otherwise dangle.
        incident = tuple(
            replace(e, deleted=True, version=e.version + 1)
            for e in state.incident_edges(node.id)
        )
        deleted = replace(node, deleted=True, version=node.version + 1)
        return Reversal(
            entity=deleted,
            nodes=(deleted,),
            edges=incident,
            node_delta=-1,
            edge_delta=-len(incident),
        )

    def _undo_update_node(self, state: MapState, record: OperationRecord) -> Reversal | Refusal:
        node = state.node(record.entity_id)
        if node is None or record.previous_state is None:
            return Refusal(RollbackReason.not_found, f"Node {record.entity_id} not found")
        restored = replace(
            _restored_fields(node, record.previous_state, record.payload),
            version=node.version + 1,
        )
        return Reversal(entity=restored, nodes=(restored,))

    def _undo_delete_node(self, state: MapState, record: OperationRecord) -> Reversal | Refusal:
        node = state.node(record.entity_id)
        previous = record.previous_state
        if node is None or previous is None:
            return Refusal(RollbackReason.not_found, f"Node {record.entity_id} not found")
        if not node.deleted:
            return Refusal(RollbackReason.already_exists, f"Node {node.id} is active again")

        restored = replace(
            node,
            label=previous["label"],
            position=Position.from_dict(previous["position"]),
            style=NodeStyle(
                color=previous["style"]["color"],
                shape=Shape(previous["style"]["shape"]),
            ),
            deleted=False,
            version=node.version + 1,
        )

        # Cascaded edges come back only where they keep the graph valid.
        children = {k: list(v) for k, v in state.children.items()}
        children.setdefault(node.id, [])
        active = set(children)
        pairs: set[frozenset[str]] = {e.pair for e in state.active_edges()}
        edges: list[Edge] = []
        for data in previous.get("incident_edges", []):
            edge = state.edge(data["id"])
            if edge is None or not edge.deleted:
                continue
            if edge.source not in active or edge.target not in active or edge.pair in pairs:
                logger.info("Leaving edge %s deleted while restoring node %s", edge.id, node.id)
                continue
            if would_create_cycle(children, edge.source, edge.target):
                logger.info("Leaving edge %s deleted: it would close a cycle", edge.id)
                continue
            children[edge.source].append(edge.target)
            pairs.add(edge.pair)
            edges.append(replace(edge, deleted=False, version=edge.version + 1))

        return Reversal(
            entity=restored,
            nodes=(restored,),
            edges=tuple(edges),
            node_delta=1,
            edge_delta=len(edges),
        )

    def _undo_add_edge(self, state: MapState, record: OperationRecord) -> Reversal | Refusal:
        edge = state.edge(record.entity_id)
        if edge is None:
            return Refusal(RollbackReason.not_found, f"Edge {record.entity_id} not found")
        if edge.deleted:
            return Reversal(entity=edge)
        deleted = replace(edge, deleted=True, version=edge.version + 1)
        return Reversal(entity=deleted, edges=(deleted,), edge_delta=-1)

    def _undo_delete_edge(self, state: MapState, record: OperationRecord) -> Reversal | Refusal:
        edge = state.edge(record.entity_id)
        if edge is None:
            return Refusal(RollbackReason.not_found, f"Edge {record.entity_id} not found")
        if not edge.deleted:
            return Refusal(RollbackReason.already_exists, f"Edge {edge.id} is active again")
        for endpoint in (edge.source, edge.target):
            if state.active_node(endpoint) is None:
                return Refusal(RollbackReason.not_found, f"Node {endpoint} not found")
        if edge.source == edge.target:
            return Refusal(RollbackReason.self_loop, f"Edge {edge.id} is a self-loop")
        if state.edge_between(edge.source, edge.target) is not None:
            return Refusal(
                RollbackReason.duplicate_edge,
                f"Another edge already connects {edge.source} and {edge.target}",
            )
        if would_create_cycle(
            state.children, edge.source, edge.target, reverse_adjacency=state.parents
        ):
            return Refusal(
                RollbackReason.would_create_cycle,
                f"Restoring edge {edge.id} would close a cycle",
            )
        restored = replace(edge, deleted=False, version=edge.version + 1)
        return Reversal(entity=restored, edges=(restored,), edge_delta=1)
