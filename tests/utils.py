"""Builders shared by the mindsync tests."""

from __future__ import annotations

from dataclasses import replace

from mindsync.clock import VectorClock
from mindsync.graph.model import Edge, Node, NodeStyle, Position, Shape
from mindsync.operations import (
    EdgeData,
    NodeData,
    Operation,
    OperationData,
    OperationKind,
    OperationRecord,
)


def vc(**entries: int) -> VectorClock:
    return VectorClock(dict(entries))


def node(node_id: str, *, map_id: str = "m1", deleted: bool = False) -> Node:
    return Node(
        id=node_id,
        map_id=map_id,
        label=node_id,
        position=Position(),
        style=NodeStyle(),
        clock=VectorClock(),
        created_by="test",
        last_modified_by="test",
        deleted=deleted,
    )


def edge(
    edge_id: str, source: str, target: str, *, map_id: str = "m1", deleted: bool = False
) -> Edge:
    return Edge(
        id=edge_id,
        map_id=map_id,
        source=source,
        target=target,
        clock=VectorClock(),
        created_by="test",
        last_modified_by="test",
        deleted=deleted,
    )


def record(
    sequence: int,
    *,
    map_id: str = "m1",
    kind: OperationKind = OperationKind.ADD_NODE,
    entity_id: str | None = None,
    conflict: bool = False,
    operation_id: str | None = None,
) -> OperationRecord:
    entity_id = entity_id or f"n{sequence}"
    return OperationRecord(
        operation_id=operation_id or f"{map_id}-op-{sequence}",
        map_id=map_id,
        kind=kind,
        entity_id=entity_id,
        clock=vc(alice=sequence),
        client_id="alice",
        sequence=sequence,
        payload=NodeData(node_id=entity_id, label="x").to_dict(),
        previous_state=None,
        timestamp=float(sequence),
        conflict=conflict,
    )


class Author:
    """A client issuing operations with its own vector clock.

    Every issued operation increments the author's counter; ``observe``
    folds in what the author has learnt from the server.
    """

    def __init__(self, client_id: str, map_id: str = "m1", session_id: str | None = None) -> None:
        self.client_id = client_id
        self.map_id = map_id
        self.session_id = session_id
        self.clock = VectorClock()

    def observe(self, clock: VectorClock | None) -> None:
        if clock is not None:
            self.clock = self.clock.merge(clock)

    def issue(
        self, kind: OperationKind, data: OperationData, *, operation_id: str | None = None
    ) -> Operation:
        self.clock = self.clock.increment(self.client_id)
        op = Operation(
            kind=kind,
            map_id=self.map_id,
            client_id=self.client_id,
            clock=self.clock,
            data=data,
            session_id=self.session_id,
        )
        if operation_id is not None:
            op = replace(op, operation_id=operation_id)
        return op

    def add_node(
        self,
        node_id: str | None,
        label: str | None = None,
        *,
        position: Position | None = None,
        color: str | None = None,
        shape: Shape | None = None,
    ) -> Operation:
        return self.issue(
            OperationKind.ADD_NODE,
            NodeData(node_id=node_id, label=label, position=position, color=color, shape=shape),
        )

    def update_node(
        self,
        node_id: str,
        label: str | None = None,
        *,
        position: Position | None = None,
        color: str | None = None,
        shape: Shape | None = None,
    ) -> Operation:
        return self.issue(
            OperationKind.UPDATE_NODE,
            NodeData(node_id=node_id, label=label, position=position, color=color, shape=shape),
        )

    def move_node(self, node_id: str, x: float, y: float) -> Operation:
        return self.issue(
            OperationKind.MOVE_NODE, NodeData(node_id=node_id, position=Position(x, y))
        )

    def delete_node(self, node_id: str) -> Operation:
        return self.issue(OperationKind.DELETE_NODE, NodeData(node_id=node_id))

    def add_edge(self, source: str, target: str, edge_id: str | None = None) -> Operation:
        return self.issue(
            OperationKind.ADD_EDGE, EdgeData(edge_id=edge_id, source=source, target=target)
        )

    def delete_edge(
        self,
        edge_id: str | None = None,
        *,
        source: str | None = None,
        target: str | None = None,
    ) -> Operation:
        return self.issue(
            OperationKind.DELETE_EDGE, EdgeData(edge_id=edge_id, source=source, target=target)
        )
