"""Operations, their log records, and the typed results of merge and rollback.

Operation kinds form a closed enum; everything that dispatches on them
matches exhaustively.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import uuid4

from mindsync.clock import VectorClock
from mindsync.graph.model import Edge, Node, Position, Shape


class OperationKind(Enum):
    ADD_NODE = "ADD_NODE"
    UPDATE_NODE = "UPDATE_NODE"
    MOVE_NODE = "MOVE_NODE"
    DELETE_NODE = "DELETE_NODE"
    ADD_EDGE = "ADD_EDGE"
    DELETE_EDGE = "DELETE_EDGE"

    @property
    def entity_kind(self) -> EntityKind:
        match self:
            case (
                OperationKind.ADD_NODE
                | OperationKind.UPDATE_NODE
                | OperationKind.MOVE_NODE
                | OperationKind.DELETE_NODE
            ):
                return EntityKind.node
            case OperationKind.ADD_EDGE | OperationKind.DELETE_EDGE:
                return EntityKind.edge


class EntityKind(Enum):
    node = "node"
    edge = "edge"


class OperationStatus(Enum):
    applied = "applied"
    rolled_back = "rolled_back"


class RejectReason(Enum):
    stale = "stale"
    not_found = "not_found"
    already_exists = "already_exists"
    self_loop = "self_loop"
    duplicate_edge = "duplicate_edge"
    would_create_cycle = "would_create_cycle"
    content_too_long = "content_too_long"
    invalid_position = "invalid_position"


class RollbackReason(Enum):
    not_found = "not_found"
    already_rolled_back = "already_rolled_back"
    already_exists = "already_exists"
    self_loop = "self_loop"
    duplicate_edge = "duplicate_edge"
    would_create_cycle = "would_create_cycle"


@dataclass(frozen=True)
class NodeData:
    node_id: str | None = None
    label: str | None = None
    position: Position | None = None
    color: str | None = None
    shape: Shape | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_id": self.node_id,
            "label": self.label,
            "position": self.position.to_dict() if self.position is not None else None,
            "color": self.color,
            "shape": self.shape.value if self.shape is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NodeData:
        position = data.get("position")
        shape = data.get("shape")
        return cls(
            node_id=data.get("node_id"),
            label=data.get("label"),
            position=Position.from_dict(position) if position is not None else None,
            color=data.get("color"),
            shape=Shape(shape) if shape is not None else None,
        )


@dataclass(frozen=True)
class EdgeData:
    edge_id: str | None = None
    source: str | None = None
    target: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"edge_id": self.edge_id, "source": self.source, "target": self.target}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EdgeData:
        return cls(
            edge_id=data.get("edge_id"),
            source=data.get("source"),
            target=data.get("target"),
        )


type OperationData = NodeData | EdgeData


def new_operation_id() -> str:
    return f"op_{uuid4().hex}"


@dataclass(frozen=True)
class Operation:
    """An inbound mutation as issued by a client."""

    kind: OperationKind
    map_id: str
    client_id: str
    clock: VectorClock
    data: OperationData
    operation_id: str = field(default_factory=new_operation_id)
    session_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "type": self.kind.value,
            "map_id": self.map_id,
            "client_id": self.client_id,
            "session_id": self.session_id,
            "clock": self.clock.to_dict(),
            "data": self.data.to_dict(),
        }


def data_from_dict(kind: OperationKind, data: dict[str, Any]) -> OperationData:
    match kind.entity_kind:
        case EntityKind.node:
            return NodeData.from_dict(data)
        case EntityKind.edge:
            return EdgeData.from_dict(data)


@dataclass(frozen=True)
class OperationRecord:
    """An accepted operation as kept in the operation log.

    ``payload`` is the resolved operation data (generated ids filled in),
    ``previous_state`` the entity as it was before the operation, or
    ``None`` for additions.
    """

    operation_id: str
    map_id: str
    kind: OperationKind
    entity_id: str
    clock: VectorClock
    client_id: str
    sequence: int
    payload: dict[str, Any]
    previous_state: dict[str, Any] | None
    timestamp: float
    session_id: str | None = None
    client_sequence: int = 0
    conflict: bool = False
    status: OperationStatus = OperationStatus.applied
    rolled_back_at: float | None = None

    @property
    def entity_kind(self) -> EntityKind:
        return self.kind.entity_kind

    def to_operation(self) -> Operation:
        return Operation(
            kind=self.kind,
            map_id=self.map_id,
            client_id=self.client_id,
            clock=self.clock,
            data=data_from_dict(self.kind, self.payload),
            operation_id=self.operation_id,
            session_id=self.session_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "map_id": self.map_id,
            "type": self.kind.value,
            "entity_type": self.entity_kind.value,
            "entity_id": self.entity_id,
            "clock": self.clock.to_dict(),
            "client_id": self.client_id,
            "session_id": self.session_id,
            "client_sequence": self.client_sequence,
            "sequence": self.sequence,
            "payload": self.payload,
            "previous_state": self.previous_state,
            "timestamp": self.timestamp,
            "conflict": self.conflict,
            "status": self.status.value,
            "rolled_back_at": self.rolled_back_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OperationRecord:
        return cls(
            operation_id=data["operation_id"],
            map_id=data["map_id"],
            kind=OperationKind(data["type"]),
            entity_id=data["entity_id"],
            clock=VectorClock.from_dict(data["clock"]),
            client_id=data["client_id"],
            session_id=data.get("session_id"),
            client_sequence=data.get("client_sequence", 0),
            sequence=data["sequence"],
            payload=data["payload"],
            previous_state=data.get("previous_state"),
            timestamp=data["timestamp"],
            conflict=data.get("conflict", False),
            status=OperationStatus(data.get("status", "applied")),
            rolled_back_at=data.get("rolled_back_at"),
        )


@dataclass(frozen=True)
class MergeResult:
    """Outcome of merging one operation. Rejections carry a reason."""

    accepted: bool
    operation_id: str
    map_id: str
    reason: RejectReason | None = None
    detail: str | None = None
    merged_clock: VectorClock | None = None
    entity: Node | Edge | None = None
    sequence: int | None = None
    conflict: bool = False
    cycle: tuple[str, ...] | None = None

    @classmethod
    def rejected(
        cls,
        operation: Operation,
        reason: RejectReason,
        detail: str | None = None,
        *,
        cycle: tuple[str, ...] | None = None,
    ) -> MergeResult:
        return cls(
            accepted=False,
            operation_id=operation.operation_id,
            map_id=operation.map_id,
            reason=reason,
            detail=detail,
            cycle=cycle,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "accepted": self.accepted,
            "operation_id": self.operation_id,
            "map_id": self.map_id,
            "reason": self.reason.value if self.reason is not None else None,
            "detail": self.detail,
            "merged_clock": self.merged_clock.to_dict() if self.merged_clock is not None else None,
            "entity": self.entity.to_dict() if self.entity is not None else None,
            "sequence": self.sequence,
            "conflict": self.conflict,
            "cycle": list(self.cycle) if self.cycle is not None else None,
        }


@dataclass(frozen=True)
class RollbackResult:
    success: bool
    operation_id: str
    reason: RollbackReason | None = None
    detail: str | None = None
    operation: OperationRecord | None = None
    entity: Node | Edge | None = None
    dependents: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "operation_id": self.operation_id,
            "reason": self.reason.value if self.reason is not None else None,
            "detail": self.detail,
            "operation": self.operation.to_dict() if self.operation is not None else None,
            "entity": self.entity.to_dict() if self.entity is not None else None,
            "dependents": list(self.dependents),
        }


@dataclass(frozen=True)
class OperationStats:
    """Per-map operation counts, by kind."""

    total: int
    conflicts: int
    by_kind: dict[OperationKind, int]
    conflicts_by_kind: dict[OperationKind, int]
    rolled_back: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "conflicts": self.conflicts,
            "rolled_back": self.rolled_back,
            "by_type": {
                k.value: {"count": n, "conflicts": self.conflicts_by_kind.get(k, 0)}
                for k, n in self.by_kind.items()
            },
        }
