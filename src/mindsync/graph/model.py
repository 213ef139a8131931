"""Value types for map entities.

Nodes and edges are frozen: every mutation produces a new value with
``dataclasses.replace``, so a record kept for history is never aliased by
later edits.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from mindsync.clock import VectorClock

# Largest accepted |x| or |y|; the bound check also rejects NaN and infinities.
MAX_COORDINATE = 2**53


class Shape(Enum):
    circle = "circle"
    rectangle = "rectangle"
    diamond = "diamond"
    rounded = "rounded"


@dataclass(frozen=True, slots=True)
class Position:
    x: float = 0.0
    y: float = 0.0

    def is_valid(self) -> bool:
        return all(
            isinstance(v, (int, float))
            and not isinstance(v, bool)
            and abs(v) <= MAX_COORDINATE
            for v in (self.x, self.y)
        )

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Position:
        return cls(x=data["x"], y=data["y"])


@dataclass(frozen=True, slots=True)
class NodeStyle:
    color: str = "#3b82f6"
    shape: Shape = Shape.circle

    def to_dict(self) -> dict[str, str]:
        return {"color": self.color, "shape": self.shape.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NodeStyle:
        return cls(color=data["color"], shape=Shape(data["shape"]))


@dataclass(frozen=True, slots=True)
class Node:
    id: str
    map_id: str
    label: str
    position: Position
    style: NodeStyle
    clock: VectorClock
    created_by: str
    last_modified_by: str
    version: int = 1
    deleted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "map_id": self.map_id,
            "label": self.label,
            "position": self.position.to_dict(),
            "style": self.style.to_dict(),
            "clock": self.clock.to_dict(),
            "created_by": self.created_by,
            "last_modified_by": self.last_modified_by,
            "version": self.version,
            "deleted": self.deleted,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Node:
        return cls(
            id=data["id"],
            map_id=data["map_id"],
            label=data["label"],
            position=Position.from_dict(data["position"]),
            style=NodeStyle.from_dict(data["style"]),
            clock=VectorClock.from_dict(data["clock"]),
            created_by=data["created_by"],
            last_modified_by=data["last_modified_by"],
            version=data["version"],
            deleted=data["deleted"],
        )


@dataclass(frozen=True, slots=True)
class Edge:
    id: str
    map_id: str
    source: str
    target: str
    clock: VectorClock
    created_by: str
    last_modified_by: str
    version: int = 1
    deleted: bool = False

    @property
    def pair(self) -> frozenset[str]:
        """Unordered endpoint pair; at most one active edge per pair."""
        return frozenset((self.source, self.target))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "map_id": self.map_id,
            "source": self.source,
            "target": self.target,
            "clock": self.clock.to_dict(),
            "created_by": self.created_by,
            "last_modified_by": self.last_modified_by,
            "version": self.version,
            "deleted": self.deleted,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Edge:
        return cls(
            id=data["id"],
            map_id=data["map_id"],
            source=data["source"],
            target=data["target"],
            clock=VectorClock.from_dict(data["clock"]),
            created_by=data["created_by"],
            last_modified_by=data["last_modified_by"],
            version=data["version"],
            deleted=data["deleted"],
        )


@dataclass(slots=True)
class MapStats:
    """Aggregate counts, maintained incrementally by merge and rollback."""

    node_count: int = 0
    edge_count: int = 0
    total_operations: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "node_count": self.node_count,
            "edge_count": self.edge_count,
            "total_operations": self.total_operations,
        }

    @classmethod
    def from_dict(cls, data: dict[str, int]) -> MapStats:
        return cls(**data)


@dataclass(frozen=True)
class MapInfo:
    map_id: str
    clock: VectorClock
    version: int
    stats: MapStats
    last_sequence: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "map_id": self.map_id,
            "clock": self.clock.to_dict(),
            "version": self.version,
            "stats": self.stats.to_dict(),
            "last_sequence": self.last_sequence,
        }


@dataclass(frozen=True)
class GraphSnapshot:
    """Active nodes and edges of a map, for first-time joins."""

    map_id: str
    version: int
    clock: VectorClock
    nodes: tuple[Node, ...] = field(default_factory=tuple)
    edges: tuple[Edge, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "map_id": self.map_id,
            "version": self.version,
            "clock": self.clock.to_dict(),
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }
