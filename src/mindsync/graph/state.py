"""Authoritative in-memory state of one map.

Owned by the map's actor and never shared. Besides the entity records it
keeps forward/reverse adjacency and an unordered-pair index over active
edges, so invariant checks can walk only the neighbourhood they need.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from mindsync.clock import VectorClock
from mindsync.graph.model import Edge, GraphSnapshot, MapInfo, MapStats, Node


class MapState:
    def __init__(self, map_id: str) -> None:
        self.map_id = map_id
        self.clock = VectorClock()
        self.version = 0
        self.stats = MapStats()
        self.last_sequence = 0

        self._nodes: dict[str, Node] = {}
        self._edges: dict[str, Edge] = {}
        self._children: dict[str, list[str]] = {}
        self._parents: dict[str, list[str]] = {}
        self._pairs: dict[frozenset[str], str] = {}

    # Lookups

    def node(self, node_id: str) -> Node | None:
        return self._nodes.get(node_id)

    def active_node(self, node_id: str) -> Node | None:
        node = self._nodes.get(node_id)
        if node is None or node.deleted:
            return None
        return node

    def edge(self, edge_id: str) -> Edge | None:
        return self._edges.get(edge_id)

    def active_edge(self, edge_id: str) -> Edge | None:
        edge = self._edges.get(edge_id)
        if edge is None or edge.deleted:
            return None
        return edge

    def edge_between(self, a: str, b: str) -> Edge | None:
        """The active edge joining ``a`` and ``b`` in either direction."""
        edge_id = self._pairs.get(frozenset((a, b)))
        return self._edges[edge_id] if edge_id is not None else None

    def incident_edges(self, node_id: str) -> list[Edge]:
        """Active edges touching ``node_id``, found through the adjacency indexes."""
        neighbours = [*self._children.get(node_id, ()), *self._parents.get(node_id, ())]
        return [
            self._edges[self._pairs[frozenset((node_id, other))]]
            for other in dict.fromkeys(neighbours)
        ]

    def active_nodes(self) -> list[Node]:
        return [n for n in self._nodes.values() if not n.deleted]

    def active_edges(self) -> list[Edge]:
        return [e for e in self._edges.values() if not e.deleted]

    @property
    def children(self) -> Mapping[str, list[str]]:
        """Forward adjacency over active nodes and edges."""
        return self._children

    @property
    def parents(self) -> Mapping[str, list[str]]:
        """Reverse adjacency over active nodes and edges."""
        return self._parents

    # Mutation

    def apply(self, nodes: Iterable[Node] = (), edges: Iterable[Edge] = ()) -> None:
        """Install new entity values, keeping the indexes consistent.

        Edges that go inactive are removed before nodes change, edges that
        become active are added after, so an index never references a
        node that is not active.
        """
        edges = list(edges)
        later: list[Edge] = []
        for edge in edges:
            if edge.deleted:
                self._put_edge(edge)
            else:
                later.append(edge)
        for node in nodes:
            self._put_node(node)
        for edge in later:
            self._put_edge(edge)

    def _put_node(self, node: Node) -> None:
        self._nodes[node.id] = node
        if node.deleted:
            self._children.pop(node.id, None)
            self._parents.pop(node.id, None)
        else:
            self._children.setdefault(node.id, [])
            self._parents.setdefault(node.id, [])

    def _put_edge(self, edge: Edge) -> None:
        previous = self._edges.get(edge.id)
        if previous is not None and not previous.deleted:
            self._unindex(previous)
        self._edges[edge.id] = edge
        if not edge.deleted:
            self._children.setdefault(edge.source, []).append(edge.target)
            self._parents.setdefault(edge.target, []).append(edge.source)
            self._pairs[edge.pair] = edge.id

    def _unindex(self, edge: Edge) -> None:
        children = self._children.get(edge.source)
        if children is not None and edge.target in children:
            children.remove(edge.target)
        parents = self._parents.get(edge.target)
        if parents is not None and edge.source in parents:
            parents.remove(edge.source)
        if self._pairs.get(edge.pair) == edge.id:
            del self._pairs[edge.pair]

    # Views

    def info(self) -> MapInfo:
        return MapInfo(
            map_id=self.map_id,
            clock=VectorClock.from_dict(self.clock.to_dict()),
            version=self.version,
            stats=MapStats.from_dict(self.stats.to_dict()),
            last_sequence=self.last_sequence,
        )

    def snapshot(self) -> GraphSnapshot:
        return GraphSnapshot(
            map_id=self.map_id,
            version=self.version,
            clock=VectorClock.from_dict(self.clock.to_dict()),
            nodes=tuple(self.active_nodes()),
            edges=tuple(self.active_edges()),
        )

    def to_dict(self) -> dict[str, Any]:
        """Full persisted form, deleted entities included."""
        return {
            "map_id": self.map_id,
            "clock": self.clock.to_dict(),
            "version": self.version,
            "stats": self.stats.to_dict(),
            "last_sequence": self.last_sequence,
            "nodes": [n.to_dict() for n in self._nodes.values()],
            "edges": [e.to_dict() for e in self._edges.values()],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MapState:
        state = cls(data["map_id"])
        state.clock = VectorClock.from_dict(data["clock"])
        state.version = data["version"]
        state.stats = MapStats.from_dict(data["stats"])
        state.last_sequence = data["last_sequence"]
        state.apply(
            nodes=[Node.from_dict(n) for n in data["nodes"]],
            edges=[Edge.from_dict(e) for e in data["edges"]],
        )
        return state
