"""Whole-graph validation report.

Merge keeps the invariants per operation; this report re-checks a full
snapshot, which is what an operator runs after an import or a restore.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from mindsync.graph.invariants import (
    GraphStats,
    build_adjacency,
    build_reverse_adjacency,
    connected_components,
    detect_cycle,
    find_orphans,
    find_roots,
    graph_stats,
)
from mindsync.graph.model import Edge, Node


class IssueKind(Enum):
    cycle_detected = "CYCLE_DETECTED"
    dangling_edge = "DANGLING_EDGE"
    self_loops = "SELF_LOOPS"
    orphaned_nodes = "ORPHANED_NODES"
    duplicate_edge = "DUPLICATE_EDGE"
    disconnected_graph = "DISCONNECTED_GRAPH"


@dataclass(frozen=True)
class Issue:
    kind: IssueKind
    message: str
    node_ids: tuple[str, ...] = ()
    edge_ids: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "message": self.message,
            "node_ids": list(self.node_ids),
            "edge_ids": list(self.edge_ids),
        }


@dataclass(frozen=True)
class ValidationReport:
    map_id: str
    stats: GraphStats
    errors: tuple[Issue, ...] = field(default_factory=tuple)
    warnings: tuple[Issue, ...] = field(default_factory=tuple)

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "map_id": self.map_id,
            "valid": self.valid,
            "stats": asdict(self.stats),
            "errors": [i.to_dict() for i in self.errors],
            "warnings": [i.to_dict() for i in self.warnings],
            "summary": {
                "error_count": len(self.errors),
                "warning_count": len(self.warnings),
            },
        }


def validate_graph(map_id: str, nodes: Iterable[Node], edges: Iterable[Edge]) -> ValidationReport:
    nodes = [n for n in nodes if not n.deleted]
    edges = [e for e in edges if not e.deleted]
    node_ids = {n.id for n in nodes}
    errors: list[Issue] = []
    warnings: list[Issue] = []

    adjacency = build_adjacency(nodes, edges)
    reverse = build_reverse_adjacency(nodes, edges)
    roots = find_roots(nodes, reverse)

    orphans = find_orphans(nodes, adjacency, roots)
    if orphans:
        warnings.append(Issue(
            IssueKind.orphaned_nodes,
            f"Found {len(orphans)} orphaned node(s) not reachable from any root",
            node_ids=tuple(orphans),
        ))

    cycle = detect_cycle(adjacency)
    if cycle is not None:
        errors.append(Issue(
            IssueKind.cycle_detected,
            f"Circular dependency detected: {' -> '.join(cycle)}",
            node_ids=tuple(cycle),
        ))

    for edge in edges:
        if edge.source not in node_ids or edge.target not in node_ids:
            errors.append(Issue(
                IssueKind.dangling_edge,
                "Edge points to non-existent node(s)",
                node_ids=(edge.source, edge.target),
                edge_ids=(edge.id,),
            ))

    seen_pairs: dict[frozenset[str], str] = {}
    for edge in edges:
        if edge.source == edge.target:
            continue
        first = seen_pairs.setdefault(edge.pair, edge.id)
        if first != edge.id:
            warnings.append(Issue(
                IssueKind.duplicate_edge,
                "Duplicate edge between same nodes",
                node_ids=(edge.source, edge.target),
                edge_ids=(first, edge.id),
            ))

    self_loops = [e for e in edges if e.source == e.target]
    if self_loops:
        errors.append(Issue(
            IssueKind.self_loops,
            f"Found {len(self_loops)} self-loop(s)",
            node_ids=tuple(e.source for e in self_loops),
            edge_ids=tuple(e.id for e in self_loops),
        ))

    components = connected_components(nodes, adjacency)
    if len(components) > 1:
        warnings.append(Issue(
            IssueKind.disconnected_graph,
            f"Graph has {len(components)} disconnected components",
            node_ids=tuple(c[0] for c in components),
        ))

    return ValidationReport(
        map_id=map_id,
        stats=graph_stats(nodes, edges),
        errors=tuple(errors),
        warnings=tuple(warnings),
    )
