from mindsync.graph.invariants import (
    GraphStats,
    build_adjacency,
    build_reverse_adjacency,
    calculate_depths,
    connected_components,
    detect_cycle,
    find_ancestors,
    find_descendants,
    find_orphans,
    find_roots,
    graph_stats,
    topological_sort,
    would_create_cycle,
)
from mindsync.graph.model import (
    Edge,
    GraphSnapshot,
    MapInfo,
    MapStats,
    Node,
    NodeStyle,
    Position,
    Shape,
)
from mindsync.graph.state import MapState
from mindsync.graph.validation import Issue, IssueKind, ValidationReport, validate_graph

__all__ = [
    "Edge",
    "GraphSnapshot",
    "GraphStats",
    "Issue",
    "IssueKind",
    "MapInfo",
    "MapState",
    "MapStats",
    "Node",
    "NodeStyle",
    "Position",
    "Shape",
    "ValidationReport",
    "build_adjacency",
    "build_reverse_adjacency",
    "calculate_depths",
    "connected_components",
    "detect_cycle",
    "find_ancestors",
    "find_descendants",
    "find_orphans",
    "find_roots",
    "graph_stats",
    "topological_sort",
    "validate_graph",
    "would_create_cycle",
]
