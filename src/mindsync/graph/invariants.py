"""Pure graph checks over adjacency views.

Nothing here touches persistence: callers pass nodes, edges, or adjacency
mappings (``{node_id: [child_id, ...]}``) and get answers back. Traversals
are iterative, so deep chains do not hit the recursion limit. Results are
deterministic for identical input; when several cycles exist, whichever
the traversal meets first is reported.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from mindsync.graph.model import Edge, Node

type Adjacency = Mapping[str, Sequence[str]]


def build_adjacency(nodes: Iterable[Node], edges: Iterable[Edge]) -> dict[str, list[str]]:
    """Forward adjacency over active nodes and active edges."""
    adjacency: dict[str, list[str]] = {n.id: [] for n in nodes if not n.deleted}
    for edge in edges:
        if not edge.deleted and edge.source in adjacency and edge.target in adjacency:
            adjacency[edge.source].append(edge.target)
    return adjacency


def build_reverse_adjacency(
    nodes: Iterable[Node], edges: Iterable[Edge]
) -> dict[str, list[str]]:
    """Reverse adjacency (parent pointers) over active nodes and active edges."""
    reverse: dict[str, list[str]] = {n.id: [] for n in nodes if not n.deleted}
    for edge in edges:
        if not edge.deleted and edge.target in reverse and edge.source in reverse:
            reverse[edge.target].append(edge.source)
    return reverse


def reverse_of(adjacency: Adjacency) -> dict[str, list[str]]:
    reverse: dict[str, list[str]] = {node_id: [] for node_id in adjacency}
    for source, targets in adjacency.items():
        for target in targets:
            reverse.setdefault(target, []).append(source)
    return reverse


def find_roots(nodes: Iterable[Node], reverse_adjacency: Adjacency) -> list[str]:
    """Active nodes with in-degree zero."""
    return [
        n.id for n in nodes
        if not n.deleted and not reverse_adjacency.get(n.id)
    ]


def detect_cycle(adjacency: Adjacency, start: str | None = None) -> list[str] | None:
    """Find a directed cycle by DFS with recursion-stack tracking.

    Returns the cycle as node ids, beginning at the node the back edge
    points to, or ``None`` if no node lies on a cycle. With ``start`` only
    the part of the graph reachable from it is searched.
    """
    visited: set[str] = set()

    def search(root: str) -> list[str] | None:
        path: list[str] = [root]
        on_path: set[str] = {root}
        visited.add(root)
        stack = [iter(adjacency.get(root, ()))]

        while stack:
            neighbor = next(stack[-1], None)
            if neighbor is None:
                stack.pop()
                on_path.discard(path.pop())
                continue
            if neighbor in on_path:
                return path[path.index(neighbor):]
            if neighbor in visited or neighbor not in adjacency:
                continue
            visited.add(neighbor)
            on_path.add(neighbor)
            path.append(neighbor)
            stack.append(iter(adjacency[neighbor]))
        return None

    if start is not None:
        return search(start) if start in adjacency else None

    for node_id in adjacency:
        if node_id not in visited:
            cycle = search(node_id)
            if cycle is not None:
                return cycle
    return None


def _reachable(adjacency: Adjacency, node_id: str, stop_at: str | None = None) -> set[str]:
    seen: set[str] = set()
    queue = deque([node_id])
    while queue:
        current = queue.popleft()
        for nxt in adjacency.get(current, ()):
            if nxt not in seen:
                seen.add(nxt)
                if nxt == stop_at:
                    return seen
                queue.append(nxt)
    return seen


def find_descendants(adjacency: Adjacency, node_id: str) -> set[str]:
    return _reachable(adjacency, node_id)


def find_ancestors(reverse_adjacency: Adjacency, node_id: str) -> set[str]:
    return _reachable(reverse_adjacency, node_id)


def would_create_cycle(
    adjacency: Adjacency,
    source: str,
    target: str,
    *,
    reverse_adjacency: Adjacency | None = None,
) -> bool:
    """Whether adding ``source -> target`` closes a directed cycle.

    True iff ``target`` is already an ancestor of ``source``. The walk only
    visits ancestors of ``source`` and stops as soon as ``target`` is seen.
    Pass a maintained ``reverse_adjacency`` to avoid rebuilding it.
    """
    reverse = reverse_adjacency if reverse_adjacency is not None else reverse_of(adjacency)
    return target in _reachable(reverse, source, stop_at=target)


def calculate_depths(adjacency: Adjacency, roots: Iterable[str]) -> dict[str, int]:
    """Shortest distance from any root, for every reachable node."""
    depths: dict[str, int] = {}
    queue = deque((root, 0) for root in roots)
    while queue:
        node_id, depth = queue.popleft()
        if node_id in depths and depths[node_id] <= depth:
            continue
        depths[node_id] = depth
        for child in adjacency.get(node_id, ()):
            queue.append((child, depth + 1))
    return depths


def find_orphans(
    nodes: Iterable[Node], adjacency: Adjacency, roots: Iterable[str]
) -> list[str]:
    """Active nodes that no root reaches via active edges."""
    reachable: set[str] = set()
    queue = deque(roots)
    while queue:
        current = queue.popleft()
        if current in reachable:
            continue
        reachable.add(current)
        queue.extend(c for c in adjacency.get(current, ()) if c not in reachable)
    return [n.id for n in nodes if not n.deleted and n.id not in reachable]


def connected_components(nodes: Iterable[Node], adjacency: Adjacency) -> list[list[str]]:
    """Weakly connected components: edges are followed in both directions."""
    active = [n.id for n in nodes if not n.deleted]
    undirected: dict[str, list[str]] = {node_id: [] for node_id in active}
    for source, targets in adjacency.items():
        for target in targets:
            if source in undirected and target in undirected:
                undirected[source].append(target)
                undirected[target].append(source)

    visited: set[str] = set()
    components: list[list[str]] = []
    for node_id in active:
        if node_id in visited:
            continue
        component: list[str] = []
        stack = [node_id]
        visited.add(node_id)
        while stack:
            current = stack.pop()
            component.append(current)
            for neighbor in undirected[current]:
                if neighbor not in visited:
                    visited.add(neighbor)
                    stack.append(neighbor)
        components.append(component)
    return components


def topological_sort(adjacency: Adjacency, roots: Iterable[str]) -> list[str] | None:
    """Order nodes reachable from ``roots`` parents-first; ``None`` on a cycle."""
    if detect_cycle(adjacency) is not None:
        return None

    visited: set[str] = set()
    order: list[str] = []
    for root in roots:
        if root in visited:
            continue
        visited.add(root)
        stack = [(root, iter(adjacency.get(root, ())))]
        while stack:
            node_id, children = stack[-1]
            child = next(children, None)
            if child is None:
                stack.pop()
                order.append(node_id)
            elif child not in visited:
                visited.add(child)
                stack.append((child, iter(adjacency.get(child, ()))))
    order.reverse()
    return order


@dataclass(frozen=True)
class GraphStats:
    total_nodes: int
    total_edges: int
    root_nodes: int
    orphaned_nodes: int
    max_depth: int
    has_cycles: bool
    components: int


def graph_stats(nodes: Iterable[Node], edges: Iterable[Edge]) -> GraphStats:
    active_nodes = [n for n in nodes if not n.deleted]
    active_edges = [e for e in edges if not e.deleted]
    adjacency = build_adjacency(active_nodes, active_edges)
    reverse = build_reverse_adjacency(active_nodes, active_edges)
    roots = find_roots(active_nodes, reverse)
    depths = calculate_depths(adjacency, roots)

    return GraphStats(
        total_nodes=len(active_nodes),
        total_edges=len(active_edges),
        root_nodes=len(roots),
        orphaned_nodes=len(find_orphans(active_nodes, adjacency, roots)),
        max_depth=max(depths.values(), default=0),
        has_cycles=detect_cycle(adjacency) is not None,
        components=len(connected_components(active_nodes, adjacency)),
    )
