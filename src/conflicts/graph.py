"""Conflict graph projection and traversal helpers.

The builder is a pure, read-only projection over current state: conflicts,
their items, the sources that reported them and accepted resolutions
become nodes; containment, resolution, persisted conflict-to-conflict edges
and analyzer-derived relations become edges.

Cycles among conflict edges are normal. Every traversal helper keeps a
visited set so consumers never loop.
"""

from __future__ import annotations

import re
from collections import deque
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from src.conflicts.detector import has_negation
from src.conflicts.similarity import SimilarityEngine
from src.core.models import (
    Conflict,
    ConflictGraphEdge,
    ConflictItem,
    GraphEdgeType,
    InsightConflictResolution,
    ItemRole,
    RelatedConflict,
    utcnow,
)

CONTAINS = "contains"
RESOLVED_BY = "resolved_by"
REPORTED_BY = "reported_by"

_CAUSAL_RE = re.compile(
    r"\b(?:because|due to|caused by|as a result of|resulting from|led to|triggered by|driven by)\b",
    re.IGNORECASE,
)


@dataclass
class GraphNode:
    id: str
    type: str
    label: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class GraphEdge:
    id: str
    source: str
    target: str
    type: str
    weight: float = 1.0
    label: str | None = None
    persisted: bool = False


@dataclass
class GraphData:
    nodes: list[GraphNode]
    edges: list[GraphEdge]
    metadata: dict[str, Any]


def edge_id(source: str, target: str, edge_type: str) -> str:
    return f"edge-{source}-{target}-{edge_type}"


def infer_edge_type(text_a: str, text_b: str) -> GraphEdgeType:
    """Relation between two conflicts judged from their representative text."""
    if _CAUSAL_RE.search(text_a) or _CAUSAL_RE.search(text_b):
        return GraphEdgeType.CAUSED_BY
    if has_negation(text_a) != has_negation(text_b):
        return GraphEdgeType.CONTRADICTS
    return GraphEdgeType.RELATED


def primary_item(items: list[ConflictItem]) -> ConflictItem | None:
    return next((i for i in items if i.role == ItemRole.PRIMARY), items[0] if items else None)


class ConflictGraphBuilder:
    """Builds graph projections and similarity neighbourhoods."""

    def __init__(self, similarity: SimilarityEngine | None = None) -> None:
        self._similarity = similarity or SimilarityEngine()

    def find_similar_conflicts(
        self,
        conflict: Conflict,
        items: list[ConflictItem],
        candidates: Iterable[tuple[Conflict, list[ConflictItem]]],
        k: int = 5,
        min_similarity: float = 0.5,
    ) -> list[RelatedConflict]:
        """The ``k`` most similar other open conflicts, best first.

        Ties are ordered by conflict id so results are stable.
        """
        anchor = primary_item(items)
        if anchor is None or k <= 0:
            return []
        scored: list[tuple[float, str, GraphEdgeType]] = []
        for other, other_items in candidates:
            if other.id == conflict.id or not other.is_open or other.organization_id != conflict.organization_id:
                continue
            other_primary = primary_item(other_items)
            if other_primary is None:
                continue
            score = self._similarity.similarity(anchor, other_primary)
            if score < min_similarity:
                continue
            scored.append((score, other.id, infer_edge_type(anchor.text, other_primary.text)))
        scored.sort(key=lambda entry: (-entry[0], entry[1]))
        return [RelatedConflict(conflict_id=cid, edge_type=etype, similarity=score) for score, cid, etype in scored[:k]]

    def build(
        self,
        conflicts: list[Conflict],
        items_by_conflict: dict[str, list[ConflictItem]],
        resolutions_by_conflict: dict[str, list[InsightConflictResolution]],
        persisted_edges: Iterable[ConflictGraphEdge],
        generated_at: datetime | None = None,
    ) -> GraphData:
        nodes: list[GraphNode] = []
        edges: list[GraphEdge] = []
        seen_edges: set[tuple[str, str, str]] = set()
        source_nodes: dict[str, GraphNode] = {}
        included = {c.id for c in conflicts}

        def add_edge(edge: GraphEdge) -> None:
            key = (edge.source, edge.target, edge.type)
            if key not in seen_edges:
                seen_edges.add(key)
                edges.append(edge)

        item_count = resolution_count = 0
        for conflict in conflicts:
            nodes.append(GraphNode(
                id=conflict.id,
                type="conflict",
                label=conflict.title,
                data={
                    "conflict_type": str(conflict.conflict_type),
                    "severity": str(conflict.severity),
                    "status": str(conflict.status),
                    "cluster_id": conflict.cluster_id,
                },
            ))
            for item in items_by_conflict.get(conflict.id, []):
                item_count += 1
                nodes.append(GraphNode(
                    id=item.id,
                    type="item",
                    label=item.raw_insight[:80],
                    data={"role": str(item.role), "source_system": item.source_system, "confidence": item.confidence},
                ))
                add_edge(GraphEdge(edge_id(conflict.id, item.id, CONTAINS), conflict.id, item.id, CONTAINS))
                source_id = f"source:{item.source_system}"
                if source_id not in source_nodes:
                    source_nodes[source_id] = GraphNode(id=source_id, type="source", label=item.source_system)
                add_edge(GraphEdge(edge_id(item.id, source_id, REPORTED_BY), item.id, source_id, REPORTED_BY))
            for resolution in resolutions_by_conflict.get(conflict.id, []):
                if not resolution.is_accepted:
                    continue
                resolution_count += 1
                nodes.append(GraphNode(
                    id=resolution.id,
                    type="resolution",
                    label=resolution.resolved_summary[:80],
                    data={"strategy": str(resolution.strategy), "confidence": resolution.confidence},
                ))
                add_edge(GraphEdge(
                    edge_id(conflict.id, resolution.id, RESOLVED_BY), conflict.id, resolution.id, RESOLVED_BY,
                    weight=resolution.confidence,
                ))

        for persisted in persisted_edges:
            if persisted.source_conflict_id in included and persisted.target_conflict_id in included:
                add_edge(GraphEdge(
                    id=persisted.id,
                    source=persisted.source_conflict_id,
                    target=persisted.target_conflict_id,
                    type=str(persisted.edge_type),
                    weight=persisted.weight,
                    label=persisted.label,
                    persisted=True,
                ))
        for conflict in conflicts:
            if conflict.analysis is None:
                continue
            for related in conflict.analysis.related_conflicts:
                if related.conflict_id not in included:
                    continue
                add_edge(GraphEdge(
                    edge_id(conflict.id, related.conflict_id, related.edge_type),
                    conflict.id,
                    related.conflict_id,
                    str(related.edge_type),
                    weight=related.similarity,
                ))

        nodes.extend(source_nodes.values())
        return GraphData(
            nodes=nodes,
            edges=edges,
            metadata={
                "total_nodes": len(nodes),
                "total_edges": len(edges),
                "conflict_count": len(conflicts),
                "item_count": item_count,
                "resolution_count": resolution_count,
                "source_count": len(source_nodes),
                "generated_at": (generated_at or utcnow()).isoformat(),
            },
        )


def adjacency(edges: Iterable[GraphEdge], directed: bool = False, edge_types: set[str] | None = None) -> dict[str, list[str]]:
    """Adjacency lists keyed by node id, in edge order."""
    adj: dict[str, list[str]] = {}
    for edge in edges:
        if edge_types is not None and edge.type not in edge_types:
            continue
        adj.setdefault(edge.source, []).append(edge.target)
        adj.setdefault(edge.target, [])
        if not directed:
            adj[edge.target].append(edge.source)
    return adj


def bfs(adj: dict[str, list[str]], start: str, max_depth: int | None = None) -> list[str]:
    """Breadth-first node order from ``start``. Each node is visited once."""
    visited = {start}
    order = [start]
    queue: deque[tuple[str, int]] = deque([(start, 0)])
    while queue:
        node, depth = queue.popleft()
        if max_depth is not None and depth >= max_depth:
            continue
        for neighbour in adj.get(node, []):
            if neighbour not in visited:
                visited.add(neighbour)
                order.append(neighbour)
                queue.append((neighbour, depth + 1))
    return order


def dfs(adj: dict[str, list[str]], start: str) -> Iterator[str]:
    """Depth-first node order from ``start``, iterative to avoid recursion limits."""
    visited: set[str] = set()
    stack = [start]
    while stack:
        node = stack.pop()
        if node in visited:
            continue
        visited.add(node)
        yield node
        stack.extend(reversed([n for n in adj.get(node, []) if n not in visited]))


def connected_components(adj: dict[str, list[str]]) -> list[list[str]]:
    """Weakly connected components, each sorted, ordered by their first node."""
    undirected: dict[str, set[str]] = {node: set() for node in adj}
    for node, neighbours in adj.items():
        for n in neighbours:
            undirected[node].add(n)
            undirected.setdefault(n, set()).add(node)
    ordered = {k: sorted(v) for k, v in undirected.items()}
    seen: set[str] = set()
    components = []
    for node in sorted(undirected):
        if node in seen:
            continue
        component = bfs(ordered, node)
        seen.update(component)
        components.append(sorted(component))
    return components


def shortest_path(adj: dict[str, list[str]], start: str, goal: str) -> list[str] | None:
    """Fewest-hop path between two nodes, or None when unreachable."""
    if start == goal:
        return [start]
    parents: dict[str, str] = {}
    visited = {start}
    queue = deque([start])
    while queue:
        node = queue.popleft()
        for neighbour in adj.get(node, []):
            if neighbour in visited:
                continue
            visited.add(neighbour)
            parents[neighbour] = node
            if neighbour == goal:
                path = [goal]
                while path[-1] != start:
                    path.append(parents[path[-1]])
                return list(reversed(path))
            queue.append(neighbour)
    return None
