"""
Bounded graph traversal and query execution.

Expansion starts from all start nodes at once and respects direction,
relationship type filters and depth bounds at every hop. Nodes shallower than
min_depth are walked through but left out of the result. Path strategies:

- shortest: breadth-first; the first path found to a node is kept
- all: every simple path (no repeated node) up to max_depth
- weighted: Dijkstra-style expansion with edge cost 1 / strength

Neighbours are expanded in (neighbour id, relationship id) order so repeated
queries against unchanged state return identical ordered results. A
bidirectional relationship satisfies both outgoing and incoming direction
filters from either endpoint.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import math
from collections import Counter, defaultdict, deque
from time import perf_counter
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import networkx as nx
import numpy as np

from semkg.common.errors import NotFoundError
from semkg.graph.models import KnowledgeGraph, Relationship, RelationshipType
from semkg.graph.query import (
    AggregationType,
    ConstraintOperator,
    ConstraintType,
    Direction,
    GraphPath,
    GraphQuery,
    PathStrategy,
    QueryConstraint,
    QueryPerformance,
    QueryResult,
    ReturnFormat,
    TraversalPattern,
    TraversalResult,
)

logger = logging.getLogger(__name__)

Adjacency = Dict[str, List[Tuple[str, Relationship]]]

_MISSING = object()


def _edge_cost(rel: Relationship) -> float:
    return 1.0 / rel.strength if rel.strength > 0 else math.inf


def _extend(path: GraphPath, node: str, rel: Relationship) -> GraphPath:
    return GraphPath(
        nodes=path.nodes + [node],
        relationships=path.relationships + [rel.id],
        cost=path.cost + _edge_cost(rel),
        strength=path.strength * rel.strength,
    )


def build_adjacency(
    graph: KnowledgeGraph,
    direction: Direction,
    relationship_types: Optional[Set[RelationshipType]] = None,
) -> Adjacency:
    """Hop lists per entity for a direction and type filter (empty filter = all types)."""
    adjacency: Adjacency = defaultdict(list)
    for rel in graph.relationships.values():
        if relationship_types and rel.type not in relationship_types:
            continue
        if rel.source_id == rel.target_id:
            continue
        forward = direction in (Direction.OUTGOING, Direction.BOTH) or rel.bidirectional
        backward = direction in (Direction.INCOMING, Direction.BOTH) or rel.bidirectional
        if forward:
            adjacency[rel.source_id].append((rel.target_id, rel))
        if backward:
            adjacency[rel.target_id].append((rel.source_id, rel))
    for hops in adjacency.values():
        hops.sort(key=lambda hop: (hop[0], hop[1].id))
    return adjacency


def to_networkx(
    graph: KnowledgeGraph,
    node_ids: Optional[Iterable[str]] = None,
    relationship_types: Optional[Set[RelationshipType]] = None,
) -> nx.MultiDiGraph:
    """
    Project a knowledge graph (or the subgraph induced by node_ids) onto networkx.

    Edges are keyed by relationship id and carry type, strength and
    bidirectional attributes.
    """
    keep = set(graph.entities) if node_ids is None else set(node_ids)
    projection = nx.MultiDiGraph(graph_id=graph.graph_id)
    for entity_id in sorted(keep):
        entity = graph.entities.get(entity_id)
        if entity is None:
            continue
        projection.add_node(entity_id, name=entity.name, type=entity.type.value, importance=entity.importance)
    for rel_id in sorted(graph.relationships):
        rel = graph.relationships[rel_id]
        if rel.source_id not in keep or rel.target_id not in keep:
            continue
        if relationship_types and rel.type not in relationship_types:
            continue
        projection.add_edge(
            rel.source_id,
            rel.target_id,
            key=rel.id,
            type=rel.type.value,
            weight=rel.strength,
            bidirectional=rel.bidirectional,
        )
    return projection


def _normalize_expected(value: Any) -> Any:
    if hasattr(value, "value") and not isinstance(value, (str, bytes)):
        return value.value
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_normalize_expected(v) for v in value]
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def compare(actual: Any, operator: ConstraintOperator, expected: Any) -> bool:
    """Evaluate `actual <operator> expected` with case-insensitive string equality."""
    if actual is _MISSING:
        return False
    expected = _normalize_expected(expected)
    if operator == ConstraintOperator.EQUALS:
        if isinstance(actual, str) and isinstance(expected, str):
            return actual.casefold() == expected.casefold()
        return actual == expected
    if operator == ConstraintOperator.CONTAINS:
        if isinstance(actual, str):
            return str(expected).casefold() in actual.casefold()
        if isinstance(actual, (list, dict)):
            return expected in actual
        return False
    if operator in (ConstraintOperator.GREATER_THAN, ConstraintOperator.LESS_THAN):
        if not (_is_number(actual) and _is_number(expected)):
            return False
        return actual > expected if operator == ConstraintOperator.GREATER_THAN else actual < expected
    if operator == ConstraintOperator.IN:
        if isinstance(expected, str) or not hasattr(expected, "__iter__"):
            return False
        options = list(expected)
        if isinstance(actual, list):
            return any(item in options for item in actual)
        return actual in options
    return False


class TraversalEngine:
    """Executes GraphQuery objects against a knowledge graph."""

    def __init__(self, max_paths: int = 10000):
        """
        Initialize traversal engine.

        Args:
            max_paths: Upper bound on paths recorded by the `all` strategy
        """
        self.max_paths = max_paths

    def execute(self, graph: KnowledgeGraph, query: GraphQuery) -> QueryResult:
        """
        Run a query: traverse, filter, aggregate and format.

        The caller holds the graph's read lock.

        Raises:
            InvalidQueryError: malformed depth bounds, empty start nodes
            NotFoundError: a start node is not in the graph
        """
        start = perf_counter()
        query.validate()
        for node in query.start_nodes:
            if node not in graph.entities:
                raise NotFoundError(
                    f"Start node '{node}' not found in graph {graph.graph_id}", missing_id=node
                )

        traversal = self.traverse(graph, query.start_nodes, query.traversal_pattern)
        paths = self.apply_filters(graph, traversal.paths, query.filters)
        depths = self._depths_from_paths(paths)
        nodes = sorted(depths, key=lambda node: (depths[node], node))
        aggregations = self.aggregate(graph, nodes, paths, query)
        results = self.format_result(graph, nodes, depths, paths, query)
        elapsed_ms = (perf_counter() - start) * 1000.0

        logger.debug(
            "Query on %s from %s: %d nodes, %d paths in %.2f ms",
            graph.graph_id,
            ",".join(query.start_nodes),
            len(nodes),
            len(paths),
            elapsed_ms,
        )
        return QueryResult(
            graph_id=graph.graph_id,
            results=results,
            nodes=nodes,
            paths=paths,
            aggregations=aggregations,
            performance=QueryPerformance(
                query_time_ms=elapsed_ms,
                nodes_visited=traversal.nodes_visited,
                paths_explored=traversal.paths_explored,
            ),
            truncated=traversal.truncated,
        )

    def traverse(
        self,
        graph: KnowledgeGraph,
        start_nodes: Iterable[str],
        pattern: TraversalPattern,
    ) -> TraversalResult:
        """Walk the graph from start_nodes according to pattern."""
        adjacency = build_adjacency(graph, pattern.direction, pattern.relationship_types)
        starts = sorted(set(start_nodes))
        if pattern.path_strategy == PathStrategy.ALL:
            return self._all_paths(adjacency, starts, pattern)
        if pattern.path_strategy == PathStrategy.WEIGHTED:
            return self._weighted(adjacency, starts, pattern)
        return self._breadth_first(adjacency, starts, pattern)

    def _breadth_first(self, adjacency: Adjacency, starts: List[str], pattern: TraversalPattern) -> TraversalResult:
        depths: Dict[str, int] = {}
        best: Dict[str, GraphPath] = {}
        queue: deque = deque()
        for node in starts:
            depths[node] = 0
            best[node] = GraphPath(nodes=[node])
            queue.append(node)

        visited = 0
        explored = 0
        while queue:
            node = queue.popleft()
            visited += 1
            if depths[node] >= pattern.max_depth:
                continue
            for neighbor, rel in adjacency.get(node, ()):
                explored += 1
                if neighbor in depths:
                    continue
                depths[neighbor] = depths[node] + 1
                best[neighbor] = _extend(best[node], neighbor, rel)
                queue.append(neighbor)

        return self._collect(depths, best, pattern, visited, explored)

    def _weighted(self, adjacency: Adjacency, starts: List[str], pattern: TraversalPattern) -> TraversalResult:
        # States are (node, hops); a state is dominated by a cheaper settled state with no more hops
        counter = itertools.count()
        heap: List[Tuple[float, int, str, int, GraphPath]] = []
        for node in starts:
            heapq.heappush(heap, (0.0, 0, node, next(counter), GraphPath(nodes=[node])))

        settled_hops: Dict[str, List[int]] = defaultdict(list)
        depths: Dict[str, int] = {}
        best: Dict[str, GraphPath] = {}
        visited = 0
        explored = 0
        while heap:
            cost, hops, node, _, path = heapq.heappop(heap)
            if any(h <= hops for h in settled_hops[node]):
                continue
            settled_hops[node].append(hops)
            visited += 1
            if node not in best:
                best[node] = path
                depths[node] = hops
            if hops >= pattern.max_depth:
                continue
            on_path = set(path.nodes)
            for neighbor, rel in adjacency.get(node, ()):
                explored += 1
                if rel.strength <= 0 or neighbor in on_path:
                    continue
                step = _extend(path, neighbor, rel)
                heapq.heappush(heap, (step.cost, hops + 1, neighbor, next(counter), step))

        return self._collect(depths, best, pattern, visited, explored)

    def _all_paths(self, adjacency: Adjacency, starts: List[str], pattern: TraversalPattern) -> TraversalResult:
        depths: Dict[str, int] = {}
        paths: List[GraphPath] = []
        visited = 0
        explored = 0
        truncated = False

        for start in starts:
            stack: List[GraphPath] = [GraphPath(nodes=[start])]
            while stack and not truncated:
                path = stack.pop()
                visited += 1
                node = path.end
                if path.length >= pattern.min_depth:
                    paths.append(path)
                    depths[node] = min(depths.get(node, path.length), path.length)
                    if len(paths) >= self.max_paths:
                        truncated = True
                        break
                if path.length >= pattern.max_depth:
                    continue
                on_path = set(path.nodes)
                # Reverse push keeps pops in ascending neighbour order
                for neighbor, rel in reversed(adjacency.get(node, [])):
                    explored += 1
                    if neighbor in on_path:
                        continue
                    stack.append(_extend(path, neighbor, rel))
            if truncated:
                logger.warning("Path enumeration stopped at max_paths=%d", self.max_paths)
                break

        paths.sort(key=lambda p: (p.length, p.nodes, p.relationships))
        return TraversalResult(
            depths=depths,
            paths=paths,
            nodes_visited=visited,
            paths_explored=explored,
            truncated=truncated,
        )

    @staticmethod
    def _collect(
        depths: Dict[str, int],
        best: Dict[str, GraphPath],
        pattern: TraversalPattern,
        visited: int,
        explored: int,
    ) -> TraversalResult:
        kept = {node: depth for node, depth in depths.items() if depth >= pattern.min_depth}
        ordered = sorted(kept, key=lambda node: (kept[node], node))
        return TraversalResult(
            depths=kept,
            paths=[best[node] for node in ordered],
            nodes_visited=visited,
            paths_explored=explored,
        )

    def apply_filters(
        self,
        graph: KnowledgeGraph,
        paths: List[GraphPath],
        filters: List[QueryConstraint],
    ) -> List[GraphPath]:
        """Keep paths whose terminal node (and last hop) satisfy every constraint."""
        if not filters:
            return list(paths)
        return [p for p in paths if all(self._path_matches(graph, p, c) for c in filters)]

    @staticmethod
    def _path_matches(graph: KnowledgeGraph, path: GraphPath, constraint: QueryConstraint) -> bool:
        entity = graph.entities[path.end]
        if constraint.type == ConstraintType.ENTITY_TYPE:
            actual: Any = entity.type.value
        elif constraint.type == ConstraintType.DISTANCE:
            actual = path.length
        elif constraint.type == ConstraintType.RELATIONSHIP_TYPE:
            if path.length == 0:
                return True
            actual = graph.relationships[path.relationships[-1]].type.value
        else:
            if constraint.attribute == "name":
                actual = entity.name
            elif constraint.attribute == "importance":
                actual = entity.importance
            else:
                actual = entity.attributes.get(constraint.attribute, _MISSING)
        return compare(actual, constraint.operator, constraint.value)

    @staticmethod
    def _depths_from_paths(paths: List[GraphPath]) -> Dict[str, int]:
        depths: Dict[str, int] = {}
        for path in paths:
            depths[path.end] = min(depths.get(path.end, path.length), path.length)
        return depths

    def aggregate(
        self,
        graph: KnowledgeGraph,
        nodes: List[str],
        paths: List[GraphPath],
        query: GraphQuery,
    ) -> Dict[str, Any]:
        """Compute requested aggregations over the filtered result."""
        if not query.aggregations:
            return {}
        subgraph = to_networkx(graph, nodes, query.traversal_pattern.relationship_types)
        aggregations: Dict[str, Any] = {}
        for aggregation in query.aggregations:
            if aggregation == AggregationType.COUNT:
                aggregations["count"] = {
                    "nodes": len(nodes),
                    "paths": len(paths),
                    "relationships": subgraph.number_of_edges(),
                }
            elif aggregation == AggregationType.GROUP_BY:
                aggregations["group_by"] = self._group_by(graph, nodes, query.group_by)
            elif aggregation == AggregationType.AVG_WEIGHT:
                edge_ids = list(dict.fromkeys(rid for p in paths for rid in p.relationships))
                strengths = [graph.relationships[rid].strength for rid in edge_ids]
                aggregations["avg_weight"] = float(np.mean(strengths)) if strengths else 0.0
            elif aggregation == AggregationType.CENTRALITY:
                aggregations["centrality"] = {node: int(subgraph.degree(node)) for node in nodes}
            elif aggregation == AggregationType.CLUSTERING_COEFFICIENT:
                coefficients = nx.clustering(nx.Graph(subgraph)) if nodes else {}
                aggregations["clustering_coefficient"] = {
                    node: float(coefficients.get(node, 0.0)) for node in nodes
                }
        return aggregations

    @staticmethod
    def _group_by(graph: KnowledgeGraph, nodes: List[str], attribute: Optional[str]) -> Dict[str, int]:
        histogram: Counter = Counter()
        for node in nodes:
            entity = graph.entities[node]
            if attribute == "type":
                value: Any = entity.type.value
            else:
                value = entity.attributes.get(attribute)
            if value is None:
                key = "unknown"
            elif isinstance(value, (list, dict)):
                key = repr(value)
            else:
                key = str(value)
            histogram[key] += 1
        return dict(sorted(histogram.items()))

    def format_result(
        self,
        graph: KnowledgeGraph,
        nodes: List[str],
        depths: Dict[str, int],
        paths: List[GraphPath],
        query: GraphQuery,
    ) -> Any:
        """Shape the filtered result according to query.return_format."""
        fmt = query.return_format
        if fmt == ReturnFormat.PATHS:
            return [p.to_dict() for p in paths]
        if fmt == ReturnFormat.SUBGRAPH:
            subgraph = to_networkx(graph, nodes, query.traversal_pattern.relationship_types)
            rel_ids = sorted(key for _, _, key in subgraph.edges(keys=True))
            return {
                "nodes": [dict(graph.entities[n].to_dict(), depth=depths[n]) for n in nodes],
                "relationships": [graph.relationships[rid].to_dict() for rid in rel_ids],
            }
        if fmt == ReturnFormat.SUMMARY:
            type_counts = Counter(graph.entities[n].type.value for n in nodes)
            relationship_ids = {rid for p in paths for rid in p.relationships}
            return {
                "start_nodes": sorted(set(query.start_nodes)),
                "node_count": len(nodes),
                "path_count": len(paths),
                "relationship_count": len(relationship_ids),
                "max_depth_reached": max(depths.values()) if depths else 0,
                "entity_types": dict(sorted(type_counts.items())),
            }
        return [dict(graph.entities[n].to_dict(), depth=depths[n]) for n in nodes]

    def find_path(
        self,
        graph: KnowledgeGraph,
        source_id: str,
        target_id: str,
        max_length: int = 5,
    ) -> Optional[List[str]]:
        """
        Shortest undirected path between two entities.

        Returns:
            Entity ids along the path, or None when no path of at most
            max_length hops exists
        """
        for entity_id in (source_id, target_id):
            if entity_id not in graph.entities:
                raise NotFoundError(f"Entity '{entity_id}' not found in graph {graph.graph_id}", missing_id=entity_id)
        undirected = nx.Graph(to_networkx(graph))
        try:
            path = nx.shortest_path(undirected, source_id, target_id)
        except nx.NetworkXNoPath:
            return None
        if len(path) - 1 > max_length:
            return None
        return list(path)
