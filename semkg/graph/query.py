"""
Query model for graph traversal.

A GraphQuery names its start entities, a traversal pattern (direction,
relationship types, depth bounds, path strategy), post-traversal filters,
aggregations and a return format. Enum-typed fields also accept their
string values.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from semkg.common.errors import InvalidQueryError
from semkg.graph.models import RelationshipType
from semkg.insights.models import GraphInsight


class Direction(str, Enum):
    OUTGOING = "outgoing"
    INCOMING = "incoming"
    BOTH = "both"


class PathStrategy(str, Enum):
    SHORTEST = "shortest"
    ALL = "all"
    WEIGHTED = "weighted"


class ReturnFormat(str, Enum):
    NODES = "nodes"
    PATHS = "paths"
    SUBGRAPH = "subgraph"
    SUMMARY = "summary"


class AggregationType(str, Enum):
    COUNT = "count"
    GROUP_BY = "group_by"
    AVG_WEIGHT = "avg_weight"
    CENTRALITY = "centrality"
    CLUSTERING_COEFFICIENT = "clustering_coefficient"


class ConstraintType(str, Enum):
    ENTITY_TYPE = "entity_type"
    RELATIONSHIP_TYPE = "relationship_type"
    ATTRIBUTE = "attribute"
    DISTANCE = "distance"


class ConstraintOperator(str, Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IN = "in"


def _as_enum(enum_cls, value: Any, what: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value))
    except ValueError as exc:
        raise InvalidQueryError(f"Unknown {what}: {value!r}") from exc


@dataclass
class TraversalPattern:
    direction: Direction = Direction.OUTGOING
    relationship_types: Set[RelationshipType] = field(default_factory=set)
    min_depth: int = 0
    max_depth: int = 1
    path_strategy: PathStrategy = PathStrategy.SHORTEST

    def __post_init__(self) -> None:
        self.direction = _as_enum(Direction, self.direction, "direction")
        self.path_strategy = _as_enum(PathStrategy, self.path_strategy, "path strategy")
        self.relationship_types = {
            _as_enum(RelationshipType, t, "relationship type") for t in (self.relationship_types or ())
        }


@dataclass
class QueryConstraint:
    """
    Post-traversal filter.

    `attribute` names the entity attribute for ATTRIBUTE constraints; it may
    also be "name" or "importance" to reach those entity fields.
    """

    type: ConstraintType
    value: Any
    operator: ConstraintOperator = ConstraintOperator.EQUALS
    attribute: Optional[str] = None

    def __post_init__(self) -> None:
        self.type = _as_enum(ConstraintType, self.type, "constraint type")
        self.operator = _as_enum(ConstraintOperator, self.operator, "constraint operator")
        if self.type == ConstraintType.ATTRIBUTE and not self.attribute:
            raise InvalidQueryError("Attribute constraints require an attribute name")


@dataclass
class GraphQuery:
    start_nodes: List[str]
    traversal_pattern: TraversalPattern = field(default_factory=TraversalPattern)
    filters: List[QueryConstraint] = field(default_factory=list)
    aggregations: List[AggregationType] = field(default_factory=list)
    return_format: ReturnFormat = ReturnFormat.NODES
    group_by: Optional[str] = None

    def __post_init__(self) -> None:
        self.return_format = _as_enum(ReturnFormat, self.return_format, "return format")
        self.aggregations = [_as_enum(AggregationType, a, "aggregation") for a in self.aggregations]

    def validate(self) -> None:
        """Raise InvalidQueryError for structurally malformed queries."""
        if not self.start_nodes:
            raise InvalidQueryError("Query requires at least one start node")
        pattern = self.traversal_pattern
        if pattern.min_depth < 0 or pattern.max_depth < 0:
            raise InvalidQueryError(
                f"Depth bounds must be non-negative (min={pattern.min_depth}, max={pattern.max_depth})"
            )
        if pattern.min_depth > pattern.max_depth:
            raise InvalidQueryError(
                f"min_depth ({pattern.min_depth}) exceeds max_depth ({pattern.max_depth})"
            )
        if AggregationType.GROUP_BY in self.aggregations and not self.group_by:
            raise InvalidQueryError("group_by aggregation requires a group_by attribute")


@dataclass
class GraphPath:
    """A walk from a start node; `relationships[i]` joins `nodes[i]` and `nodes[i+1]`."""

    nodes: List[str]
    relationships: List[str] = field(default_factory=list)
    cost: float = 0.0
    strength: float = 1.0

    @property
    def length(self) -> int:
        return len(self.relationships)

    @property
    def start(self) -> str:
        return self.nodes[0]

    @property
    def end(self) -> str:
        return self.nodes[-1]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": list(self.nodes),
            "relationships": list(self.relationships),
            "length": self.length,
            "cost": self.cost,
            "strength": self.strength,
        }


@dataclass
class TraversalResult:
    """Raw traversal output before filters, aggregation and formatting."""

    depths: Dict[str, int]
    paths: List[GraphPath]
    nodes_visited: int = 0
    paths_explored: int = 0
    truncated: bool = False

    @property
    def nodes(self) -> List[str]:
        """Result node ids ordered by depth, then id."""
        return sorted(self.depths, key=lambda node: (self.depths[node], node))


@dataclass
class QueryPerformance:
    query_time_ms: float
    nodes_visited: int
    paths_explored: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query_time_ms": self.query_time_ms,
            "nodes_visited": self.nodes_visited,
            "paths_explored": self.paths_explored,
        }


@dataclass
class QueryResult:
    graph_id: str
    results: Any
    nodes: List[str]
    paths: List[GraphPath]
    aggregations: Dict[str, Any] = field(default_factory=dict)
    insights: List[GraphInsight] = field(default_factory=list)
    performance: Optional[QueryPerformance] = None
    truncated: bool = False
