"""
Aggregate graph metrics.

`compute_statistics` is a pure function of (entities, relationships, clusters)
and is rerun from scratch after every structural change rather than patched
incrementally. Tabular summaries (most connected entities, relationship type
mix) are computed with pandas.
"""

import logging
from typing import Any, Dict, Iterable, List, Sequence

import pandas as pd

from semkg.graph.models import Entity, EntityCluster, GraphStatistics, KnowledgeGraph, Relationship

logger = logging.getLogger(__name__)

RELATIONSHIP_COLUMNS = ["id", "type", "source_id", "target_id", "strength", "bidirectional"]
ENTITY_COLUMNS = ["id", "type", "name", "importance", "last_updated"]


def compute_statistics(
    entities: Sequence[Entity],
    relationships: Sequence[Relationship],
    clusters: List[EntityCluster],
) -> GraphStatistics:
    """
    Compute GraphStatistics.

    avg_degree = 2E / N (0 when N == 0); density = E / (N(N-1)/2) (0 when N < 2).
    """
    total_entities = len(entities)
    total_relationships = len(relationships)
    avg_degree = (2.0 * total_relationships / total_entities) if total_entities > 0 else 0.0
    max_edges = total_entities * (total_entities - 1) / 2.0
    density = (total_relationships / max_edges) if max_edges > 0 else 0.0
    return GraphStatistics(
        total_entities=total_entities,
        total_relationships=total_relationships,
        avg_degree=avg_degree,
        density=density,
        clusters=len(clusters),
        main_components=list(clusters),
    )


def relationships_frame(relationships: Iterable[Relationship]) -> pd.DataFrame:
    """Relationships as a DataFrame with RELATIONSHIP_COLUMNS."""
    rows = [
        {
            "id": r.id,
            "type": r.type.value,
            "source_id": r.source_id,
            "target_id": r.target_id,
            "strength": r.strength,
            "bidirectional": r.bidirectional,
        }
        for r in relationships
    ]
    return pd.DataFrame(rows, columns=RELATIONSHIP_COLUMNS)


def entities_frame(entities: Iterable[Entity]) -> pd.DataFrame:
    """Entities as a DataFrame with ENTITY_COLUMNS."""
    rows = [
        {
            "id": e.id,
            "type": e.type.value,
            "name": e.name,
            "importance": e.importance,
            "last_updated": e.last_updated,
        }
        for e in entities
    ]
    return pd.DataFrame(rows, columns=ENTITY_COLUMNS)


def most_connected_entities(graph: KnowledgeGraph, top_k: int = 5) -> List[Dict[str, Any]]:
    """Entities with the highest total degree (ties broken by id)."""
    edges = relationships_frame(graph.relationships.values())
    if edges.empty:
        return []
    degree = pd.concat([edges["source_id"], edges["target_id"]]).value_counts()
    ranked = sorted(degree.items(), key=lambda item: (-int(item[1]), item[0]))[:top_k]
    return [
        {"id": entity_id, "name": graph.entities[entity_id].name, "degree": int(count)}
        for entity_id, count in ranked
        if entity_id in graph.entities
    ]


def key_relationship_types(graph: KnowledgeGraph, top_k: int = 5) -> List[Dict[str, Any]]:
    """Relationship types by frequency, with mean strength."""
    edges = relationships_frame(graph.relationships.values())
    if edges.empty:
        return []
    grouped = edges.groupby("type")["strength"].agg(["count", "mean"]).reset_index()
    grouped = grouped.sort_values(["count", "type"], ascending=[False, True]).head(top_k)
    return [
        {"type": row["type"], "count": int(row["count"]), "avg_strength": float(row["mean"])}
        for _, row in grouped.iterrows()
    ]


def summarize_graphs(graphs: Sequence[KnowledgeGraph], top_k: int = 5) -> Dict[str, Any]:
    """
    Summary across one or many graphs.

    For a single graph, knowledge density is the graph's density; across
    several it is total relationships / (total entities * graph count).
    """
    total_entities = sum(g.statistics.total_entities for g in graphs)
    total_relationships = sum(g.statistics.total_relationships for g in graphs)
    domains = sorted({g.domain for g in graphs})

    if len(graphs) == 1:
        graph = graphs[0]
        density = graph.statistics.density
        connected = most_connected_entities(graph, top_k)
        rel_types = key_relationship_types(graph, top_k)
    else:
        denominator = total_entities * len(graphs)
        density = total_relationships / denominator if denominator > 0 else 0.0
        connected = []
        for graph in graphs:
            for item in most_connected_entities(graph, top_k):
                connected.append(dict(item, graph_id=graph.graph_id))
        connected = sorted(connected, key=lambda item: (-item["degree"], item["graph_id"], item["id"]))[:top_k]
        edges = pd.concat(
            [relationships_frame(g.relationships.values()) for g in graphs] or [relationships_frame([])],
            ignore_index=True,
        )
        rel_types = []
        if not edges.empty:
            counts = edges["type"].value_counts()
            rel_types = [
                {"type": t, "count": int(c)}
                for t, c in sorted(counts.items(), key=lambda item: (-int(item[1]), item[0]))[:top_k]
            ]

    return {
        "total_graphs": len(graphs),
        "total_entities": total_entities,
        "total_relationships": total_relationships,
        "domains": domains,
        "insights": {
            "most_connected_entities": connected,
            "key_relationship_types": rel_types,
            "knowledge_density": density,
        },
    }
