"""
Insight discovery.

Scans a graph for:
- Patterns: hub entities (top fraction by importance)
- Anomalies: relationships whose strength was cut sharply during recompute
- Trends: dominant relationship types, ageing knowledge
- Recommendations: entities with no relationships at all
- Gaps: clusters with low coherence

Output is ranked by impact, then confidence.
"""

import logging
import math
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd

from semkg.graph.models import Entity, KnowledgeGraph, StrengthAdjustment, utcnow
from semkg.graph.statistics import entities_frame, relationships_frame
from semkg.insights.models import GraphInsight, Impact, InsightType, rank_insights

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 86400.0


class InsightEngine:
    """Produces ranked GraphInsight records from graph structure and changes."""

    def __init__(
        self,
        hub_fraction: float = 0.05,
        low_coherence_threshold: float = 0.3,
        strength_drop_threshold: float = 0.3,
        staleness_days: float = 180.0,
    ):
        """
        Initialize insight engine.

        Args:
            hub_fraction: Share of entities (by importance) reported as hubs
            low_coherence_threshold: Clusters below this coherence are gaps
            strength_drop_threshold: Strength reductions above this are anomalies
            staleness_days: Age after which an entity counts as outdated
        """
        self.hub_fraction = hub_fraction
        self.low_coherence_threshold = low_coherence_threshold
        self.strength_drop_threshold = strength_drop_threshold
        self.staleness_days = staleness_days

    def discover(self, graph: KnowledgeGraph, now: Optional[datetime] = None) -> List[GraphInsight]:
        """All insights for a graph; caller holds the read lock."""
        insights: List[GraphInsight] = []
        insights.extend(self.discover_patterns(graph))
        insights.extend(self.detect_anomalies(graph, graph.strength_adjustments))
        insights.extend(self.analyze_trends(graph, now=now))
        insights.extend(self.generate_recommendations(graph))
        insights.extend(self.identify_gaps(graph))
        ranked = rank_insights(insights)
        logger.debug("Discovered %d insights for graph %s", len(ranked), graph.graph_id)
        return ranked

    def hub_entities(self, graph: KnowledgeGraph) -> List[Entity]:
        """Top max(1, ceil(hub_fraction * N)) entities by importance, excluding importance 0."""
        if not graph.entities:
            return []
        count = max(1, math.ceil(self.hub_fraction * len(graph.entities)))
        ranked = sorted(graph.entities.values(), key=lambda e: (-e.importance, e.id))
        return [e for e in ranked[:count] if e.importance > 0]

    def discover_patterns(self, graph: KnowledgeGraph) -> List[GraphInsight]:
        insights = []
        for entity in self.hub_entities(graph):
            touching = sorted(
                rel.id
                for rel in graph.relationships.values()
                if entity.id in rel.endpoints
            )
            insights.append(
                GraphInsight(
                    insight_type=InsightType.PATTERN,
                    title=f"Hub entity: {entity.name}",
                    description=(
                        f"'{entity.name}' is among the most important entities "
                        f"(importance {entity.importance:.2f}, {len(touching)} relationships)."
                    ),
                    entities=[entity.id],
                    relationships=touching,
                    confidence=entity.importance,
                    actionable_steps=[
                        f"Keep '{entity.name}' content complete and current",
                        f"Use '{entity.name}' as an anchor for related content",
                    ],
                    impact=Impact.HIGH if entity.importance >= 0.5 else Impact.MEDIUM,
                )
            )
        return insights

    def detect_anomalies(
        self,
        graph: KnowledgeGraph,
        adjustments: Iterable[StrengthAdjustment],
    ) -> List[GraphInsight]:
        insights = []
        for adjustment in adjustments:
            if adjustment.reduction <= self.strength_drop_threshold:
                continue
            rel = graph.relationships.get(adjustment.relationship_id)
            entities = list(rel.endpoints) if rel is not None else []
            relative = adjustment.reduction / adjustment.previous if adjustment.previous > 0 else 1.0
            insights.append(
                GraphInsight(
                    insight_type=InsightType.ANOMALY,
                    title=f"Relationship weakened: {adjustment.relationship_id}",
                    description=(
                        f"Strength fell from {adjustment.previous:.2f} to {adjustment.current:.2f}"
                        f" ({adjustment.reason or 'recomputed'})."
                    ),
                    entities=entities,
                    relationships=[adjustment.relationship_id],
                    confidence=min(1.0, relative),
                    actionable_steps=[
                        "Verify the relationship is still accurate",
                        "Refresh the endpoint entities if the information is stale",
                    ],
                    impact=Impact.HIGH if adjustment.reduction >= 0.5 else Impact.MEDIUM,
                )
            )
        return insights

    def analyze_trends(self, graph: KnowledgeGraph, now: Optional[datetime] = None) -> List[GraphInsight]:
        insights = []
        edges = relationships_frame(graph.relationships.values())
        if not edges.empty:
            shares = edges["type"].value_counts(normalize=True)
            top_share = float(shares.max())
            dominant = sorted(t for t, share in shares.items() if float(share) == top_share)[0]
            if top_share >= 0.5 and len(edges) > 1:
                insights.append(
                    GraphInsight(
                        insight_type=InsightType.TREND,
                        title=f"Dominant relationship type: {dominant}",
                        description=(
                            f"{top_share:.0%} of relationships are '{dominant}'; "
                            "other relationship kinds may be under-represented."
                        ),
                        relationships=sorted(edges.loc[edges["type"] == dominant, "id"]),
                        confidence=top_share,
                        actionable_steps=["Review extraction coverage for other relationship types"],
                        impact=Impact.LOW,
                    )
                )

        stale = self._stale_entities(graph, now or utcnow())
        if stale:
            share = len(stale) / len(graph.entities)
            insights.append(
                GraphInsight(
                    insight_type=InsightType.TREND,
                    title="Ageing knowledge",
                    description=(
                        f"{len(stale)} of {len(graph.entities)} entities have not been updated "
                        f"in over {self.staleness_days:g} days."
                    ),
                    entities=stale,
                    confidence=share,
                    actionable_steps=["Re-run extraction on recent sources", "Update stale entity attributes"],
                    impact=Impact.MEDIUM if share >= 0.25 else Impact.LOW,
                )
            )
        return insights

    def _stale_entities(self, graph: KnowledgeGraph, now: datetime) -> List[str]:
        frame = entities_frame(graph.entities.values())
        if frame.empty:
            return []
        ages = (now - pd.to_datetime(frame["last_updated"], utc=True)).dt.total_seconds() / _SECONDS_PER_DAY
        return sorted(frame.loc[ages > self.staleness_days, "id"])

    def generate_recommendations(self, graph: KnowledgeGraph) -> List[GraphInsight]:
        if len(graph.entities) < 2:
            return []
        connected = set()
        for rel in graph.relationships.values():
            connected.update(rel.endpoints)
        isolated = sorted(eid for eid in graph.entities if eid not in connected)
        if not isolated:
            return []
        names = ", ".join(graph.entities[eid].name for eid in isolated[:5])
        return [
            GraphInsight(
                insight_type=InsightType.RECOMMENDATION,
                title="Connect isolated entities",
                description=f"{len(isolated)} entities have no relationships: {names}.",
                entities=isolated,
                confidence=len(isolated) / len(graph.entities),
                actionable_steps=[
                    "Extract relationships from documents mentioning these entities",
                    "Check whether they duplicate existing entities under another name",
                ],
                impact=Impact.MEDIUM,
            )
        ]

    def identify_gaps(self, graph: KnowledgeGraph) -> List[GraphInsight]:
        insights = []
        for cluster in graph.statistics.main_components:
            if cluster.coherence >= self.low_coherence_threshold:
                continue
            singleton = len(cluster.entities) == 1
            insights.append(
                GraphInsight(
                    insight_type=InsightType.GAP,
                    title=f"Weakly connected cluster: {cluster.name}",
                    description=(
                        f"Cluster '{cluster.name}' ({len(cluster.entities)} entities, "
                        f"{cluster.theme}) has coherence {cluster.coherence:.2f}."
                    ),
                    entities=list(cluster.entities),
                    confidence=1.0 - cluster.coherence,
                    actionable_steps=[
                        "Add or strengthen relationships between cluster members",
                        "Create content linking the cluster's concepts",
                    ],
                    impact=Impact.LOW if singleton else Impact.MEDIUM,
                )
            )
        return insights

    def detect_changes(
        self,
        graph: KnowledgeGraph,
        changes: Mapping[str, int],
        touched_entities: Sequence[str] = (),
        adjustments: Iterable[StrengthAdjustment] = (),
    ) -> List[GraphInsight]:
        """Insights about what an update changed."""
        insights: List[GraphInsight] = []
        added = changes.get("entities_added", 0) + changes.get("relationships_added", 0)
        if added:
            insights.append(
                GraphInsight(
                    insight_type=InsightType.TREND,
                    title="Graph expanded",
                    description=(
                        f"Update added {changes.get('entities_added', 0)} entities and "
                        f"{changes.get('relationships_added', 0)} relationships."
                    ),
                    entities=sorted(set(touched_entities)),
                    confidence=1.0,
                    actionable_steps=["Review new entities for content opportunities"],
                    impact=Impact.LOW,
                )
            )
        insights.extend(self.detect_anomalies(graph, adjustments))
        touched = set(touched_entities)
        insights.extend(
            insight
            for insight in self.discover_patterns(graph)
            if touched.intersection(insight.entities)
        )
        return rank_insights(insights)

    def query_insights(
        self,
        graph: KnowledgeGraph,
        start_nodes: Sequence[str],
        result_nodes: Sequence[str],
    ) -> List[GraphInsight]:
        """Insights about a query result: empty results and hubs reached."""
        if not result_nodes:
            return [
                GraphInsight(
                    insight_type=InsightType.RECOMMENDATION,
                    title="Query returned no results",
                    description="No entities matched the traversal pattern and filters.",
                    entities=sorted(set(start_nodes)),
                    confidence=1.0,
                    actionable_steps=[
                        "Increase max_depth or use direction 'both'",
                        "Relax filters or relationship type restrictions",
                    ],
                    impact=Impact.LOW,
                )
            ]
        reached = set(result_nodes)
        return rank_insights(
            [insight for insight in self.discover_patterns(graph) if reached.intersection(insight.entities)]
        )


def insight_counts(insights: Iterable[GraphInsight]) -> Dict[str, int]:
    """Number of insights per insight type."""
    counts: Dict[str, int] = {}
    for insight in insights:
        counts[insight.insight_type.value] = counts.get(insight.insight_type.value, 0) + 1
    return counts
