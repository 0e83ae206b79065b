"""
Thematic clustering of entities.

Connected components with a strength threshold: two entities share a cluster
when a chain of relationships with strength >= threshold joins them. Components
are found with networkx's union-find over the filtered relationship set.
"""

import logging
from collections import Counter, defaultdict
from typing import Dict, Iterable, List

from networkx.utils import UnionFind

from semkg.graph.models import Entity, EntityCluster, EntityType, Relationship

logger = logging.getLogger(__name__)

_TYPE_ORDER = {entity_type.value: i for i, entity_type in enumerate(EntityType)}


def theme_for(types: Iterable[str]) -> str:
    """Theme label from the most frequent entity type (ties: declaration order)."""
    counts = Counter(types)
    if not counts:
        return "mixed"
    dominant = max(counts, key=lambda t: (counts[t], -_TYPE_ORDER.get(t, len(_TYPE_ORDER))))
    return f"{dominant}-centric"


class ClusteringEngine:
    """Groups entities into clusters using relationship density."""

    def __init__(self, cluster_threshold: float = 0.5):
        """
        Initialize clustering engine.

        Args:
            cluster_threshold: Minimum relationship strength joining two entities
        """
        self.cluster_threshold = cluster_threshold

    def cluster(
        self,
        entities: Iterable[Entity],
        relationships: Iterable[Relationship],
    ) -> List[EntityCluster]:
        """
        Build clusters for the given entities.

        Returns:
            Clusters ordered by size (desc), then central entity importance
            (desc), then central entity id
        """
        entities = list(entities)
        if not entities:
            return []
        by_id: Dict[str, Entity] = {e.id: e for e in entities}
        relationships = [r for r in relationships if r.source_id in by_id and r.target_id in by_id]

        components = UnionFind(by_id.keys())
        for rel in relationships:
            if rel.strength >= self.cluster_threshold:
                components.union(rel.source_id, rel.target_id)

        members: Dict[str, List[str]] = defaultdict(list)
        for entity_id in by_id:
            members[components[entity_id]].append(entity_id)

        intra_total: Dict[str, int] = defaultdict(int)
        intra_strong: Dict[str, int] = defaultdict(int)
        for rel in relationships:
            root = components[rel.source_id]
            if components[rel.target_id] != root:
                continue
            intra_total[root] += 1
            if rel.strength >= self.cluster_threshold:
                intra_strong[root] += 1

        clusters: List[EntityCluster] = []
        for root, ids in members.items():
            ids = sorted(ids)
            central = min(ids, key=lambda eid: (-by_id[eid].importance, eid))
            if len(ids) == 1 or intra_total[root] == 0:
                coherence = 0.0
            else:
                coherence = intra_strong[root] / intra_total[root]
            clusters.append(
                EntityCluster(
                    cluster_id=f"cluster_{central}",
                    name=f"{by_id[central].name} cluster",
                    entities=ids,
                    central_entity=central,
                    theme=theme_for(by_id[eid].type.value for eid in ids),
                    coherence=coherence,
                )
            )

        clusters.sort(
            key=lambda c: (-len(c.entities), -by_id[c.central_entity].importance, c.central_entity)
        )
        logger.debug(
            "Clustered %d entities into %d clusters (threshold=%.2f)",
            len(entities),
            len(clusters),
            self.cluster_threshold,
        )
        return clusters
