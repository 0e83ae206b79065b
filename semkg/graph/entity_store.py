"""
Entity identity management and importance scoring.

Disambiguation groups candidates by (type, normalized name) and folds
duplicates into the first-seen entity. Importance is a one-pass local
approximation of centrality:

    importance = min(1, (incoming * w_in + outgoing * w_out) / (N * normalizer))

where `incoming` is the summed strength of edges pointing at the entity and
`outgoing` the number of edges leaving it. This is O(E) rather than an
iterative PageRank; graphs are domain-scoped (hundreds to low thousands of
entities), so a fixed-point computation buys little.
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from semkg.graph.models import Entity, Relationship, clamp_unit

logger = logging.getLogger(__name__)


class EntityStore:
    """Disambiguates entity candidates and scores their importance."""

    def __init__(
        self,
        incoming_weight: float = 0.7,
        outgoing_weight: float = 0.3,
        normalizer: float = 0.5,
    ):
        """
        Initialize entity store.

        Args:
            incoming_weight: Weight of summed incoming relationship strength
            outgoing_weight: Weight of outgoing relationship count
            normalizer: Per-entity scale applied to the entity count
        """
        if normalizer <= 0:
            raise ValueError("normalizer must be positive")
        self.incoming_weight = incoming_weight
        self.outgoing_weight = outgoing_weight
        self.normalizer = normalizer

    def disambiguate(self, candidates: Iterable[Entity]) -> List[Entity]:
        """Return one canonical entity per (type, normalized name), in first-seen order."""
        canonical, _ = self.disambiguate_with_redirects(candidates)
        return canonical

    def disambiguate_with_redirects(
        self,
        candidates: Iterable[Entity],
        existing: Optional[Mapping[Tuple[str, str], Entity]] = None,
    ) -> Tuple[List[Entity], Dict[str, str]]:
        """
        Merge duplicate candidates.

        Args:
            candidates: Entity candidates (mutated in place when merged into)
            existing: Already-canonical entities keyed by disambiguation key;
                candidates matching one of these are merged into it and not
                returned

        Returns:
            Tuple of (new canonical entities, redirects from merged-away ids
            to the id of the entity that absorbed them)
        """
        by_key: Dict[Tuple[str, str], Entity] = dict(existing or {})
        canonical: List[Entity] = []
        redirects: Dict[str, str] = {}

        for entity in candidates:
            key = entity.key
            keeper = by_key.get(key)
            if keeper is None:
                by_key[key] = entity
                canonical.append(entity)
                continue
            if keeper is entity:
                continue
            keeper.merge_from(entity)
            if entity.id != keeper.id:
                redirects[entity.id] = keeper.id
            logger.debug("Merged entity '%s' (%s) into '%s'", entity.name, entity.id, keeper.id)

        if redirects:
            logger.info("Disambiguation merged %d duplicate entities", len(redirects))
        return canonical, redirects

    def compute_importance(
        self,
        entities: Iterable[Entity],
        relationships: Iterable[Relationship],
    ) -> Dict[str, float]:
        """
        Recompute and assign importance for every entity.

        Returns:
            Mapping of entity id -> new importance (empty for no entities)
        """
        entities = list(entities)
        if not entities:
            return {}

        incoming: Dict[str, float] = defaultdict(float)
        outgoing: Dict[str, int] = defaultdict(int)
        for rel in relationships:
            incoming[rel.target_id] += rel.strength
            outgoing[rel.source_id] += 1

        scale = len(entities) * self.normalizer
        scores: Dict[str, float] = {}
        for entity in entities:
            raw = (incoming[entity.id] * self.incoming_weight + outgoing[entity.id] * self.outgoing_weight) / scale
            entity.importance = clamp_unit(min(1.0, raw))
            scores[entity.id] = entity.importance
        return scores
