"""
Relationship validation and weighting.

Relationships are only admitted when both endpoints exist in the graph;
anything else is dropped and counted (partial extraction is normal).
Strength can be recomputed after an update cycle, but type and endpoints
of an existing record never change.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Mapping, Optional, Set

from semkg.common.errors import ValidationError
from semkg.graph.models import BuildDiagnostics, Entity, Relationship, StrengthAdjustment, clamp_unit, utcnow

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 86400.0


@dataclass
class RecomputeContext:
    """Inputs for a strength recomputation pass."""

    entities: Mapping[str, Entity]
    now: datetime = field(default_factory=utcnow)


class RelationshipStore:
    """Validates relationship candidates and recomputes their strength."""

    def __init__(self, staleness_days: float = 180.0, decay_floor: float = 0.5):
        """
        Initialize relationship store.

        Args:
            staleness_days: Age after which an endpoint is considered stale
            decay_floor: Lowest multiplier applied to a stale relationship
        """
        if staleness_days <= 0:
            raise ValueError("staleness_days must be positive")
        self.staleness_days = staleness_days
        self.decay_floor = clamp_unit(decay_floor)

    def validate(
        self,
        candidates: Iterable[Relationship],
        entity_ids: Set[str],
        diagnostics: Optional[BuildDiagnostics] = None,
        strict: bool = False,
        redirects: Optional[Mapping[str, str]] = None,
    ) -> List[Relationship]:
        """
        Keep relationships whose endpoints both exist.

        Args:
            candidates: Relationship candidates
            entity_ids: Ids of entities present in the graph
            diagnostics: Receives the dropped count and reasons
            strict: Raise ValidationError on the first dangling endpoint
            redirects: Merged-away entity ids -> canonical ids; endpoints are
                remapped before checking

        Returns:
            Valid relationships in input order, at most one per id
        """
        redirects = redirects or {}
        valid: List[Relationship] = []
        seen_ids: Set[str] = set()
        dropped = 0

        for rel in candidates:
            source_id = redirects.get(rel.source_id, rel.source_id)
            target_id = redirects.get(rel.target_id, rel.target_id)
            if (source_id, target_id) != rel.endpoints:
                rel = rel.replace(source_id=source_id, target_id=target_id)

            missing = [eid for eid in (source_id, target_id) if eid not in entity_ids]
            if missing:
                message = f"Relationship {rel.id} references missing entities: {', '.join(missing)}"
                if strict:
                    raise ValidationError(message)
                dropped += 1
                if diagnostics is not None:
                    diagnostics.dropped_relationships += 1
                    diagnostics.note(message)
                continue
            if rel.id in seen_ids:
                if diagnostics is not None:
                    diagnostics.skipped_relationships += 1
                    diagnostics.note(f"Duplicate relationship id {rel.id}")
                dropped += 1
                continue
            seen_ids.add(rel.id)
            valid.append(rel)

        if dropped:
            logger.warning("Dropped %d invalid relationships during validation", dropped)
        return valid

    def recompute(
        self,
        relationships: Iterable[Relationship],
        context: RecomputeContext,
    ) -> List[StrengthAdjustment]:
        """
        Recompute strength from each relationship's base strength.

        A relationship whose older endpoint has not been updated within
        `staleness_days` is scaled by max(decay_floor, staleness_days / age_days).
        Only strength is touched.

        Returns:
            One StrengthAdjustment per relationship whose strength changed
        """
        adjustments: List[StrengthAdjustment] = []
        for rel in relationships:
            factor = self._freshness(rel, context)
            base = rel.base_strength if rel.base_strength is not None else rel.strength
            new_strength = clamp_unit(base * factor)
            if abs(new_strength - rel.strength) > 1e-9:
                reason = "stale endpoints" if factor < 1.0 else "endpoints refreshed"
                adjustments.append(
                    StrengthAdjustment(
                        relationship_id=rel.id,
                        previous=rel.strength,
                        current=new_strength,
                        reason=reason,
                    )
                )
                rel.strength = new_strength

        if adjustments:
            logger.info("Recomputed strength for %d relationships", len(adjustments))
        return adjustments

    def _freshness(self, rel: Relationship, context: RecomputeContext) -> float:
        endpoints = [context.entities.get(rel.source_id), context.entities.get(rel.target_id)]
        stamps = [e.last_updated for e in endpoints if e is not None]
        if not stamps:
            return 1.0
        age_days = (context.now - min(stamps)).total_seconds() / _SECONDS_PER_DAY
        if age_days <= self.staleness_days:
            return 1.0
        return max(self.decay_floor, self.staleness_days / age_days)

