"""
Enrichment engine.

Entity matching is term based: an entity's name matches with confidence 1.0
and an alias with 0.9 when found on word boundaries (case-insensitive); a
bare substring match inside a longer word scores 0.6. Relationships are never
invented: only relationships already in the graph between two found entities
are surfaced.

enrichment_score = min((0.3 * entities + 0.4 * relationships + 0.3 * concepts) / 10, 1.0)

The score is intentionally coarse; ten concept recommendations count as
much as ten matched entities.
"""

import logging
import re
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from itertools import combinations
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import numpy as np
from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.metrics.pairwise import cosine_similarity

from semkg.graph.models import Entity, KnowledgeGraph, Relationship, normalize_name, utcnow
from semkg.graph.query import ConstraintType, Direction, PathStrategy, QueryConstraint, TraversalPattern
from semkg.graph.traversal import TraversalEngine, compare

logger = logging.getLogger(__name__)

NAME_CONFIDENCE = 1.0
ALIAS_CONFIDENCE = 0.9
SUBSTRING_CONFIDENCE = 0.6
MIN_SUBSTRING_LENGTH = 3

_SECONDS_PER_DAY = 86400.0
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+|\n+")
_CAPITALIZED_PHRASE = re.compile(r"\b[A-Z][\w\-]*(?:\s+[A-Z0-9][\w\-]*)*")


class GapType(str, Enum):
    MISSING_ENTITY = "missing_entity"
    WEAK_CONNECTION = "weak_connection"
    OUTDATED_INFO = "outdated_info"
    AMBIGUITY = "ambiguity"


@dataclass
class ContentInput:
    """Text to enrich; current_entities are names the caller already tagged."""

    id: str
    text: str
    current_entities: List[str] = field(default_factory=list)


@dataclass
class EntityMatch:
    entity: Entity
    confidence: float
    matched_term: str
    occurrences: int = 1
    position: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity.to_dict(),
            "confidence": self.confidence,
            "matched_term": self.matched_term,
            "occurrences": self.occurrences,
        }


@dataclass
class ConceptRecommendation:
    concept: str
    entity_id: str
    relevance: float
    reasoning: str
    source_paths: List[List[str]] = field(default_factory=list)
    content_suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "concept": self.concept,
            "entity_id": self.entity_id,
            "relevance": self.relevance,
            "reasoning": self.reasoning,
            "source_paths": [list(p) for p in self.source_paths],
            "content_suggestions": list(self.content_suggestions),
        }


@dataclass
class KnowledgeGap:
    gap_type: GapType
    description: str
    affected_entities: List[str] = field(default_factory=list)
    suggested_actions: List[str] = field(default_factory=list)
    priority: float = 0.5

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gap_type": self.gap_type.value,
            "description": self.description,
            "affected_entities": list(self.affected_entities),
            "suggested_actions": list(self.suggested_actions),
            "priority": self.priority,
        }


@dataclass
class ContentEnrichment:
    """Transient enrichment output; nothing here is written back to the graph."""

    content_id: str
    extracted_entities: List[EntityMatch]
    inferred_relationships: List[Relationship]
    related_concepts: List[ConceptRecommendation]
    knowledge_gaps: List[KnowledgeGap]
    enrichment_score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content_id": self.content_id,
            "extracted_entities": [m.to_dict() for m in self.extracted_entities],
            "inferred_relationships": [r.to_dict() for r in self.inferred_relationships],
            "related_concepts": [c.to_dict() for c in self.related_concepts],
            "knowledge_gaps": [g.to_dict() for g in self.knowledge_gaps],
            "enrichment_score": self.enrichment_score,
        }


@dataclass
class QueryContext:
    query: str = ""
    intent: str = ""
    entities: List[str] = field(default_factory=list)
    constraints: List[QueryConstraint] = field(default_factory=list)
    expansion_depth: int = 2
    result_limit: int = 10


@dataclass
class ContentQueryResult:
    relevant_entities: List[Entity]
    related_concepts: List[ConceptRecommendation]
    suggested_queries: List[str]
    knowledge_paths: List[List[str]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "relevant_entities": [e.to_dict() for e in self.relevant_entities],
            "related_concepts": [c.to_dict() for c in self.related_concepts],
            "suggested_queries": list(self.suggested_queries),
            "knowledge_paths": [list(p) for p in self.knowledge_paths],
        }


def enrichment_score(entity_count: int, relationship_count: int, concept_count: int) -> float:
    raw = 0.3 * entity_count + 0.4 * relationship_count + 0.3 * concept_count
    return min(raw / 10.0, 1.0)


def _term_pattern(term: str) -> "re.Pattern[str]":
    return re.compile(r"(?<!\w)" + re.escape(term) + r"(?!\w)", re.IGNORECASE)


class EnrichmentEngine:
    """Enriches free text with knowledge from a graph."""

    def __init__(
        self,
        traversal: Optional[TraversalEngine] = None,
        recommendation_depth: int = 2,
        top_k_concepts: int = 5,
        weak_connection_threshold: float = 0.3,
        min_cooccurrence: int = 2,
        name_similarity_threshold: float = 0.6,
        semantic_similarity_threshold: float = 0.7,
        staleness_days: float = 180.0,
    ):
        """
        Initialize enrichment engine.

        Args:
            traversal: Traversal engine used for concept recommendations
            recommendation_depth: Hops walked from each found entity
            top_k_concepts: Number of concept recommendations returned
            weak_connection_threshold: Strength below which co-occurring pairs are gaps
            min_cooccurrence: Sentences two entities must share to be compared
            name_similarity_threshold: TF-IDF similarity for missing-entity gaps
            semantic_similarity_threshold: Embedding cosine similarity for semantic concepts
            staleness_days: Age after which a found entity is outdated
        """
        self.traversal = traversal or TraversalEngine()
        self.recommendation_depth = recommendation_depth
        self.top_k_concepts = top_k_concepts
        self.weak_connection_threshold = weak_connection_threshold
        self.min_cooccurrence = min_cooccurrence
        self.name_similarity_threshold = name_similarity_threshold
        self.semantic_similarity_threshold = semantic_similarity_threshold
        self.staleness_days = staleness_days

    def enrich(
        self,
        graph: KnowledgeGraph,
        content: ContentInput,
        now: Optional[datetime] = None,
    ) -> ContentEnrichment:
        """Full enrichment pass; caller holds the graph's read lock."""
        matches = self.extract_content_entities(content.text, graph)
        relationships = self.infer_relationships(matches, graph)
        concepts = self.recommend_related_concepts(matches, graph)
        gaps = self.identify_knowledge_gaps(content, matches, graph, now=now)
        score = enrichment_score(len(matches), len(relationships), len(concepts))
        logger.debug(
            "Enriched content %s: %d entities, %d relationships, %d concepts, %d gaps",
            content.id,
            len(matches),
            len(relationships),
            len(concepts),
            len(gaps),
        )
        return ContentEnrichment(
            content_id=content.id,
            extracted_entities=matches,
            inferred_relationships=relationships,
            related_concepts=concepts,
            knowledge_gaps=gaps,
            enrichment_score=score,
        )

    def extract_content_entities(self, text: str, graph: KnowledgeGraph) -> List[EntityMatch]:
        """
        Graph entities mentioned in text.

        Returns:
            One match per entity (its best term), ordered by first position
            in the text, then entity id
        """
        matches: List[EntityMatch] = []
        lowered = text.lower()
        for entity_id in sorted(graph.entities):
            entity = graph.entities[entity_id]
            best: Optional[EntityMatch] = None
            terms = [(entity.name, NAME_CONFIDENCE)] + [(alias, ALIAS_CONFIDENCE) for alias in entity.aliases]
            for term, confidence in terms:
                found = list(_term_pattern(term).finditer(text))
                if found:
                    candidate = EntityMatch(entity.copy(), confidence, term, len(found), found[0].start())
                elif len(term) >= MIN_SUBSTRING_LENGTH and term.lower() in lowered:
                    candidate = EntityMatch(
                        entity.copy(),
                        SUBSTRING_CONFIDENCE,
                        term,
                        lowered.count(term.lower()),
                        lowered.index(term.lower()),
                    )
                else:
                    continue
                if best is None or (candidate.confidence, -candidate.position) > (best.confidence, -best.position):
                    best = candidate
            if best is not None:
                matches.append(best)
        matches.sort(key=lambda m: (m.position, m.entity.id))
        return matches

    def infer_relationships(self, matches: Sequence[EntityMatch], graph: KnowledgeGraph) -> List[Relationship]:
        """Existing relationships joining two distinct found entities, by id."""
        found = {m.entity.id for m in matches}
        return [
            graph.relationships[rel_id].copy()
            for rel_id in sorted(graph.relationships)
            if graph.relationships[rel_id].source_id in found
            and graph.relationships[rel_id].target_id in found
            and graph.relationships[rel_id].source_id != graph.relationships[rel_id].target_id
        ]

    def recommend_related_concepts(
        self,
        matches: Sequence[EntityMatch],
        graph: KnowledgeGraph,
        depth: Optional[int] = None,
        top_k: Optional[int] = None,
    ) -> List[ConceptRecommendation]:
        """
        Neighbours of found entities ranked by path strength * neighbour importance.

        Entities with embeddings also pull in semantically similar entities
        (cosine similarity at or above the semantic threshold), ranked by
        similarity * (1 + importance) / 2.
        """
        depth = self.recommendation_depth if depth is None else depth
        top_k = self.top_k_concepts if top_k is None else top_k
        found = {m.entity.id for m in matches}
        best: Dict[str, ConceptRecommendation] = {}

        def offer(recommendation: ConceptRecommendation) -> None:
            current = best.get(recommendation.entity_id)
            if current is None:
                best[recommendation.entity_id] = recommendation
                return
            current.source_paths.extend(recommendation.source_paths)
            if recommendation.relevance > current.relevance:
                current.relevance = recommendation.relevance
                current.reasoning = recommendation.reasoning

        if depth >= 1:
            pattern = TraversalPattern(
                direction=Direction.BOTH,
                min_depth=1,
                max_depth=depth,
                path_strategy=PathStrategy.SHORTEST,
            )
            for match in matches:
                origin = graph.entities[match.entity.id]
                result = self.traversal.traverse(graph, [origin.id], pattern)
                for path in result.paths:
                    if path.end in found:
                        continue
                    neighbor = graph.entities[path.end]
                    relevance = path.strength * neighbor.importance
                    if relevance <= 0:
                        continue
                    names = [graph.entities[n].name for n in path.nodes]
                    offer(
                        ConceptRecommendation(
                            concept=neighbor.name,
                            entity_id=neighbor.id,
                            relevance=relevance,
                            reasoning=(
                                f"Reached from '{origin.name}' via {' -> '.join(names)} "
                                f"({path.length} hop{'s' if path.length != 1 else ''})"
                            ),
                            source_paths=[names],
                            content_suggestions=self._content_suggestions(origin.name, neighbor.name),
                        )
                    )

        for origin_id, neighbor_id, similarity in self._semantic_neighbors(found, graph):
            origin = graph.entities[origin_id]
            neighbor = graph.entities[neighbor_id]
            relevance = similarity * (1.0 + neighbor.importance) / 2.0
            offer(
                ConceptRecommendation(
                    concept=neighbor.name,
                    entity_id=neighbor.id,
                    relevance=relevance,
                    reasoning=f"Semantically similar to '{origin.name}' (cosine {similarity:.2f})",
                    source_paths=[[origin.name, neighbor.name]],
                    content_suggestions=self._content_suggestions(origin.name, neighbor.name),
                )
            )

        ranked = sorted(best.values(), key=lambda c: (-c.relevance, c.entity_id))
        return ranked[:top_k]

    def _semantic_neighbors(self, found: Set[str], graph: KnowledgeGraph) -> List[Tuple[str, str, float]]:
        origins = sorted(eid for eid in found if graph.entities[eid].embedding is not None)
        if not origins:
            return []
        dim = graph.entities[origins[0]].embedding.shape[0]
        origins = [eid for eid in origins if graph.entities[eid].embedding.shape[0] == dim]
        others = sorted(
            eid
            for eid, entity in graph.entities.items()
            if eid not in found and entity.embedding is not None and entity.embedding.shape[0] == dim
        )
        if not others:
            return []
        similarities = cosine_similarity(
            np.vstack([graph.entities[eid].embedding for eid in origins]),
            np.vstack([graph.entities[eid].embedding for eid in others]),
        )
        neighbors = []
        for i, origin_id in enumerate(origins):
            for j, other_id in enumerate(others):
                similarity = float(similarities[i, j])
                if similarity >= self.semantic_similarity_threshold:
                    neighbors.append((origin_id, other_id, similarity))
        return neighbors

    @staticmethod
    def _content_suggestions(origin: str, concept: str) -> List[str]:
        return [
            f"Explain how {concept} relates to {origin}",
            f"Compare {origin} and {concept}",
        ]

    def identify_knowledge_gaps(
        self,
        content: ContentInput,
        matches: Sequence[EntityMatch],
        graph: KnowledgeGraph,
        now: Optional[datetime] = None,
    ) -> List[KnowledgeGap]:
        """Missing entities, weak connections, outdated info and ambiguous terms, by priority."""
        gaps: List[KnowledgeGap] = []
        gaps.extend(self._missing_entities(content, matches, graph))
        gaps.extend(self._weak_connections(content.text, matches, graph))
        gaps.extend(self._outdated(matches, graph, now or utcnow()))
        gaps.extend(self._ambiguities(matches, graph))
        return sorted(gaps, key=lambda g: (-g.priority, g.gap_type.value, g.description))

    def _missing_entities(
        self,
        content: ContentInput,
        matches: Sequence[EntityMatch],
        graph: KnowledgeGraph,
    ) -> List[KnowledgeGap]:
        known: Dict[str, str] = {}
        for entity_id in sorted(graph.entities):
            for name in graph.entities[entity_id].all_names():
                known.setdefault(normalize_name(name), entity_id)
        matched_terms = {normalize_name(m.matched_term) for m in matches}

        phrases: List[str] = []
        seen: Set[str] = set()
        for phrase in list(content.current_entities) + _CAPITALIZED_PHRASE.findall(content.text):
            phrase = phrase.strip()
            key = normalize_name(phrase)
            if not key or key in seen or key in known or key in matched_terms:
                continue
            seen.add(key)
            phrases.append(phrase)
        if not phrases:
            return []

        gaps = []
        tagged = {normalize_name(name) for name in content.current_entities}
        if known:
            names = sorted(known)
            vectorizer = TfidfVectorizer(analyzer="char_wb", ngram_range=(2, 3), lowercase=True)
            matrix = vectorizer.fit_transform(names + [normalize_name(p) for p in phrases])
            similarities = cosine_similarity(matrix[len(names):], matrix[: len(names)])
        else:
            names, similarities = [], None

        for i, phrase in enumerate(phrases):
            closest_name, similarity = None, 0.0
            if similarities is not None:
                j = int(np.argmax(similarities[i]))
                closest_name, similarity = names[j], float(similarities[i, j])
            if similarity >= self.name_similarity_threshold:
                entity = graph.entities[known[closest_name]]
                gaps.append(
                    KnowledgeGap(
                        gap_type=GapType.MISSING_ENTITY,
                        description=f"'{phrase}' resembles '{entity.name}' but is not in the graph",
                        affected_entities=[entity.id],
                        suggested_actions=[
                            f"Add '{phrase}' as an entity",
                            f"Or add '{phrase}' as an alias of '{entity.name}'",
                        ],
                        priority=similarity,
                    )
                )
            elif normalize_name(phrase) in tagged:
                gaps.append(
                    KnowledgeGap(
                        gap_type=GapType.MISSING_ENTITY,
                        description=f"Tagged entity '{phrase}' is not in the graph",
                        suggested_actions=[f"Add '{phrase}' as an entity"],
                        priority=0.5,
                    )
                )
        return gaps

    def _weak_connections(self, text: str, matches: Sequence[EntityMatch], graph: KnowledgeGraph) -> List[KnowledgeGap]:
        if len(matches) < 2:
            return []
        sentences = [s for s in _SENTENCE_SPLIT.split(text) if s.strip()]
        patterns = {
            m.entity.id: [_term_pattern(term) for term in m.entity.all_names()]
            for m in matches
        }
        cooccurrence: Counter = Counter()
        for sentence in sentences:
            present = sorted(
                eid for eid, term_patterns in patterns.items() if any(p.search(sentence) for p in term_patterns)
            )
            for pair in combinations(present, 2):
                cooccurrence[pair] += 1

        strongest: Dict[Tuple[str, str], float] = defaultdict(float)
        for rel in graph.relationships.values():
            pair = tuple(sorted(rel.endpoints))
            strongest[pair] = max(strongest[pair], rel.strength)

        gaps = []
        for (first, second), count in sorted(cooccurrence.items()):
            if count < self.min_cooccurrence:
                continue
            strength = strongest.get((first, second), 0.0)
            if strength >= self.weak_connection_threshold:
                continue
            a, b = graph.entities[first].name, graph.entities[second].name
            gaps.append(
                KnowledgeGap(
                    gap_type=GapType.WEAK_CONNECTION,
                    description=(
                        f"'{a}' and '{b}' appear together in {count} sentences "
                        f"but their strongest relationship is {strength:.2f}"
                    ),
                    affected_entities=[first, second],
                    suggested_actions=[f"Add or strengthen a relationship between '{a}' and '{b}'"],
                    priority=1.0 - strength,
                )
            )
        return gaps

    def _outdated(self, matches: Sequence[EntityMatch], graph: KnowledgeGraph, now: datetime) -> List[KnowledgeGap]:
        gaps = []
        for match in matches:
            entity = graph.entities[match.entity.id]
            age_days = (now - entity.last_updated).total_seconds() / _SECONDS_PER_DAY
            if age_days <= self.staleness_days:
                continue
            gaps.append(
                KnowledgeGap(
                    gap_type=GapType.OUTDATED_INFO,
                    description=f"'{entity.name}' was last updated {int(age_days)} days ago",
                    affected_entities=[entity.id],
                    suggested_actions=[f"Refresh information about '{entity.name}'"],
                    priority=min(1.0, age_days / (2.0 * self.staleness_days)),
                )
            )
        return gaps

    def _ambiguities(self, matches: Sequence[EntityMatch], graph: KnowledgeGraph) -> List[KnowledgeGap]:
        carriers: Dict[str, Set[str]] = defaultdict(set)
        for entity in graph.entities.values():
            for name in entity.all_names():
                carriers[normalize_name(name)].add(entity.id)
        gaps = []
        reported: Set[str] = set()
        for match in matches:
            term = normalize_name(match.matched_term)
            ids = carriers.get(term, set())
            if len(ids) < 2 or term in reported:
                continue
            reported.add(term)
            gaps.append(
                KnowledgeGap(
                    gap_type=GapType.AMBIGUITY,
                    description=f"'{match.matched_term}' refers to {len(ids)} different entities",
                    affected_entities=sorted(ids),
                    suggested_actions=["Qualify the term in the text", "Review entity aliases for overlap"],
                    priority=0.5,
                )
            )
        return gaps

    def query_by_content(
        self,
        graph: KnowledgeGraph,
        text: str,
        context: Optional[QueryContext] = None,
    ) -> ContentQueryResult:
        """
        Entities, concepts, paths and follow-up queries relevant to text.

        Context entities (ids or names) are added to those found in the
        text; entity-type and attribute constraints filter the result.
        """
        context = context or QueryContext(expansion_depth=self.recommendation_depth)
        matches = self.extract_content_entities(text, graph)
        by_id = {m.entity.id: m for m in matches}
        for ref in context.entities:
            for entity_id in self._resolve(ref, graph):
                if entity_id not in by_id:
                    by_id[entity_id] = EntityMatch(graph.entities[entity_id].copy(), NAME_CONFIDENCE, ref, 0)

        relevant = [
            m for m in by_id.values()
            if all(self._entity_matches(m.entity, c) for c in context.constraints)
        ]
        relevant.sort(key=lambda m: (-m.confidence, -m.entity.importance, m.entity.id))
        relevant = relevant[: max(0, context.result_limit)]

        concepts = self.recommend_related_concepts(relevant, graph, depth=context.expansion_depth)
        paths = self._knowledge_paths([m.entity.id for m in relevant], graph, context.expansion_depth)
        entities = [m.entity for m in relevant]
        return ContentQueryResult(
            relevant_entities=entities,
            related_concepts=concepts,
            suggested_queries=self.suggest_queries(entities, concepts, context),
            knowledge_paths=paths,
        )

    @staticmethod
    def _resolve(ref: str, graph: KnowledgeGraph) -> List[str]:
        if ref in graph.entities:
            return [ref]
        key = normalize_name(ref)
        return sorted(
            eid for eid, entity in graph.entities.items()
            if key in {normalize_name(n) for n in entity.all_names()}
        )

    @staticmethod
    def _entity_matches(entity: Entity, constraint: QueryConstraint) -> bool:
        if constraint.type == ConstraintType.ENTITY_TYPE:
            return compare(entity.type.value, constraint.operator, constraint.value)
        if constraint.type == ConstraintType.ATTRIBUTE:
            if constraint.attribute == "name":
                actual: Any = entity.name
            elif constraint.attribute == "importance":
                actual = entity.importance
            elif constraint.attribute in entity.attributes:
                actual = entity.attributes[constraint.attribute]
            else:
                return False
            return compare(actual, constraint.operator, constraint.value)
        # Distance and relationship constraints only apply to traversals
        return True

    def _knowledge_paths(self, entity_ids: Sequence[str], graph: KnowledgeGraph, max_length: int) -> List[List[str]]:
        paths = []
        for first, second in combinations(entity_ids, 2):
            path = self.traversal.find_path(graph, first, second, max_length=max(1, max_length) * 2)
            if path and len(path) > 1:
                paths.append(path)
        return paths

    @staticmethod
    def suggest_queries(
        entities: Sequence[Entity],
        concepts: Sequence[ConceptRecommendation],
        context: Optional[QueryContext] = None,
    ) -> List[str]:
        if not entities:
            return []
        name = entities[0].name
        queries = [
            f"What are the main features of {name}?",
            f"How do I set up {name}?",
            f"{name} vs competitors",
        ]
        if concepts:
            queries.append(f"How does {name} relate to {concepts[0].concept}?")
        if len(entities) > 1:
            queries.append(f"{name} vs {entities[1].name}")
        if context is not None and context.intent:
            queries.append(f"{context.intent}: {name}")
        return queries

