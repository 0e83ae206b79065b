"""
Knowledge graph manager.

Top-level orchestrator and identity registry. Build and update run the
pipeline

    disambiguate -> validate -> recompute strength -> importance
        -> clustering -> statistics -> index

under the graph's write lock, so readers never observe a half-updated graph.
Query, enrich and insight operations hold the read lock for their whole
pass. Operations on different graphs never contend; the registry itself is
guarded by a short mutex held only for lookup and insert.
"""

import copy
import logging
import threading
import uuid
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from time import perf_counter
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Set, Tuple, Union

from semkg.common.config import CONFIG_PATH, EngineConfig, load_engine_config
from semkg.common.errors import ConflictError, KnowledgeGraphError, NotFoundError, ValidationError
from semkg.enrichment.engine import (
    ContentEnrichment,
    ContentInput,
    ContentQueryResult,
    EnrichmentEngine,
    QueryContext,
)
from semkg.graph.clustering import ClusteringEngine
from semkg.graph.entity_store import EntityStore
from semkg.graph.graph_index import GraphIndex
from semkg.graph.models import (
    BuildDiagnostics,
    Entity,
    EntityCandidate,
    EntityType,
    GraphMetadata,
    GraphStatistics,
    KnowledgeGraph,
    Relationship,
    RelationshipCandidate,
    StrengthAdjustment,
    coerce_datetime,
    entity_from_candidate,
    relationship_from_candidate,
    slugify,
    utcnow,
)
from semkg.graph.query import GraphQuery, QueryResult
from semkg.graph.relationship_store import RecomputeContext, RelationshipStore
from semkg.graph.statistics import compute_statistics, summarize_graphs
from semkg.graph.traversal import TraversalEngine
from semkg.insights.engine import InsightEngine, insight_counts
from semkg.insights.models import GraphInsight
from semkg.monitoring.operation_metrics import OperationMetricsCollector
from semkg.services.embeddings import EmbeddingService
from semkg.services.extraction import ExtractionService

logger = logging.getLogger(__name__)

ENTITY_UPDATE_FIELDS = frozenset({"name", "type", "aliases", "attributes", "embedding"})
RELATIONSHIP_UPDATE_FIELDS = frozenset(
    {"strength", "properties", "bidirectional", "context", "type", "source_id", "target_id"}
)
_RELATIONSHIP_KEY_ALIASES = {"sourceId": "source_id", "targetId": "target_id"}


@dataclass
class GraphUpdate:
    """Changes applied by update_graph; entity/relationship updates map id -> fields."""

    new_entities: List[EntityCandidate] = field(default_factory=list)
    new_relationships: List[RelationshipCandidate] = field(default_factory=list)
    entity_updates: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    relationship_updates: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def coerce(cls, value: Union["GraphUpdate", Mapping[str, Any]]) -> "GraphUpdate":
        if isinstance(value, GraphUpdate):
            return value
        if not isinstance(value, Mapping):
            raise ValidationError(f"Graph update must be a mapping, got {type(value).__name__}")

        def pick(snake: str, camel: str, default):
            found = value.get(snake, value.get(camel))
            return default if found is None else found

        return cls(
            new_entities=list(pick("new_entities", "newEntities", [])),
            new_relationships=list(pick("new_relationships", "newRelationships", [])),
            entity_updates=dict(pick("entity_updates", "entityUpdates", {})),
            relationship_updates=dict(pick("relationship_updates", "relationshipUpdates", {})),
        )

    def is_empty(self) -> bool:
        return not (self.new_entities or self.new_relationships or self.entity_updates or self.relationship_updates)


@dataclass
class UpdateConflict:
    kind: str
    id: str
    detail: str

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind, "id": self.id, "detail": self.detail}


@dataclass
class UpdateResult:
    updated: bool
    changes: Dict[str, int]
    conflicts: List[UpdateConflict]
    new_insights: List[GraphInsight]
    version: int
    diagnostics: BuildDiagnostics = field(default_factory=BuildDiagnostics)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "updated": self.updated,
            "changes": dict(self.changes),
            "conflicts": [c.to_dict() for c in self.conflicts],
            "new_insights": [i.to_dict() for i in self.new_insights],
            "version": self.version,
            "diagnostics": self.diagnostics.to_dict(),
        }


class KnowledgeGraphManager:
    """Owns a set of knowledge graphs and runs every operation on them."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        extraction_service: Optional[ExtractionService] = None,
        embedding_service: Optional[EmbeddingService] = None,
        index: Optional[GraphIndex] = None,
        metrics: Optional[OperationMetricsCollector] = None,
    ):
        """
        Initialize manager.

        Args:
            config: Engine configuration (defaults when omitted)
            extraction_service: Used by build_knowledge_graph to turn documents into candidates
            embedding_service: Fills in missing entity embeddings during build/update
            index: Name index shared across graphs (a fresh one when omitted)
            metrics: Operation metrics collector (a fresh one when omitted)
        """
        self.config = config or EngineConfig()
        graph_cfg = self.config.graph
        self.extraction_service = extraction_service
        self.embedding_service = embedding_service
        self.entity_store = EntityStore(
            incoming_weight=graph_cfg.importance_incoming_weight,
            outgoing_weight=graph_cfg.importance_outgoing_weight,
            normalizer=graph_cfg.importance_normalizer,
        )
        self.relationship_store = RelationshipStore(
            staleness_days=graph_cfg.staleness_days,
            decay_floor=graph_cfg.strength_decay_floor,
        )
        self.clustering = ClusteringEngine(cluster_threshold=graph_cfg.cluster_threshold)
        self.traversal = TraversalEngine(max_paths=self.config.traversal.max_paths)
        enrich_cfg = self.config.enrichment
        self.enrichment = EnrichmentEngine(
            traversal=self.traversal,
            recommendation_depth=enrich_cfg.recommendation_depth,
            top_k_concepts=enrich_cfg.top_k_concepts,
            weak_connection_threshold=enrich_cfg.weak_connection_threshold,
            min_cooccurrence=enrich_cfg.min_cooccurrence,
            name_similarity_threshold=enrich_cfg.name_similarity_threshold,
            semantic_similarity_threshold=enrich_cfg.semantic_similarity_threshold,
            staleness_days=graph_cfg.staleness_days,
        )
        insight_cfg = self.config.insights
        self.insights = InsightEngine(
            hub_fraction=insight_cfg.hub_fraction,
            low_coherence_threshold=insight_cfg.low_coherence_threshold,
            strength_drop_threshold=insight_cfg.strength_drop_threshold,
            staleness_days=graph_cfg.staleness_days,
        )
        self.index = index or GraphIndex()
        self.metrics = metrics or OperationMetricsCollector()
        self._graphs: Dict[str, KnowledgeGraph] = {}
        self._registry_lock = threading.Lock()

    @classmethod
    def from_config_file(cls, config_path: str = CONFIG_PATH, **kwargs: Any) -> "KnowledgeGraphManager":
        return cls(config=load_engine_config(config_path), **kwargs)

    @contextmanager
    def _timed(self, operation: str, graph_id: Optional[str] = None) -> Iterator[Dict[str, Any]]:
        tags: Dict[str, Any] = {"graph_id": graph_id}
        start = perf_counter()
        try:
            yield tags
        except Exception as exc:
            self.metrics.record_operation(
                operation,
                (perf_counter() - start) * 1000.0,
                graph_id=tags["graph_id"],
                success=False,
                error_type=type(exc).__name__,
            )
            raise
        self.metrics.record_operation(operation, (perf_counter() - start) * 1000.0, graph_id=tags["graph_id"])

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def _get_graph(self, graph_id: str) -> KnowledgeGraph:
        with self._registry_lock:
            graph = self._graphs.get(graph_id)
        if graph is None:
            raise NotFoundError(f"Knowledge graph not found: {graph_id}", missing_id=graph_id)
        return graph

    def get_graph(self, graph_id: str) -> KnowledgeGraph:
        """
        The live graph object.

        Hold `graph.lock.read_locked()` while reading it from another thread.
        """
        return self._get_graph(graph_id)

    def list_graphs(self) -> List[Dict[str, Any]]:
        with self._registry_lock:
            graphs = sorted(self._graphs.values(), key=lambda g: g.graph_id)
        listing = []
        for graph in graphs:
            with graph.lock.read_locked():
                listing.append(
                    {
                        "graph_id": graph.graph_id,
                        "name": graph.name,
                        "domain": graph.domain,
                        "version": graph.metadata.version,
                        "total_entities": graph.statistics.total_entities,
                        "total_relationships": graph.statistics.total_relationships,
                    }
                )
        return listing

    def lookup_graphs(self, name: str) -> List[str]:
        """Ids of graphs containing an entity with this name or alias."""
        return sorted(self.index.lookup_graphs(name))

    def find_entities(self, graph_id: str, name: str) -> List[str]:
        """Ids of entities in a graph carrying this name or alias."""
        self._get_graph(graph_id)
        return self.index.lookup_entities(graph_id, name)

    def remove_graph(self, graph_id: str) -> None:
        graph = self._get_graph(graph_id)
        with graph.lock.write_locked():
            self.index.remove_graph(graph_id)
            with self._registry_lock:
                self._graphs.pop(graph_id, None)
        logger.info("Removed knowledge graph %s", graph_id)

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def build_graph(
        self,
        domain: str,
        entities: Sequence[EntityCandidate],
        relationships: Sequence[RelationshipCandidate] = (),
        name: Optional[str] = None,
        sources: Optional[Sequence[str]] = None,
        strict: Optional[bool] = None,
        now: Optional[datetime] = None,
    ) -> KnowledgeGraph:
        """
        Build and register a graph from already-extracted candidates.

        Malformed candidates are skipped and counted in `graph.diagnostics`;
        relationships with a missing endpoint are dropped (or rejected with
        ValidationError in strict mode).

        Raises:
            ValidationError: no entity candidates, none usable, or a dangling
                relationship in strict mode
        """
        strict = self.config.graph.strict_validation if strict is None else strict
        now = utcnow() if now is None else coerce_datetime(now)
        with self._timed("build_graph") as tags:
            if not entities:
                raise ValidationError("Cannot build a knowledge graph without entities")

            diagnostics = BuildDiagnostics()
            candidates = self._coerce_entities(entities, diagnostics)
            if not candidates:
                raise ValidationError(f"None of the {len(entities)} entity candidates were usable")
            rel_candidates = self._coerce_relationships(relationships, diagnostics)

            canonical, redirects = self.entity_store.disambiguate_with_redirects(candidates)
            diagnostics.merged_entities += len(candidates) - len(canonical)
            canonical = self._drop_id_collisions(canonical, diagnostics)

            graph_id = f"kg_{slugify(domain)}_{uuid.uuid4().hex[:12]}"
            tags["graph_id"] = graph_id
            graph = KnowledgeGraph(
                graph_id=graph_id,
                name=name or f"{domain} knowledge graph",
                domain=domain,
                metadata=GraphMetadata(created=now, last_modified=now, source=list(sources or [])),
                diagnostics=diagnostics,
            )

            with graph.lock.write_locked():
                self._embed(canonical, diagnostics, context=domain)
                graph.entities = {entity.id: entity for entity in canonical}
                valid = self.relationship_store.validate(
                    rel_candidates,
                    set(graph.entities),
                    diagnostics=diagnostics,
                    strict=strict,
                    redirects=redirects,
                )
                graph.relationships = {rel.id: rel for rel in valid}
                self._recompute(graph, now)
                self.index.index_graph(graph)

            with self._registry_lock:
                self._graphs[graph_id] = graph

        logger.info(
            "Built knowledge graph %s (%s): %d entities, %d relationships, %d clusters "
            "(skipped %d entities, dropped %d relationships, merged %d)",
            graph_id,
            domain,
            graph.statistics.total_entities,
            graph.statistics.total_relationships,
            graph.statistics.clusters,
            diagnostics.skipped_entities,
            diagnostics.dropped_relationships,
            diagnostics.merged_entities,
        )
        return graph

    def build_knowledge_graph(
        self,
        domain: str,
        documents: Sequence[str],
        existing_data: Optional[Mapping[str, Sequence]] = None,
        name: Optional[str] = None,
    ) -> KnowledgeGraph:
        """
        Run the extraction service over documents, then build_graph.

        Args:
            domain: Subject area of the graph
            documents: Raw document texts
            existing_data: Optional {"entities": [...], "relationships": [...]}
                candidates placed before the extracted ones
            name: Optional display name
        """
        if self.extraction_service is None:
            raise KnowledgeGraphError("build_knowledge_graph requires an extraction service")

        entities: List[EntityCandidate] = []
        relationships: List[RelationshipCandidate] = []
        sources: List[str] = []
        if existing_data:
            entities.extend(existing_data.get("entities", []))
            relationships.extend(existing_data.get("relationships", []))
            sources.append("existing_data")

        for i, document in enumerate(documents, 1):
            doc_entities = self.extraction_service.extract_entities(document)
            entities.extend(doc_entities)
            relationships.extend(self.extraction_service.extract_relationships(document, doc_entities))
            sources.append(f"document_{i}")
            logger.debug("Extracted %d entity candidates from document %d", len(doc_entities), i)

        return self.build_graph(domain, entities, relationships, name=name, sources=sources)

    def _coerce_entities(self, candidates: Sequence[EntityCandidate], diagnostics: BuildDiagnostics) -> List[Entity]:
        entities = []
        for candidate in candidates:
            try:
                entities.append(entity_from_candidate(candidate))
            except ValidationError as exc:
                diagnostics.skipped_entities += 1
                diagnostics.note(f"Skipped entity candidate: {exc}")
        if diagnostics.skipped_entities:
            logger.warning("Skipped %d malformed entity candidates", diagnostics.skipped_entities)
        return entities

    def _coerce_relationships(
        self,
        candidates: Sequence[RelationshipCandidate],
        diagnostics: BuildDiagnostics,
    ) -> List[Relationship]:
        default_strength = self.config.graph.default_relationship_strength
        relationships = []
        skipped = 0
        for candidate in candidates:
            try:
                relationships.append(relationship_from_candidate(candidate, default_strength))
            except ValidationError as exc:
                skipped += 1
                diagnostics.note(f"Skipped relationship candidate: {exc}")
        if skipped:
            diagnostics.skipped_relationships += skipped
            logger.warning("Skipped %d malformed relationship candidates", skipped)
        return relationships

    @staticmethod
    def _drop_id_collisions(entities: List[Entity], diagnostics: BuildDiagnostics) -> List[Entity]:
        """Keep the first entity per id when distinct entities were given the same id."""
        kept: Dict[str, Entity] = {}
        for entity in entities:
            first = kept.get(entity.id)
            if first is None:
                kept[entity.id] = entity
                continue
            diagnostics.conflicting_entities += 1
            diagnostics.note(
                f"Entity id {entity.id} used for both '{first.name}' ({first.type.value}) "
                f"and '{entity.name}' ({entity.type.value}); kept the first"
            )
        return list(kept.values())

    def _embed(self, entities: Sequence[Entity], diagnostics: BuildDiagnostics, context: Optional[str] = None) -> None:
        if self.embedding_service is None:
            return
        for entity in entities:
            if entity.embedding is not None:
                continue
            try:
                entity.embedding = self.embedding_service.embed(entity.name, context)
            except Exception as exc:  # noqa: BLE001
                diagnostics.embedding_failures += 1
                diagnostics.note(f"Embedding failed for {entity.id}: {exc}")
                logger.warning("Failed to embed entity %s: %s", entity.id, exc)

    def _recompute(self, graph: KnowledgeGraph, now: datetime) -> List[StrengthAdjustment]:
        """Rerun every derived computation; caller holds the write lock."""
        adjustments = self.relationship_store.recompute(
            graph.relationships.values(),
            RecomputeContext(entities=graph.entities, now=now),
        )
        latest = {a.relationship_id: a for a in graph.strength_adjustments if a.relationship_id in graph.relationships}
        latest.update({a.relationship_id: a for a in adjustments})
        graph.strength_adjustments = [latest[rel_id] for rel_id in sorted(latest)]

        self.entity_store.compute_importance(graph.entities.values(), graph.relationships.values())
        clusters = self.clustering.cluster(graph.entities.values(), graph.relationships.values())
        graph.statistics = compute_statistics(
            list(graph.entities.values()),
            list(graph.relationships.values()),
            clusters,
        )
        covered = {entity.type for entity in graph.entities.values()}
        graph.metadata.coverage = f"{len(covered)}/{len(EntityType)} entity types"
        return adjustments

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def query_graph(self, graph_id: str, query: GraphQuery) -> QueryResult:
        """
        Execute a traversal query.

        Raises:
            NotFoundError: unknown graph or start node
            InvalidQueryError: malformed query
        """
        with self._timed("query_graph", graph_id):
            graph = self._get_graph(graph_id)
            with graph.lock.read_locked():
                result = self.traversal.execute(graph, query)
                result.insights = self.insights.query_insights(graph, query.start_nodes, result.nodes)
        return result

    def enrich_content(
        self,
        graph_id: str,
        content: Union[ContentInput, Mapping[str, Any]],
        now: Optional[datetime] = None,
    ) -> ContentEnrichment:
        """Enrich text with the graph's knowledge (read-only)."""
        if isinstance(content, Mapping):
            content = ContentInput(
                id=str(content.get("id", "")),
                text=str(content.get("text", "")),
                current_entities=list(content.get("current_entities", content.get("currentEntities", [])) or []),
            )
        now = None if now is None else coerce_datetime(now)
        with self._timed("enrich_content", graph_id):
            graph = self._get_graph(graph_id)
            with graph.lock.read_locked():
                return self.enrichment.enrich(graph, content, now=now)

    def query_by_content(
        self,
        graph_id: str,
        text: str,
        context: Optional[QueryContext] = None,
    ) -> ContentQueryResult:
        """Entities, concepts, knowledge paths and follow-up queries for text."""
        with self._timed("query_by_content", graph_id):
            graph = self._get_graph(graph_id)
            with graph.lock.read_locked():
                return self.enrichment.query_by_content(graph, text, context)

    def discover_insights(self, graph_id: str, now: Optional[datetime] = None) -> List[GraphInsight]:
        """Ranked insights for a graph."""
        now = None if now is None else coerce_datetime(now)
        with self._timed("discover_insights", graph_id):
            graph = self._get_graph(graph_id)
            with graph.lock.read_locked():
                insights = self.insights.discover(graph, now=now)
        logger.info("Insights for %s: %s", graph_id, insight_counts(insights))
        return insights

    def get_statistics(self, graph_id: str) -> GraphStatistics:
        """A copy of the graph's current statistics."""
        graph = self._get_graph(graph_id)
        with graph.lock.read_locked():
            return copy.deepcopy(graph.statistics)

    def get_graph_stats(self, graph_id: Optional[str] = None, top_k: int = 5) -> Dict[str, Any]:
        """Summary of one graph, or of all registered graphs when graph_id is None."""
        if graph_id is not None:
            graphs = [self._get_graph(graph_id)]
        else:
            with self._registry_lock:
                graphs = sorted(self._graphs.values(), key=lambda g: g.graph_id)
        with ExitStack() as stack:
            for graph in graphs:
                stack.enter_context(graph.lock.read_locked())
            return summarize_graphs(graphs, top_k=top_k)

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update_graph(
        self,
        graph_id: str,
        updates: Union[GraphUpdate, Mapping[str, Any]],
        strict: Optional[bool] = None,
        now: Optional[datetime] = None,
    ) -> UpdateResult:
        """
        Apply additions and field updates through the build gates.

        A new entity whose id already exists as a different entity is
        reported as a conflict (ConflictError in strict mode) and never
        overwrites. Clustering and statistics are always recomputed and
        metadata.version is bumped.

        Raises:
            NotFoundError: unknown graph
            ValidationError: empty update, or a dangling relationship in strict mode
            ConflictError: id conflict in strict mode
        """
        updates = GraphUpdate.coerce(updates)
        strict = self.config.graph.strict_validation if strict is None else strict
        now = utcnow() if now is None else coerce_datetime(now)
        with self._timed("update_graph", graph_id):
            graph = self._get_graph(graph_id)
            if updates.is_empty():
                raise ValidationError("Graph update contains no changes")

            diagnostics = BuildDiagnostics()
            new_entities = self._coerce_entities(updates.new_entities, diagnostics)
            rel_candidates = self._coerce_relationships(updates.new_relationships, diagnostics)

            with graph.lock.write_locked():
                if strict:
                    self._strict_precheck(graph, updates, new_entities, rel_candidates)
                result = self._apply_update(graph, updates, new_entities, rel_candidates, diagnostics, now)

        logger.info(
            "Updated knowledge graph %s to version %d: %s (%d conflicts)",
            graph_id,
            result.version,
            result.changes,
            len(result.conflicts),
        )
        return result

    def _strict_precheck(
        self,
        graph: KnowledgeGraph,
        updates: GraphUpdate,
        new_entities: List[Entity],
        rel_candidates: List[Relationship],
    ) -> None:
        batch: Dict[str, Entity] = {}
        for entity in new_entities:
            current = graph.entities.get(entity.id) or batch.get(entity.id)
            if current is not None and current.key != entity.key:
                raise ConflictError(
                    f"Entity id {entity.id} already exists as '{current.name}' ({current.type.value})",
                    entity_id=entity.id,
                )
            batch.setdefault(entity.id, entity)

        projected = set(graph.entities) | set(batch)
        for rel in rel_candidates:
            missing = [eid for eid in rel.endpoints if eid not in projected]
            if missing:
                raise ValidationError(f"Relationship {rel.id} references missing entities: {', '.join(missing)}")
        for rel_id, fields in updates.relationship_updates.items():
            fields = {_RELATIONSHIP_KEY_ALIASES.get(k, k): v for k, v in dict(fields).items()}
            for key in ("source_id", "target_id"):
                if key in fields and str(fields[key]) not in projected:
                    raise ValidationError(f"Relationship update {rel_id} references missing entity {fields[key]}")

    def _apply_update(
        self,
        graph: KnowledgeGraph,
        updates: GraphUpdate,
        new_entities: List[Entity],
        rel_candidates: List[Relationship],
        diagnostics: BuildDiagnostics,
        now: datetime,
    ) -> UpdateResult:
        changes = {
            "entities_added": 0,
            "entities_merged": 0,
            "entities_updated": 0,
            "relationships_added": 0,
            "relationships_updated": 0,
        }
        conflicts: List[UpdateConflict] = []
        touched: List[str] = []

        try:
            redirects = self._add_entities(graph, new_entities, diagnostics, changes, conflicts, touched, now)
            self._update_entities(graph, updates.entity_updates, changes, conflicts, touched, now)
            self._add_relationships(graph, rel_candidates, redirects, diagnostics, changes, conflicts)
            self._update_relationships(graph, updates.relationship_updates, redirects, changes, conflicts)
        finally:
            # Derived state always matches whatever was applied
            adjustments = self._recompute(graph, now)
            touched_ids = list(dict.fromkeys(touched))
            for entity_id in touched_ids:
                self.index.index_entity(graph.graph_id, graph.entities[entity_id])

            graph.metadata.version += 1
            graph.metadata.last_modified = now
            self._absorb_diagnostics(graph.diagnostics, diagnostics)

        new_insights = self.insights.detect_changes(graph, changes, touched_ids, adjustments)
        return UpdateResult(
            updated=any(changes.values()),
            changes=changes,
            conflicts=conflicts,
            new_insights=new_insights,
            version=graph.metadata.version,
            diagnostics=diagnostics,
        )

    def _add_entities(
        self,
        graph: KnowledgeGraph,
        new_entities: List[Entity],
        diagnostics: BuildDiagnostics,
        changes: Dict[str, int],
        conflicts: List[UpdateConflict],
        touched: List[str],
        now: datetime,
    ) -> Dict[str, str]:
        accepted: List[Entity] = []
        batch: Dict[str, Entity] = {}
        for entity in new_entities:
            current = graph.entities.get(entity.id)
            if current is not None:
                if current.key == entity.key:
                    current.merge_from(entity)
                    current.touch(now)
                    changes["entities_merged"] += 1
                    touched.append(current.id)
                else:
                    self._entity_conflict(entity, current, diagnostics, conflicts)
                continue
            first = batch.get(entity.id)
            if first is not None and first.key != entity.key:
                self._entity_conflict(entity, first, diagnostics, conflicts)
                continue
            batch.setdefault(entity.id, entity)
            accepted.append(entity)

        existing_by_key: Dict[Tuple[str, str], Entity] = {}
        for entity_id in sorted(graph.entities):
            existing_by_key.setdefault(graph.entities[entity_id].key, graph.entities[entity_id])
        canonical, redirects = self.entity_store.disambiguate_with_redirects(accepted, existing=existing_by_key)

        merged = len(accepted) - len(canonical)
        changes["entities_merged"] += merged
        diagnostics.merged_entities += merged
        for keeper_id in sorted(set(redirects.values())):
            if keeper_id in graph.entities:
                graph.entities[keeper_id].touch(now)
                touched.append(keeper_id)

        self._embed(canonical, diagnostics, context=graph.domain)
        for entity in canonical:
            graph.entities[entity.id] = entity
            changes["entities_added"] += 1
            touched.append(entity.id)
        return redirects

    @staticmethod
    def _entity_conflict(
        entity: Entity,
        current: Entity,
        diagnostics: BuildDiagnostics,
        conflicts: List[UpdateConflict],
    ) -> None:
        detail = (
            f"Entity id {entity.id} already exists as '{current.name}' ({current.type.value}); "
            f"new candidate '{entity.name}' ({entity.type.value}) was not applied"
        )
        conflicts.append(UpdateConflict("entity_exists", entity.id, detail))
        diagnostics.conflicting_entities += 1
        diagnostics.note(detail)
        logger.warning("Update conflict: %s", detail)

    @staticmethod
    def _update_entities(
        graph: KnowledgeGraph,
        entity_updates: Mapping[str, Mapping[str, Any]],
        changes: Dict[str, int],
        conflicts: List[UpdateConflict],
        touched: List[str],
        now: datetime,
    ) -> None:
        for entity_id in sorted(entity_updates):
            fields = dict(entity_updates[entity_id])
            entity = graph.entities.get(entity_id)
            if entity is None:
                conflicts.append(UpdateConflict("entity_not_found", entity_id, "No entity with this id"))
                continue
            unknown = sorted(set(fields) - ENTITY_UPDATE_FIELDS)
            if unknown:
                conflicts.append(
                    UpdateConflict("invalid_fields", entity_id, f"Fields cannot be updated: {', '.join(unknown)}")
                )
                continue
            staged = entity.copy()
            try:
                for key, value in fields.items():
                    setattr(staged, key, value)
            except ValidationError as exc:
                conflicts.append(UpdateConflict("invalid_update", entity_id, str(exc)))
                continue
            clash = next(
                (
                    other.id
                    for other in graph.entities.values()
                    if other.id != entity_id and other.key == staged.key
                ),
                None,
            )
            if clash is not None:
                conflicts.append(
                    UpdateConflict("duplicate_entity", entity_id, f"Update would duplicate entity {clash}")
                )
                continue
            for key in fields:
                setattr(entity, key, getattr(staged, key))
            entity.touch(now)
            changes["entities_updated"] += 1
            touched.append(entity_id)

    def _add_relationships(
        self,
        graph: KnowledgeGraph,
        rel_candidates: List[Relationship],
        redirects: Mapping[str, str],
        diagnostics: BuildDiagnostics,
        changes: Dict[str, int],
        conflicts: List[UpdateConflict],
    ) -> None:
        entity_ids: Set[str] = set(graph.entities)
        for rel in rel_candidates:
            missing = [
                eid for eid in (redirects.get(e, e) for e in rel.endpoints) if eid not in entity_ids
            ]
            if missing:
                conflicts.append(
                    UpdateConflict(
                        "invalid_relationship_nodes",
                        rel.id,
                        f"Missing endpoint entities: {', '.join(missing)}",
                    )
                )
        valid = self.relationship_store.validate(
            rel_candidates,
            entity_ids,
            diagnostics=diagnostics,
            redirects=redirects,
        )
        for rel in valid:
            if rel.id in graph.relationships:
                conflicts.append(
                    UpdateConflict(
                        "relationship_exists",
                        rel.id,
                        "Relationship id already exists; use relationship_updates to change it",
                    )
                )
                continue
            graph.relationships[rel.id] = rel
            changes["relationships_added"] += 1

    @staticmethod
    def _update_relationships(
        graph: KnowledgeGraph,
        relationship_updates: Mapping[str, Mapping[str, Any]],
        redirects: Mapping[str, str],
        changes: Dict[str, int],
        conflicts: List[UpdateConflict],
    ) -> None:
        for rel_id in sorted(relationship_updates):
            fields = {_RELATIONSHIP_KEY_ALIASES.get(k, k): v for k, v in dict(relationship_updates[rel_id]).items()}
            rel = graph.relationships.get(rel_id)
            if rel is None:
                conflicts.append(UpdateConflict("relationship_not_found", rel_id, "No relationship with this id"))
                continue
            unknown = sorted(set(fields) - RELATIONSHIP_UPDATE_FIELDS)
            if unknown:
                conflicts.append(
                    UpdateConflict("invalid_fields", rel_id, f"Fields cannot be updated: {', '.join(unknown)}")
                )
                continue
            for key in ("source_id", "target_id"):
                if key in fields:
                    fields[key] = redirects.get(str(fields[key]), str(fields[key]))
            try:
                # Type and endpoints are immutable, so every update builds a new record
                replacement = rel.replace(**fields)
            except ValidationError as exc:
                conflicts.append(UpdateConflict("invalid_update", rel_id, str(exc)))
                continue
            missing = [eid for eid in replacement.endpoints if eid not in graph.entities]
            if missing:
                conflicts.append(
                    UpdateConflict(
                        "invalid_relationship_nodes",
                        rel_id,
                        f"Missing endpoint entities: {', '.join(missing)}",
                    )
                )
                continue
            graph.relationships[rel_id] = replacement
            changes["relationships_updated"] += 1

    @staticmethod
    def _absorb_diagnostics(target: BuildDiagnostics, update: BuildDiagnostics) -> None:
        target.skipped_entities += update.skipped_entities
        target.skipped_relationships += update.skipped_relationships
        target.dropped_relationships += update.dropped_relationships
        target.merged_entities += update.merged_entities
        target.conflicting_entities += update.conflicting_entities
        target.embedding_failures += update.embedding_failures
        target.messages.extend(update.messages)
