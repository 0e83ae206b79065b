"""
Name resolution index across registered graphs.

Maps every lower-cased entity name and alias to the graphs that contain it,
and per graph to the entity ids carrying it. Entries for a graph are written
only while that graph's write lock is held, so they always match the
graph's current entity map.
"""

import logging
import threading
from collections import defaultdict
from typing import Dict, List, Set

from semkg.graph.models import Entity, KnowledgeGraph, normalize_name

logger = logging.getLogger(__name__)


class GraphIndex:
    """In-memory name -> graph id and name -> entity id lookups."""

    def __init__(self) -> None:
        self._graphs_by_name: Dict[str, Set[str]] = defaultdict(set)
        self._entities_by_name: Dict[str, Dict[str, Set[str]]] = {}
        # Names each entity contributed, so re-indexing can retract stale ones
        self._names_by_entity: Dict[str, Dict[str, Set[str]]] = {}
        self._mutex = threading.Lock()

    def index_graph(self, graph: KnowledgeGraph) -> None:
        """(Re)index every entity of a graph."""
        with self._mutex:
            self._remove_graph_locked(graph.graph_id)
            for entity in graph.entities.values():
                self._index_entity_locked(graph.graph_id, entity)
        logger.debug("Indexed %d entities for graph %s", len(graph.entities), graph.graph_id)

    def index_entity(self, graph_id: str, entity: Entity) -> None:
        """Index one inserted or updated entity, retracting names it no longer has."""
        with self._mutex:
            self._retract_entity_locked(graph_id, entity.id)
            self._index_entity_locked(graph_id, entity)

    def remove_graph(self, graph_id: str) -> None:
        with self._mutex:
            self._remove_graph_locked(graph_id)

    def lookup_graphs(self, name: str) -> Set[str]:
        """Graph ids containing an entity with this name or alias."""
        with self._mutex:
            return set(self._graphs_by_name.get(normalize_name(name), set()))

    def lookup_entities(self, graph_id: str, name: str) -> List[str]:
        """Entity ids in a graph carrying this name or alias, sorted."""
        with self._mutex:
            by_name = self._entities_by_name.get(graph_id, {})
            return sorted(by_name.get(normalize_name(name), set()))

    def names(self, graph_id: str) -> List[str]:
        """All indexed (lower-cased) names of a graph, sorted."""
        with self._mutex:
            return sorted(self._entities_by_name.get(graph_id, {}))

    def _index_entity_locked(self, graph_id: str, entity: Entity) -> None:
        by_name = self._entities_by_name.setdefault(graph_id, {})
        contributed = self._names_by_entity.setdefault(graph_id, {}).setdefault(entity.id, set())
        for name in entity.all_names():
            key = normalize_name(name)
            if not key:
                continue
            by_name.setdefault(key, set()).add(entity.id)
            self._graphs_by_name[key].add(graph_id)
            contributed.add(key)

    def _retract_entity_locked(self, graph_id: str, entity_id: str) -> None:
        contributed = self._names_by_entity.get(graph_id, {}).pop(entity_id, set())
        by_name = self._entities_by_name.get(graph_id, {})
        for key in contributed:
            ids = by_name.get(key)
            if ids is None:
                continue
            ids.discard(entity_id)
            if not ids:
                del by_name[key]
                self._discard_graph_name(key, graph_id)

    def _remove_graph_locked(self, graph_id: str) -> None:
        for key in self._entities_by_name.pop(graph_id, {}):
            self._discard_graph_name(key, graph_id)
        self._names_by_entity.pop(graph_id, None)

    def _discard_graph_name(self, key: str, graph_id: str) -> None:
        graphs = self._graphs_by_name.get(key)
        if graphs is None:
            return
        graphs.discard(graph_id)
        if not graphs:
            del self._graphs_by_name[key]
