"""
Data model for semantic knowledge graphs.

Entities are named domain concepts (products, features, problems, ...) and
relationships are typed, weighted, directed-or-bidirectional edges between
them. A KnowledgeGraph exclusively owns its entity and relationship maps;
derived structure (clusters, statistics) is recomputed, never hand-edited.

Attribute and property bags hold a closed set of value kinds
(string | number | bool | list | map) so consumers can dispatch on
`attribute_kind()` exhaustively.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import numpy as np

from semkg.common.errors import NotFoundError, ValidationError
from semkg.common.locking import ReadWriteLock

logger = logging.getLogger(__name__)

AttributeValue = Union[str, int, float, bool, List["AttributeValue"], Dict[str, "AttributeValue"]]


class EntityType(str, Enum):
    """Kinds of domain concepts an entity can represent."""

    PRODUCT = "product"
    FEATURE = "feature"
    CONCEPT = "concept"
    BRAND = "brand"
    CATEGORY = "category"
    PROBLEM = "problem"
    SOLUTION = "solution"


class RelationshipType(str, Enum):
    """Kinds of edges between entities."""

    IS_A = "is_a"
    PART_OF = "part_of"
    RELATED_TO = "related_to"
    SOLVES = "solves"
    REQUIRES = "requires"
    COMPETES_WITH = "competes_with"
    REPLACES = "replaces"
    ENHANCES = "enhances"
    CAUSED_BY = "caused_by"
    SIMILAR_TO = "similar_to"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def clamp_unit(value: Any) -> float:
    """Clamp a numeric value to [0, 1]; NaN becomes 0."""
    if isinstance(value, bool):
        raise ValidationError(f"Expected a number in [0, 1], got {value!r}")
    try:
        value = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Expected a number in [0, 1], got {value!r}") from exc
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(1.0, value))


def normalize_name(name: str) -> str:
    """Disambiguation key for a name: trimmed and lower-cased."""
    return str(name).strip().lower()


def slugify(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "_", normalize_name(text)).strip("_")
    return slug or "unnamed"


def coerce_datetime(value: Any) -> datetime:
    """Accept datetimes or ISO-8601 strings; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValidationError(f"Invalid timestamp: {value!r}") from exc
    else:
        raise ValidationError(f"Invalid timestamp type: {type(value).__name__}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def coerce_attribute_value(value: Any) -> AttributeValue:
    """Validate (and normalise) a value for an attribute/property bag."""
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, (bool, str, int, float)):
        return value
    if isinstance(value, (set, frozenset)):
        return [coerce_attribute_value(v) for v in sorted(value, key=str)]
    if isinstance(value, (list, tuple)):
        return [coerce_attribute_value(v) for v in value]
    if isinstance(value, Mapping):
        return {str(k): coerce_attribute_value(v) for k, v in value.items()}
    raise ValidationError(f"Unsupported attribute value type: {type(value).__name__}")


def coerce_attributes(values: Optional[Mapping[str, Any]]) -> Dict[str, AttributeValue]:
    if values is None:
        return {}
    if not isinstance(values, Mapping):
        raise ValidationError(f"Attributes must be a mapping, got {type(values).__name__}")
    return {str(k): coerce_attribute_value(v) for k, v in values.items()}


def attribute_kind(value: AttributeValue) -> str:
    """Tag of an attribute value: 'bool', 'number', 'string', 'list' or 'map'."""
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "list"
    if isinstance(value, dict):
        return "map"
    raise ValidationError(f"Unsupported attribute value type: {type(value).__name__}")


def _coerce_enum(enum_cls, value: Any, what: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError as exc:
        raise ValidationError(f"Unknown {what}: {value!r}") from exc


def _as_string_list(value: Any, what: str) -> List[str]:
    """A single string is one item, not a sequence of characters."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Mapping) or not hasattr(value, "__iter__"):
        raise ValidationError(f"{what} must be a string or a list of strings, got {type(value).__name__}")
    return [str(item) for item in value]


def _clean_aliases(aliases: Union[str, Iterable[str], None], name: str) -> List[str]:
    """Deduplicate aliases case-insensitively, dropping any that equal the name."""
    seen = {normalize_name(name)}
    cleaned: List[str] = []
    for alias in _as_string_list(aliases, "Aliases"):
        alias = str(alias).strip()
        key = normalize_name(alias)
        if not key or key in seen:
            continue
        seen.add(key)
        cleaned.append(alias)
    return cleaned


def _coerce_embedding(value: Any) -> Optional[np.ndarray]:
    if value is None:
        return None
    try:
        vector = np.asarray(value, dtype=float)
    except (TypeError, ValueError) as exc:
        raise ValidationError("Embedding must be a numeric vector") from exc
    if vector.ndim != 1 or vector.size == 0:
        raise ValidationError(f"Embedding must be a non-empty 1-D vector, got shape {vector.shape}")
    return vector


@dataclass(eq=False)
class Entity:
    """A named concept in the domain."""

    id: str
    type: EntityType
    name: str
    aliases: List[str] = field(default_factory=list)
    attributes: Dict[str, AttributeValue] = field(default_factory=dict)
    embedding: Optional[np.ndarray] = None
    importance: float = 0.0
    last_updated: datetime = field(default_factory=utcnow)

    def __setattr__(self, key: str, value: Any) -> None:
        if key == "id":
            if "id" in self.__dict__:
                raise AttributeError("Entity id is immutable")
            if not isinstance(value, str) or not value.strip():
                raise ValidationError("Entity id must be a non-empty string")
        elif key == "type":
            value = _coerce_enum(EntityType, value, "entity type")
        elif key == "name":
            if not isinstance(value, str) or not value.strip():
                raise ValidationError("Entity name must be a non-empty string")
            value = value.strip()
            if "aliases" in self.__dict__:
                super().__setattr__("aliases", _clean_aliases(self.aliases, value))
        elif key == "aliases":
            value = _clean_aliases(value, self.__dict__.get("name", ""))
        elif key == "attributes":
            value = coerce_attributes(value)
        elif key == "embedding":
            value = _coerce_embedding(value)
        elif key == "importance":
            value = clamp_unit(value)
        elif key == "last_updated":
            value = coerce_datetime(value)
        super().__setattr__(key, value)

    @property
    def key(self) -> Tuple[str, str]:
        """Disambiguation key: (type, normalized name)."""
        return (self.type.value, normalize_name(self.name))

    def all_names(self) -> List[str]:
        return [self.name] + list(self.aliases)

    def add_aliases(self, aliases: Iterable[str]) -> None:
        self.aliases = list(self.aliases) + list(aliases)

    def merge_from(self, other: "Entity") -> None:
        """
        Absorb a duplicate candidate.

        Aliases are unioned (the duplicate's name becomes an alias when it
        differs in form); attributes are first-writer-wins so existing values
        are never overwritten.
        """
        self.add_aliases([other.name] + list(other.aliases))
        merged = dict(self.attributes)
        for attr_key, attr_value in other.attributes.items():
            merged.setdefault(attr_key, attr_value)
        self.attributes = merged
        if self.embedding is None and other.embedding is not None:
            self.embedding = other.embedding

    def touch(self, when: Optional[datetime] = None) -> None:
        self.last_updated = when or utcnow()

    def copy(self) -> "Entity":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "name": self.name,
            "aliases": list(self.aliases),
            "attributes": copy.deepcopy(self.attributes),
            "has_embedding": self.embedding is not None,
            "importance": self.importance,
            "last_updated": self.last_updated.isoformat(),
        }


_IMMUTABLE_RELATIONSHIP_FIELDS = ("id", "type", "source_id", "target_id")


@dataclass(eq=False)
class Relationship:
    """
    A typed edge between two entities of the same graph.

    `strength` is the current weight; `base_strength` is the extracted
    confidence that recomputation starts from. Type and endpoints are fixed
    once created: use `replace()` to build a new record instead.
    """

    id: str
    type: RelationshipType
    source_id: str
    target_id: str
    strength: float = 0.5
    properties: Dict[str, AttributeValue] = field(default_factory=dict)
    bidirectional: bool = False
    context: List[str] = field(default_factory=list)
    base_strength: Optional[float] = None

    def __post_init__(self) -> None:
        if self.base_strength is None:
            self.base_strength = self.strength

    def __setattr__(self, key: str, value: Any) -> None:
        if key in _IMMUTABLE_RELATIONSHIP_FIELDS:
            if key in self.__dict__:
                raise AttributeError(f"Relationship {key} is immutable; replace the relationship instead")
            if key == "type":
                value = _coerce_enum(RelationshipType, value, "relationship type")
            elif not isinstance(value, str) or not value.strip():
                raise ValidationError(f"Relationship {key} must be a non-empty string")
        elif key in ("strength", "base_strength"):
            value = None if value is None else clamp_unit(value)
        elif key == "properties":
            value = coerce_attributes(value)
        elif key == "bidirectional":
            value = bool(value)
        elif key == "context":
            value = _as_string_list(value, "Context")
        super().__setattr__(key, value)

    @property
    def endpoints(self) -> Tuple[str, str]:
        return (self.source_id, self.target_id)

    def connects(self, first: str, second: str) -> bool:
        """True if the relationship joins the two entities in either direction."""
        return {self.source_id, self.target_id} == {first, second}

    def replace(self, **changes: Any) -> "Relationship":
        """Build a new relationship record with some fields changed."""
        values = {
            "id": self.id,
            "type": self.type,
            "source_id": self.source_id,
            "target_id": self.target_id,
            "strength": self.strength,
            "properties": copy.deepcopy(self.properties),
            "bidirectional": self.bidirectional,
            "context": list(self.context),
            "base_strength": self.base_strength,
        }
        if "strength" in changes and "base_strength" not in changes:
            changes["base_strength"] = changes["strength"]
        values.update(changes)
        return Relationship(**values)

    def copy(self) -> "Relationship":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "source_id": self.source_id,
            "target_id": self.target_id,
            "strength": self.strength,
            "base_strength": self.base_strength,
            "properties": copy.deepcopy(self.properties),
            "bidirectional": self.bidirectional,
            "context": list(self.context),
        }


@dataclass
class StrengthAdjustment:
    """A strength change made while recomputing relationship weights."""

    relationship_id: str
    previous: float
    current: float
    reason: str = ""

    @property
    def reduction(self) -> float:
        return self.previous - self.current

    def to_dict(self) -> Dict[str, Any]:
        return {
            "relationship_id": self.relationship_id,
            "previous": self.previous,
            "current": self.current,
            "reduction": self.reduction,
            "reason": self.reason,
        }


@dataclass
class EntityCluster:
    """Thematic group of entities; derived, never persisted on its own."""

    cluster_id: str
    name: str
    entities: List[str]
    central_entity: str
    theme: str
    coherence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cluster_id": self.cluster_id,
            "name": self.name,
            "entities": list(self.entities),
            "central_entity": self.central_entity,
            "theme": self.theme,
            "coherence": self.coherence,
            "size": len(self.entities),
        }


@dataclass
class GraphStatistics:
    total_entities: int = 0
    total_relationships: int = 0
    avg_degree: float = 0.0
    density: float = 0.0
    clusters: int = 0
    main_components: List[EntityCluster] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_entities": self.total_entities,
            "total_relationships": self.total_relationships,
            "avg_degree": self.avg_degree,
            "density": self.density,
            "clusters": self.clusters,
            "main_components": [c.to_dict() for c in self.main_components],
        }


@dataclass
class GraphMetadata:
    version: int = 1
    created: datetime = field(default_factory=utcnow)
    last_modified: datetime = field(default_factory=utcnow)
    source: List[str] = field(default_factory=list)
    language: List[str] = field(default_factory=lambda: ["en"])
    coverage: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "created": self.created.isoformat(),
            "last_modified": self.last_modified.isoformat(),
            "source": list(self.source),
            "language": list(self.language),
            "coverage": self.coverage,
        }


@dataclass
class BuildDiagnostics:
    """Counts of candidates skipped or reshaped during build/update."""

    skipped_entities: int = 0
    skipped_relationships: int = 0
    dropped_relationships: int = 0
    merged_entities: int = 0
    conflicting_entities: int = 0
    embedding_failures: int = 0
    messages: List[str] = field(default_factory=list)

    def note(self, message: str) -> None:
        self.messages.append(message)
        logger.debug("Diagnostic: %s", message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "skipped_entities": self.skipped_entities,
            "skipped_relationships": self.skipped_relationships,
            "dropped_relationships": self.dropped_relationships,
            "merged_entities": self.merged_entities,
            "conflicting_entities": self.conflicting_entities,
            "embedding_failures": self.embedding_failures,
            "messages": list(self.messages),
        }


@dataclass(eq=False)
class KnowledgeGraph:
    """Aggregate root: one domain-scoped graph with its entities and edges."""

    graph_id: str
    name: str
    domain: str
    entities: Dict[str, Entity] = field(default_factory=dict)
    relationships: Dict[str, Relationship] = field(default_factory=dict)
    metadata: GraphMetadata = field(default_factory=GraphMetadata)
    statistics: GraphStatistics = field(default_factory=GraphStatistics)
    diagnostics: BuildDiagnostics = field(default_factory=BuildDiagnostics)
    strength_adjustments: List[StrengthAdjustment] = field(default_factory=list)
    lock: ReadWriteLock = field(default_factory=ReadWriteLock, repr=False)

    def get_entity(self, entity_id: str) -> Entity:
        try:
            return self.entities[entity_id]
        except KeyError:
            raise NotFoundError(
                f"Entity '{entity_id}' not found in graph {self.graph_id}", missing_id=entity_id
            ) from None

    def dangling_relationships(self) -> List[str]:
        """Ids of relationships whose endpoints are not both in the graph (should be empty)."""
        return [
            rel.id
            for rel in self.relationships.values()
            if rel.source_id not in self.entities or rel.target_id not in self.entities
        ]

    def to_dict(self, include_members: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "graph_id": self.graph_id,
            "name": self.name,
            "domain": self.domain,
            "metadata": self.metadata.to_dict(),
            "statistics": self.statistics.to_dict(),
            "diagnostics": self.diagnostics.to_dict(),
        }
        if include_members:
            data["entities"] = [e.to_dict() for e in self.entities.values()]
            data["relationships"] = [r.to_dict() for r in self.relationships.values()]
        return data


EntityCandidate = Union[Entity, Mapping[str, Any]]
RelationshipCandidate = Union[Relationship, Mapping[str, Any]]

# Extractors sometimes emit camelCase keys
_KEY_ALIASES = {
    "sourceId": "source_id",
    "targetId": "target_id",
    "lastUpdated": "last_updated",
    "baseStrength": "base_strength",
}


def _normalize_keys(candidate: Mapping[str, Any]) -> Dict[str, Any]:
    return {_KEY_ALIASES.get(str(k), str(k)): v for k, v in candidate.items()}


def entity_from_candidate(candidate: EntityCandidate) -> Entity:
    """
    Turn an extraction candidate into an Entity owned by the caller.

    Entity instances are deep-copied so no entity is shared across graphs.
    Raises ValidationError for malformed candidates.
    """
    if isinstance(candidate, Entity):
        return candidate.copy()
    if not isinstance(candidate, Mapping):
        raise ValidationError(f"Entity candidate must be a mapping, got {type(candidate).__name__}")
    data = _normalize_keys(candidate)
    if not data.get("name"):
        raise ValidationError("Entity candidate is missing a name")
    if not data.get("type"):
        raise ValidationError(f"Entity candidate '{data.get('name')}' is missing a type")
    entity_type = _coerce_enum(EntityType, data["type"], "entity type")
    entity_id = data.get("id") or f"{entity_type.value}_{slugify(data['name'])}"
    kwargs: Dict[str, Any] = {
        "id": str(entity_id),
        "type": entity_type,
        "name": data["name"],
        "aliases": data.get("aliases"),
        "attributes": data.get("attributes") or {},
        "embedding": data.get("embedding"),
        "importance": data.get("importance", 0.0) or 0.0,
    }
    if data.get("last_updated") is not None:
        kwargs["last_updated"] = data["last_updated"]
    return Entity(**kwargs)


def relationship_from_candidate(
    candidate: RelationshipCandidate,
    default_strength: float = 0.5,
) -> Relationship:
    """Turn an extraction candidate into a Relationship (endpoints not yet validated)."""
    if isinstance(candidate, Relationship):
        return candidate.copy()
    if not isinstance(candidate, Mapping):
        raise ValidationError(
            f"Relationship candidate must be a mapping, got {type(candidate).__name__}"
        )
    data = _normalize_keys(candidate)
    for required in ("type", "source_id", "target_id"):
        if not data.get(required):
            raise ValidationError(f"Relationship candidate is missing '{required}'")
    rel_type = _coerce_enum(RelationshipType, data["type"], "relationship type")
    source_id = str(data["source_id"])
    target_id = str(data["target_id"])
    rel_id = data.get("id") or f"rel_{source_id}_{rel_type.value}_{target_id}"
    strength = data.get("strength")
    return Relationship(
        id=str(rel_id),
        type=rel_type,
        source_id=source_id,
        target_id=target_id,
        strength=default_strength if strength is None else strength,
        properties=data.get("properties") or {},
        bidirectional=bool(data.get("bidirectional", False)),
        context=data.get("context"),
        base_strength=data.get("base_strength"),
    )
