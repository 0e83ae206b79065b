"""
Entity and relationship extraction interface.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

from semkg.graph.models import EntityCandidate, RelationshipCandidate

logger = logging.getLogger(__name__)


class ExtractionService(ABC):
    """Turns raw text into entity and relationship candidates."""

    @abstractmethod
    def extract_entities(self, text: str) -> List[EntityCandidate]:
        """Entity candidates mentioned in text."""

    @abstractmethod
    def extract_relationships(
        self,
        text: str,
        entities: Sequence[EntityCandidate],
    ) -> List[RelationshipCandidate]:
        """Relationship candidates between the given entities."""


class StaticExtractionService(ExtractionService):
    """
    Returns pre-extracted candidates.

    Candidates can be supplied per document text (exact match) or as a
    fallback list returned for any text.
    """

    def __init__(
        self,
        entities: Optional[Sequence[EntityCandidate]] = None,
        relationships: Optional[Sequence[RelationshipCandidate]] = None,
        by_document: Optional[Dict[str, Dict[str, Sequence]]] = None,
    ):
        self.entities = list(entities or [])
        self.relationships = list(relationships or [])
        self.by_document = dict(by_document or {})

    def extract_entities(self, text: str) -> List[EntityCandidate]:
        if text in self.by_document:
            return list(self.by_document[text].get("entities", []))
        return list(self.entities)

    def extract_relationships(
        self,
        text: str,
        entities: Sequence[EntityCandidate],
    ) -> List[RelationshipCandidate]:
        if text in self.by_document:
            return list(self.by_document[text].get("relationships", []))
        return list(self.relationships)
