"""
External collaborators consumed by the engine.

Extraction turns raw documents into entity/relationship candidates and
embedding services turn entity names into vectors. Both are interfaces;
concrete backends are plugged into KnowledgeGraphManager.
"""

from .embeddings import EmbeddingService, SentenceTransformerEmbedder
from .extraction import ExtractionService, StaticExtractionService

__all__ = [
    "EmbeddingService",
    "ExtractionService",
    "SentenceTransformerEmbedder",
    "StaticExtractionService",
]
