"""
Semantic knowledge graph engine.

In-memory, domain-scoped graphs of entities (products, features, concepts)
and typed, weighted relationships, with:
- Entity disambiguation and relationship validation
- Importance scoring, clustering and graph statistics
- Bounded multi-hop traversal queries
- Content enrichment and insight discovery
"""

from semkg.common.errors import (
    ConflictError,
    InvalidQueryError,
    KnowledgeGraphError,
    NotFoundError,
    ValidationError,
)
from semkg.graph.manager import KnowledgeGraphManager

__version__ = "0.1.0"

__all__ = [
    "KnowledgeGraphManager",
    "KnowledgeGraphError",
    "NotFoundError",
    "InvalidQueryError",
    "ConflictError",
    "ValidationError",
]
