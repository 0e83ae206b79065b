"""
Error taxonomy for knowledge graph operations.

Read operations (query, enrich, insights, stats) always raise these to the
caller. Build and update skip malformed candidates and only raise in strict
mode or when the whole input is unusable.
"""


class KnowledgeGraphError(Exception):
    """Base class for all knowledge graph errors."""


class NotFoundError(KnowledgeGraphError, KeyError):
    """Unknown graph id, or unknown entity id used as a query start node."""

    def __init__(self, message: str, missing_id: str = "") -> None:
        super().__init__(message)
        self.missing_id = missing_id

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return str(self.args[0]) if self.args else ""


class InvalidQueryError(KnowledgeGraphError, ValueError):
    """Malformed query: empty start nodes, bad depth bounds, bad aggregation."""


class ConflictError(KnowledgeGraphError):
    """An update introduced an entity id that already names a different entity."""

    def __init__(self, message: str, entity_id: str = "") -> None:
        super().__init__(message)
        self.entity_id = entity_id


class ValidationError(KnowledgeGraphError, ValueError):
    """A candidate entity or relationship is malformed or references a missing endpoint."""
