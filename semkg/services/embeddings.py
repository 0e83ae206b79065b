"""
Entity embedding services.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

try:
    from sentence_transformers import SentenceTransformer
except (ImportError, OSError) as e:  # OSError covers broken torch installs
    SentenceTransformer = None  # type: ignore[assignment]
    _import_error = str(e)

logger = logging.getLogger(__name__)


class EmbeddingService(ABC):
    """Produces a fixed-length vector for an entity."""

    @abstractmethod
    def embed(self, entity_name: str, context: Optional[str] = None) -> List[float]:
        """Embedding vector for an entity name, optionally with surrounding context."""


class SentenceTransformerEmbedder(EmbeddingService):
    """Embed entity names using sentence transformers."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        """
        Initialize embedder.

        Args:
            model_name: Sentence transformer model name
        """
        if SentenceTransformer is None:
            error_msg = (
                "sentence-transformers is not installed or failed to import. "
                "Install the 'embeddings' extra to use SentenceTransformerEmbedder."
            )
            if "_import_error" in globals():
                error_msg += f" Original error: {_import_error}"
            raise RuntimeError(error_msg)

        logger.info("Loading embedding model: %s on CPU", model_name)
        try:
            self.model = SentenceTransformer(model_name, device="cpu")
        except (OSError, RuntimeError) as exc:
            logger.error("Failed to load embedding model %s: %s", model_name, exc)
            raise RuntimeError(f"Failed to load embedding model: {exc}") from exc
        self.model_name = model_name

    def embed(self, entity_name: str, context: Optional[str] = None) -> List[float]:
        text = f"{entity_name}: {context}" if context else entity_name
        vector = self.model.encode([text], show_progress_bar=False)[0]
        return [float(v) for v in vector]
