"""
Tests for extraction and embedding services.
"""
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from semkg.services import embeddings
from semkg.services.extraction import StaticExtractionService


class TestStaticExtraction:
    """Test the pre-extracted candidate service."""

    def test_fallback_lists(self):
        service = StaticExtractionService(
            entities=[{"type": "product", "name": "EufyCam 3"}],
            relationships=[{"type": "part_of", "source_id": "a", "target_id": "b"}],
        )
        assert service.extract_entities("any text") == [{"type": "product", "name": "EufyCam 3"}]
        assert len(service.extract_relationships("any text", [])) == 1

    def test_per_document(self):
        service = StaticExtractionService(
            entities=[{"type": "product", "name": "Fallback"}],
            by_document={"doc": {"entities": [{"type": "feature", "name": "Solar"}]}},
        )
        assert service.extract_entities("doc") == [{"type": "feature", "name": "Solar"}]
        assert service.extract_relationships("doc", []) == []
        assert service.extract_entities("other")[0]["name"] == "Fallback"

    def test_results_are_fresh_lists(self):
        service = StaticExtractionService(entities=[{"type": "product", "name": "X"}])
        service.extract_entities("t").clear()
        assert len(service.extract_entities("t")) == 1


class TestSentenceTransformerEmbedder:
    """Test the sentence-transformers embedding service."""

    def test_raises_when_library_missing(self):
        with patch.object(embeddings, "SentenceTransformer", None):
            with pytest.raises(RuntimeError):
                embeddings.SentenceTransformerEmbedder()

    def test_embed_includes_context(self):
        model = MagicMock()
        model.encode.return_value = np.array([[0.1, 0.2, 0.3]])
        with patch.object(embeddings, "SentenceTransformer", MagicMock(return_value=model)) as factory:
            embedder = embeddings.SentenceTransformerEmbedder("test-model")

        vector = embedder.embed("EufyCam 3", "smart_home")

        factory.assert_called_once_with("test-model", device="cpu")
        model.encode.assert_called_once_with(["EufyCam 3: smart_home"], show_progress_bar=False)
        assert vector == pytest.approx([0.1, 0.2, 0.3])

    def test_load_failure_wrapped(self):
        with patch.object(embeddings, "SentenceTransformer", MagicMock(side_effect=OSError("no model"))):
            with pytest.raises(RuntimeError, match="Failed to load embedding model"):
                embeddings.SentenceTransformerEmbedder("missing-model")
