"""
Tests for content enrichment (semkg/enrichment/engine.py).
"""

import pytest
from conftest import entity, make_graph, relationship

from semkg.enrichment.engine import (
    ContentInput,
    EnrichmentEngine,
    GapType,
    QueryContext,
    enrichment_score,
)
from semkg.graph.query import QueryConstraint


@pytest.fixture
def engine():
    return EnrichmentEngine()


def _content(text, content_id="c1", tagged=None):
    return ContentInput(id=content_id, text=text, current_entities=list(tagged or []))


class TestEntityExtraction:
    """Term matching against entity names and aliases."""

    def test_name_alias_and_substring_confidence(self, engine, camera_graph):
        text = "Smart Detection on the EufyCam 3 pairs with the HomeBase3000 hub."
        matches = engine.extract_content_entities(text, camera_graph)

        by_id = {m.entity.id: m for m in matches}
        assert by_id["ai"].confidence == 0.9
        assert by_id["ai"].matched_term == "Smart Detection"
        assert by_id["cam"].confidence == 1.0
        assert [m.entity.id for m in matches] == ["ai", "cam"]

    def test_substring_match(self, engine):
        graph = make_graph([entity("solar", "feature", "Solar")], [])
        (match,) = engine.extract_content_entities("Solarpanels everywhere", graph)
        assert match.confidence == 0.6

    def test_case_insensitive_and_counted(self, engine, camera_graph):
        (match,) = engine.extract_content_entities("arlo pro 4 or ARLO PRO 4?", camera_graph)
        assert match.entity.id == "arlo"
        assert match.occurrences == 2

    def test_single_string_alias_is_not_split(self, engine):
        graph = make_graph(
            [entity("cam", "product", "EufyCam 3", aliases="Cam"), entity("w", "product", "Widget")],
            [],
        )

        matches = engine.extract_content_entities("I bought a Widget.", graph)

        assert [(m.entity.id, m.matched_term) for m in matches] == [("w", "Widget")]

    def test_matches_are_copies(self, engine, camera_graph):
        (match,) = engine.extract_content_entities("Battery Drain", camera_graph)
        match.entity.importance = 0.99
        assert camera_graph.entities["battery"].importance != 0.99


class TestEnrich:
    """Full enrichment passes."""

    def test_concepts_ranked_by_path_strength_and_importance(self, engine, camera_graph, now):
        result = engine.enrich(camera_graph, _content("Solar Charging is great."), now=now)

        assert [m.entity.id for m in result.extracted_entities] == ["solar"]
        assert [c.entity_id for c in result.related_concepts] == ["cam", "base", "battery", "ai", "arlo"]
        top = result.related_concepts[0]
        assert top.relevance == pytest.approx(0.9 * 1.79 / 3)
        assert top.source_paths == [["Solar Charging", "EufyCam 3"]]
        assert result.knowledge_gaps == []
        assert result.enrichment_score == pytest.approx((0.3 * 1 + 0.3 * 5) / 10)

    def test_inferred_relationships_are_existing_edges(self, engine, camera_graph, now):
        result = engine.enrich(camera_graph, _content("Solar Charging keeps the EufyCam 3 running."), now=now)
        assert [r.id for r in result.inferred_relationships] == ["r1"]
        assert result.inferred_relationships[0] is not camera_graph.relationships["r1"]

    def test_isolated_entities_infer_nothing(self, engine):
        graph = make_graph([entity("e1", name="Widget"), entity("e2", name="Gadget")], [])

        result = engine.enrich(graph, _content("The Widget is here."))

        assert len(result.extracted_entities) == 1
        assert result.inferred_relationships == []
        assert result.related_concepts == []
        assert result.enrichment_score == pytest.approx(0.03)

    def test_enrichment_does_not_mutate_graph(self, engine, camera_graph, now):
        before = {eid: (e.importance, list(e.aliases)) for eid, e in camera_graph.entities.items()}
        engine.enrich(camera_graph, _content("EufyCam 3 and Arlo Pro 4 compete."), now=now)
        assert {eid: (e.importance, list(e.aliases)) for eid, e in camera_graph.entities.items()} == before

    def test_semantic_neighbours(self):
        graph = make_graph(
            [
                entity("a", name="Night Vision", embedding=[1.0, 0.0]),
                entity("b", name="Infrared", embedding=[0.9, 0.1]),
                entity("c", name="Price", embedding=[0.0, 1.0]),
            ],
            [],
        )
        engine = EnrichmentEngine(semantic_similarity_threshold=0.7)

        result = engine.enrich(graph, _content("Night Vision matters."))

        assert [c.entity_id for c in result.related_concepts] == ["b"]
        assert "Semantically similar" in result.related_concepts[0].reasoning


class TestKnowledgeGaps:
    """Gap detection."""

    def test_missing_entity_resembling_known_name(self, engine, camera_graph, now):
        result = engine.enrich(camera_graph, _content("Upgrade to the EufyCam 4 soon."), now=now)

        gaps = [g for g in result.knowledge_gaps if "EufyCam 4" in g.description]
        assert len(gaps) == 1
        assert gaps[0].gap_type is GapType.MISSING_ENTITY
        assert gaps[0].affected_entities == ["cam"]
        assert gaps[0].priority >= 0.6

    def test_tagged_entity_not_in_graph(self, engine, camera_graph, now):
        result = engine.enrich(camera_graph, _content("", tagged=["Ring Doorbell"]), now=now)
        (gap,) = result.knowledge_gaps
        assert gap.description == "Tagged entity 'Ring Doorbell' is not in the graph"

    def test_weak_connection(self, engine, camera_graph, now):
        text = "EufyCam 3 suffers Battery Drain. Battery Drain hits EufyCam 3 in winter."
        result = engine.enrich(camera_graph, _content(text), now=now)

        (gap,) = [g for g in result.knowledge_gaps if g.gap_type is GapType.WEAK_CONNECTION]
        assert gap.affected_entities == ["battery", "cam"]
        assert gap.priority == pytest.approx(1.0)

    def test_strong_pairs_are_not_gaps(self, engine, camera_graph, now):
        text = "Solar Charging powers EufyCam 3. EufyCam 3 relies on Solar Charging."
        result = engine.enrich(camera_graph, _content(text), now=now)
        assert not [g for g in result.knowledge_gaps if g.gap_type is GapType.WEAK_CONNECTION]

    def test_outdated_entity(self, engine, now, stale_time):
        graph = make_graph([entity("old", "product", "Legacy Cam", last_updated=stale_time)], [])

        result = engine.enrich(graph, _content("The Legacy Cam still works."), now=now)

        (gap,) = [g for g in result.knowledge_gaps if g.gap_type is GapType.OUTDATED_INFO]
        assert gap.affected_entities == ["old"]
        assert gap.priority == 1.0

    def test_ambiguous_term(self, engine):
        graph = make_graph(
            [
                entity("brand", "brand", "Eufy"),
                entity("cam", "product", "EufyCam 3", aliases=["Eufy"]),
            ],
            [],
        )

        result = engine.enrich(graph, _content("Eufy makes cameras."))

        (gap,) = [g for g in result.knowledge_gaps if g.gap_type is GapType.AMBIGUITY]
        assert gap.affected_entities == ["brand", "cam"]


class TestQueryByContent:
    """Content-driven queries."""

    def test_entities_paths_and_suggestions(self, engine, camera_graph):
        result = engine.query_by_content(camera_graph, "Tell me about Arlo Pro 4 and EufyCam 3")

        assert [e.id for e in result.relevant_entities] == ["cam", "arlo"]
        assert result.knowledge_paths == [["cam", "arlo"]]
        assert result.suggested_queries[0] == "What are the main features of EufyCam 3?"
        assert "EufyCam 3 vs Arlo Pro 4" in result.suggested_queries

    def test_context_constraints_and_entities(self, engine, camera_graph):
        context = QueryContext(
            entities=["Solar Charging", "base"],
            constraints=[QueryConstraint(type="entity_type", value="product")],
            intent="Buying guide",
        )

        result = engine.query_by_content(camera_graph, "Arlo Pro 4 review", context)

        assert [e.id for e in result.relevant_entities] == ["base", "arlo"]
        assert result.suggested_queries[-1] == "Buying guide: HomeBase 3"

    def test_attribute_constraint(self, engine, camera_graph):
        context = QueryContext(
            constraints=[QueryConstraint(type="attribute", attribute="price", operator="less_than", value=250)]
        )
        result = engine.query_by_content(camera_graph, "EufyCam 3 or Arlo Pro 4", context)
        assert [e.id for e in result.relevant_entities] == ["arlo"]

    def test_result_limit(self, engine, camera_graph):
        result = engine.query_by_content(
            camera_graph, "EufyCam 3, Arlo Pro 4, HomeBase 3", QueryContext(result_limit=1)
        )
        assert [e.id for e in result.relevant_entities] == ["cam"]

    def test_no_entities(self, engine, camera_graph):
        result = engine.query_by_content(camera_graph, "nothing relevant")
        assert result.relevant_entities == []
        assert result.suggested_queries == []


@pytest.mark.parametrize(
    "counts,expected",
    [((0, 0, 0), 0.0), ((1, 0, 0), 0.03), ((2, 1, 3), 0.19), ((20, 20, 20), 1.0)],
)
def test_enrichment_score(counts, expected):
    assert enrichment_score(*counts) == pytest.approx(expected)
