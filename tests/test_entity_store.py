"""
Tests for entity disambiguation and importance scoring (semkg/graph/entity_store.py).
"""

import pytest

from semkg.graph.entity_store import EntityStore
from semkg.graph.models import Entity, Relationship


@pytest.fixture
def store():
    return EntityStore()


def _candidates():
    return [
        Entity(id="e1", type="product", name="EufyCam 3", aliases=["E3"], attributes={"price": 299}),
        Entity(id="e2", type="product", name="eufycam 3 ", aliases=["Eufy Camera"], attributes={"price": 10, "brand": "Eufy"}),
        Entity(id="e3", type="feature", name="EufyCam 3"),
        Entity(id="e4", type="feature", name="Solar Charging"),
    ]


def test_disambiguate_groups_by_type_and_name(store):
    """Test that candidates collide only on (type, normalized name)."""
    canonical = store.disambiguate(_candidates())

    assert [e.id for e in canonical] == ["e1", "e3", "e4"]
    keeper = canonical[0]
    assert set(keeper.aliases) == {"E3", "Eufy Camera"}
    assert keeper.attributes == {"price": 299, "brand": "Eufy"}


def test_disambiguate_is_idempotent(store):
    """Test that disambiguating the output again changes nothing."""
    once = store.disambiguate(_candidates())
    snapshot = [(e.id, list(e.aliases), dict(e.attributes)) for e in once]

    twice = store.disambiguate(once)

    assert [(e.id, list(e.aliases), dict(e.attributes)) for e in twice] == snapshot


def test_disambiguate_reports_redirects(store):
    """Test that merged-away ids map to the keeper."""
    canonical, redirects = store.disambiguate_with_redirects(_candidates())
    assert redirects == {"e2": "e1"}
    assert len(canonical) == 3


def test_disambiguate_against_existing_entities(store):
    """Test merging new candidates into entities already in a graph."""
    existing = Entity(id="old", type="product", name="EufyCam 3")
    new = Entity(id="new", type="product", name="EUFYCAM 3", aliases=["Cam3"])

    canonical, redirects = store.disambiguate_with_redirects([new], existing={existing.key: existing})

    assert canonical == []
    assert redirects == {"new": "old"}
    assert existing.aliases == ["Cam3"]


def test_compute_importance_formula():
    """
    Test the one-pass importance formula.

    incoming(e1) = 0.8 + 0.6 = 1.4, outgoing(e1) = 1, N = 4:
    (1.4 * 0.7 + 1 * 0.3) / (4 * 0.5) = 1.28 / 2 = 0.64
    """
    store = EntityStore()
    entities = [Entity(id=f"e{i}", type="concept", name=f"E{i}") for i in range(1, 5)]
    relationships = [
        Relationship(id="r1", type="related_to", source_id="e2", target_id="e1", strength=0.8),
        Relationship(id="r2", type="related_to", source_id="e3", target_id="e1", strength=0.6),
        Relationship(id="r3", type="related_to", source_id="e1", target_id="e4"),
    ]

    scores = store.compute_importance(entities, relationships)

    assert scores["e1"] == pytest.approx(0.64)
    assert entities[0].importance == pytest.approx(0.64)
    # e4: incoming 0.5 (default strength) -> 0.35 / 2
    assert scores["e4"] == pytest.approx(0.175)
    # e2: one outgoing edge -> 0.3 / 2
    assert scores["e2"] == pytest.approx(0.15)


def test_compute_importance_is_capped():
    """Test that importance never exceeds 1."""
    store = EntityStore()
    hub = Entity(id="hub", type="concept", name="Hub")
    spokes = [Entity(id=f"s{i}", type="concept", name=f"S{i}") for i in range(3)]
    relationships = [
        Relationship(id=f"r{i}", type="related_to", source_id=s.id, target_id="hub", strength=1.0)
        for i, s in enumerate(spokes)
    ]

    store.compute_importance([hub] + spokes, relationships)

    # (3 * 0.7) / (4 * 0.5) = 1.05 -> 1.0
    assert hub.importance == 1.0
    assert all(0.0 <= e.importance <= 1.0 for e in [hub] + spokes)


def test_compute_importance_empty():
    """Test that no entities yields an empty result rather than an error."""
    assert EntityStore().compute_importance([], []) == {}


def test_custom_weights():
    """Test that the formula constants are configurable."""
    store = EntityStore(incoming_weight=1.0, outgoing_weight=0.0, normalizer=1.0)
    a = Entity(id="a", type="concept", name="A")
    b = Entity(id="b", type="concept", name="B")
    rel = Relationship(id="r", type="related_to", source_id="a", target_id="b", strength=0.5)

    scores = store.compute_importance([a, b], [rel])

    assert scores == {"a": 0.0, "b": pytest.approx(0.25)}


def test_invalid_normalizer():
    """Test that a non-positive normalizer is rejected."""
    with pytest.raises(ValueError):
        EntityStore(normalizer=0)
