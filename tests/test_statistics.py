"""
Tests for graph statistics and summaries (semkg/graph/statistics.py).
"""

import pytest
from conftest import entity, make_graph, relationship

from semkg.graph.statistics import (
    compute_statistics,
    entities_frame,
    key_relationship_types,
    most_connected_entities,
    relationships_frame,
    summarize_graphs,
)


def test_camera_graph_statistics(camera_graph):
    """Test statistics computed while building the camera graph."""
    stats = camera_graph.statistics

    assert stats.total_entities == 6
    assert stats.total_relationships == 5
    assert stats.avg_degree == pytest.approx(10 / 6)
    assert stats.density == pytest.approx(1 / 3)


def test_density_definition():
    """Test density = E / (N(N-1)/2) and avg_degree = 2E / N."""
    entities = [entity(f"e{i}") for i in range(4)]
    relationships = [relationship("r1", "e0", "e1"), relationship("r2", "e1", "e2"), relationship("r3", "e2", "e3")]

    stats = compute_statistics(entities, relationships, [])

    assert stats.density == pytest.approx(3 / 6)
    assert stats.avg_degree == pytest.approx(1.5)
    assert stats.clusters == 0


@pytest.mark.parametrize("count", [0, 1])
def test_degenerate_graphs(count):
    """Test that tiny graphs never divide by zero."""
    stats = compute_statistics([entity(f"e{i}") for i in range(count)], [], [])
    assert stats.density == 0.0
    assert stats.avg_degree == 0.0


def test_frames_have_fixed_columns():
    """Test DataFrame helpers with and without rows."""
    assert list(relationships_frame([]).columns) == ["id", "type", "source_id", "target_id", "strength", "bidirectional"]
    frame = entities_frame([entity("a", "product", "Alpha")])
    assert frame.loc[0, "type"] == "product"
    assert frame.loc[0, "name"] == "Alpha"


def test_most_connected_entities(camera_graph):
    """Test degree ranking with id tie-breaks."""
    ranked = most_connected_entities(camera_graph, top_k=2)
    assert ranked == [
        {"id": "cam", "name": "EufyCam 3", "degree": 4},
        {"id": "solar", "name": "Solar Charging", "degree": 2},
    ]


def test_key_relationship_types(camera_graph):
    """Test relationship type mix with mean strength."""
    types = key_relationship_types(camera_graph)

    assert types[0]["type"] == "part_of"
    assert types[0]["count"] == 2
    assert types[0]["avg_strength"] == pytest.approx(0.85)
    assert [t["type"] for t in types[1:]] == ["competes_with", "requires", "solves"]


def test_summarize_single_graph(camera_graph):
    """Test a single-graph summary uses the graph's own density."""
    summary = summarize_graphs([camera_graph])

    assert summary["total_graphs"] == 1
    assert summary["total_entities"] == 6
    assert summary["domains"] == ["smart_home"]
    assert summary["insights"]["knowledge_density"] == pytest.approx(1 / 3)


def test_summarize_many_graphs(camera_graph):
    """Test the cross-graph density and ranking."""
    other = make_graph([entity("x"), entity("y")], [relationship("r1", "x", "y")], graph_id="other")
    other.statistics = compute_statistics(list(other.entities.values()), list(other.relationships.values()), [])

    summary = summarize_graphs([camera_graph, other], top_k=1)

    # (5 + 1) / ((6 + 2) * 2)
    assert summary["insights"]["knowledge_density"] == pytest.approx(6 / 16)
    assert summary["insights"]["most_connected_entities"][0]["id"] == "cam"
    assert summary["insights"]["key_relationship_types"] == [{"type": "part_of", "count": 2}]
    assert summary["domains"] == ["smart_home", "test"]


def test_summarize_no_graphs():
    """Test the empty summary."""
    summary = summarize_graphs([])
    assert summary["total_graphs"] == 0
    assert summary["insights"]["knowledge_density"] == 0.0
