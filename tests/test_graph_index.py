"""
Tests for the cross-graph name index (semkg/graph/graph_index.py).
"""

from conftest import entity, make_graph

from semkg.graph.graph_index import GraphIndex


def test_index_graph_by_name_and_alias():
    """Test lookups by entity name and alias, case-insensitively."""
    index = GraphIndex()
    graph = make_graph([entity("cam", "product", "EufyCam 3", aliases=["Eufy Cam"])], [], graph_id="g1")

    index.index_graph(graph)

    assert index.lookup_graphs("eufycam 3") == {"g1"}
    assert index.lookup_graphs("  EUFY CAM ") == {"g1"}
    assert index.lookup_entities("g1", "Eufy Cam") == ["cam"]
    assert index.lookup_graphs("unknown") == set()


def test_same_name_in_several_graphs():
    """Test that a name maps to every graph that contains it."""
    index = GraphIndex()
    index.index_graph(make_graph([entity("a", name="Solar")], [], graph_id="g1"))
    index.index_graph(make_graph([entity("b", "feature", "solar")], [], graph_id="g2"))

    assert index.lookup_graphs("Solar") == {"g1", "g2"}


def test_reindex_entity_retracts_old_names():
    """Test that renaming an entity removes its previous name from the index."""
    index = GraphIndex()
    cam = entity("cam", "product", "EufyCam 3", aliases=["E3"])
    index.index_graph(make_graph([cam], [], graph_id="g1"))

    cam.name = "EufyCam 3 Pro"
    cam.aliases = []
    index.index_entity("g1", cam)

    assert index.lookup_graphs("EufyCam 3") == set()
    assert index.lookup_graphs("E3") == set()
    assert index.lookup_entities("g1", "eufycam 3 pro") == ["cam"]


def test_shared_name_survives_partial_retraction():
    """Test that a name stays indexed while another entity still carries it."""
    index = GraphIndex()
    first = entity("p1", "product", "Eufy")
    second = entity("b1", "brand", "Eufy")
    index.index_graph(make_graph([first, second], [], graph_id="g1"))

    first.name = "Eufy Cam"
    index.index_entity("g1", first)

    assert index.lookup_entities("g1", "eufy") == ["b1"]
    assert index.lookup_graphs("eufy") == {"g1"}


def test_remove_graph():
    """Test that removing a graph clears all its names."""
    index = GraphIndex()
    index.index_graph(make_graph([entity("a", name="Solar")], [], graph_id="g1"))
    index.index_graph(make_graph([entity("b", name="Solar")], [], graph_id="g2"))

    index.remove_graph("g1")

    assert index.lookup_graphs("solar") == {"g2"}
    assert index.names("g1") == []
    assert index.names("g2") == ["solar"]
