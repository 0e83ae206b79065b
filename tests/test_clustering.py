"""
Tests for strength-threshold clustering (semkg/graph/clustering.py).
"""

import pytest
from conftest import entity, relationship

from semkg.graph.clustering import ClusteringEngine, theme_for


def test_camera_graph_clusters(camera_graph):
    """Test the clusters derived while building the camera graph."""
    clusters = camera_graph.statistics.main_components

    assert [c.entities for c in clusters] == [
        ["ai", "base", "battery", "cam", "solar"],
        ["arlo"],
    ]
    main, singleton = clusters
    assert main.cluster_id == "cluster_cam"
    assert main.central_entity == "cam"
    assert main.name == "EufyCam 3 cluster"
    assert main.coherence == pytest.approx(1.0)
    assert main.theme == "product-centric"
    assert singleton.coherence == 0.0
    assert camera_graph.statistics.clusters == 2


def test_weak_edges_do_not_join_clusters():
    """Test that relationships below the threshold keep entities apart."""
    entities = [entity("a"), entity("b"), entity("c")]
    relationships = [relationship("r1", "a", "b", 0.6), relationship("r2", "b", "c", 0.2)]

    clusters = ClusteringEngine(cluster_threshold=0.5).cluster(entities, relationships)

    assert sorted(c.entities for c in clusters) == [["a", "b"], ["c"]]


def test_coherence_counts_weak_internal_edges():
    """Test coherence as strong / all relationships inside a cluster."""
    entities = [entity("a"), entity("b"), entity("c")]
    relationships = [
        relationship("r1", "a", "b", 0.9),
        relationship("r2", "b", "c", 0.8),
        relationship("r3", "a", "c", 0.1),
    ]

    (cluster,) = ClusteringEngine(cluster_threshold=0.5).cluster(entities, relationships)

    assert cluster.coherence == pytest.approx(2 / 3)


def test_central_entity_is_most_important():
    """Test central entity selection and deterministic tie-breaking."""
    entities = [entity("b", importance=0.2), entity("a", importance=0.2), entity("c", importance=0.1)]
    relationships = [relationship("r1", "a", "b", 0.9), relationship("r2", "b", "c", 0.9)]

    (cluster,) = ClusteringEngine().cluster(entities, relationships)

    assert cluster.central_entity == "a"


def test_empty_input():
    """Test that no entities gives no clusters."""
    assert ClusteringEngine().cluster([], []) == []


def test_theme_for():
    """Test theme labels from the dominant entity type."""
    assert theme_for(["feature", "feature", "product"]) == "feature-centric"
    assert theme_for(["feature", "product"]) == "product-centric"
    assert theme_for([]) == "mixed"
