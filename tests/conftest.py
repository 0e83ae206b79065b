"""
Pytest configuration and shared fixtures for knowledge graph engine tests.

This module provides:
- A small security-camera product graph as entity/relationship candidates
- Built KnowledgeGraph instances for store, traversal and insight tests
- A fresh KnowledgeGraphManager per test
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from semkg.graph.manager import KnowledgeGraphManager
from semkg.graph.models import Entity, KnowledgeGraph, Relationship


@pytest.fixture
def now():
    """Fixed reference time for staleness calculations."""
    return datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def camera_entities() -> List[Dict]:
    """Entity candidates for a small smart-home camera domain."""
    return [
        {
            "id": "cam",
            "type": "product",
            "name": "EufyCam 3",
            "aliases": ["eufyCam3"],
            "attributes": {"brand": "Eufy", "price": 299},
        },
        {"id": "base", "type": "product", "name": "HomeBase 3", "attributes": {"brand": "Eufy", "price": 149}},
        {"id": "solar", "type": "feature", "name": "Solar Charging"},
        {"id": "ai", "type": "feature", "name": "AI Detection", "aliases": ["Smart Detection"]},
        {"id": "battery", "type": "problem", "name": "Battery Drain"},
        {"id": "arlo", "type": "product", "name": "Arlo Pro 4", "attributes": {"brand": "Arlo", "price": 199}},
    ]


@pytest.fixture
def camera_relationships() -> List[Dict]:
    """
    Relationship candidates for the camera domain.

    Importance with N=6 (scale 3): cam 0.5967, solar 0.2, base 0.1633,
    battery 0.14, ai 0.1, arlo 0.0933.
    """
    return [
        {"id": "r1", "type": "part_of", "source_id": "solar", "target_id": "cam", "strength": 0.9},
        {"id": "r2", "type": "part_of", "source_id": "ai", "target_id": "cam", "strength": 0.8},
        {"id": "r3", "type": "requires", "source_id": "cam", "target_id": "base", "strength": 0.7},
        {"id": "r4", "type": "solves", "source_id": "solar", "target_id": "battery", "strength": 0.6},
        {
            "id": "r5",
            "type": "competes_with",
            "source_id": "cam",
            "target_id": "arlo",
            "strength": 0.4,
            "bidirectional": True,
        },
    ]


@pytest.fixture
def manager():
    """Fresh manager with default configuration."""
    return KnowledgeGraphManager()


@pytest.fixture
def camera_graph(manager, camera_entities, camera_relationships, now) -> KnowledgeGraph:
    """Built and registered camera graph."""
    return manager.build_graph(
        "smart_home",
        camera_entities,
        camera_relationships,
        name="Smart home cameras",
        now=now,
    )


def make_graph(entities: List[Entity], relationships: List[Relationship], graph_id: str = "g") -> KnowledgeGraph:
    """Bare KnowledgeGraph (no derived structure) for engine-level tests."""
    return KnowledgeGraph(
        graph_id=graph_id,
        name=graph_id,
        domain="test",
        entities={e.id: e for e in entities},
        relationships={r.id: r for r in relationships},
    )


def entity(entity_id: str, entity_type: str = "concept", name: str = None, **kwargs) -> Entity:
    return Entity(id=entity_id, type=entity_type, name=name or entity_id.upper(), **kwargs)


def relationship(rel_id: str, source: str, target: str, strength: float = 0.5, rel_type: str = "related_to", **kwargs) -> Relationship:
    return Relationship(id=rel_id, type=rel_type, source_id=source, target_id=target, strength=strength, **kwargs)


@pytest.fixture
def stale_time(now):
    """A timestamp well past the default 180 day staleness window."""
    return now - timedelta(days=400)
