"""
Engine configuration management.

Loads engine settings from the `graph`, `traversal`, `enrichment` and
`insights` sections of config.yaml. Every tunable constant (clustering
threshold, importance weights, staleness window, gap thresholds) lives here
rather than in the algorithms. A missing file yields the defaults.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_PATH = "config.yaml"


def load_config(config_path: str = CONFIG_PATH) -> Dict[str, Any]:
    """Load raw configuration from YAML file (empty dict if absent)."""
    if not os.path.exists(config_path):
        return {}
    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}
    if not isinstance(config, dict):
        logger.warning("Ignoring config at %s: top level is not a mapping", config_path)
        return {}
    return config


@dataclass
class GraphConfig:
    cluster_threshold: float = 0.5
    importance_incoming_weight: float = 0.7
    importance_outgoing_weight: float = 0.3
    importance_normalizer: float = 0.5
    default_relationship_strength: float = 0.5
    strict_validation: bool = False
    staleness_days: float = 180.0
    strength_decay_floor: float = 0.5

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "GraphConfig":
        return cls(
            cluster_threshold=float(cfg.get("cluster_threshold", 0.5)),
            importance_incoming_weight=float(cfg.get("importance_incoming_weight", 0.7)),
            importance_outgoing_weight=float(cfg.get("importance_outgoing_weight", 0.3)),
            importance_normalizer=float(cfg.get("importance_normalizer", 0.5)),
            default_relationship_strength=float(cfg.get("default_relationship_strength", 0.5)),
            strict_validation=bool(cfg.get("strict_validation", False)),
            staleness_days=float(cfg.get("staleness_days", 180.0)),
            strength_decay_floor=float(cfg.get("strength_decay_floor", 0.5)),
        )


@dataclass
class TraversalConfig:
    max_paths: int = 10000

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "TraversalConfig":
        return cls(max_paths=int(cfg.get("max_paths", 10000)))


@dataclass
class EnrichmentConfig:
    recommendation_depth: int = 2
    top_k_concepts: int = 5
    weak_connection_threshold: float = 0.3
    min_cooccurrence: int = 2
    name_similarity_threshold: float = 0.6
    semantic_similarity_threshold: float = 0.7

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "EnrichmentConfig":
        return cls(
            recommendation_depth=int(cfg.get("recommendation_depth", 2)),
            top_k_concepts=int(cfg.get("top_k_concepts", 5)),
            weak_connection_threshold=float(cfg.get("weak_connection_threshold", 0.3)),
            min_cooccurrence=int(cfg.get("min_cooccurrence", 2)),
            name_similarity_threshold=float(cfg.get("name_similarity_threshold", 0.6)),
            semantic_similarity_threshold=float(cfg.get("semantic_similarity_threshold", 0.7)),
        )


@dataclass
class InsightConfig:
    hub_fraction: float = 0.05
    low_coherence_threshold: float = 0.3
    strength_drop_threshold: float = 0.3

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "InsightConfig":
        return cls(
            hub_fraction=float(cfg.get("hub_fraction", 0.05)),
            low_coherence_threshold=float(cfg.get("low_coherence_threshold", 0.3)),
            strength_drop_threshold=float(cfg.get("strength_drop_threshold", 0.3)),
        )


@dataclass
class EngineConfig:
    """Typed view over config.yaml."""

    graph: GraphConfig = field(default_factory=GraphConfig)
    traversal: TraversalConfig = field(default_factory=TraversalConfig)
    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)
    insights: InsightConfig = field(default_factory=InsightConfig)

    @classmethod
    def from_dict(cls, config: Optional[Dict[str, Any]]) -> "EngineConfig":
        config = config or {}
        return cls(
            graph=GraphConfig.from_dict(config.get("graph") or {}),
            traversal=TraversalConfig.from_dict(config.get("traversal") or {}),
            enrichment=EnrichmentConfig.from_dict(config.get("enrichment") or {}),
            insights=InsightConfig.from_dict(config.get("insights") or {}),
        )


def load_engine_config(config_path: str = CONFIG_PATH) -> EngineConfig:
    """Load the engine configuration, falling back to defaults for absent keys."""
    config = load_config(config_path)
    engine_config = EngineConfig.from_dict(config)
    logger.debug(
        "Loaded engine config from %s (cluster_threshold=%.2f, strict=%s)",
        config_path,
        engine_config.graph.cluster_threshold,
        engine_config.graph.strict_validation,
    )
    return engine_config
