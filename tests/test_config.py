"""
Tests for configuration loading and logging setup.
"""
import logging
import os
from unittest.mock import patch

from semkg.common.config import EngineConfig, load_config, load_engine_config
from semkg.common.logging_utils import DEFAULT_FORMAT, build_logging_config, setup_logging


class TestEngineConfig:
    """Test engine configuration loading."""

    def test_load_config_missing(self):
        """Test loading config from non-existent file."""
        assert load_config("nonexistent_config.yaml") == {}

    def test_defaults_when_missing(self):
        """Test that a missing file yields the documented defaults."""
        config = load_engine_config("nonexistent_config.yaml")
        assert config.graph.cluster_threshold == 0.5
        assert config.graph.importance_incoming_weight == 0.7
        assert config.graph.importance_outgoing_weight == 0.3
        assert config.graph.importance_normalizer == 0.5
        assert config.graph.staleness_days == 180.0
        assert config.traversal.max_paths == 10000
        assert config.enrichment.top_k_concepts == 5
        assert config.insights.hub_fraction == 0.05

    def test_partial_sections(self, tmp_path):
        """Test that absent keys fall back to defaults."""
        path = tmp_path / "config.yaml"
        path.write_text(
            "graph:\n  cluster_threshold: 0.7\n  strict_validation: true\nenrichment:\n  min_cooccurrence: 3\n",
            encoding="utf-8",
        )

        config = load_engine_config(str(path))

        assert config.graph.cluster_threshold == 0.7
        assert config.graph.strict_validation is True
        assert config.graph.default_relationship_strength == 0.5
        assert config.enrichment.min_cooccurrence == 3
        assert config.insights.low_coherence_threshold == 0.3

    def test_non_mapping_config_ignored(self, tmp_path):
        """Test that a YAML list at top level is ignored."""
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")
        assert load_config(str(path)) == {}

    def test_empty_sections(self):
        """Test null sections in YAML."""
        config = EngineConfig.from_dict({"graph": None, "insights": None})
        assert config.graph.cluster_threshold == 0.5
        assert config.insights.strength_drop_threshold == 0.3

    def test_repository_config_matches_defaults(self):
        """Test the shipped config.yaml."""
        repo_config = os.path.join(os.path.dirname(os.path.dirname(__file__)), "config.yaml")
        config = load_engine_config(repo_config)
        assert config == EngineConfig()


class TestLoggingSetup:
    """Test logging configuration."""

    def test_level_from_config(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("logging:\n  level: WARNING\n", encoding="utf-8")
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("LOG_LEVEL", None)
            setup_logging(str(path))
        assert logging.getLogger().level == logging.WARNING

    def test_env_override(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("logging:\n  level: WARNING\n", encoding="utf-8")
        with patch.dict(os.environ, {"LOG_LEVEL": "debug"}):
            assert setup_logging(str(path)) == "DEBUG"
        assert logging.getLogger().level == logging.DEBUG

    def test_file_handler(self, tmp_path):
        log_file = tmp_path / "logs" / "engine.log"
        path = tmp_path / "config.yaml"
        path.write_text(f"logging:\n  level: INFO\n  file: '{log_file.as_posix()}'\n", encoding="utf-8")

        setup_logging(str(path))
        logging.getLogger("semkg.test").info("hello")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert log_file.exists()
        assert "hello" in log_file.read_text(encoding="utf-8")
        for handler in list(logging.getLogger().handlers):
            if isinstance(handler, logging.FileHandler):
                logging.getLogger().removeHandler(handler)
                handler.close()

    def test_per_logger_levels(self):
        """Test the `loggers` mapping in the logging section."""
        dict_config = build_logging_config(
            {"level": "info", "loggers": {"semkg.graph.traversal": "debug", "sentence_transformers": "bogus"}}
        )

        assert dict_config["root"] == {"level": "INFO", "handlers": ["console"]}
        assert dict_config["loggers"] == {
            "semkg.graph.traversal": {"level": "DEBUG"},
            "sentence_transformers": {"level": "INFO"},
        }
        assert dict_config["formatters"]["engine"]["format"] == DEFAULT_FORMAT

    def test_unknown_level_falls_back_to_info(self):
        dict_config = build_logging_config({"level": "LOUD", "file": "logs/engine.log"}, level_override=None)

        assert dict_config["root"]["level"] == "INFO"
        assert dict_config["root"]["handlers"] == ["console", "file"]
        assert dict_config["handlers"]["file"]["filename"] == "logs/engine.log"

    def test_override_wins_over_section(self):
        assert build_logging_config({"level": "ERROR"}, level_override="warning")["root"]["level"] == "WARNING"
        assert build_logging_config(None)["root"]["level"] == "INFO"
