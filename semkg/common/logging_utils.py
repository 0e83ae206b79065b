"""
Logging setup for applications embedding the engine.

The `logging` section of config.yaml supplies the root level, format and an
optional log file; `loggers` sets per-logger levels (for example
`semkg.graph.traversal: DEBUG` while tuning queries, or quieting
`sentence_transformers`). LOG_LEVEL in the environment overrides the root
level. The engine itself never calls `setup_logging`.
"""

from __future__ import annotations

import logging
import logging.config
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from semkg.common.config import CONFIG_PATH, load_config

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _level_name(value: Any, fallback: str = "INFO") -> str:
    name = str(value or fallback).strip().upper()
    return name if isinstance(logging.getLevelName(name), int) else fallback


def build_logging_config(
    logging_cfg: Optional[Mapping[str, Any]],
    level_override: Optional[str] = None,
) -> Dict[str, Any]:
    """dictConfig mapping for a `logging` config section."""
    logging_cfg = logging_cfg or {}
    level = _level_name(level_override or logging_cfg.get("level"))

    handlers: Dict[str, Any] = {
        "console": {"class": "logging.StreamHandler", "formatter": "engine", "level": level},
    }
    log_file = logging_cfg.get("file")
    if log_file:
        handlers["file"] = {
            "class": "logging.FileHandler",
            "formatter": "engine",
            "level": level,
            "filename": str(log_file),
            "encoding": "utf-8",
        }

    loggers = {
        str(name): {"level": _level_name(logger_level, fallback=level)}
        for name, logger_level in (logging_cfg.get("loggers") or {}).items()
    }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"engine": {"format": logging_cfg.get("format") or DEFAULT_FORMAT}},
        "handlers": handlers,
        "loggers": loggers,
        "root": {"level": level, "handlers": sorted(handlers)},
    }


def setup_logging(config_path: str = CONFIG_PATH) -> str:
    """
    Configure root logging from config.yaml and return the effective level name.

    Unknown level names fall back to INFO rather than failing start-up.
    """
    config = load_config(config_path)
    dict_config = build_logging_config(config.get("logging"), os.getenv("LOG_LEVEL"))

    file_handler = dict_config["handlers"].get("file")
    if file_handler:
        Path(file_handler["filename"]).parent.mkdir(parents=True, exist_ok=True)

    logging.config.dictConfig(dict_config)
    return dict_config["root"]["level"]
