"""
CODEPATH CONFIGURATION - Tunables from codepath.toml

Loads config/codepath.toml (or the file named by CODEPATH_CONFIG) with
tomllib and converts each section into a typed msgspec struct. Every
field has a default, so a missing file or section simply means
"use the defaults".

Sections:
- [tracker]: Location search window and confidence thresholds
- [graph]: Tree limits
- [logging]: Diagnostics level and mutation journal sink
"""
import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, Optional, Union

import msgspec

from infrastructure.logger import LoggerConfig

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "CODEPATH_CONFIG"
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "codepath.toml"


class TrackerConfig(msgspec.Struct, kw_only=True, frozen=True):
    """
    Location search tunables.

    The nearby window is searched first; the whole-file scan only runs
    when nothing in the window scores at least min_similarity.
    """
    window_radius: int = 30                 # Lines searched above and below the recorded line
    min_similarity: float = 0.8             # Below this a nearby candidate is discarded
    high_similarity: float = 0.95           # At or above (and close enough) means HIGH
    high_max_distance: int = 10             # Farther than this caps a nearby match at MEDIUM
    containment_score: float = 0.95         # Score for a line that contains the snippet
    min_containment_length: int = 4         # Shorter snippets never match by containment
    fallback_similarity: float = 0.9        # Whole-file scan acceptance threshold
    max_fallback_lines: int = 20000         # Larger files skip the whole-file scan
    max_span_lines: int = 8                 # Longest multi-line match considered

    def __post_init__(self):
        for name in ("min_similarity", "high_similarity", "containment_score", "fallback_similarity"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"tracker.{name} must be within [0, 1], got {value}")
        if self.min_similarity > self.high_similarity:
            raise ValueError("tracker.min_similarity cannot exceed tracker.high_similarity")
        if self.window_radius < 0 or self.max_span_lines < 1:
            raise ValueError("tracker.window_radius must be >= 0 and max_span_lines >= 1")


class GraphConfig(msgspec.Struct, kw_only=True, frozen=True):
    """Tree limits."""
    max_nodes_per_graph: int = 10000


class LoggingConfig(msgspec.Struct, kw_only=True, frozen=True):
    """Diagnostics and mutation journal settings."""
    level: str = "INFO"
    buffer_size: int = 10000
    log_path: Optional[str] = None          # Directory for the JSONL journal

    def to_logger_config(self) -> LoggerConfig:
        return LoggerConfig(
            log_path=Path(self.log_path) if self.log_path else None,
            buffer_size=self.buffer_size,
        )


class CodePathConfig(msgspec.Struct, kw_only=True, frozen=True):
    """Complete configuration."""
    tracker: TrackerConfig = msgspec.field(default_factory=TrackerConfig)
    graph: GraphConfig = msgspec.field(default_factory=GraphConfig)
    logging: LoggingConfig = msgspec.field(default_factory=LoggingConfig)


def load_toml_config(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Read the raw TOML configuration.

    Resolution order: explicit path, CODEPATH_CONFIG, config/codepath.toml.
    A missing file yields an empty dict (all defaults) with a warning.
    """
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
    config_path = Path(path)

    try:
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError:
        logger.warning(f"Config file {config_path} not found, using defaults")
        return {}


def load_config(path: Optional[Union[str, Path]] = None) -> CodePathConfig:
    """
    Load and type-check the configuration.

    Raises:
        tomllib.TOMLDecodeError: If the file is not valid TOML
        msgspec.ValidationError: If a value has the wrong type or range
    """
    raw = load_toml_config(path)
    return msgspec.convert(raw, CodePathConfig)


def configure_logging(config: LoggingConfig) -> None:
    """Apply the diagnostics level to the codepath package loggers."""
    level = logging.getLevelName(config.level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown logging level: {config.level}")
    for name in ("core", "domain", "managers", "infrastructure"):
        logging.getLogger(name).setLevel(level)
