"""
CODEPATH INFRASTRUCTURE - System-Level Modules

This package contains infrastructure components:
- config: TOML configuration loaded into typed structs
- file_reader: Async file-content readers for the location tracker
- logger: Mutation event journal (ring buffer, JSONL file, subscribers)
"""

from infrastructure.config import CodePathConfig, TrackerConfig, load_config
from infrastructure.file_reader import FileLineReader, CachedLineReader
from infrastructure.logger import MutationLogger, MutationEvent, get_logger

__all__ = [
    "CodePathConfig",
    "TrackerConfig",
    "load_config",
    "FileLineReader",
    "CachedLineReader",
    "MutationLogger",
    "MutationEvent",
    "get_logger",
]
