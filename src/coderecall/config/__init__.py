"""Config module exports."""

from coderecall.config.loader import load_config
from coderecall.config.models import (
    CodeRecallConfig,
    EmbeddingsConfig,
    IndexingConfig,
    LoggingConfig,
    StorageConfig,
    WatchConfig,
)

__all__ = [
    "load_config",
    "CodeRecallConfig",
    "EmbeddingsConfig",
    "IndexingConfig",
    "LoggingConfig",
    "StorageConfig",
    "WatchConfig",
]
