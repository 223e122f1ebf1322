"""Pydantic configuration models with env var support.

Configuration Hierarchy (highest to lowest precedence):
1. Direct kwargs to load_config()
2. Environment variables (CODERECALL__SECTION__KEY)
3. Workspace YAML (<workspace>/.coderecall/config.yaml)
4. Global YAML (~/.config/coderecall/config.yaml)
5. Built-in defaults (this file)

Examples:
    CODERECALL__LOGGING__LEVEL=DEBUG
    CODERECALL__INDEXING__CONCURRENCY=4
    CODERECALL__EMBEDDINGS__PROVIDER=api
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from coderecall.core.excludes import DEFAULT_EXCLUDE_GLOBS
from coderecall.core.languages import DEFAULT_INCLUDE_EXTENSIONS, normalize_extension

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class LogOutputConfig(BaseModel):
    """Single logging output configuration."""

    format: Literal["json", "console"] = "console"
    destination: str = "stderr"  # stderr, stdout, or absolute file path
    level: LogLevel | None = None  # Inherits from parent if None

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str) -> str:
        if v in ("stderr", "stdout"):
            return v
        path = Path(v).expanduser()
        if not path.is_absolute():
            raise ValueError(f"File destination must be absolute path: {v}")
        return str(path)


class LoggingConfig(BaseModel):
    """Logging configuration.

    Env vars:
        CODERECALL__LOGGING__LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    level: LogLevel = Field(default="INFO", description="Root log level.")
    outputs: list[LogOutputConfig] = Field(default_factory=lambda: [LogOutputConfig()])


class IndexingConfig(BaseModel):
    """Scanning, chunking and batching.

    Env vars:
        CODERECALL__INDEXING__MAX_FILE_SIZE: Skip files larger than this (bytes)
        CODERECALL__INDEXING__CONCURRENCY: Embedding sub-batches in flight
    """

    include_extensions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_INCLUDE_EXTENSIONS),
        description="Only files with these extensions are indexed.",
    )
    exclude_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EXCLUDE_GLOBS),
        description="Glob patterns (relative to the workspace) that are never indexed.",
    )
    respect_gitignore: bool = Field(
        default=True,
        description="Also skip paths matched by the workspace's top-level .gitignore.",
    )
    max_file_size: int = Field(
        default=1024 * 1024,
        description="Files larger than this many bytes are skipped with a warning.",
    )
    max_chunk_size: int = Field(
        default=512,
        description="Upper bound on chunk size in estimated tokens.",
    )
    file_batch_size: int = Field(default=100, description="Files per compute batch.")
    embedding_batch_size: int = Field(default=32, description="Chunks per embedding call.")
    concurrency: int = Field(
        default=3,
        description="Embedding sub-batches issued concurrently. "
        "RISK: Higher values raise peak memory during local inference.",
    )

    @field_validator("include_extensions")
    @classmethod
    def normalize_extensions(cls, v: list[str]) -> list[str]:
        return [e for e in (normalize_extension(x) for x in v) if e]

    @field_validator("max_file_size", "max_chunk_size", "file_batch_size", "embedding_batch_size", "concurrency")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"must be >= 1, got {v}")
        return v


class EmbeddingsConfig(BaseModel):
    """Embedding model selection.

    Env vars:
        CODERECALL__EMBEDDINGS__PROVIDER: "local" (fastembed) or "api"
        CODERECALL__EMBEDDINGS__API_KEY: Bearer token for the API provider
    """

    provider: Literal["local", "api"] = "local"
    model_name: str = Field(
        default="BAAI/bge-small-en-v1.5",
        description="fastembed model used by the local provider.",
    )
    api_name: str = Field(default="openai", description="Label used in the embedding id.")
    api_base_url: str = Field(default="https://api.openai.com")
    api_key: str | None = None
    api_model: str = Field(default="text-embedding-3-small")
    api_dimensions: int | None = Field(
        default=None,
        description="Override the dimension guess until the first response arrives.",
    )
    api_batch_size: int = Field(default=100, description="Texts per HTTP request.")
    api_timeout_sec: float = Field(default=60.0)


class StorageConfig(BaseModel):
    """Persisted state location.

    Env vars:
        CODERECALL__STORAGE__DATA_DIR: Directory holding vectors.db and cache/
    """

    data_dir: str = Field(default="~/.coderecall")
    busy_timeout_ms: int = Field(default=30000, description="SQLite busy timeout (ms).")
    max_retries: int = Field(default=3, description="Retries for locked database errors.")
    cache_max_age_days: int = Field(
        default=30,
        description="Cache entries older than this are removed by cleanup_expired().",
    )

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()


class WatchConfig(BaseModel):
    """Workspace watcher.

    Env vars:
        CODERECALL__WATCH__DEBOUNCE_SEC: Quiet period before reindexing changed files
    """

    debounce_sec: float = Field(default=0.5)


class CodeRecallConfig(BaseModel):
    """Root configuration for CodeRecall."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    indexing: IndexingConfig = Field(default_factory=IndexingConfig)
    embeddings: EmbeddingsConfig = Field(default_factory=EmbeddingsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    watch: WatchConfig = Field(default_factory=WatchConfig)
