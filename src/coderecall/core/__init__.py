"""Core module exports."""

from coderecall.core.errors import (
    CodeRecallError,
    ConfigError,
    ErrorCode,
    IndexingError,
    InternalError,
)
from coderecall.core.logging import (
    clear_request_id,
    configure_logging,
    get_logger,
    get_request_id,
    set_request_id,
)

__all__ = [
    # Errors
    "CodeRecallError",
    "ConfigError",
    "ErrorCode",
    "IndexingError",
    "InternalError",
    # Logging
    "clear_request_id",
    "configure_logging",
    "get_logger",
    "get_request_id",
    "set_request_id",
]
