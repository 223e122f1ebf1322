"""Configuration constants.

Values here are not user-configurable. For configurable values see
models.py.
"""

QUERY_MAX_CHARS = 10_000
"""Retrieval queries longer than this are rejected."""

RETRIEVE_DEFAULT_TOP_K = 10
RETRIEVE_MAX_TOP_K = 100
"""Hard cap on results per retrieval."""

PARTITION_PREFIX = "cb_"
PARTITION_NAME_MAX = 100
"""Partition (table) names never exceed this length."""

PLACEHOLDER_ROW_ID = "__placeholder__"
"""Row id used when a backend needs a seed row to create a table."""

APPROX_BYTES_PER_ROW = 1024
"""Rough on-disk footprint of one vector row, used for size estimates."""

CHARS_PER_TOKEN = 4
"""Token estimate used by the line chunker."""
