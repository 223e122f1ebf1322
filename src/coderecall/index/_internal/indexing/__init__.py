"""Chunking, embeddings and the partitioned vector store."""

from coderecall.index._internal.indexing.chunking import ChunkSource, LineChunker, chunk_digest
from coderecall.index._internal.indexing.embeddings import (
    EmbeddingsProvider,
    FastEmbedProvider,
    create_embeddings_provider,
)
from coderecall.index._internal.indexing.api_embeddings import ApiEmbeddingsProvider
from coderecall.index._internal.indexing.vector_store import VectorStore, table_name

__all__ = [
    # Chunking
    "ChunkSource",
    "LineChunker",
    "chunk_digest",
    # Embeddings
    "ApiEmbeddingsProvider",
    "EmbeddingsProvider",
    "FastEmbedProvider",
    "create_embeddings_provider",
    # Store
    "VectorStore",
    "table_name",
]
