"""Knowledge retrieval for analysis context."""

from wavearbiter.retrieval.embeddings import EmbeddingError, EmbeddingProvider, OpenAIEmbeddingClient, normalize_query
from wavearbiter.retrieval.vector_store import FileVectorStore, VectorStore
from wavearbiter.retrieval.ranker import RetrievalError, RetrievalRanker, format_context

__all__ = [
    "EmbeddingError",
    "EmbeddingProvider",
    "OpenAIEmbeddingClient",
    "normalize_query",
    "FileVectorStore",
    "VectorStore",
    "RetrievalError",
    "RetrievalRanker",
    "format_context",
]
