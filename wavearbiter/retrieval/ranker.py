"""Knowledge retrieval ranking.

Assembles the rule context handed to the scenario providers. Four modes:

- vector: plain similarity search with optional category/document filters
- priority: rules first, then exceptions, then definitions (1/2, 1/4, 1/4 of top_k)
- document: fragments from a preferred document ahead of the rest
- hybrid: similarity search merged with keyword matches
"""
import logging
from typing import Sequence

from wavearbiter.models import FragmentCategory, RetrievalResult, ScoredFragment
from wavearbiter.retrieval.embeddings import EmbeddingProvider, normalize_query
from wavearbiter.retrieval.vector_store import VectorStore

logger = logging.getLogger(__name__)

KEYWORD_MATCH_SCORE = 0.5
EMPTY_CONTEXT = "[No relevant rules found]"
CONTEXT_HEADER = "[Knowledge Context]"


class RetrievalError(Exception):
    """Raised when knowledge retrieval fails; fatal to a decision cycle."""

    pass


class RetrievalRanker:
    """Ranks knowledge fragments for a query.

    Args:
        embedder: Provider for query embeddings
        store: Vector store holding fragments
        default_top_k: Number of fragments returned when top_k is not given
        default_threshold: Minimum similarity when no threshold is given
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        store: VectorStore,
        default_top_k: int = 8,
        default_threshold: float = 0.7,
    ):
        self.embedder = embedder
        self.store = store
        self.default_top_k = default_top_k
        self.default_threshold = default_threshold

    async def _embed(self, query: str) -> list[float]:
        try:
            return await self.embedder.embed(normalize_query(query))
        except Exception as e:
            raise RetrievalError(f"Knowledge search failed: {e}") from e

    def _search(
        self,
        embedding: Sequence[float],
        top_k: int,
        threshold: float,
        category: FragmentCategory | None = None,
        document_id: str | None = None,
    ) -> RetrievalResult:
        """Over-fetch 2x, filter, then truncate to top_k."""
        if top_k <= 0:
            return RetrievalResult()

        try:
            candidates = self.store.nearest(embedding, threshold, top_k * 2)
        except Exception as e:
            raise RetrievalError(f"Knowledge search failed: {e}") from e

        if category is not None:
            candidates = [c for c in candidates if c.fragment.category == category]
        if document_id is not None:
            candidates = [c for c in candidates if c.fragment.document_id == document_id]

        items = candidates[:top_k]
        return RetrievalResult(items=items, total_retrieved=len(items))

    async def retrieve(
        self,
        query: str,
        top_k: int | None = None,
        similarity_threshold: float | None = None,
        category: FragmentCategory | None = None,
        document_id: str | None = None,
    ) -> RetrievalResult:
        """Similarity search with optional category and document filters.

        Raises:
            RetrievalError: If embedding or the store fails
        """
        top_k = self.default_top_k if top_k is None else top_k
        threshold = self.default_threshold if similarity_threshold is None else similarity_threshold

        embedding = await self._embed(query)
        result = self._search(embedding, top_k, threshold, category, document_id)

        logger.debug(
            "STEP: Vector retrieval",
            extra={
                "extra_data": {
                    "action": "retrieve",
                    "top_k": top_k,
                    "threshold": threshold,
                    "category": category.value if category else None,
                    "document_id": document_id,
                    "returned": len(result),
                }
            },
        )
        return result

    async def priority_retrieve(self, query: str, top_k: int | None = None) -> RetrievalResult:
        """Rules first, then exceptions, then definitions.

        Up to top_k // 2 rules, top_k // 4 exceptions and top_k // 4
        definitions, concatenated in that order and truncated to top_k.
        """
        top_k = self.default_top_k if top_k is None else top_k
        embedding = await self._embed(query)

        quotas = [
            (FragmentCategory.RULE, top_k // 2),
            (FragmentCategory.EXCEPTION, top_k // 4),
            (FragmentCategory.DEFINITION, top_k // 4),
        ]

        items: list[ScoredFragment] = []
        for category, quota in quotas:
            items.extend(self._search(embedding, quota, self.default_threshold, category=category).items)

        return RetrievalResult(items=items[:top_k], total_retrieved=len(items))

    async def document_weighted_retrieve(
        self,
        query: str,
        preferred_document_id: str | None = None,
        top_k: int | None = None,
    ) -> RetrievalResult:
        """Fragments of the preferred document ahead of all others.

        Each partition keeps its own relevance order.
        """
        top_k = self.default_top_k if top_k is None else top_k
        embedding = await self._embed(query)
        general = self._search(embedding, top_k * 2, self.default_threshold)

        if not preferred_document_id:
            items = general.items[:top_k]
            return RetrievalResult(items=items, total_retrieved=len(general))

        preferred = [i for i in general.items if i.fragment.document_id == preferred_document_id]
        other = [i for i in general.items if i.fragment.document_id != preferred_document_id]
        items = (preferred + other)[:top_k]
        return RetrievalResult(items=items, total_retrieved=len(items))

    async def hybrid_retrieve(self, query: str, top_k: int | None = None) -> RetrievalResult:
        """Union of similarity and keyword search, deduplicated by fragment id.

        When both searches find a fragment its similarity score is kept;
        keyword-only matches score KEYWORD_MATCH_SCORE.
        """
        top_k = self.default_top_k if top_k is None else top_k
        vector_result = await self.retrieve(query, top_k=top_k)

        try:
            keyword_matches = self.store.text_match(query, top_k)
        except Exception as e:
            raise RetrievalError(f"Keyword search failed: {e}") from e

        combined: dict[str, ScoredFragment] = {}
        for item in vector_result.items:
            combined.setdefault(item.fragment.id, item)
        for fragment in keyword_matches:
            if fragment.id not in combined:
                combined[fragment.id] = ScoredFragment(fragment, KEYWORD_MATCH_SCORE)

        ranked = sorted(combined.values(), key=lambda item: item.score, reverse=True)[:top_k]
        return RetrievalResult(items=ranked, total_retrieved=len(ranked))

    async def retrieve_for_mode(
        self,
        query: str,
        mode: str = "vector",
        top_k: int | None = None,
        preferred_document_id: str | None = None,
    ) -> RetrievalResult:
        """Dispatch to the retrieval mode named in configuration."""
        if mode == "vector":
            return await self.retrieve(query, top_k=top_k)
        if mode == "priority":
            return await self.priority_retrieve(query, top_k=top_k)
        if mode == "document":
            return await self.document_weighted_retrieve(query, preferred_document_id, top_k=top_k)
        if mode == "hybrid":
            return await self.hybrid_retrieve(query, top_k=top_k)
        raise ValueError(f"Unknown retrieval mode: {mode}")


def format_context(result: RetrievalResult) -> str:
    """Render retrieved fragments as the prompt context block."""
    if not result.items:
        return EMPTY_CONTEXT

    parts = [CONTEXT_HEADER, ""]
    for item in result.items:
        fragment = item.fragment
        parts.append(f"## {fragment.section_title} (Page {fragment.source_page}, {fragment.category.value})")
        parts.append(f"Relevance: {item.score * 100:.1f}%")
        parts.append(fragment.content)
        parts.append("")
    return "\n".join(parts)
