"""Vector store over knowledge fragments."""
import logging
import re
from typing import Protocol, Sequence, runtime_checkable

import numpy as np

from wavearbiter.core.data_store import FileDataStore
from wavearbiter.models import KnowledgeFragment, ScoredFragment

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r"\w+")


@runtime_checkable
class VectorStore(Protocol):
    """Similarity and keyword search over fragments."""

    def nearest(self, embedding: Sequence[float], threshold: float, limit: int) -> list[ScoredFragment]:
        """Fragments with similarity above threshold, most similar first."""
        ...

    def text_match(self, query: str, limit: int) -> list[KnowledgeFragment]:
        """Fragments whose content matches the query terms."""
        ...


class FileVectorStore:
    """Brute-force cosine search over fragments kept in the FileDataStore.

    Fragments are loaded once into a normalized embedding matrix; call
    refresh() after documents are added or deleted.
    """

    def __init__(self, data_store: FileDataStore):
        self.data_store = data_store
        self._all_fragments: list[KnowledgeFragment] = []
        self._fragments: list[KnowledgeFragment] = []  # only those with embeddings
        self._matrix: np.ndarray | None = None
        self.refresh()

    def refresh(self) -> None:
        """Reload fragments from the data store."""
        self._all_fragments = self.data_store.read_fragments()
        fragments = [f for f in self._all_fragments if f.embedding]
        self._fragments = fragments
        if not fragments:
            self._matrix = None
            return

        matrix = np.asarray([f.embedding for f in fragments], dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        norms[norms == 0] = 1.0
        self._matrix = matrix / norms
        logger.info(f"Vector store loaded {len(fragments)} fragments")

    def __len__(self) -> int:
        return len(self._all_fragments)

    def nearest(self, embedding: Sequence[float], threshold: float, limit: int) -> list[ScoredFragment]:
        if self._matrix is None or limit <= 0:
            return []

        query = np.asarray(embedding, dtype=np.float64)
        if query.shape[0] != self._matrix.shape[1]:
            raise ValueError(
                f"Query embedding has {query.shape[0]} dimensions, store has {self._matrix.shape[1]}"
            )
        norm = np.linalg.norm(query)
        if norm == 0:
            return []

        sims = self._matrix @ (query / norm)
        # Stable sort keeps insertion order among equal similarities
        order = np.argsort(-sims, kind="stable")

        results: list[ScoredFragment] = []
        for idx in order:
            score = float(sims[idx])
            if score <= threshold:
                break
            results.append(ScoredFragment(self._fragments[idx], min(score, 1.0)))
            if len(results) >= limit:
                break
        return results

    def text_match(self, query: str, limit: int) -> list[KnowledgeFragment]:
        """Fragments containing every query term, in store order."""
        terms = {t.lower() for t in _TOKEN.findall(query)}
        if not terms or limit <= 0:
            return []

        matches = []
        for fragment in self._all_fragments:
            tokens = {t.lower() for t in _TOKEN.findall(fragment.content)}
            if terms <= tokens:
                matches.append(fragment)
                if len(matches) >= limit:
                    break
        return matches
