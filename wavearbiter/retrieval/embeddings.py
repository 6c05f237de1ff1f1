"""Embedding provider for query and fragment vectors."""
import asyncio
import logging
import os
import re
from typing import Protocol, runtime_checkable

import aiohttp

from wavearbiter.core.config import ProviderConfig

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """Raised when an embedding cannot be produced."""

    pass


def normalize_query(query: str) -> str:
    """Clean a query before embedding: drop punctuation, collapse whitespace."""
    cleaned = re.sub(r"[^\w\s]", " ", query.strip())
    return re.sub(r"\s+", " ", cleaned).strip()


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Turns text into a fixed-length vector."""

    async def embed(self, text: str) -> list[float]:
        ...


class OpenAIEmbeddingClient:
    """Embedding provider for OpenAI-compatible /embeddings endpoints."""

    def __init__(self, config: ProviderConfig, api_key: str | None = None):
        self.config = config
        self.model = config.model
        self._api_key = api_key if api_key is not None else os.environ.get(config.api_key_env, "")
        self._timeout = aiohttp.ClientTimeout(total=config.timeout_s)
        self._session: aiohttp.ClientSession | None = None

    @property
    def endpoint(self) -> str:
        return self.config.base_url.rstrip("/") + "/embeddings"

    def _session_or_create(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"Content-Type": "application/json"}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._session = aiohttp.ClientSession(timeout=self._timeout, headers=headers)
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts in one request, preserving order.

        Raises:
            EmbeddingError: On transport errors or malformed responses
        """
        payload = {"model": self.model, "input": texts}
        try:
            session = self._session_or_create()
            async with session.post(self.endpoint, json=payload) as response:
                if response.status != 200:
                    body = await response.text()
                    raise EmbeddingError(f"Embedding HTTP {response.status}: {body[:200]}")
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise EmbeddingError(f"Failed to generate embedding: {e}") from e

        try:
            items = sorted(data["data"], key=lambda item: item.get("index", 0))
            return [list(item["embedding"]) for item in items]
        except (KeyError, TypeError) as e:
            raise EmbeddingError("Embedding response missing 'data'") from e

    async def embed(self, text: str) -> list[float]:
        """Embed a single text."""
        vectors = await self.embed_batch([text])
        if not vectors:
            raise EmbeddingError("Embedding response was empty")
        return vectors[0]
