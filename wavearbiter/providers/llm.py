"""Async client for OpenAI-compatible chat completion endpoints."""
import asyncio
import json
import logging
import os
import re
import time
from typing import Any

import aiohttp

from wavearbiter.core.config import ProviderConfig

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_JSON_FENCE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL)


class ProviderError(Exception):
    """Raised when an upstream model provider fails."""

    pass


def extract_json_object(text: str) -> dict[str, Any]:
    """Pull the outermost JSON object out of a model reply.

    Handles replies wrapped in markdown fences or surrounded by prose.

    Raises:
        ProviderError: If no JSON object can be parsed
    """
    candidates = []
    fenced = _JSON_FENCE.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    braced = _JSON_OBJECT.search(text)
    if braced:
        candidates.append(braced.group(0))

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    raise ProviderError(f"No JSON object found in model response: {text[:200]!r}")


class ChatCompletionClient:
    """Thin async wrapper around a /chat/completions endpoint.

    One aiohttp.ClientSession per instance, created lazily. The API key is
    read from the environment variable named in the provider config.
    """

    def __init__(self, config: ProviderConfig, api_key: str | None = None):
        self.config = config
        self.model = config.model
        self._api_key = api_key if api_key is not None else os.environ.get(config.api_key_env, "")
        self._timeout = aiohttp.ClientTimeout(total=config.timeout_s)
        self._session: aiohttp.ClientSession | None = None

        if not self._api_key:
            logger.warning(f"{config.api_key_env} not set - calls to {config.base_url} will be unauthenticated")

    @property
    def endpoint(self) -> str:
        return self.config.base_url.rstrip("/") + "/chat/completions"

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

    async def complete(
        self,
        messages: list[dict[str, str]],
        temperature: float | None = None,
        json_mode: bool = True,
    ) -> str:
        """Send a chat completion request and return the reply text.

        Raises:
            ProviderError: On transport errors, non-200 status or empty content
        """
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.config.temperature if temperature is None else temperature,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        t0 = time.monotonic()
        try:
            session = self._session_or_create()
            async with session.post(self.endpoint, json=payload) as response:
                if response.status != 200:
                    body = await response.text()
                    raise ProviderError(f"{self.model} HTTP {response.status}: {body[:200]}")
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise ProviderError(f"{self.model} request failed: {e}") from e

        latency_ms = (time.monotonic() - t0) * 1000
        logger.debug(
            "STEP: Chat completion",
            extra={
                "extra_data": {
                    "action": "chat_completion",
                    "model": self.model,
                    "latency_ms": round(latency_ms, 1),
                }
            },
        )

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(f"{self.model} returned an unexpected payload") from e

        if not content:
            raise ProviderError(f"Empty response from {self.model}")
        return content

    async def complete_json(
        self,
        messages: list[dict[str, str]],
        temperature: float | None = None,
    ) -> dict[str, Any]:
        """Chat completion whose reply must contain a JSON object."""
        content = await self.complete(messages, temperature=temperature, json_mode=True)
        return extract_json_object(content)
