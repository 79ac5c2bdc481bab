"""Embedding abstractions, the Hugging Face client and a deterministic baseline."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from hashlib import blake2b
from math import sqrt
from typing import Any

import httpx

from support_agent.config import EmbeddingConfig
from support_agent.errors import EmbeddingError, TransientUpstreamError

logger = logging.getLogger(__name__)

_TRANSIENT_STATUS = {429, 502, 503, 504}


class Embedder(ABC):
    """Embedder interface used by ingest and retrieval components."""

    batch_size: int = 5
    batch_pause_seconds: float = 0.0

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        """Embed one text."""

    def embed_batch(self, texts: list[str]) -> list[list[float] | None]:
        """Embed many texts in small concurrent groups, preserving order.

        A text whose embedding fails yields `None` in its slot; its siblings are
        unaffected. Groups of `batch_size` run concurrently with a pause of
        `batch_pause_seconds` between groups to stay under upstream rate limits.
        """

        results: list[list[float] | None] = []
        for start in range(0, len(texts), self.batch_size):
            group = texts[start : start + self.batch_size]
            with ThreadPoolExecutor(max_workers=len(group)) as pool:
                results.extend(pool.map(self._embed_or_none, group))
            if start + self.batch_size < len(texts) and self.batch_pause_seconds:
                time.sleep(self.batch_pause_seconds)
        return results

    def _embed_or_none(self, text: str) -> list[float] | None:
        try:
            return self.embed(text)
        except Exception as exc:
            logger.warning("Embedding failed for text of length %d: %s", len(text), exc)
            return None


class HuggingFaceEmbedder(Embedder):
    """Feature-extraction client for the Hugging Face inference API.

    Transient responses (model loading, rate limiting, gateway errors and
    timeouts) are retried up to `max_attempts` times, sleeping
    `backoff_seconds * attempt` between attempts. Any other non-2xx response
    fails immediately with `EmbeddingError`.
    """

    def __init__(
        self,
        config: EmbeddingConfig | None = None,
        *,
        client: httpx.Client | None = None,
        sleep: Any = time.sleep,
    ) -> None:
        self.config = config or EmbeddingConfig()
        self.batch_size = self.config.batch_size
        self.batch_pause_seconds = self.config.batch_pause_seconds
        self._client = client or httpx.Client(timeout=self.config.timeout_seconds)
        self._sleep = sleep

    @property
    def endpoint(self) -> str:
        return f"{self.config.api_url.rstrip('/')}/{self.config.model}"

    def embed(self, text: str) -> list[float]:
        payload = {"inputs": text, "options": {"wait_for_model": True}}
        result = self._post_with_retry(payload)
        return _unwrap_vector(result)

    def _post_with_retry(self, payload: dict[str, Any]) -> Any:
        attempts = self.config.max_attempts
        for attempt in range(1, attempts + 1):
            try:
                return self._post(payload)
            except TransientUpstreamError as exc:
                if attempt == attempts:
                    logger.error("Embedding gave up after %d attempts: %s", attempts, exc)
                    raise
                delay = self.config.backoff_seconds * attempt
                logger.info(
                    "Embedding model busy (attempt %d/%d), retrying in %.1fs: %s",
                    attempt,
                    attempts,
                    delay,
                    exc,
                )
                self._sleep(delay)
        raise AssertionError("unreachable")

    def _post(self, payload: dict[str, Any]) -> Any:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        try:
            response = self._client.post(
                self.endpoint,
                json=payload,
                headers=headers,
                timeout=self.config.timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            raise TransientUpstreamError(f"Embedding request timed out: {exc}") from exc

        if response.status_code in _TRANSIENT_STATUS:
            raise TransientUpstreamError(
                f"Embedding API returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        if response.status_code != 200:
            raise EmbeddingError(
                f"Embedding API error {response.status_code}: {response.text[:200]}"
            )
        return response.json()


class HashingEmbedder(Embedder):
    """Deterministic sparse-like embedding without external model calls.

    Used for local/offline runs and deterministic tests.
    """

    def __init__(self, dimension: int = 256, batch_size: int = 5) -> None:
        self.dimension = dimension
        self.batch_size = batch_size

    def embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = text.lower().split()
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


def _unwrap_vector(result: Any) -> list[float]:
    # feature-extraction returns either [..] or [[..]] depending on the model
    if isinstance(result, list) and result and isinstance(result[0], list):
        result = result[0]
    if not isinstance(result, list) or not result:
        raise EmbeddingError("Invalid embedding format received")
    return [float(value) for value in result]
