"""Embedding providers and the cached, retrying embedding client."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
import hashlib
import math
import re
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from relay_memory.chunking import content_hash
from relay_memory.config import EmbeddingConfig
from relay_memory.exceptions import ConfigurationError, EmbeddingUnavailableError
from relay_memory.logging import get_logger

if TYPE_CHECKING:
    from relay_memory.store import MemoryStore


log = get_logger(__name__)


class EmbeddingProvider(Protocol):
    provider_id: str
    model: str

    @property
    def available(self) -> bool:
        """Whether the provider is configured well enough to be called."""

    async def embed(self, text: str) -> list[float]:
        """Return one embedding for `text`."""

    async def aclose(self) -> None:
        """Release network resources."""


def _coerce_vector(values: Iterable[Any]) -> list[float]:
    vector: list[float] = []
    for value in values:
        if not isinstance(value, (float, int)) or not math.isfinite(float(value)):
            raise ValueError("Embedding contains a non-numeric or non-finite value")
        vector.append(float(value))
    if not vector:
        raise ValueError("Embedding is empty")
    return vector


def _normalize_embedding(values: Iterable[float]) -> list[float]:
    vector = [float(v) for v in values]
    norm = math.sqrt(sum(v * v for v in vector))
    if norm <= 1e-12:
        return vector
    return [v / norm for v in vector]


def _extract_embedding(payload: Any) -> list[float]:
    """Pull the vector out of the response shapes embedding services return."""
    if not isinstance(payload, dict):
        raise ValueError("Embedding response is not a JSON object")
    data = payload.get("data")
    if isinstance(data, list) and data:
        data = data[0]
    if isinstance(data, dict) and isinstance(data.get("embedding"), list):
        return _coerce_vector(data["embedding"])
    if isinstance(payload.get("embedding"), list):
        return _coerce_vector(payload["embedding"])
    raise ValueError("Embedding response missing list 'embedding'")


class HttpEmbeddingProvider:
    """OpenAI-compatible embeddings endpoint (`{model, input}` -> `{data: [{embedding}]}`)."""

    provider_id = "http"

    def __init__(
        self,
        model: str,
        endpoint: str,
        api_key: str = "",
        timeout_seconds: int = 30,
        max_input_chars: int = 1024,
    ):
        self.model = str(model).strip()
        self._endpoint = str(endpoint).strip()
        self._api_key = str(api_key or "").strip()
        self._max_input_chars = max(1, int(max_input_chars))
        if not self.model:
            raise ConfigurationError("Embedding model must be configured")
        self.client = httpx.AsyncClient(
            timeout=max(3, int(timeout_seconds)),
            headers={"User-Agent": "relay-memory/0.1.0"},
        )

    @property
    def available(self) -> bool:
        return bool(self._api_key and self._endpoint)

    async def embed(self, text: str) -> list[float]:
        response = await self.client.post(
            self._endpoint,
            json={"model": self.model, "input": text[: self._max_input_chars]},
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        response.raise_for_status()
        return _extract_embedding(response.json())

    async def aclose(self) -> None:
        await self.client.aclose()


class OllamaEmbeddingProvider:
    provider_id = "ollama"

    def __init__(self, model: str, base_url: str, timeout_seconds: int = 30):
        self.model = str(model).strip() or "nomic-embed-text"
        self._base_url = str(base_url).rstrip("/") or "http://127.0.0.1:11434"
        self.client = httpx.AsyncClient(timeout=max(3, int(timeout_seconds)))

    @property
    def available(self) -> bool:
        return True

    async def embed(self, text: str) -> list[float]:
        response = await self.client.post(
            f"{self._base_url}/api/embeddings",
            json={"model": self.model, "prompt": text},
        )
        response.raise_for_status()
        return _extract_embedding(response.json())

    async def aclose(self) -> None:
        await self.client.aclose()


def _tokenize(text: str) -> list[str]:
    return [token for token in re.findall(r"\w+", text.lower()) if token]


class LocalHashEmbeddingProvider:
    """Offline bag-of-words embedder; tokens are hashed into signed buckets."""

    provider_id = "local_hash"
    model = "sha1-bow-256"

    def __init__(self, dimensions: int = 256):
        self._dimensions = max(64, int(dimensions))
        self.model = f"sha1-bow-{self._dimensions}"

    @property
    def available(self) -> bool:
        return True

    async def embed(self, text: str) -> list[float]:
        bucket = [0.0] * self._dimensions
        for token in _tokenize(text):
            digest = hashlib.sha1(token.encode("utf-8", errors="ignore")).digest()
            idx = int.from_bytes(digest[:4], byteorder="big", signed=False) % self._dimensions
            sign = -1.0 if digest[4] % 2 else 1.0
            bucket[idx] += sign
        return _normalize_embedding(bucket)

    async def aclose(self) -> None:
        return None


class DisabledEmbeddingProvider:
    provider_id = "none"
    model = "none"

    @property
    def available(self) -> bool:
        return False

    async def embed(self, text: str) -> list[float]:
        raise EmbeddingUnavailableError("Embeddings are disabled")

    async def aclose(self) -> None:
        return None


def create_embedding_provider(cfg: EmbeddingConfig) -> EmbeddingProvider:
    """Build the configured embedding provider."""
    if cfg.provider == "http":
        return HttpEmbeddingProvider(
            model=cfg.model,
            endpoint=cfg.endpoint,
            api_key=cfg.api_key,
            timeout_seconds=cfg.request_timeout_seconds,
            max_input_chars=cfg.max_input_chars,
        )
    if cfg.provider == "ollama":
        return OllamaEmbeddingProvider(
            model=cfg.model,
            base_url=cfg.ollama_base_url,
            timeout_seconds=cfg.request_timeout_seconds,
        )
    if cfg.provider == "local_hash":
        return LocalHashEmbeddingProvider()
    return DisabledEmbeddingProvider()


class EmbeddingClient:
    """Cache-first embedding with retry/backoff around the provider.

    For a fixed model a given text reaches the provider at most once: hits
    are served from the `embedding_cache` table and concurrent misses for
    the same hash share one in-flight request.
    """

    def __init__(
        self,
        *,
        store: MemoryStore,
        provider: EmbeddingProvider,
        max_retries: int = 2,
        retry_backoff_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.provider = provider
        self.max_retries = max(0, int(max_retries))
        self.retry_backoff_seconds = max(0.0, float(retry_backoff_seconds))
        self._sleep = sleep
        self._inflight: dict[str, asyncio.Future[list[float]]] = {}
        self.cache_hits = 0
        self.api_calls = 0

    @property
    def model_id(self) -> str:
        return f"{self.provider.provider_id}:{self.provider.model}"

    @property
    def enabled(self) -> bool:
        return self.provider.available

    async def embed(self, text: str) -> list[float]:
        """Return the vector for `text`, raising `EmbeddingUnavailableError` on failure."""
        digest = content_hash(text)
        pending = self._inflight.get(digest)
        if pending is not None:
            return list(await asyncio.shield(pending))

        # Registered before the cache lookup; the entry is dropped only after
        # the cache write, so later callers find one or the other.
        future: asyncio.Future[list[float]] = asyncio.get_running_loop().create_future()
        self._inflight[digest] = future
        try:
            cached = await self.store.get_cached_embedding(digest, self.model_id)
            if cached is not None:
                self.cache_hits += 1
                vector = list(cached)
            else:
                vector = await self._fetch(text)
                await self.store.put_cached_embedding(digest, self.model_id, vector)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Mark retrieved so an unawaited shared failure is not reported.
            future.exception()
            raise
        else:
            future.set_result(vector)
            return vector
        finally:
            self._inflight.pop(digest, None)

    async def _fetch(self, text: str) -> list[float]:
        if not self.provider.available:
            raise EmbeddingUnavailableError(
                f"Embedding provider {self.model_id} is not configured", attempts=0
            )
        last_error: Exception | None = None
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            if attempt > 0:
                await self._sleep(self.retry_backoff_seconds * attempt)
            try:
                vector = await self.provider.embed(text)
                self.api_calls += 1
                return vector
            except EmbeddingUnavailableError:
                raise
            except Exception as exc:
                last_error = exc
                if attempt < attempts - 1:
                    log.warning(
                        "Embedding request failed; retrying",
                        attempt=attempt + 1,
                        retry_in=self.retry_backoff_seconds * (attempt + 1),
                        error=str(exc),
                    )
        raise EmbeddingUnavailableError(
            f"Embedding failed after {attempts} attempts: {last_error}", attempts=attempts
        )
