import asyncio
from pathlib import Path

import httpx
import pytest

from relay_memory.embeddings import (
    EmbeddingClient,
    HttpEmbeddingProvider,
    LocalHashEmbeddingProvider,
    OllamaEmbeddingProvider,
)
from relay_memory.exceptions import EmbeddingUnavailableError
from relay_memory.store import MemoryStore


class CountingProvider:
    provider_id = "fake"

    def __init__(self, model: str = "unit", failures: int = 0):
        self.model = model
        self.failures = failures
        self.calls: list[str] = []

    @property
    def available(self) -> bool:
        return True

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.failures > 0:
            self.failures -= 1
            raise httpx.ConnectError("embedding service down")
        return [float(len(text)), 1.0, 0.5]

    async def aclose(self) -> None:
        return None


class _FakeResponse:
    def __init__(self, payload: dict, status_code: int = 200):
        self._payload = payload
        self.status_code = status_code
        self.request = httpx.Request("POST", "https://embeddings.example/v1/embeddings")

    def json(self) -> dict:
        return self._payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise httpx.HTTPStatusError(
                message=f"status={self.status_code}",
                request=self.request,
                response=httpx.Response(self.status_code, request=self.request),
            )


class _FakeClient:
    def __init__(self, response: _FakeResponse):
        self._response = response
        self.calls: list[dict] = []

    async def post(self, url: str, **kwargs):
        self.calls.append({"url": url, **kwargs})
        return self._response

    async def aclose(self) -> None:
        return None


async def _open_store(tmp_path: Path) -> MemoryStore:
    store = MemoryStore(tmp_path / "memory.sqlite")
    await store.open()
    return store


@pytest.mark.asyncio
async def test_same_text_reaches_provider_once(tmp_path: Path):
    store = await _open_store(tmp_path)
    provider = CountingProvider()
    client = EmbeddingClient(store=store, provider=provider)
    try:
        first = await client.embed("The quarterly budget was approved.")
        second = await client.embed("The quarterly budget was approved.")
        cached = await store.count_cached_embeddings()
    finally:
        await store.close()

    assert provider.calls == ["The quarterly budget was approved."]
    assert second == pytest.approx(first)
    assert client.cache_hits == 1
    assert client.api_calls == 1
    assert cached == 1


@pytest.mark.asyncio
async def test_cache_is_scoped_by_model(tmp_path: Path):
    store = await _open_store(tmp_path)
    small = CountingProvider(model="small")
    large = CountingProvider(model="large")
    try:
        await EmbeddingClient(store=store, provider=small).embed("milk and eggs")
        await EmbeddingClient(store=store, provider=large).embed("milk and eggs")
        cached = await store.count_cached_embeddings()
    finally:
        await store.close()

    assert len(small.calls) == 1
    assert len(large.calls) == 1
    assert cached == 2


@pytest.mark.asyncio
async def test_retries_with_linear_backoff(tmp_path: Path):
    store = await _open_store(tmp_path)
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    provider = CountingProvider(failures=2)
    client = EmbeddingClient(store=store, provider=provider, sleep=fake_sleep)
    try:
        vector = await client.embed("retry me")
    finally:
        await store.close()

    assert vector == [8.0, 1.0, 0.5]
    assert len(provider.calls) == 3
    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_exhausted_retries_raise_typed_error_and_cache_nothing(tmp_path: Path):
    store = await _open_store(tmp_path)
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    provider = CountingProvider(failures=10)
    client = EmbeddingClient(store=store, provider=provider, sleep=fake_sleep)
    try:
        with pytest.raises(EmbeddingUnavailableError) as excinfo:
            await client.embed("never works")
        cached = await store.count_cached_embeddings()
    finally:
        await store.close()

    assert excinfo.value.attempts == 3
    assert len(provider.calls) == 3
    assert sleeps == [1.0, 2.0]
    assert cached == 0


@pytest.mark.asyncio
async def test_unconfigured_http_provider_fails_without_network(tmp_path: Path):
    store = await _open_store(tmp_path)
    provider = HttpEmbeddingProvider(model="m", endpoint="https://embeddings.example/v1", api_key="")
    fake = _FakeClient(_FakeResponse({"data": [{"embedding": [0.1]}]}))
    provider.client = fake
    client = EmbeddingClient(store=store, provider=provider)
    try:
        with pytest.raises(EmbeddingUnavailableError):
            await client.embed("hello world")
    finally:
        await store.close()

    assert client.enabled is False
    assert fake.calls == []


@pytest.mark.asyncio
async def test_concurrent_misses_share_one_request(tmp_path: Path):
    store = await _open_store(tmp_path)
    release = asyncio.Event()

    class SlowProvider(CountingProvider):
        async def embed(self, text: str) -> list[float]:
            self.calls.append(text)
            await release.wait()
            return [1.0, 2.0]

    provider = SlowProvider()
    client = EmbeddingClient(store=store, provider=provider)
    try:
        first = asyncio.create_task(client.embed("shared text"))
        second = asyncio.create_task(client.embed("shared text"))
        await asyncio.sleep(0.05)
        release.set()
        results = await asyncio.gather(first, second)
    finally:
        await store.close()

    assert provider.calls == ["shared text"]
    assert results[0] == results[1] == [1.0, 2.0]


@pytest.mark.asyncio
async def test_late_caller_during_cache_write_does_not_refetch(tmp_path: Path):
    store = await _open_store(tmp_path)
    entered = asyncio.Event()
    release = asyncio.Event()
    first_done = asyncio.Event()
    lookups = 0
    real_lookup = store.get_cached_embedding

    async def slow_second_lookup(content_hash: str, model_id: str):
        nonlocal lookups
        lookups += 1
        result = await real_lookup(content_hash, model_id)
        if lookups == 2:
            # Miss observed before the first caller's write; resume after it finished.
            await first_done.wait()
        return result

    store.get_cached_embedding = slow_second_lookup

    class GatedProvider(CountingProvider):
        async def embed(self, text: str) -> list[float]:
            self.calls.append(text)
            entered.set()
            await release.wait()
            return [3.0, 4.0]

    provider = GatedProvider()
    client = EmbeddingClient(store=store, provider=provider)
    try:
        first = asyncio.create_task(client.embed("late caller"))
        await entered.wait()
        second = asyncio.create_task(client.embed("late caller"))
        await asyncio.sleep(0.05)
        release.set()
        first_result = await first
        first_done.set()
        second_result = await second
    finally:
        await store.close()

    assert provider.calls == ["late caller"]
    assert first_result == second_result == [3.0, 4.0]


@pytest.mark.asyncio
async def test_http_provider_posts_model_and_truncated_input():
    provider = HttpEmbeddingProvider(
        model="embed-small",
        endpoint="https://embeddings.example/v1/embeddings",
        api_key="secret",
        max_input_chars=5,
    )
    fake = _FakeClient(_FakeResponse({"data": [{"embedding": [0.25, 0.5, 1]}]}))
    provider.client = fake

    vector = await provider.embed("abcdefghij")

    assert vector == [0.25, 0.5, 1.0]
    call = fake.calls[0]
    assert call["url"] == "https://embeddings.example/v1/embeddings"
    assert call["json"] == {"model": "embed-small", "input": "abcde"}
    assert call["headers"]["Authorization"] == "Bearer secret"


@pytest.mark.asyncio
async def test_http_provider_accepts_flat_embedding_and_rejects_garbage():
    provider = HttpEmbeddingProvider(model="m", endpoint="https://x.example", api_key="k")
    provider.client = _FakeClient(_FakeResponse({"embedding": [1, 2, 3]}))
    assert await provider.embed("text") == [1.0, 2.0, 3.0]

    provider.client = _FakeClient(_FakeResponse({"data": []}))
    with pytest.raises(ValueError):
        await provider.embed("text")


@pytest.mark.asyncio
async def test_ollama_provider_uses_prompt_field():
    provider = OllamaEmbeddingProvider(model="nomic-embed-text", base_url="http://127.0.0.1:11434/")
    fake = _FakeClient(_FakeResponse({"embedding": [0.1, 0.2]}))
    provider.client = fake

    assert await provider.embed("hello") == [0.1, 0.2]
    assert fake.calls[0]["url"] == "http://127.0.0.1:11434/api/embeddings"
    assert fake.calls[0]["json"] == {"model": "nomic-embed-text", "prompt": "hello"}


@pytest.mark.asyncio
async def test_local_hash_provider_is_deterministic_and_normalized():
    provider = LocalHashEmbeddingProvider()

    first = await provider.embed("budget approval meeting")
    second = await provider.embed("budget approval meeting")

    assert first == second
    assert len(first) == 256
    assert sum(v * v for v in first) == pytest.approx(1.0)
