"""Tests for the HTTP embedding clients, driven through httpx.MockTransport."""

import asyncio
import json

import httpx
import pytest

from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.embed.ollama.EmbedClientOllama import EmbedClientOllama
from shared.clients.embed.openai.EmbedClientOpenai import EmbedClientOpenai
from shared.exceptions.pipeline_errors import (
    DimensionMismatchError,
    RateLimitedError,
    RequestRejectedError,
    RequestTimeoutError,
    ServiceUnavailableError,
)


def _vector(text: str) -> list[float]:
    return [float(len(text)), 1.0, 0.0]


@pytest.fixture
def embed_env(monkeypatch):
    monkeypatch.setenv("EMBED_OLLAMA_BASE_URL", "http://ollama.test")
    monkeypatch.setenv("EMBED_OPENAI_BASE_URL", "http://openai.test")
    monkeypatch.setenv("EMBED_OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("EMBED_MODEL", "test-model")
    monkeypatch.setenv("EMBED_DIMENSION", "3")
    monkeypatch.setenv("EMBED_MAX_BATCH_SIZE", "2")
    monkeypatch.setenv("EMBED_MAX_CONCURRENCY", "2")


async def _booted(client, handler):
    client.set_transport(httpx.MockTransport(handler))
    await client.boot()
    return client


class TestOllamaClient:
    """Ollama /api/embed."""

    async def test_batches_and_keeps_order(self, helper_config, embed_env):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            requests.append(body)
            return httpx.Response(200, json={"embeddings": [_vector(text) for text in body["input"]]})

        client = await _booted(EmbedClientOllama(helper_config), handler)
        texts = ["a", "bb", "ccc", "dddd", "eeeee"]

        vectors = await client.do_embed(texts)

        assert vectors == [_vector(text) for text in texts]
        assert [len(body["input"]) for body in requests] == [2, 2, 1]
        assert all(body["model"] == "test-model" for body in requests)
        await client.close()

    async def test_single_string(self, helper_config, embed_env):
        client = await _booted(
            EmbedClientOllama(helper_config),
            lambda request: httpx.Response(200, json={"embeddings": [[0.1, 0.2, 0.3]]}),
        )
        assert await client.do_embed("dream") == [[0.1, 0.2, 0.3]]
        await client.close()

    async def test_rate_limited(self, helper_config, embed_env):
        client = await _booted(EmbedClientOllama(helper_config), lambda request: httpx.Response(429))
        with pytest.raises(RateLimitedError):
            await client.do_embed(["text"])
        await client.close()

    async def test_server_error_is_unavailable(self, helper_config, embed_env):
        client = await _booted(EmbedClientOllama(helper_config), lambda request: httpx.Response(503))
        with pytest.raises(ServiceUnavailableError):
            await client.do_embed(["text"])
        await client.close()

    async def test_bad_request_is_rejected(self, helper_config, embed_env):
        client = await _booted(EmbedClientOllama(helper_config), lambda request: httpx.Response(400, text="bad"))
        with pytest.raises(RequestRejectedError) as info:
            await client.do_embed(["text"])
        assert info.value.status_code == 400
        await client.close()

    async def test_timeout(self, helper_config, embed_env):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        client = await _booted(EmbedClientOllama(helper_config), handler)
        with pytest.raises(RequestTimeoutError):
            await client.do_embed(["text"])
        await client.close()

    async def test_connection_error(self, helper_config, embed_env):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = await _booted(EmbedClientOllama(helper_config), handler)
        with pytest.raises(ServiceUnavailableError):
            await client.do_embed(["text"])
        await client.close()

    async def test_wrong_dimension(self, helper_config, embed_env):
        client = await _booted(
            EmbedClientOllama(helper_config),
            lambda request: httpx.Response(200, json={"embeddings": [[0.1, 0.2]]}),
        )
        with pytest.raises(DimensionMismatchError) as info:
            await client.do_embed(["text"])
        assert (info.value.expected, info.value.actual) == (3, 2)
        await client.close()

    async def test_count_mismatch(self, helper_config, embed_env):
        client = await _booted(
            EmbedClientOllama(helper_config),
            lambda request: httpx.Response(200, json={"embeddings": [[0.1, 0.2, 0.3]]}),
        )
        with pytest.raises(ServiceUnavailableError):
            await client.do_embed(["one", "two"])
        await client.close()

    async def test_malformed_response(self, helper_config, embed_env):
        client = await _booted(EmbedClientOllama(helper_config), lambda request: httpx.Response(200, json={"oops": True}))
        with pytest.raises(ServiceUnavailableError):
            await client.do_embed(["text"])
        await client.close()

    async def test_dimension_fetched_on_boot(self, helper_config, embed_env, monkeypatch):
        monkeypatch.delenv("EMBED_DIMENSION")

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/show"
            assert json.loads(request.content) == {"name": "test-model"}
            return httpx.Response(200, json={"model_info": {"bert.embedding_length": 1024}})

        client = await _booted(EmbedClientOllama(helper_config), handler)
        assert client.get_dimension() == 1024
        await client.close()

    def test_dimension_unknown_before_boot(self, helper_config, embed_env, monkeypatch):
        monkeypatch.delenv("EMBED_DIMENSION")
        with pytest.raises(RuntimeError):
            EmbedClientOllama(helper_config).get_dimension()

    def test_missing_base_url(self, helper_config, embed_env, monkeypatch):
        monkeypatch.delenv("EMBED_OLLAMA_BASE_URL")
        with pytest.raises(ValueError):
            EmbedClientOllama(helper_config)

    async def test_request_before_boot(self, helper_config, embed_env):
        with pytest.raises(RuntimeError):
            await EmbedClientOllama(helper_config).do_embed(["text"])


class TestConcurrencyLimit:
    """The semaphore caps simultaneous calls across all callers of one client."""

    async def test_in_flight_never_exceeds_limit(self, helper_config, embed_env):
        state = {"in_flight": 0, "max": 0}

        async def handler(request: httpx.Request) -> httpx.Response:
            state["in_flight"] += 1
            state["max"] = max(state["max"], state["in_flight"])
            await asyncio.sleep(0.01)
            state["in_flight"] -= 1
            body = json.loads(request.content)
            return httpx.Response(200, json={"embeddings": [_vector(text) for text in body["input"]]})

        client = await _booted(EmbedClientOllama(helper_config), handler)

        results = await asyncio.gather(*(client.do_embed([f"text {i}", f"more {i}"]) for i in range(8)))

        assert len(results) == 8
        assert 1 <= state["max"] <= 2
        await client.close()


class TestOpenaiClient:
    """OpenAI-compatible /v1/embeddings."""

    async def test_sorts_by_index_and_sends_key(self, helper_config, embed_env):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/embeddings"
            assert request.headers["Authorization"] == "Bearer sk-test"
            body = json.loads(request.content)
            data = [{"index": i, "embedding": _vector(text)} for i, text in enumerate(body["input"])]
            return httpx.Response(200, json={"data": list(reversed(data))})

        client = await _booted(EmbedClientOpenai(helper_config), handler)

        assert await client.do_embed(["x", "yy"]) == [_vector("x"), _vector("yy")]
        await client.close()

    async def test_empty_vector_is_malformed(self, helper_config, embed_env):
        client = await _booted(
            EmbedClientOpenai(helper_config),
            lambda request: httpx.Response(200, json={"data": [{"index": 0, "embedding": []}]}),
        )
        with pytest.raises(ServiceUnavailableError):
            await client.do_embed(["x"])
        await client.close()


class TestEmbedClientManager:
    """Engine selection from EMBED_ENGINE."""

    def test_default_is_ollama(self, helper_config, embed_env):
        assert isinstance(EmbedClientManager(helper_config).get_client(), EmbedClientOllama)

    def test_openai(self, helper_config, embed_env, monkeypatch):
        monkeypatch.setenv("EMBED_ENGINE", "OpenAI")
        assert isinstance(EmbedClientManager(helper_config).get_client(), EmbedClientOpenai)

    def test_unknown_engine(self, helper_config, embed_env, monkeypatch):
        monkeypatch.setenv("EMBED_ENGINE", "nonexistent")
        with pytest.raises(ValueError):
            EmbedClientManager(helper_config)
