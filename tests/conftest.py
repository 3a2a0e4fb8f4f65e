"""Test fixtures and fakes.

This module provides:
- FakeEmbedClient, a deterministic stand-in for the embedding service with
  scripted failures and a concurrency probe
- fixtures wiring the in-memory vector store, a SQLite job queue in tmp_path,
  the theme catalog and tagger, the worker and the pool
- helpers to build unit vectors and chunks

Theme catalog used throughout: four orthogonal themes in a 4-dimensional space
(water, fire, flight, shadow) so that expected similarities can be computed by hand.
"""

import asyncio
import hashlib
import logging
import math
import os
import tempfile
from datetime import datetime, timezone

import pytest

# logging_setup writes to $ROOT_DIR/logs; keep that out of the working tree
os.environ.setdefault("ROOT_DIR", tempfile.mkdtemp(prefix="theme-pipeline-tests-"))

from services.chunking.TextChunker import TextChunker
from services.embedding_worker.EmbeddingWorker import EmbeddingWorker
from services.embedding_worker.WorkerPool import WorkerPool
from services.query.QueryService import QueryService
from services.theme_tagging.ThemeCatalog import ThemeCatalog
from services.theme_tagging.ThemeTagger import ThemeTagger
from shared.clients.vector.VectorStoreInterface import make_chunk_point_id
from shared.clients.vector.memory.VectorStoreMemory import VectorStoreMemory
from shared.db.JobQueue import JobQueue
from shared.db.ThemeLinkStore import ThemeLinkStore
from shared.db.database import Database
from shared.exceptions.pipeline_errors import DimensionMismatchError
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import ColorLogger
from shared.models.chunk import Chunk
from shared.models.config import ChunkerOptions, TaggerSettings, WorkerSettings
from shared.models.theme import ThemeCatalogEntry

DIMENSION = 4
THEME_VECTORS = {
    "water": [1.0, 0.0, 0.0, 0.0],
    "fire": [0.0, 1.0, 0.0, 0.0],
    "flight": [0.0, 0.0, 1.0, 0.0],
    "shadow": [0.0, 0.0, 0.0, 1.0],
}

# ~80 chars, reaches the default minimum text length
LONG_ENOUGH_TEXT = "I was swimming in a dark lake at night and the water felt warm and strangely alive."


def unit(*components: float) -> list[float]:
    """Normalise a vector to length 1."""
    norm = math.sqrt(sum(c * c for c in components))
    return [c / norm for c in components]


def make_chunk(entity_id: str, chunk_index: int, embedding: list[float], entity_kind: str = "journal-text") -> Chunk:
    return Chunk(
        id=make_chunk_point_id(entity_id, chunk_index),
        entity_id=entity_id,
        entity_kind=entity_kind,
        chunk_index=chunk_index,
        text=f"chunk {chunk_index} of {entity_id}",
        token_count=5,
        embedding=embedding,
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


class FakeEmbedClient:
    """Deterministic embedding service.

    Texts listed in ``vectors`` get that vector; every other text gets a
    hash-derived vector. ``failures`` are raised, one per call, before any
    vector is returned. ``max_in_flight`` records the highest number of
    simultaneous calls, which must never exceed ``max_concurrency``.
    """

    def __init__(self, dimension: int = DIMENSION, vectors: dict[str, list[float]] | None = None, max_concurrency: int = 2, delay: float = 0.0):
        self.dimension = dimension
        self.vectors = dict(vectors or {})
        self.failures: list[Exception] = []
        self.calls: list[list[str]] = []
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self._semaphore = asyncio.Semaphore(max_concurrency)

    def get_engine_name(self) -> str:
        return "fake"

    def get_dimension(self) -> int:
        return self.dimension

    async def boot(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def do_healthcheck(self) -> None:
        pass

    async def do_embed(self, texts: list[str]) -> list[list[float]]:
        async with self._semaphore:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            try:
                self.calls.append(list(texts))
                if self.delay:
                    await asyncio.sleep(self.delay)
                if self.failures:
                    raise self.failures.pop(0)
                vectors = [self.vectors.get(text) or self._hash_vector(text) for text in texts]
                for vector in vectors:
                    if len(vector) != self.dimension:
                        raise DimensionMismatchError(expected=self.dimension, actual=len(vector))
                return vectors
            finally:
                self.in_flight -= 1

    def _hash_vector(self, text: str) -> list[float]:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return unit(*[(digest[i] + 1) / 256.0 for i in range(self.dimension)])


@pytest.fixture
def logger() -> ColorLogger:
    return ColorLogger(logging.getLogger("theme_pipeline.tests"))


@pytest.fixture
def helper_config(logger, monkeypatch) -> HelperConfig:
    """HelperConfig with a small vector page size so every read paginates."""
    monkeypatch.setenv("VECTOR_PAGE_SIZE", "2")
    monkeypatch.setenv("VECTOR_MEMORY_PAGE_LIMIT", "2")
    return HelperConfig(logger=logger)


@pytest.fixture
def worker_settings() -> WorkerSettings:
    return WorkerSettings(
        worker_count=2,
        poll_interval=0.01,
        sweep_interval=0.05,
        stale_timeout=1800,
        job_timeout=5,
        max_attempts=3,
        backoff_base=60,
        backoff_max=3600,
    )


@pytest.fixture
def database(helper_config, tmp_path):
    db = Database(helper_config, db_url=f"sqlite:///{tmp_path / 'pipeline.db'}")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def job_queue(database, helper_config, worker_settings) -> JobQueue:
    return JobQueue(database, helper_config, worker_settings)


@pytest.fixture
def link_store(database, helper_config) -> ThemeLinkStore:
    return ThemeLinkStore(database, helper_config)


@pytest.fixture
async def vector_store(helper_config) -> VectorStoreMemory:
    """Memory store (page limit 2) with collections of dimension 4 and the four test themes."""
    store = VectorStoreMemory(helper_config)
    await store.do_ensure_collections(DIMENSION)
    await store.do_upsert_themes(
        [ThemeCatalogEntry(code=code, label=code.title(), embedding=vector) for code, vector in THEME_VECTORS.items()]
    )
    return store


@pytest.fixture
def embed_client() -> FakeEmbedClient:
    return FakeEmbedClient()


@pytest.fixture
def catalog(vector_store, helper_config) -> ThemeCatalog:
    return ThemeCatalog(vector_store, helper_config)


@pytest.fixture
def tagger_settings() -> TaggerSettings:
    return TaggerSettings(top_n=2)


@pytest.fixture
def tagger(helper_config, vector_store, catalog, link_store, tagger_settings) -> ThemeTagger:
    return ThemeTagger(helper_config, vector_store, catalog, link_store, tagger_settings)


@pytest.fixture
def chunker() -> TextChunker:
    return TextChunker(ChunkerOptions())


@pytest.fixture
def worker(helper_config, job_queue, chunker, embed_client, vector_store, tagger, worker_settings) -> EmbeddingWorker:
    return EmbeddingWorker(helper_config, job_queue, chunker, embed_client, vector_store, tagger, worker_settings)


@pytest.fixture
def pool(helper_config, worker, job_queue, worker_settings) -> WorkerPool:
    return WorkerPool(helper_config, worker, job_queue, worker_settings)


@pytest.fixture
def query_service(helper_config, job_queue, vector_store, embed_client, link_store, catalog) -> QueryService:
    return QueryService(helper_config, job_queue, vector_store, embed_client, link_store, catalog)
