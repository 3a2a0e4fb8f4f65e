"""Query service: the producer and consumer interface of the pipeline.

Producers enqueue entities; consumers read job status, theme links and
similarity rankings. Missing data degrades to None / empty results.
"""

import asyncio
from typing import Any

from services.theme_tagging.ThemeCatalog import ThemeCatalog
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.vector.VectorStoreInterface import VectorStoreInterface
from shared.db.JobQueue import JobQueue
from shared.db.ThemeLinkStore import ThemeLinkStore
from shared.exceptions.pipeline_errors import CatalogUnavailableError
from shared.helper.HelperConfig import HelperConfig
from shared.models.job import EntityKind, JobStatusView
from shared.models.search import SearchScope, SimilarityHit
from shared.models.theme import EntityThemeLink, ThemeLinkView


class QueryService:
    """Orchestrates job intake, link lookups and similarity search."""

    def __init__(
        self,
        helper_config: HelperConfig,
        job_queue: JobQueue,
        vector_store: VectorStoreInterface,
        embed_client: EmbedClientInterface,
        link_store: ThemeLinkStore,
        catalog: ThemeCatalog,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._job_queue = job_queue
        self._vector_store = vector_store
        self._embed = embed_client
        self._link_store = link_store
        self._catalog = catalog

    ##########################################
    ############### PRODUCER #################
    ##########################################

    async def enqueue_job(
        self,
        entity_id: str,
        entity_kind: EntityKind | str,
        text: str,
        priority: int = 0,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Enqueue an entity for embedding. See JobQueue.enqueue_job."""
        return await asyncio.to_thread(self._job_queue.enqueue_job, entity_id, entity_kind, text, priority, metadata)

    ##########################################
    ############### CONSUMER #################
    ##########################################

    async def get_job_status(self, entity_id: str) -> JobStatusView | None:
        """Return the status of the latest job of an entity, or None if it was never enqueued."""
        job = await asyncio.to_thread(self._job_queue.get_latest_job, entity_id)
        if job is None:
            return None
        return JobStatusView(
            job_id=job.id,
            entity_id=job.entity_id,
            status=job.status,
            attempts=job.attempts,
            error_message=job.error_message,
            error_code=job.error_code,
        )

    async def get_job_counts(self) -> dict[str, int]:
        return await asyncio.to_thread(self._job_queue.count_by_status)

    async def search_similar_entities(
        self,
        query_vector: list[float] | None = None,
        query_text: str | None = None,
        threshold: float | None = None,
        top_n: int | None = None,
        entity_kind: EntityKind | str | None = None,
    ) -> list[SimilarityHit]:
        """Rank entities by their best chunk against a query.

        Args:
            query_vector (list[float] | None): A ready query vector.
            query_text (str | None): Text to embed as the query.
            threshold (float | None): Minimum similarity.
            top_n (int | None): Number of entities.
            entity_kind (EntityKind | str | None): Restrict to one entity kind.

        Returns:
            list[SimilarityHit]: Best first, ties by entity id.

        Raises:
            ValueError: Unless exactly one query and exactly one of threshold / top_n is given.
        """
        if (query_vector is None) == (query_text is None):
            raise ValueError("Exactly one of query_vector and query_text must be given.")
        if query_text is not None:
            if not query_text.strip():
                raise ValueError("query_text must not be empty.")
            query_vector = (await self._embed.do_embed([query_text]))[0]

        kind = EntityKind(entity_kind).value if entity_kind else None
        hits = await self._vector_store.do_search_similar(
            query_vector, threshold=threshold, top_n=top_n, scope=SearchScope.CHUNKS, entity_kind=kind,
        )
        self.logging.debug("Similarity search returned %d entities.", len(hits))
        return hits

    async def search_similar_to_entity(
        self,
        entity_id: str,
        threshold: float | None = None,
        top_n: int | None = None,
        entity_kind: EntityKind | str | None = None,
    ) -> list[SimilarityHit]:
        """Rank other entities against a stored entity.

        Every chunk of the entity is used as a query; an entity scores with
        its best chunk pair. The entity itself is left out.

        Returns:
            list[SimilarityHit]: Best first. Empty if the entity has no chunks.
        """
        chunks = await self._vector_store.do_fetch_chunks(entity_id)
        if not chunks:
            return []

        kind = EntityKind(entity_kind).value if entity_kind else None
        best: dict[str, SimilarityHit] = {}
        for chunk in chunks:
            hits = await self._vector_store.do_search_similar(
                chunk.embedding,
                threshold=threshold,
                top_n=top_n,
                scope=SearchScope.CHUNKS,
                entity_kind=kind,
                exclude_keys={entity_id},
            )
            for hit in hits:
                current = best.get(hit.key)
                if current is None or hit.similarity > current.similarity:
                    best[hit.key] = hit

        ranked = sorted(best.values(), key=lambda hit: (-hit.similarity, hit.key))
        return ranked[:top_n] if top_n is not None else ranked

    async def get_themes_for_entity(self, entity_id: str, min_similarity: float | None = None) -> list[ThemeLinkView]:
        """Return the theme links of an entity with catalog labels, best first. Empty if not tagged yet."""
        links = await asyncio.to_thread(self._link_store.get_links_for_entity, entity_id)
        if min_similarity is not None:
            links = [link for link in links if link.similarity >= min_similarity]
        await self._load_catalog_quietly()

        views: list[ThemeLinkView] = []
        for link in links:
            entry = self._catalog.get(link.theme_code)
            views.append(
                ThemeLinkView(
                    theme_code=link.theme_code,
                    label=entry.label if entry else None,
                    description=entry.description if entry else None,
                    similarity=link.similarity,
                    chunk_index=link.chunk_index,
                )
            )
        return views

    async def get_entities_for_theme(self, theme_code: str, threshold: float | None = None, top_n: int | None = None) -> list[EntityThemeLink]:
        """Return the entities linked to a theme, best first (ties by entity id)."""
        if top_n is not None and top_n < 1:
            raise ValueError("top_n must be >= 1.")
        return await asyncio.to_thread(self._link_store.get_entities_for_theme, theme_code, threshold, top_n)

    async def search_entities_by_theme_vector(
        self,
        theme_code: str,
        threshold: float | None = None,
        top_n: int | None = None,
        entity_kind: EntityKind | str | None = None,
    ) -> list[SimilarityHit]:
        """Rank entities by chunk similarity to a theme's embedding, independent of stored links.

        Returns:
            list[SimilarityHit]: Best first. Empty if the theme is unknown.
        """
        await self._catalog.load()
        entry = self._catalog.get(theme_code)
        if entry is None:
            self.logging.info("Theme '%s' is not in the catalog.", theme_code)
            return []
        return await self.search_similar_entities(
            query_vector=entry.embedding, threshold=threshold, top_n=top_n, entity_kind=entity_kind,
        )

    ##########################################
    ############### HELPERS ##################
    ##########################################

    async def _load_catalog_quietly(self) -> None:
        """Labels are optional for link lookups, so a missing catalog is logged, not raised."""
        if self._catalog.is_loaded():
            return
        try:
            await self._catalog.load()
        except CatalogUnavailableError as e:
            self.logging.warning("Theme labels unavailable: %s", e)
