"""Theme tagging.

Scores every catalog theme against every chunk of an entity and keeps, per
theme, the best chunk (max aggregation). The configured selection policy then
decides which themes become links.
"""

import asyncio

import numpy as np

from services.theme_tagging.ThemeCatalog import ThemeCatalog, normalize_rows
from shared.clients.vector.VectorStoreInterface import VectorStoreInterface
from shared.db.ThemeLinkStore import ThemeLinkStore
from shared.exceptions.pipeline_errors import DimensionMismatchError
from shared.helper.HelperConfig import HelperConfig
from shared.models.chunk import Chunk
from shared.models.config import TaggerSettings
from shared.models.theme import EntityThemeLink, SelectionPolicy


class ThemeTagger:
    def __init__(
        self,
        helper_config: HelperConfig,
        vector_store: VectorStoreInterface,
        catalog: ThemeCatalog,
        link_store: ThemeLinkStore,
        settings: TaggerSettings | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._vector_store = vector_store
        self._catalog = catalog
        self._link_store = link_store
        self.settings = settings or TaggerSettings.from_config(helper_config)

    ##########################################
    ################# CORE ###################
    ##########################################

    async def tag_entity(self, entity_id: str) -> list[EntityThemeLink]:
        """Recompute and store the theme links of an entity.

        Args:
            entity_id (str): The entity, whose chunks must already be stored.

        Returns:
            list[EntityThemeLink]: The stored links, best first. Empty if the entity has no chunks.

        Raises:
            CatalogUnavailableError: If the catalog is empty or inconsistent.
            DimensionMismatchError: If chunk and catalog dimensions differ.
        """
        chunks = await self._vector_store.do_fetch_chunks(entity_id)
        if not chunks:
            await asyncio.to_thread(self._link_store.replace_links, entity_id, [])
            self.logging.info("Entity '%s' has no chunks, cleared its theme links.", entity_id)
            return []

        await self._catalog.load()
        links = self.compute_links(entity_id, chunks)
        await asyncio.to_thread(self._link_store.replace_links, entity_id, links)
        self.logging.debug(
            "Tagged '%s' with %d themes (%s policy).", entity_id, len(links), self.settings.policy.value,
        )
        return links

    def compute_links(self, entity_id: str, chunks: list[Chunk]) -> list[EntityThemeLink]:
        """Score all themes against the chunks and apply the selection policy. No I/O."""
        codes, theme_matrix = self._catalog.get_matrix()
        ordered = sorted(chunks, key=lambda chunk: chunk.chunk_index)
        chunk_matrix = np.asarray([chunk.embedding for chunk in ordered], dtype=np.float64)
        if chunk_matrix.shape[1] != theme_matrix.shape[1]:
            raise DimensionMismatchError(
                expected=theme_matrix.shape[1], actual=chunk_matrix.shape[1], context=f"theme tagging of '{entity_id}'",
            )

        # rows: chunks, columns: themes
        similarities = np.clip(normalize_rows(chunk_matrix) @ theme_matrix.T, -1.0, 1.0)
        best_rows = np.argmax(similarities, axis=0)
        best_scores = similarities[best_rows, np.arange(len(codes))]
        if self.settings.clamp_negative:
            best_scores = np.maximum(best_scores, 0.0)

        candidates = [
            EntityThemeLink(
                entity_id=entity_id,
                theme_code=code,
                similarity=float(best_scores[column]),
                chunk_index=ordered[int(best_rows[column])].chunk_index,
            )
            for column, code in enumerate(codes)
        ]
        return self.select(candidates)

    def select(self, candidates: list[EntityThemeLink]) -> list[EntityThemeLink]:
        """Apply the configured policy to per-theme scores. Result is best first, ties by theme code."""
        ranked = sorted(candidates, key=lambda link: (-link.similarity, link.theme_code))
        if self.settings.policy == SelectionPolicy.TOP_N:
            return ranked[: self.settings.top_n]

        selected = [link for link in ranked if link.similarity >= self.settings.threshold]
        if len(selected) > self.settings.max_links:
            self.logging.warning(
                "%d themes reach threshold %.2f, keeping the best %d.",
                len(selected), self.settings.threshold, self.settings.max_links,
            )
            selected = selected[: self.settings.max_links]
        return selected
