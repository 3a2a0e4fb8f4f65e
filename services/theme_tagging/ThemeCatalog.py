"""Cached view of the pre-embedded theme catalog."""

import asyncio

import numpy as np

from shared.clients.vector.VectorStoreInterface import VectorStoreInterface
from shared.exceptions.pipeline_errors import CatalogUnavailableError
from shared.helper.HelperConfig import HelperConfig
from shared.models.theme import ThemeCatalogEntry


def normalize_rows(matrix: np.ndarray) -> np.ndarray:
    """L2-normalise every row. Zero rows stay zero."""
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    return np.divide(matrix, norms, out=np.zeros_like(matrix), where=norms > 0)


class ThemeCatalog:
    """Loads all catalog entries from the vector store once and keeps them in memory.

    The catalog is read-only to the pipeline; call refresh() after a
    maintenance upsert to pick up new entries.
    """

    def __init__(self, vector_store: VectorStoreInterface, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self._vector_store = vector_store
        self._entries: dict[str, ThemeCatalogEntry] = {}
        self._codes: list[str] = []
        self._matrix: np.ndarray | None = None
        self._lock = asyncio.Lock()

    ##########################################
    ################ LOADING #################
    ##########################################

    async def load(self) -> None:
        """Load the catalog unless it is already cached."""
        if self._matrix is None:
            await self.refresh()

    async def refresh(self) -> None:
        """Reload every catalog entry from the vector store.

        Raises:
            CatalogUnavailableError: If the catalog is empty or its entries differ in dimension.
        """
        async with self._lock:
            entries = await self._vector_store.do_fetch_themes()
            if not entries:
                raise CatalogUnavailableError("Theme catalog is empty.")

            dimensions = {len(entry.embedding) for entry in entries}
            if len(dimensions) != 1:
                raise CatalogUnavailableError(f"Theme catalog entries have inconsistent dimensions: {sorted(dimensions)}.")
            dimension = dimensions.pop()
            store_dimension = self._vector_store.dimension
            if store_dimension is not None and dimension != store_dimension:
                raise CatalogUnavailableError(
                    f"Theme catalog has dimension {dimension}, the vector store expects {store_dimension}."
                )

            ordered = sorted(entries, key=lambda entry: entry.code)
            self._entries = {entry.code: entry for entry in ordered}
            self._codes = [entry.code for entry in ordered]
            self._matrix = normalize_rows(np.asarray([entry.embedding for entry in ordered], dtype=np.float64))
            self.logging.info("Loaded %d themes (dimension %d) into the catalog cache.", len(ordered), dimension)

    ##########################################
    ################ GETTER ##################
    ##########################################

    def is_loaded(self) -> bool:
        return self._matrix is not None

    def get(self, code: str) -> ThemeCatalogEntry | None:
        return self._entries.get(code)

    def all(self) -> list[ThemeCatalogEntry]:
        return list(self._entries.values())

    def codes(self) -> list[str]:
        return list(self._codes)

    def get_matrix(self) -> tuple[list[str], np.ndarray]:
        """Return the theme codes and the matching matrix of L2-normalised embeddings (one row per code).

        Raises:
            CatalogUnavailableError: If the catalog has not been loaded.
        """
        if self._matrix is None:
            raise CatalogUnavailableError("Theme catalog not loaded. Call load() first.")
        return list(self._codes), self._matrix
