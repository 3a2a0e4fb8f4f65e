from abc import abstractmethod
from datetime import datetime
import uuid

from shared.clients.ClientInterface import ClientInterface
from shared.clients.vector.models.PointPayload import ChunkPointPayload, ThemePointPayload
from shared.clients.vector.models.Scroll import ScrollResult, SearchPage
from shared.exceptions.pipeline_errors import DimensionMismatchError, StorageUnavailableError, TransientError
from shared.models.chunk import Chunk
from shared.models.search import SearchScope, SimilarityHit
from shared.models.theme import ThemeCatalogEntry

from shared.helper.HelperConfig import HelperConfig

_POINT_ID_NAMESPACE = uuid.UUID("3b8e1f52-7c4d-4a9e-9f06-2d1c5b7a8e40")

# logical collection names, mapped to physical names by each engine
CHUNK_COLLECTION = "chunks"
THEME_COLLECTION = "themes"


def make_chunk_point_id(entity_id: str, chunk_index: int) -> str:
    """Deterministic point id of a chunk, stable across re-embeddings."""
    return str(uuid.uuid5(_POINT_ID_NAMESPACE, f"chunk:{entity_id}:{chunk_index}"))


def make_theme_point_id(code: str) -> str:
    return str(uuid.uuid5(_POINT_ID_NAMESPACE, f"theme:{code}"))


class VectorStoreInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self.page_size = helper_config.get_int_val("VECTOR_PAGE_SIZE", default=256)
        if self.page_size < 1:
            raise ValueError("VECTOR_PAGE_SIZE must be >= 1.")
        # pinned by do_ensure_collections() or by the first write or search
        self.dimension: int | None = None

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "vector"
        """
        return "vector"

    def get_max_page_size(self) -> int | None:
        """
        Returns the largest page the backend answers in full, or None if it honours any limit.
        """
        return None

    def get_effective_page_size(self) -> int:
        backend_max = self.get_max_page_size()
        return min(self.page_size, backend_max) if backend_max else self.page_size

    ################ ERRORS ##################
    def _get_unavailable_error(self) -> type[TransientError]:
        return StorageUnavailableError

    ##########################################
    ########### ENGINE PRIMITIVES ############
    ##########################################

    @abstractmethod
    async def _ensure_collection(self, collection: str, dimension: int) -> int:
        """
        Creates the collection if it is missing.

        Args:
            collection (str): Logical collection name (CHUNK_COLLECTION or THEME_COLLECTION).
            dimension (int): Vector size used when the collection has to be created.

        Returns:
            int: The vector size of the (existing or created) collection.
        """
        pass

    @abstractmethod
    async def _replace_entity_points(self, entity_id: str, points: list[dict]) -> None:
        """
        Atomically replaces all chunk points of an entity.
        Readers must never observe a mix of old and new points.

        Args:
            entity_id (str): The owning entity.
            points (list[dict]): The new points ({"id", "vector", "payload"}). May be empty.
        """
        pass

    @abstractmethod
    async def _upsert_points(self, collection: str, points: list[dict]) -> None:
        """
        Inserts new points or replaces existing ones with the same id.
        """
        pass

    @abstractmethod
    async def _delete_points(self, collection: str, match: dict) -> None:
        """
        Deletes all points whose payload matches every field of ``match``.
        """
        pass

    @abstractmethod
    async def _scroll_page(self, collection: str, match: dict, limit: int, offset: str | int | None = None) -> ScrollResult:
        """
        Scrolls a single page of points (with payload and vector) in a stable order.

        Args:
            collection (str): Logical collection name.
            match (dict): Payload field equality filter. Empty matches everything.
            limit (int): Maximum number of points in the page.
            offset (str | int | None): Cursor from the previous page's next_page_offset.

        Returns:
            ScrollResult: The page, with next_page_offset None on the last page.
        """
        pass

    @abstractmethod
    async def _search_page(
        self,
        collection: str,
        query_vector: list[float],
        limit: int,
        offset: int,
        score_threshold: float | None,
        match: dict,
    ) -> SearchPage:
        """
        Runs one page of a cosine similarity search.

        Args:
            collection (str): Logical collection name.
            query_vector (list[float]): The query vector.
            limit (int): Page size.
            offset (int): Number of hits to skip.
            score_threshold (float | None): Hits scoring below this are left out.
            match (dict): Payload field equality filter.

        Returns:
            SearchPage: Hits sorted by descending cosine similarity.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_ensure_collections(self, dimension: int) -> None:
        """Create the chunk and theme collections if needed and pin the store dimension.

        Args:
            dimension (int): The embedding dimension D.

        Raises:
            DimensionMismatchError: If an existing collection, or vectors already written, use another dimension.
        """
        if self.dimension is not None and self.dimension != dimension:
            raise DimensionMismatchError(expected=dimension, actual=self.dimension, context="vector store")
        for collection in (CHUNK_COLLECTION, THEME_COLLECTION):
            size = await self._ensure_collection(collection, dimension)
            if size != dimension:
                self.logging.error(
                    "Collection '%s' on %s stores %d-dimensional vectors, the embedding model produces %d.",
                    collection, self.get_engine_name(), size, dimension,
                )
                raise DimensionMismatchError(expected=dimension, actual=size, context=f"{collection} collection")
        self.dimension = dimension
        self.logging.info("Vector collections ready on %s (dimension %d).", self.get_engine_name(), dimension)

    async def do_upsert_chunks(self, entity_id: str, chunks: list[Chunk]) -> None:
        """Replace all stored chunks of an entity with the given ones.

        Args:
            entity_id (str): The owning entity.
            chunks (list[Chunk]): The new chunks, indices contiguous from 0.

        Raises:
            ValueError: If a chunk belongs to another entity or indices are not contiguous.
            DimensionMismatchError: If a chunk embedding has the wrong dimension.
        """
        indices = sorted(chunk.chunk_index for chunk in chunks)
        if indices != list(range(len(chunks))):
            raise ValueError(f"Chunk indices of entity '{entity_id}' must be contiguous from 0, got {indices}.")
        first_size = len(chunks[0].embedding) if chunks else None
        points: list[dict] = []
        for chunk in chunks:
            if chunk.entity_id != entity_id:
                raise ValueError(f"Chunk {chunk.chunk_index} belongs to '{chunk.entity_id}', not '{entity_id}'.")
            self._check_dimension(chunk.embedding, context=f"chunk {chunk.chunk_index} of '{entity_id}'", expected=first_size)
            points.append(self._chunk_to_point(chunk))

        await self._replace_entity_points(entity_id, points)
        self._pin_dimension(first_size)
        self.logging.debug("Stored %d chunks for entity '%s' on %s.", len(points), entity_id, self.get_engine_name())

    async def do_fetch_chunks(self, entity_id: str) -> list[Chunk]:
        """Return all chunks of an entity ordered by chunk_index."""
        scroll = await self.do_scroll_all(CHUNK_COLLECTION, match={"entity_id": entity_id})
        chunks = [self._point_to_chunk(point) for point in scroll.result]
        return sorted(chunks, key=lambda chunk: chunk.chunk_index)

    async def do_delete_entity(self, entity_id: str) -> None:
        """Delete all chunks of an entity."""
        await self._delete_points(CHUNK_COLLECTION, {"entity_id": entity_id})

    async def do_fetch_themes(self) -> list[ThemeCatalogEntry]:
        """Return every theme catalog entry, ordered by code."""
        scroll = await self.do_scroll_all(THEME_COLLECTION, match={})
        themes = [self._point_to_theme(point) for point in scroll.result]
        return sorted(themes, key=lambda theme: theme.code)

    async def do_upsert_themes(self, entries: list[ThemeCatalogEntry]) -> None:
        """Insert or replace theme catalog entries, keyed by code."""
        first_size = len(entries[0].embedding) if entries else None
        points = []
        for entry in entries:
            self._check_dimension(entry.embedding, context=f"theme '{entry.code}'", expected=first_size)
            points.append({
                "id": make_theme_point_id(entry.code),
                "vector": list(entry.embedding),
                "payload": ThemePointPayload(code=entry.code, label=entry.label, description=entry.description).model_dump(),
            })
        if points:
            await self._upsert_points(THEME_COLLECTION, points)
            self._pin_dimension(first_size)
        self.logging.info("Upserted %d theme catalog entries on %s.", len(points), self.get_engine_name())

    async def do_scroll_all(self, collection: str, match: dict) -> ScrollResult:
        """Scroll through ALL points matching the filter, paginating automatically.

        Runs a loop driven by next_page_offset until the backend signals there are no more pages.

        Args:
            collection (str): Logical collection name.
            match (dict): Payload field equality filter.

        Returns:
            ScrollResult: All matching points collected across all pages.
                          next_page_offset is always None on the returned result.
        """
        all_points: list[dict] = []
        offset: str | int | None = None
        page = 1
        while True:
            page_result = await self._scroll_page(collection, match, limit=self.get_effective_page_size(), offset=offset)
            all_points.extend(page_result.result)
            self.logging.debug(
                "Fetched %s page %d from %s, total points so far: %d",
                collection, page, self.get_engine_name(), len(all_points),
            )
            offset = page_result.next_page_offset
            if offset is None:
                break
            page += 1
        return ScrollResult(result=all_points)

    async def do_search_similar(
        self,
        query_vector: list[float],
        threshold: float | None = None,
        top_n: int | None = None,
        scope: SearchScope = SearchScope.CHUNKS,
        entity_kind: str | None = None,
        exclude_keys: set[str] | None = None,
        max_results: int | None = None,
    ) -> list[SimilarityHit]:
        """Rank entities (scope chunks) or themes (scope themes) by cosine similarity.

        Exactly one of ``threshold`` and ``top_n`` must be given. For scope
        chunks an entity scores with its best chunk. Pages are fetched until the
        backend is exhausted or the result can no longer change.

        Args:
            query_vector (list[float]): The query vector.
            threshold (float | None): Return every key scoring at least this.
            top_n (int | None): Return the best N keys.
            scope (SearchScope): What to rank.
            entity_kind (str | None): Restrict scope chunks to one entity kind.
            exclude_keys (set[str] | None): Keys left out of the result (e.g. the query entity).
            max_results (int | None): Sanity cap for threshold searches.

        Returns:
            list[SimilarityHit]: Sorted by descending similarity, ties by ascending key.

        Raises:
            ValueError: If not exactly one of threshold / top_n is given, or top_n < 1.
            DimensionMismatchError: If the query vector has the wrong dimension.
        """
        if (threshold is None) == (top_n is None):
            raise ValueError("Exactly one of threshold and top_n must be given.")
        if top_n is not None and top_n < 1:
            raise ValueError("top_n must be >= 1.")
        if max_results is not None and max_results < 1:
            raise ValueError("max_results must be >= 1.")
        self._check_dimension(query_vector, context="search query")
        self._pin_dimension(len(query_vector))

        scope = SearchScope(scope)
        collection = CHUNK_COLLECTION if scope == SearchScope.CHUNKS else THEME_COLLECTION
        match = {"entity_kind": entity_kind} if entity_kind and scope == SearchScope.CHUNKS else {}
        excluded = exclude_keys or set()
        limit = top_n if top_n is not None else max_results
        page_size = self.get_effective_page_size()

        best: dict[str, SimilarityHit] = {}
        offset = 0
        while True:
            page = await self._search_page(collection, query_vector, page_size, offset, threshold, match)
            for raw_hit in page.hits:
                hit = self._raw_hit_to_similarity(raw_hit, scope)
                if hit.key in excluded:
                    continue
                current = best.get(hit.key)
                if current is None or hit.similarity > current.similarity:
                    best[hit.key] = hit
            offset += len(page.hits)
            if page.is_last():
                break
            if limit is not None and self._is_settled(best, limit, page.hits[-1]["score"]):
                break

        ranked = sorted(best.values(), key=lambda hit: (-hit.similarity, hit.key))
        if threshold is not None:
            ranked = [hit for hit in ranked if hit.similarity >= threshold]
        if limit is not None and len(ranked) > limit:
            if top_n is None:
                self.logging.warning(
                    "Threshold search on %s matched more than %d keys, result capped.", collection, limit,
                )
            ranked = ranked[:limit]
        return ranked

    ##########################################
    ################# OTHER ##################
    ##########################################

    @staticmethod
    def _is_settled(best: dict[str, SimilarityHit], limit: int, last_score: float) -> bool:
        """True once later pages (scores <= last_score) cannot enter the top ``limit`` anymore."""
        if len(best) < limit:
            return False
        scores = sorted((hit.similarity for hit in best.values()), reverse=True)
        # an equal score could still win on the key tie-break
        return last_score < scores[limit - 1]

    def _check_dimension(self, vector: list[float], context: str, expected: int | None = None) -> None:
        """Reject a vector whose length differs from the pinned dimension, or from ``expected`` while none is pinned."""
        expected = self.dimension if self.dimension is not None else expected
        if expected is not None and len(vector) != expected:
            raise DimensionMismatchError(expected=expected, actual=len(vector), context=context)

    def _pin_dimension(self, dimension: int | None) -> None:
        if self.dimension is None and dimension:
            self.dimension = dimension
            self.logging.info("Vector store on %s pinned to dimension %d.", self.get_engine_name(), dimension)

    @staticmethod
    def _chunk_to_point(chunk: Chunk) -> dict:
        payload = ChunkPointPayload(
            entity_id=chunk.entity_id,
            entity_kind=chunk.entity_kind,
            chunk_index=chunk.chunk_index,
            text=chunk.text,
            token_count=chunk.token_count,
            start_char=chunk.start_char,
            end_char=chunk.end_char,
            created_at=chunk.created_at.isoformat(),
        )
        return {
            "id": make_chunk_point_id(chunk.entity_id, chunk.chunk_index),
            "vector": list(chunk.embedding),
            "payload": payload.model_dump(),
        }

    @staticmethod
    def _point_to_chunk(point: dict) -> Chunk:
        payload = ChunkPointPayload(**point.get("payload", {}))
        return Chunk(
            id=str(point["id"]),
            entity_id=payload.entity_id,
            entity_kind=payload.entity_kind,
            chunk_index=payload.chunk_index,
            text=payload.text,
            token_count=payload.token_count,
            start_char=payload.start_char,
            end_char=payload.end_char,
            embedding=point.get("vector") or [],
            created_at=datetime.fromisoformat(payload.created_at),
        )

    @staticmethod
    def _point_to_theme(point: dict) -> ThemeCatalogEntry:
        payload = ThemePointPayload(**point.get("payload", {}))
        return ThemeCatalogEntry(
            code=payload.code,
            label=payload.label,
            description=payload.description,
            embedding=point.get("vector") or [],
        )

    @staticmethod
    def _raw_hit_to_similarity(raw_hit: dict, scope: SearchScope) -> SimilarityHit:
        payload = raw_hit.get("payload") or {}
        if scope == SearchScope.CHUNKS:
            return SimilarityHit(
                key=payload["entity_id"],
                similarity=float(raw_hit["score"]),
                chunk_index=payload.get("chunk_index"),
                entity_kind=payload.get("entity_kind"),
            )
        return SimilarityHit(key=payload["code"], similarity=float(raw_hit["score"]))
