import asyncio

import httpx
import numpy as np

from shared.helper.HelperConfig import HelperConfig
from shared.clients.vector.VectorStoreInterface import CHUNK_COLLECTION, VectorStoreInterface
from shared.clients.vector.models.Scroll import ScrollResult, SearchPage
from shared.models.config import EnvConfig


def cosine_scores(query_vector: list[float], vectors: list[list[float]]) -> np.ndarray:
    """Cosine similarity of the query against every row. Zero vectors score 0."""
    if not vectors:
        return np.zeros(0)
    matrix = np.asarray(vectors, dtype=np.float64)
    query = np.asarray(query_vector, dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    return np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)


class VectorStoreMemory(VectorStoreInterface):
    """In-process vector store for tests and single-node deployments.

    Answers at most PAGE_LIMIT points per request, like a hosted backend with a
    row limit, so callers always go through the pagination path.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._page_limit = int(self.get_config_val("PAGE_LIMIT", default=64, val_type="number"))
        if self._page_limit < 1:
            raise ValueError("VECTOR_MEMORY_PAGE_LIMIT must be >= 1.")
        self._collections: dict[str, dict[str, dict]] = {}
        self._sizes: dict[str, int] = {}
        self._lock = asyncio.Lock()

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Memory"

    def get_max_page_size(self) -> int | None:
        return self._page_limit

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="PAGE_LIMIT", val_type="number", default=64),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return "memory://"

    def _get_endpoint_healthcheck(self) -> str:
        return ""

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def boot(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def do_healthcheck(self) -> httpx.Response:
        return httpx.Response(200, json={"title": "memory vector store"})

    ##########################################
    ########### ENGINE PRIMITIVES ############
    ##########################################

    async def _ensure_collection(self, collection: str, dimension: int) -> int:
        async with self._lock:
            # a collection may already hold points written before this call
            self._collections.setdefault(collection, {})
            self._sizes.setdefault(collection, dimension)
            return self._sizes[collection]

    async def _replace_entity_points(self, entity_id: str, points: list[dict]) -> None:
        async with self._lock:
            current = self._collections.setdefault(CHUNK_COLLECTION, {})
            replaced = {point_id: point for point_id, point in current.items() if point["payload"].get("entity_id") != entity_id}
            for point in points:
                replaced[point["id"]] = self._copy_point(point)
            self._collections[CHUNK_COLLECTION] = replaced

    async def _upsert_points(self, collection: str, points: list[dict]) -> None:
        async with self._lock:
            current = self._collections.setdefault(collection, {})
            for point in points:
                current[point["id"]] = self._copy_point(point)

    async def _delete_points(self, collection: str, match: dict) -> None:
        async with self._lock:
            current = self._collections.get(collection, {})
            self._collections[collection] = {
                point_id: point for point_id, point in current.items() if not self._matches(point, match)
            }

    async def _scroll_page(self, collection: str, match: dict, limit: int, offset: str | int | None = None) -> ScrollResult:
        limit = min(limit, self._page_limit)
        async with self._lock:
            points = sorted(
                (point for point in self._collections.get(collection, {}).values() if self._matches(point, match)),
                key=lambda point: point["id"],
            )
        start = int(offset or 0)
        page = points[start: start + limit]
        next_offset = start + limit if start + limit < len(points) else None
        return ScrollResult(result=[self._copy_point(point) for point in page], next_page_offset=next_offset)

    async def _search_page(
        self,
        collection: str,
        query_vector: list[float],
        limit: int,
        offset: int,
        score_threshold: float | None,
        match: dict,
    ) -> SearchPage:
        async with self._lock:
            points = [point for point in self._collections.get(collection, {}).values() if self._matches(point, match)]
        scores = cosine_scores(query_vector, [point["vector"] for point in points])
        hits = [
            {"id": point["id"], "score": float(score), "payload": dict(point["payload"])}
            for point, score in zip(points, scores)
            if score_threshold is None or score >= score_threshold
        ]
        hits.sort(key=lambda hit: (-hit["score"], hit["id"]))
        # the backend row limit applies no matter what was asked for
        return SearchPage(hits=hits[offset: offset + min(limit, self._page_limit)], requested=limit)

    ##########################################
    ################# OTHER ##################
    ##########################################

    @staticmethod
    def _matches(point: dict, match: dict) -> bool:
        payload = point.get("payload", {})
        return all(payload.get(key) == value for key, value in match.items())

    @staticmethod
    def _copy_point(point: dict) -> dict:
        return {"id": point["id"], "vector": list(point["vector"]), "payload": dict(point["payload"])}

    def count_points(self, collection: str = CHUNK_COLLECTION) -> int:
        return len(self._collections.get(collection, {}))
