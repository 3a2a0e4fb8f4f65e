from shared.helper.HelperConfig import HelperConfig
from shared.clients.vector.VectorStoreInterface import CHUNK_COLLECTION, THEME_COLLECTION, VectorStoreInterface
from shared.clients.vector.models.Scroll import ScrollResult, SearchPage
from shared.models.config import EnvConfig


class VectorStoreQdrant(VectorStoreInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")
        self._collection_names = {
            CHUNK_COLLECTION: self.get_config_val("CHUNK_COLLECTION", default="entity_chunks", val_type="string"),
            THEME_COLLECTION: self.get_config_val("THEME_COLLECTION", default="theme_catalog", val_type="string"),
        }

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Qdrant"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
            EnvConfig(env_key="CHUNK_COLLECTION", val_type="string", default="entity_chunks"),
            EnvConfig(env_key="THEME_COLLECTION", val_type="string", default="theme_catalog"),
        ]

    def get_collection_name(self, collection: str) -> str:
        return self._collection_names[collection]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"api-key": f"{self._api_key}"}
        else:
            return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/healthz"

    def _get_endpoint_collection(self, collection: str) -> str:
        return f"/collections/{self.get_collection_name(collection)}"

    def _get_endpoint_check_collection_existence(self, collection: str) -> str:
        return f"/collections/{self.get_collection_name(collection)}/exists"

    def _get_endpoint_index(self, collection: str) -> str:
        return f"/collections/{self.get_collection_name(collection)}/index"

    def _get_endpoint_points(self, collection: str) -> str:
        return f"/collections/{self.get_collection_name(collection)}/points"

    def _get_endpoint_batch(self, collection: str) -> str:
        return f"/collections/{self.get_collection_name(collection)}/points/batch"

    def _get_endpoint_delete_points(self, collection: str) -> str:
        return f"/collections/{self.get_collection_name(collection)}/points/delete"

    def _get_endpoint_scroll(self, collection: str) -> str:
        return f"/collections/{self.get_collection_name(collection)}/points/scroll"

    def _get_endpoint_search(self, collection: str) -> str:
        return f"/collections/{self.get_collection_name(collection)}/points/search"

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def get_filter(self, match: dict) -> dict | None:
        if not match:
            return None
        return {"must": [{"key": key, "match": {"value": value}} for key, value in match.items()]}

    def get_scroll_payload(self, match: dict, limit: int, offset: str | int | None = None) -> dict:
        payload = {
            "limit": limit,
            "with_payload": True,
            "with_vector": True,
        }
        qdrant_filter = self.get_filter(match)
        if qdrant_filter:
            payload["filter"] = qdrant_filter
        if offset is not None:
            payload["offset"] = offset
        return payload

    def get_search_payload(self, query_vector: list[float], limit: int, offset: int, score_threshold: float | None, match: dict) -> dict:
        payload = {
            "vector": list(query_vector),
            "limit": limit,
            "offset": offset,
            "with_payload": True,
            "with_vector": False,
        }
        qdrant_filter = self.get_filter(match)
        if qdrant_filter:
            payload["filter"] = qdrant_filter
        if score_threshold is not None:
            payload["score_threshold"] = score_threshold
        return payload

    def get_replace_payload(self, entity_id: str, points: list[dict]) -> dict:
        """Ordered delete + upsert, applied by Qdrant as one update request."""
        operations: list[dict] = [{"delete": {"filter": self.get_filter({"entity_id": entity_id})}}]
        if points:
            operations.append({"upsert": {"points": points}})
        return {"operations": operations}

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_scroll_content(self, raw_response: dict) -> ScrollResult:
        result = raw_response.get("result", {}) or {}
        return ScrollResult(
            result=result.get("points", []),
            status=raw_response.get("status", "ok"),
            time=raw_response.get("time", 0),
            next_page_offset=result.get("next_page_offset"),
        )

    def extract_vector_size(self, raw_response: dict) -> int:
        vectors = raw_response.get("result", {}).get("config", {}).get("params", {}).get("vectors", {})
        if "size" not in vectors:
            raise ValueError(f"Qdrant collection info carries no single vector size: {vectors}")
        return int(vectors["size"])

    ##########################################
    ########### ENGINE PRIMITIVES ############
    ##########################################

    async def _ensure_collection(self, collection: str, dimension: int) -> int:
        resp = await self.do_request(
            method="GET",
            endpoint=self._get_endpoint_check_collection_existence(collection),
            raise_on_error=True,
        )
        if not resp.json().get("result", {}).get("exists"):
            self.logging.info(
                "Creating Qdrant collection '%s' with %d-dimensional cosine vectors.",
                self.get_collection_name(collection), dimension,
            )
            await self.do_request(
                method="PUT",
                json={"vectors": {"size": dimension, "distance": "Cosine"}},
                endpoint=self._get_endpoint_collection(collection),
                raise_on_error=True,
            )
            if collection == CHUNK_COLLECTION:
                for field in ("entity_id", "entity_kind"):
                    await self.do_request(
                        method="PUT",
                        json={"field_name": field, "field_schema": "keyword"},
                        endpoint=self._get_endpoint_index(collection),
                        params={"wait": "true"},
                        raise_on_error=True,
                    )
            return dimension

        info = await self.do_request(method="GET", endpoint=self._get_endpoint_collection(collection), raise_on_error=True)
        return self.extract_vector_size(info.json())

    async def _replace_entity_points(self, entity_id: str, points: list[dict]) -> None:
        await self.do_request(
            method="POST",
            json=self.get_replace_payload(entity_id, points),
            endpoint=self._get_endpoint_batch(CHUNK_COLLECTION),
            params={"wait": "true"},
            raise_on_error=True,
        )

    async def _upsert_points(self, collection: str, points: list[dict]) -> None:
        await self.do_request(
            method="PUT",
            json={"points": points},
            endpoint=self._get_endpoint_points(collection),
            params={"wait": "true"},
            raise_on_error=True,
        )

    async def _delete_points(self, collection: str, match: dict) -> None:
        await self.do_request(
            method="POST",
            json={"filter": self.get_filter(match)},
            endpoint=self._get_endpoint_delete_points(collection),
            params={"wait": "true"},
            raise_on_error=True,
        )

    async def _scroll_page(self, collection: str, match: dict, limit: int, offset: str | int | None = None) -> ScrollResult:
        resp = await self.do_request(
            method="POST",
            json=self.get_scroll_payload(match, limit, offset),
            endpoint=self._get_endpoint_scroll(collection),
            raise_on_error=True,
        )
        return self.extract_scroll_content(resp.json())

    async def _search_page(
        self,
        collection: str,
        query_vector: list[float],
        limit: int,
        offset: int,
        score_threshold: float | None,
        match: dict,
    ) -> SearchPage:
        resp = await self.do_request(
            method="POST",
            json=self.get_search_payload(query_vector, limit, offset, score_threshold, match),
            endpoint=self._get_endpoint_search(collection),
            raise_on_error=True,
        )
        return SearchPage(hits=resp.json().get("result", []) or [], requested=limit)
