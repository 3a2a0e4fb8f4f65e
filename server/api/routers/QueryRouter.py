"""Query router: similarity search and theme lookups."""

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from server.models.requests import SimilaritySearchRequest
from server.models.responses import EntityThemesResponse, SimilaritySearchResponse, ThemeEntitiesResponse
from shared.dependencies.auth import verify_api_key
from shared.exceptions.pipeline_errors import CatalogUnavailableError, DimensionMismatchError
from shared.models.job import EntityKind

query_router = APIRouter()


def _check_exclusive(threshold: float | None, top_n: int | None) -> None:
    if (threshold is None) == (top_n is None):
        raise HTTPException(status_code=422, detail="Provide exactly one of threshold and top_n.")


@query_router.post(
    "/search",
    dependencies=[Depends(verify_api_key)],
    tags=["Query"],
    response_model=SimilaritySearchResponse,
)
async def search_similar_entities(request: Request, body: SimilaritySearchRequest) -> SimilaritySearchResponse:
    """Rank entities by similarity to a query text or vector.

    Raises:
        HTTPException: 422 if the query vector has the wrong dimension.
    """
    request.app.state.logging.info(
        "Search received - text=%r vector=%s threshold=%s top_n=%s",
        (body.query_text or "")[:80], body.query_vector is not None, body.threshold, body.top_n,
    )
    try:
        hits = await request.app.state.query_service.search_similar_entities(
            query_vector=body.query_vector,
            query_text=body.query_text,
            threshold=body.threshold,
            top_n=body.top_n,
            entity_kind=body.entity_kind,
        )
    except (DimensionMismatchError, ValueError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    return SimilaritySearchResponse(results=hits, total=len(hits))


@query_router.get(
    "/entities/{entity_id}/themes",
    dependencies=[Depends(verify_api_key)],
    tags=["Query"],
    response_model=EntityThemesResponse,
)
async def get_themes_for_entity(
    request: Request,
    entity_id: str,
    min_similarity: float | None = Query(default=None, ge=-1.0, le=1.0),
) -> EntityThemesResponse:
    """Theme links of an entity, best first. Empty for entities not tagged yet."""
    themes = await request.app.state.query_service.get_themes_for_entity(entity_id, min_similarity)
    return EntityThemesResponse(entity_id=entity_id, themes=themes)


@query_router.get(
    "/entities/{entity_id}/similar",
    dependencies=[Depends(verify_api_key)],
    tags=["Query"],
    response_model=SimilaritySearchResponse,
)
async def search_similar_to_entity(
    request: Request,
    entity_id: str,
    threshold: float | None = Query(default=None, ge=-1.0, le=1.0),
    top_n: int | None = Query(default=None, ge=1),
    entity_kind: EntityKind | None = None,
) -> SimilaritySearchResponse:
    """Entities most similar to a stored entity, the entity itself excluded."""
    _check_exclusive(threshold, top_n)
    hits = await request.app.state.query_service.search_similar_to_entity(entity_id, threshold, top_n, entity_kind)
    return SimilaritySearchResponse(results=hits, total=len(hits))


@query_router.get(
    "/themes/{theme_code}/entities",
    dependencies=[Depends(verify_api_key)],
    tags=["Query"],
    response_model=ThemeEntitiesResponse,
)
async def get_entities_for_theme(
    request: Request,
    theme_code: str,
    threshold: float | None = Query(default=None, ge=-1.0, le=1.0),
    top_n: int | None = Query(default=None, ge=1),
) -> ThemeEntitiesResponse:
    """Entities linked to a theme, best first (ties by entity id)."""
    links = await request.app.state.query_service.get_entities_for_theme(theme_code, threshold, top_n)
    return ThemeEntitiesResponse(theme_code=theme_code, entities=links)


@query_router.get(
    "/themes/{theme_code}/similar-entities",
    dependencies=[Depends(verify_api_key)],
    tags=["Query"],
    response_model=SimilaritySearchResponse,
)
async def search_entities_by_theme_vector(
    request: Request,
    theme_code: str,
    threshold: float | None = Query(default=None, ge=-1.0, le=1.0),
    top_n: int | None = Query(default=None, ge=1),
    entity_kind: EntityKind | None = None,
) -> SimilaritySearchResponse:
    """Entities whose chunks are closest to the theme embedding, regardless of stored links."""
    _check_exclusive(threshold, top_n)
    try:
        hits = await request.app.state.query_service.search_entities_by_theme_vector(theme_code, threshold, top_n, entity_kind)
    except CatalogUnavailableError as e:
        raise HTTPException(status_code=503, detail=e.message)
    return SimilaritySearchResponse(results=hits, total=len(hits))
