from pydantic import BaseModel

from shared.models.job import JobStatus
from shared.models.search import SimilarityHit
from shared.models.theme import EntityThemeLink, ThemeLinkView


class EnqueueJobResponse(BaseModel):
    job_id: str
    entity_id: str
    status: JobStatus


class JobCountsResponse(BaseModel):
    counts: dict[str, int]


class SimilaritySearchResponse(BaseModel):
    results: list[SimilarityHit]
    total: int


class EntityThemesResponse(BaseModel):
    entity_id: str
    themes: list[ThemeLinkView]


class ThemeEntitiesResponse(BaseModel):
    theme_code: str
    entities: list[EntityThemeLink]
