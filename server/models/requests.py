from typing import Any

from pydantic import BaseModel, Field, model_validator

from shared.models.job import EntityKind


class EnqueueJobRequest(BaseModel):
    entity_id: str = Field(min_length=1)
    entity_kind: EntityKind
    text: str
    priority: int = 0
    metadata: dict[str, Any] | None = None


class SimilaritySearchRequest(BaseModel):
    """Exactly one of query_text / query_vector and exactly one of threshold / top_n."""

    query_text: str | None = None
    query_vector: list[float] | None = None
    threshold: float | None = Field(default=None, ge=-1.0, le=1.0)
    top_n: int | None = Field(default=None, ge=1)
    entity_kind: EntityKind | None = None

    @model_validator(mode="after")
    def _check_exclusive(self) -> "SimilaritySearchRequest":
        if (self.query_text is None) == (self.query_vector is None):
            raise ValueError("Provide exactly one of query_text and query_vector.")
        if (self.threshold is None) == (self.top_n is None):
            raise ValueError("Provide exactly one of threshold and top_n.")
        return self
