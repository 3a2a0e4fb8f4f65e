"""Pydantic models for similarity search results."""

from enum import Enum

from pydantic import BaseModel


class SearchScope(str, Enum):
    CHUNKS = "chunks"
    THEMES = "themes"


class SimilarityHit(BaseModel):
    """A single ranked search result.

    key is the entity id for scope "chunks" (best chunk per entity) and the
    theme code for scope "themes".
    """

    key: str
    similarity: float
    chunk_index: int | None = None
    entity_kind: str | None = None
