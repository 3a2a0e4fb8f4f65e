"""Pydantic models for the theme catalog and entity↔theme associations."""

from enum import Enum

from pydantic import BaseModel


class ThemeCatalogEntry(BaseModel):
    """A pre-embedded semantic tag. Read-only to the pipeline."""

    code: str
    label: str
    description: str | None = None
    embedding: list[float]


class EntityThemeLink(BaseModel):
    """Association of an entity with a theme.

    similarity is the max cosine similarity over the entity's chunks, in
    [-1, 1], or in [0, 1] when negative values are clamped.
    chunk_index is the chunk that produced the max.
    """

    entity_id: str
    theme_code: str
    similarity: float
    chunk_index: int | None = None


class SelectionPolicy(str, Enum):
    TOP_N = "top_n"
    THRESHOLD = "threshold"


class ThemeLinkView(BaseModel):
    """An entity's link enriched with the catalog label, as returned to consumers."""

    theme_code: str
    label: str | None = None
    description: str | None = None
    similarity: float
    chunk_index: int | None = None
