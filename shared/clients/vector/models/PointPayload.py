"""Payload models stored alongside each vector point."""

from pydantic import BaseModel


class ChunkPointPayload(BaseModel):
    """Metadata of one chunk point in the chunk collection.

    entity_id and entity_kind are used as filter fields. created_at is ISO-8601.
    """

    entity_id: str
    entity_kind: str
    chunk_index: int
    text: str
    token_count: int
    start_char: int = 0
    end_char: int = 0
    created_at: str


class ThemePointPayload(BaseModel):
    """Metadata of one theme point in the theme collection."""

    code: str
    label: str
    description: str | None = None
