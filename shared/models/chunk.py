"""Pydantic models for text segments and their persisted, embedded form."""

from datetime import datetime

from pydantic import BaseModel


class TextSegment(BaseModel):
    """One chunker output segment.

    start_char / end_char are offsets into the source text, so that
    ``text == source[start_char:end_char]``. Consecutive segments overlap
    where ``start_char`` of the next is smaller than ``end_char`` of the previous.
    """

    chunk_index: int
    text: str
    token_count: int
    start_char: int
    end_char: int


class Chunk(BaseModel):
    """An embedded segment as stored in the vector store.

    Attributes:
        id:          Deterministic point id (uuid5 of entity id and chunk index).
        entity_id:   Owning entity.
        entity_kind: Kind of the owning entity.
        chunk_index: Zero-based, contiguous position within the entity.
        embedding:   Vector of the store-wide fixed dimension.
    """

    id: str
    entity_id: str
    entity_kind: str
    chunk_index: int
    text: str
    token_count: int
    start_char: int = 0
    end_char: int = 0
    embedding: list[float]
    created_at: datetime
