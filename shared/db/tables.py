"""
SQL tables of the pipeline: the job queue and the entity to theme links.
"""

from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import JSON, Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel

_ACTIVE_JOB = text("status IN ('pending', 'processing')")


class JobRecord(SQLModel, table=True):
    """
    A single embedding job (pending, processing, completed, failed or skipped).
    """

    __tablename__ = "embedding_jobs"

    id: str = Field(primary_key=True, description="UUID string for the job")
    entity_id: str = Field(description="Entity whose text is processed")
    entity_kind: str = Field(description="journal-text | reference-fragment")
    status: str = Field(default="pending", description="pending | processing | completed | failed | skipped")
    priority: int = Field(default=0, description="Higher values are claimed first")
    attempts: int = Field(default=0)
    max_attempts: int = Field(default=3)
    error_message: Optional[str] = Field(default=None)
    error_code: Optional[str] = Field(default=None)
    payload: Dict = Field(sa_type=JSON, description="Entity-kind specific input, see shared.models.job")
    created_at: datetime
    scheduled_at: datetime = Field(description="Not claimable before this time")
    started_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)

    __table_args__ = (
        Index("idx_jobs_status_scheduled", "status", "scheduled_at"),
        Index("idx_jobs_entity_created", "entity_id", "created_at"),
        # at most one pending or processing job per entity
        Index(
            "uq_jobs_active_entity",
            "entity_id",
            unique=True,
            sqlite_where=_ACTIVE_JOB,
            postgresql_where=_ACTIVE_JOB,
        ),
    )


class EntityThemeLinkRecord(SQLModel, table=True):
    """
    Association of an entity with one catalog theme and its similarity.
    """

    __tablename__ = "entity_theme_links"

    id: Optional[int] = Field(default=None, primary_key=True)
    entity_id: str = Field(index=True)
    theme_code: str = Field(index=True)
    similarity: float
    chunk_index: Optional[int] = Field(default=None, description="Chunk that produced the max similarity")
    created_at: datetime

    __table_args__ = (
        UniqueConstraint("entity_id", "theme_code", name="uq_links_entity_theme"),
    )
