"""Pydantic models for embedding jobs and their entity-kind specific payloads.

Hierarchy:
  EntityPayload: closed union of per-kind inputs, discriminated by ``kind``.
  Job: one processing attempt lineage for an entity.
  JobStatusView: what the surrounding system gets back from get_job_status().
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)


class EntityKind(str, Enum):
    JOURNAL_TEXT = "journal-text"
    REFERENCE_FRAGMENT = "reference-fragment"


class JournalTextPayload(BaseModel):
    """A journal entry (e.g. a transcribed dream) as handed over by the producer."""

    kind: Literal["journal-text"] = "journal-text"
    text: str
    language: str | None = None


class ReferenceFragmentPayload(BaseModel):
    """A passage of a pre-split reference document."""

    kind: Literal["reference-fragment"] = "reference-fragment"
    text: str
    source: str | None = None
    chapter: str | None = None


EntityPayload = Annotated[Union[JournalTextPayload, ReferenceFragmentPayload], Field(discriminator="kind")]

_payload_adapter: TypeAdapter = TypeAdapter(EntityPayload)


def build_payload(entity_kind: EntityKind, text: str, metadata: dict[str, Any] | None = None) -> JournalTextPayload | ReferenceFragmentPayload:
    """Validate producer input into the payload variant of the given entity kind.

    Raises:
        pydantic.ValidationError: If metadata contains fields the kind does not have.
    """
    data = {**(metadata or {}), "kind": entity_kind.value, "text": text}
    return _payload_adapter.validate_python(data)


def parse_payload(raw: dict[str, Any]) -> JournalTextPayload | ReferenceFragmentPayload:
    """Rebuild a payload variant from its stored JSON form."""
    return _payload_adapter.validate_python(raw)


class Job(BaseModel):
    """A unit of work for the embedding workers.

    Attributes:
        id:            Opaque job identifier (uuid4 string).
        entity_id:     Identifier of the entity whose text is processed.
        entity_kind:   Kind of the entity; matches payload.kind.
        status:        Current state, see JobStatus.
        priority:      Higher values are claimed first.
        attempts:      Number of claims so far (incremented by the claim).
        max_attempts:  Upper bound for attempts; reaching it makes failure terminal.
        error_message: Last error, if any.
        error_code:    Stable code of the last error (validation, timeout, fatal, stale, ...).
        payload:       The entity text and kind-specific fields.
    """

    id: str
    entity_id: str
    entity_kind: EntityKind
    status: JobStatus
    priority: int = 0
    attempts: int = 0
    max_attempts: int = 3
    error_message: str | None = None
    error_code: str | None = None
    payload: EntityPayload
    created_at: datetime
    scheduled_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def has_attempts_left(self) -> bool:
        return self.attempts < self.max_attempts


class JobStatusView(BaseModel):
    job_id: str
    entity_id: str
    status: JobStatus
    attempts: int
    error_message: str | None = None
    error_code: str | None = None
