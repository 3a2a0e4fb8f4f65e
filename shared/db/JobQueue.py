"""
Persistent job queue with an atomic claim.

Jobs live in the ``embedding_jobs`` table. A job moves
pending → processing → completed | failed, and processing → pending again
while attempts remain. Every state change after the claim is conditional on
``status = 'processing'`` so that only the claim holder can complete a job.
"""

from datetime import datetime, timedelta
from typing import Any
import uuid

from pydantic import ValidationError
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import select

from shared.db.database import Database
from shared.db.tables import JobRecord
from shared.exceptions.pipeline_errors import (
    ConcurrencyViolationError,
    JobValidationError,
    PipelineError,
    StorageUnavailableError,
)
from shared.helper.HelperConfig import HelperConfig
from shared.helper.backoff import compute_backoff
from shared.helper.clock import as_utc, utc_now
from shared.models.config import WorkerSettings
from shared.models.job import (
    ACTIVE_STATUSES,
    EntityKind,
    Job,
    JobStatus,
    JournalTextPayload,
    build_payload,
    parse_payload,
)

# pending candidates fetched per claim round; losers of a race move on to the next one
CLAIM_CANDIDATES = 10
STALE_ERROR_CODE = "stale"
SKIP_ERROR_CODE = "validation"
ENGLISH_LANGUAGES = ("en", "eng", "english")


class JobQueue:
    def __init__(self, database: Database, helper_config: HelperConfig, settings: WorkerSettings | None = None):
        self.database = database
        self.logging = helper_config.get_logger()
        self.settings = settings or WorkerSettings.from_config(helper_config)

    ##########################################
    ############### PRODUCER #################
    ##########################################

    def enqueue_job(
        self,
        entity_id: str,
        entity_kind: EntityKind | str,
        text: str,
        priority: int = 0,
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> str:
        """Create a job for an entity.

        Texts failing the pre-check (too short, non-English journal entry) are
        recorded directly as skipped and never claimed.

        Args:
            entity_id (str): Identifier of the entity.
            entity_kind (EntityKind | str): Kind of the entity.
            text (str): The text to embed.
            priority (int): Higher values are claimed first.
            metadata (dict | None): Kind-specific payload fields (e.g. language, source).
            now (datetime | None): Creation time, defaults to the current time.

        Returns:
            str: The id of the new job.

        Raises:
            JobValidationError: If the entity reference or payload is malformed.
            ConcurrencyViolationError: If a pending or processing job exists for the entity.
        """
        if not entity_id or not entity_id.strip():
            raise JobValidationError("Entity id must not be empty.")
        try:
            kind = EntityKind(entity_kind)
        except ValueError:
            raise JobValidationError(f"Unknown entity kind '{entity_kind}'.")
        try:
            payload = build_payload(kind, text or "", metadata)
        except ValidationError as exc:
            raise JobValidationError(f"Invalid payload for {kind.value} '{entity_id}': {exc}") from exc

        now = now or utc_now()
        skip_reason = self._get_skip_reason(payload)
        record = JobRecord(
            id=str(uuid.uuid4()),
            entity_id=entity_id,
            entity_kind=kind.value,
            status=(JobStatus.SKIPPED if skip_reason else JobStatus.PENDING).value,
            priority=priority,
            attempts=0,
            max_attempts=self.settings.max_attempts,
            error_message=skip_reason,
            error_code=SKIP_ERROR_CODE if skip_reason else None,
            payload=payload.model_dump(),
            created_at=now,
            scheduled_at=now,
            completed_at=now if skip_reason else None,
        )

        with self.database.session() as session:
            active = self._find_active(session, entity_id)
            if active is not None:
                raise ConcurrencyViolationError(entity_id, active.id)
            session.add(record)
            try:
                session.commit()
            except IntegrityError as exc:
                # lost a race against another producer for the same entity
                session.rollback()
                active = self._find_active(session, entity_id)
                raise ConcurrencyViolationError(entity_id, active.id if active else "unknown") from exc

        if skip_reason:
            self.logging.info("Skipped job %s for %s '%s': %s", record.id, kind.value, entity_id, skip_reason)
        else:
            self.logging.debug("Enqueued job %s for %s '%s' (priority %d)", record.id, kind.value, entity_id, priority)
        return record.id

    def _get_skip_reason(self, payload) -> str | None:
        stripped = payload.text.strip()
        if len(stripped) < self.settings.min_text_length:
            return f"Text too short to embed ({len(stripped)} chars, minimum {self.settings.min_text_length})."
        if isinstance(payload, JournalTextPayload) and payload.language:
            language = payload.language.strip().lower()
            if language.split("-")[0].split("_")[0] not in ENGLISH_LANGUAGES:
                return f"Journal text in language '{payload.language}' is not embedded."
        return None

    @staticmethod
    def _find_active(session, entity_id: str) -> JobRecord | None:
        statement = select(JobRecord).where(
            JobRecord.entity_id == entity_id,
            JobRecord.status.in_([status.value for status in ACTIVE_STATUSES]),
        )
        return session.exec(statement).first()

    ##########################################
    ################# CLAIM ##################
    ##########################################

    def claim_next(self, now: datetime | None = None) -> Job | None:
        """Atomically claim the next due job.

        Candidates are pending, due, and belong to an entity without a
        processing job, ordered by priority (desc), scheduled_at, id. Each
        candidate is claimed with a compare-and-set UPDATE; when another worker
        wins the race, the next candidate is tried.

        Args:
            now (datetime | None): Reference time, defaults to the current time.

        Returns:
            Job | None: The claimed job (status processing, attempts incremented), or None.
        """
        now = now or utc_now()
        with self.database.session() as session:
            processing_entities = select(JobRecord.entity_id).where(JobRecord.status == JobStatus.PROCESSING.value)
            statement = (
                select(JobRecord.id)
                .where(
                    JobRecord.status == JobStatus.PENDING.value,
                    JobRecord.scheduled_at <= now,
                    JobRecord.entity_id.not_in(processing_entities),
                )
                .order_by(JobRecord.priority.desc(), JobRecord.scheduled_at.asc(), JobRecord.id.asc())
                .limit(CLAIM_CANDIDATES)
            )
            try:
                candidates = list(session.exec(statement).all())
                for job_id in candidates:
                    result = session.execute(
                        update(JobRecord)
                        .where(JobRecord.id == job_id, JobRecord.status == JobStatus.PENDING.value)
                        .values(
                            status=JobStatus.PROCESSING.value,
                            started_at=now,
                            completed_at=None,
                            attempts=JobRecord.attempts + 1,
                        )
                    )
                    session.commit()
                    if result.rowcount == 1:
                        record = session.get(JobRecord, job_id, populate_existing=True)
                        return self._to_job(record)
            except OperationalError as exc:
                session.rollback()
                raise StorageUnavailableError(f"Job queue unavailable: {exc}") from exc
        return None

    ##########################################
    ############ STATE CHANGES ###############
    ##########################################

    def mark_completed(self, job_id: str, now: datetime | None = None) -> bool:
        """Move a processing job to completed. Returns False if the caller no longer holds the claim."""
        return self._update_processing(
            job_id,
            status=JobStatus.COMPLETED.value,
            completed_at=now or utc_now(),
            error_message=None,
            error_code=None,
        )

    def mark_failed(self, job_id: str, message: str, code: str, now: datetime | None = None) -> bool:
        """Move a processing job to the terminal failed state."""
        return self._update_processing(
            job_id,
            status=JobStatus.FAILED.value,
            completed_at=now or utc_now(),
            error_message=message,
            error_code=code,
        )

    def schedule_retry(self, job_id: str, message: str, code: str, now: datetime | None = None, delay: timedelta | None = None) -> bool:
        """Put a processing job back to pending, claimable again after ``delay``."""
        now = now or utc_now()
        return self._update_processing(
            job_id,
            status=JobStatus.PENDING.value,
            scheduled_at=now + (delay or timedelta(0)),
            started_at=None,
            error_message=message,
            error_code=code,
        )

    def handle_failure(self, job: Job, error: PipelineError, now: datetime | None = None) -> JobStatus:
        """Record a failed processing run.

        Retryable errors reschedule the job with exponential backoff while
        attempts remain; everything else fails the job.

        Args:
            job (Job): The claimed job (attempts already counts this run).
            error (PipelineError): The classified error.
            now (datetime | None): Reference time.

        Returns:
            JobStatus: The status the job was moved to.
        """
        now = now or utc_now()
        if error.retryable and job.has_attempts_left():
            delay = compute_backoff(job.attempts, self.settings.backoff_base, self.settings.backoff_max)
            self.schedule_retry(job.id, error.message, error.code, now=now, delay=delay)
            self.logging.warning(
                "Job %s for '%s' failed (%s, attempt %d/%d), retry in %ds: %s",
                job.id, job.entity_id, error.code, job.attempts, job.max_attempts, int(delay.total_seconds()), error.message,
                job_event="retry",
            )
            return JobStatus.PENDING

        self.mark_failed(job.id, error.message, error.code, now=now)
        self.logging.error(
            "Job %s for '%s' failed permanently (%s, attempt %d/%d): %s",
            job.id, job.entity_id, error.code, job.attempts, job.max_attempts, error.message,
            job_event="failed",
        )
        return JobStatus.FAILED

    def reclaim_stale(self, now: datetime | None = None, timeout: timedelta | None = None) -> int:
        """Recover jobs whose worker died mid-run.

        Processing jobs started before ``now - timeout`` go back to pending
        (error_code stale) or fail when no attempts remain. The abandoned claim
        already counted the attempt, so attempts is left unchanged.

        Returns:
            int: Number of reclaimed jobs.
        """
        now = now or utc_now()
        timeout = timeout or timedelta(seconds=self.settings.stale_timeout)
        cutoff = now - timeout
        message = f"Worker did not finish within {int(timeout.total_seconds())}s."

        with self.database.session() as session:
            try:
                stale_to_pending = session.execute(
                    update(JobRecord)
                    .where(
                        JobRecord.status == JobStatus.PROCESSING.value,
                        JobRecord.started_at < cutoff,
                        JobRecord.attempts < JobRecord.max_attempts,
                    )
                    .values(
                        status=JobStatus.PENDING.value,
                        scheduled_at=now,
                        started_at=None,
                        error_message=message,
                        error_code=STALE_ERROR_CODE,
                    )
                )
                stale_to_failed = session.execute(
                    update(JobRecord)
                    .where(
                        JobRecord.status == JobStatus.PROCESSING.value,
                        JobRecord.started_at < cutoff,
                        JobRecord.attempts >= JobRecord.max_attempts,
                    )
                    .values(
                        status=JobStatus.FAILED.value,
                        completed_at=now,
                        error_message=message,
                        error_code=STALE_ERROR_CODE,
                    )
                )
                session.commit()
            except OperationalError as exc:
                session.rollback()
                raise StorageUnavailableError(f"Job queue unavailable: {exc}") from exc

        total = stale_to_pending.rowcount + stale_to_failed.rowcount
        if total:
            self.logging.warning(
                "Reclaimed %d stale jobs (%d back to pending, %d failed).",
                total, stale_to_pending.rowcount, stale_to_failed.rowcount,
                job_event="reclaimed",
            )
        return total

    def _update_processing(self, job_id: str, **values) -> bool:
        with self.database.session() as session:
            try:
                result = session.execute(
                    update(JobRecord)
                    .where(JobRecord.id == job_id, JobRecord.status == JobStatus.PROCESSING.value)
                    .values(**values)
                )
                session.commit()
            except OperationalError as exc:
                session.rollback()
                raise StorageUnavailableError(f"Job queue unavailable: {exc}") from exc
        if result.rowcount != 1:
            self.logging.warning("Job %s is no longer processing, update to %s ignored.", job_id, values.get("status"))
            return False
        return True

    ##########################################
    ################ GETTER ##################
    ##########################################

    def get_job(self, job_id: str) -> Job | None:
        with self.database.session() as session:
            record = session.get(JobRecord, job_id)
            return self._to_job(record) if record else None

    def get_latest_job(self, entity_id: str) -> Job | None:
        """Return the most recently created job of an entity."""
        with self.database.session() as session:
            statement = (
                select(JobRecord)
                .where(JobRecord.entity_id == entity_id)
                .order_by(JobRecord.created_at.desc(), JobRecord.id.desc())
            )
            record = session.exec(statement).first()
            return self._to_job(record) if record else None

    def count_by_status(self) -> dict[str, int]:
        """Return the number of jobs per status, including statuses with no jobs."""
        counts = {status.value: 0 for status in JobStatus}
        with self.database.session() as session:
            statement = select(JobRecord.status, func.count()).group_by(JobRecord.status)
            for status, count in session.exec(statement).all():
                counts[status] = count
        return counts

    @staticmethod
    def _to_job(record: JobRecord) -> Job:
        return Job(
            id=record.id,
            entity_id=record.entity_id,
            entity_kind=EntityKind(record.entity_kind),
            status=JobStatus(record.status),
            priority=record.priority,
            attempts=record.attempts,
            max_attempts=record.max_attempts,
            error_message=record.error_message,
            error_code=record.error_code,
            payload=parse_payload(record.payload),
            created_at=as_utc(record.created_at),
            scheduled_at=as_utc(record.scheduled_at),
            started_at=as_utc(record.started_at),
            completed_at=as_utc(record.completed_at),
        )
