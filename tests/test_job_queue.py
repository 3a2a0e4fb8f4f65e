"""Tests for the persistent job queue: enqueue checks, atomic claim, retries and the stale sweep."""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import pytest
import pytz

from conftest import LONG_ENOUGH_TEXT
from shared.db.JobQueue import JobQueue, SKIP_ERROR_CODE, STALE_ERROR_CODE
from shared.exceptions.pipeline_errors import (
    ConcurrencyViolationError,
    DimensionMismatchError,
    JobValidationError,
    RequestTimeoutError,
)
from shared.models.config import WorkerSettings
from shared.models.job import EntityKind, JobStatus, ReferenceFragmentPayload

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=pytz.utc)


class TestEnqueue:
    """Producer side."""

    def test_creates_pending_job(self, job_queue):
        job_id = job_queue.enqueue_job("dream-1", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT, now=T0)

        job = job_queue.get_job(job_id)
        assert job.status == JobStatus.PENDING
        assert job.attempts == 0
        assert job.max_attempts == 3
        assert job.payload.text == LONG_ENOUGH_TEXT
        assert job.created_at == T0
        assert job.scheduled_at == T0

    def test_reference_fragment_metadata(self, job_queue):
        job_id = job_queue.enqueue_job(
            "frag-1", "reference-fragment", LONG_ENOUGH_TEXT, metadata={"source": "Jung", "chapter": "II"}, now=T0,
        )
        payload = job_queue.get_job(job_id).payload
        assert isinstance(payload, ReferenceFragmentPayload)
        assert payload.source == "Jung"

    @pytest.mark.parametrize(
        "entity_id, kind, metadata",
        [
            ("", EntityKind.JOURNAL_TEXT, None),
            ("   ", EntityKind.JOURNAL_TEXT, None),
            ("e1", "podcast", None),
            ("e1", EntityKind.JOURNAL_TEXT, {"language": ["en"]}),
        ],
    )
    def test_malformed_input(self, job_queue, entity_id, kind, metadata):
        with pytest.raises(JobValidationError):
            job_queue.enqueue_job(entity_id, kind, LONG_ENOUGH_TEXT, metadata=metadata)

    def test_short_text_is_skipped(self, job_queue):
        job = job_queue.get_job(job_queue.enqueue_job("e1", EntityKind.JOURNAL_TEXT, "Too short.", now=T0))

        assert job.status == JobStatus.SKIPPED
        assert job.error_code == SKIP_ERROR_CODE
        assert "too short" in job.error_message
        assert job_queue.claim_next(now=T0) is None

    def test_non_english_journal_is_skipped(self, job_queue):
        skipped = job_queue.enqueue_job("e1", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT, metadata={"language": "de"})
        embedded = job_queue.enqueue_job("e2", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT, metadata={"language": "en-US"})

        assert job_queue.get_job(skipped).status == JobStatus.SKIPPED
        assert job_queue.get_job(embedded).status == JobStatus.PENDING

    def test_skipped_job_does_not_block_entity(self, job_queue):
        job_queue.enqueue_job("e1", EntityKind.JOURNAL_TEXT, "short")
        job_id = job_queue.enqueue_job("e1", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT)
        assert job_queue.get_job(job_id).status == JobStatus.PENDING

    def test_second_active_job_rejected(self, job_queue):
        first = job_queue.enqueue_job("e1", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT)

        with pytest.raises(ConcurrencyViolationError) as info:
            job_queue.enqueue_job("e1", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT)
        assert info.value.active_job_id == first

        job_queue.claim_next()
        with pytest.raises(ConcurrencyViolationError):
            job_queue.enqueue_job("e1", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT)

    def test_new_job_after_completion(self, job_queue):
        job_queue.enqueue_job("e1", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT, now=T0)
        job = job_queue.claim_next(now=T0)
        job_queue.mark_completed(job.id, now=T0)

        second = job_queue.enqueue_job("e1", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT, now=T0 + timedelta(seconds=1))

        assert job_queue.get_latest_job("e1").id == second


class TestClaim:
    """Atomic claim and ordering."""

    def test_empty_queue(self, job_queue):
        assert job_queue.claim_next() is None

    def test_claim_marks_processing(self, job_queue):
        job_queue.enqueue_job("e1", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT, now=T0)

        job = job_queue.claim_next(now=T0 + timedelta(seconds=5))

        assert job.status == JobStatus.PROCESSING
        assert job.attempts == 1
        assert job.started_at == T0 + timedelta(seconds=5)
        assert job_queue.claim_next(now=T0 + timedelta(seconds=5)) is None

    def test_priority_then_schedule(self, job_queue):
        job_queue.enqueue_job("low-late", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT, now=T0 + timedelta(seconds=2))
        job_queue.enqueue_job("high", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT, priority=5, now=T0 + timedelta(seconds=3))
        job_queue.enqueue_job("low-early", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT, now=T0)

        now = T0 + timedelta(minutes=1)
        claimed = [job_queue.claim_next(now=now).entity_id for _ in range(3)]

        assert claimed == ["high", "low-early", "low-late"]

    def test_future_job_not_claimed(self, job_queue):
        job_queue.enqueue_job("e1", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT, now=T0 + timedelta(hours=1))
        assert job_queue.claim_next(now=T0) is None
        assert job_queue.claim_next(now=T0 + timedelta(hours=1)) is not None

    def test_concurrent_claims_never_share_a_job(self, job_queue):
        for i in range(20):
            job_queue.enqueue_job(f"e{i}", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT, now=T0)

        def drain() -> list[str]:
            claimed = []
            while (job := job_queue.claim_next(now=T0 + timedelta(seconds=1))) is not None:
                claimed.append(job.id)
            return claimed

        with ThreadPoolExecutor(max_workers=6) as pool:
            results = list(pool.map(lambda _: drain(), range(6)))

        claimed = [job_id for result in results for job_id in result]
        assert len(claimed) == 20
        assert len(set(claimed)) == 20
        assert job_queue.count_by_status()["processing"] == 20

    def test_one_job_claimed_by_exactly_one_of_many(self, job_queue):
        job_id = job_queue.enqueue_job("e1", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT, now=T0)
        start = threading.Barrier(8)

        def claim():
            start.wait()
            return job_queue.claim_next(now=T0 + timedelta(seconds=1))

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: claim(), range(8)))

        winners = [job for job in results if job is not None]
        assert len(winners) == 1
        assert winners[0].id == job_id
        assert job_queue.get_job(job_id).attempts == 1


class TestFailureHandling:
    """Retries with backoff, terminal failures and claim ownership."""

    def test_retry_with_backoff(self, job_queue):
        job_queue.enqueue_job("e1", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT, now=T0)
        job = job_queue.claim_next(now=T0)

        status = job_queue.handle_failure(job, RequestTimeoutError("embedding timed out"), now=T0)

        assert status == JobStatus.PENDING
        stored = job_queue.get_job(job.id)
        assert stored.error_code == "timeout"
        assert stored.scheduled_at == T0 + timedelta(minutes=2)
        assert stored.started_at is None
        assert job_queue.claim_next(now=T0 + timedelta(minutes=1)) is None
        assert job_queue.claim_next(now=T0 + timedelta(minutes=2)).attempts == 2

    def test_three_timeouts_fail_the_job(self, job_queue):
        job_queue.enqueue_job("e1", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT, now=T0)
        now = T0
        statuses = []
        for _ in range(3):
            job = job_queue.claim_next(now=now)
            statuses.append(job_queue.handle_failure(job, RequestTimeoutError("timed out"), now=now))
            now += timedelta(hours=2)

        final = job_queue.get_latest_job("e1")
        assert statuses == [JobStatus.PENDING, JobStatus.PENDING, JobStatus.FAILED]
        assert final.status == JobStatus.FAILED
        assert final.attempts == 3
        assert final.error_message
        assert job_queue.claim_next(now=now) is None

    def test_fatal_error_fails_immediately(self, job_queue):
        job_queue.enqueue_job("e1", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT, now=T0)
        job = job_queue.claim_next(now=T0)

        status = job_queue.handle_failure(job, DimensionMismatchError(expected=4, actual=3), now=T0)

        stored = job_queue.get_job(job.id)
        assert status == JobStatus.FAILED
        assert stored.attempts == 1
        assert stored.error_code == "dimension_mismatch"
        assert stored.completed_at == T0

    def test_validation_error_is_not_retried(self, job_queue):
        job_queue.enqueue_job("e1", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT, now=T0)
        job = job_queue.claim_next(now=T0)
        assert job_queue.handle_failure(job, JobValidationError("no segments"), now=T0) == JobStatus.FAILED

    def test_only_processing_jobs_complete(self, job_queue):
        job_id = job_queue.enqueue_job("e1", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT, now=T0)
        assert not job_queue.mark_completed(job_id)
        assert job_queue.get_job(job_id).status == JobStatus.PENDING


class TestStaleSweep:
    """Recovery of jobs abandoned by a crashed worker."""

    def test_stale_job_back_to_pending(self, job_queue):
        job_queue.enqueue_job("e1", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT, now=T0)
        job = job_queue.claim_next(now=T0)
        assert job.attempts == 1

        assert job_queue.reclaim_stale(now=T0 + timedelta(minutes=20)) == 0
        assert job_queue.reclaim_stale(now=T0 + timedelta(minutes=40)) == 1

        stored = job_queue.get_job(job.id)
        assert stored.status == JobStatus.PENDING
        assert stored.attempts == 1
        assert stored.error_code == STALE_ERROR_CODE
        # the crashed worker has lost its claim
        assert not job_queue.mark_completed(job.id)

    def test_stale_job_without_attempts_left_fails(self, database, helper_config, worker_settings):
        queue = JobQueue(database, helper_config, worker_settings.model_copy(update={"max_attempts": 1}))
        queue.enqueue_job("e1", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT, now=T0)
        job = queue.claim_next(now=T0)

        assert queue.reclaim_stale(now=T0 + timedelta(hours=1)) == 1
        assert queue.get_job(job.id).status == JobStatus.FAILED

    def test_custom_timeout(self, job_queue):
        job_queue.enqueue_job("e1", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT, now=T0)
        job_queue.claim_next(now=T0)
        assert job_queue.reclaim_stale(now=T0 + timedelta(minutes=6), timeout=timedelta(minutes=5)) == 1


class TestCounts:
    """Status overview."""

    def test_count_by_status(self, job_queue):
        job_queue.enqueue_job("e1", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT, now=T0)
        job_queue.enqueue_job("e2", EntityKind.JOURNAL_TEXT, LONG_ENOUGH_TEXT, now=T0)
        job_queue.enqueue_job("e3", EntityKind.JOURNAL_TEXT, "short", now=T0)
        job_queue.claim_next(now=T0)

        assert job_queue.count_by_status() == {
            "pending": 1,
            "processing": 1,
            "completed": 0,
            "failed": 0,
            "skipped": 1,
        }

    def test_settings_validation(self):
        with pytest.raises(ValueError):
            WorkerSettings(job_timeout=1800, stale_timeout=1800)
