"""Processing of a single claimed embedding job.

chunk → embed → store chunks → tag themes → completed. Every error is caught
here, classified, and written back to the job; nothing escapes to the loop.
"""

import asyncio

from services.chunking.TextChunker import TextChunker
from services.theme_tagging.ThemeTagger import ThemeTagger
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.vector.VectorStoreInterface import VectorStoreInterface, make_chunk_point_id
from shared.db.JobQueue import JobQueue
from shared.exceptions.pipeline_errors import EmptyTextError, RequestTimeoutError, classify_error
from shared.helper.HelperConfig import HelperConfig
from shared.helper.clock import utc_now
from shared.models.chunk import Chunk
from shared.models.config import WorkerSettings
from shared.models.job import Job, JobStatus


class EmbeddingWorker:
    def __init__(
        self,
        helper_config: HelperConfig,
        job_queue: JobQueue,
        chunker: TextChunker,
        embed_client: EmbedClientInterface,
        vector_store: VectorStoreInterface,
        tagger: ThemeTagger,
        settings: WorkerSettings | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._job_queue = job_queue
        self._chunker = chunker
        self._embed_client = embed_client
        self._vector_store = vector_store
        self._tagger = tagger
        self.settings = settings or WorkerSettings.from_config(helper_config)

    ##########################################
    ################# CORE ###################
    ##########################################

    async def process_job(self, job: Job) -> JobStatus:
        """Run a claimed job to completion or record its failure.

        Args:
            job (Job): A job in status processing, claimed by the caller.

        Returns:
            JobStatus: completed, pending (retry scheduled) or failed.
        """
        try:
            await asyncio.wait_for(self._run(job), timeout=self.settings.job_timeout)
        except asyncio.TimeoutError:
            error = RequestTimeoutError(f"Job exceeded the timeout of {self.settings.job_timeout:.0f}s.")
            return await asyncio.to_thread(self._job_queue.handle_failure, job, error)
        except Exception as exc:
            error = classify_error(exc)
            if not error.retryable:
                self.logging.exception("Job %s for '%s' raised %s", job.id, job.entity_id, type(exc).__name__)
            return await asyncio.to_thread(self._job_queue.handle_failure, job, error)

        await asyncio.to_thread(self._job_queue.mark_completed, job.id)
        self.logging.info("Job %s for '%s' completed.", job.id, job.entity_id, job_event="completed")
        return JobStatus.COMPLETED

    async def _run(self, job: Job) -> None:
        segments = self._chunker.chunk(job.payload.text)
        if not segments:
            raise EmptyTextError(f"Text of '{job.entity_id}' produced no segments.")

        vectors = await self._embed_client.do_embed([segment.text for segment in segments])

        created_at = utc_now()
        chunks = [
            Chunk(
                id=make_chunk_point_id(job.entity_id, segment.chunk_index),
                entity_id=job.entity_id,
                entity_kind=job.entity_kind.value,
                chunk_index=segment.chunk_index,
                text=segment.text,
                token_count=segment.token_count,
                start_char=segment.start_char,
                end_char=segment.end_char,
                embedding=vector,
                created_at=created_at,
            )
            for segment, vector in zip(segments, vectors)
        ]
        await self._vector_store.do_upsert_chunks(job.entity_id, chunks)

        links = await self._tagger.tag_entity(job.entity_id)
        self.logging.debug(
            "Job %s: %d chunks stored, %d theme links for '%s'.", job.id, len(chunks), len(links), job.entity_id,
        )
