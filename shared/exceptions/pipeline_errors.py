"""Error taxonomy of the embedding pipeline.

Every error raised by a pipeline component derives from PipelineError and
carries a stable ``code`` (stored on the job as ``error_code``) and a
``retryable`` flag. The worker translates errors into job status updates via
classify_error(); nothing is retried unless it is a TransientError.
"""

import asyncio

import httpx


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    code: str = "error"
    retryable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


##########################################
############## VALIDATION ################
##########################################

class JobValidationError(PipelineError):
    """Empty / too-short text or a malformed entity reference. Never retried."""

    code = "validation"


class EmptyTextError(JobValidationError):
    """The chunker produced no segments for the text of a claimed job."""


class ConcurrencyViolationError(PipelineError):
    """A pending or processing job already exists for the entity."""

    code = "concurrency"

    def __init__(self, entity_id: str, active_job_id: str):
        super().__init__(f"Entity '{entity_id}' already has an active job ({active_job_id}).")
        self.entity_id = entity_id
        self.active_job_id = active_job_id


##########################################
############### TRANSIENT ################
##########################################

class TransientError(PipelineError):
    """Will resolve on its own; retried with backoff up to max_attempts."""

    code = "transient"
    retryable = True


class RequestTimeoutError(TransientError):
    code = "timeout"


class RateLimitedError(TransientError):
    code = "rate_limited"


class ServiceUnavailableError(TransientError):
    code = "unavailable"


class StorageUnavailableError(TransientError):
    code = "storage_unavailable"


##########################################
################# FATAL ##################
##########################################

class FatalError(PipelineError):
    """Needs operator intervention; the job fails immediately."""

    code = "fatal"


class DimensionMismatchError(FatalError):
    code = "dimension_mismatch"

    def __init__(self, expected: int, actual: int, context: str = "embedding"):
        super().__init__(f"Vector dimension mismatch in {context}: expected {expected}, got {actual}.")
        self.expected = expected
        self.actual = actual


class CatalogUnavailableError(FatalError):
    code = "catalog_unavailable"


class RequestRejectedError(FatalError):
    """A backend refused the request itself (4xx other than 429); resending it cannot help."""

    code = "rejected"

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


def classify_error(exc: BaseException) -> PipelineError:
    """Map any exception raised while processing a job onto the taxonomy.

    Args:
        exc (BaseException): The raised exception.

    Returns:
        PipelineError: The exception itself if it already is one, otherwise a
            TransientError wrapping it. Unknown failures are retried.
    """
    if isinstance(exc, PipelineError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return RequestTimeoutError(f"Timed out: {exc}" if str(exc) else "Timed out")
    if isinstance(exc, httpx.TransportError):
        return ServiceUnavailableError(f"Transport error: {exc}")
    return TransientError(f"{type(exc).__name__}: {exc}")
