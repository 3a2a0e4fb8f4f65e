"""Job router: producer intake and job status."""

from fastapi import APIRouter, Depends, HTTPException, Request

from server.models.requests import EnqueueJobRequest
from server.models.responses import EnqueueJobResponse, JobCountsResponse
from shared.dependencies.auth import verify_api_key
from shared.exceptions.pipeline_errors import ConcurrencyViolationError, JobValidationError
from shared.models.job import JobStatusView

job_router = APIRouter()


@job_router.post(
    "/jobs",
    dependencies=[Depends(verify_api_key)],
    tags=["Jobs"],
    status_code=202,
    response_model=EnqueueJobResponse,
)
async def enqueue_job(request: Request, body: EnqueueJobRequest) -> EnqueueJobResponse:
    """Enqueue an entity for chunking, embedding and theme tagging.

    Texts failing the pre-check are accepted but recorded as skipped.

    Raises:
        HTTPException: 422 on an invalid entity reference, 409 if the entity already has an active job.
    """
    query_service = request.app.state.query_service
    try:
        job_id = await query_service.enqueue_job(body.entity_id, body.entity_kind, body.text, body.priority, body.metadata)
    except JobValidationError as e:
        raise HTTPException(status_code=422, detail=e.message)
    except ConcurrencyViolationError as e:
        raise HTTPException(status_code=409, detail=e.message)

    status = await query_service.get_job_status(body.entity_id)
    return EnqueueJobResponse(job_id=job_id, entity_id=body.entity_id, status=status.status)


@job_router.get(
    "/jobs",
    dependencies=[Depends(verify_api_key)],
    tags=["Jobs"],
    response_model=JobCountsResponse,
)
async def get_job_counts(request: Request) -> JobCountsResponse:
    """Number of jobs per status."""
    return JobCountsResponse(counts=await request.app.state.query_service.get_job_counts())


@job_router.get(
    "/jobs/{entity_id}",
    dependencies=[Depends(verify_api_key)],
    tags=["Jobs"],
    response_model=JobStatusView,
)
async def get_job_status(request: Request, entity_id: str) -> JobStatusView:
    """Status of the latest job of an entity.

    Raises:
        HTTPException: 404 if the entity was never enqueued.
    """
    status = await request.app.state.query_service.get_job_status(entity_id)
    if status is None:
        raise HTTPException(status_code=404, detail=f"No job for entity '{entity_id}'.")
    return status
