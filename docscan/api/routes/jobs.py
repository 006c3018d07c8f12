from fastapi import APIRouter, Depends, HTTPException, Query, status

from docscan.api.deps import get_services, get_user_id
from docscan.schemas.job import CancelJobResponse, JobListResponse, JobStatus, JobWithDocument
from docscan.worker.startup import Services

router = APIRouter(prefix="/jobs", tags=["Jobs"])


def _get_owned_job(job_id: str, user_id: str, services: Services) -> JobWithDocument:
    job = services.scheduler.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    if job.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return job


@router.get("", response_model=JobListResponse)
async def list_jobs(
    status_filter: JobStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    """The caller's jobs, most recent first."""
    return JobListResponse(jobs=services.scheduler.list_user_jobs(user_id, status=status_filter, limit=limit))


@router.get("/{job_id}", response_model=JobWithDocument)
async def get_job(
    job_id: str,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    """
    Get job status, progress and result.

    Poll this endpoint or subscribe to ``job:update`` notifications.
    """
    return _get_owned_job(job_id, user_id, services)


@router.post("/{job_id}/cancel", response_model=CancelJobResponse)
async def cancel_job(
    job_id: str,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    """
    Cancel a queued or running job.

    A running job stops before its next page. Finished jobs are returned
    unchanged.
    """
    existing = _get_owned_job(job_id, user_id, services)
    if existing.is_terminal:
        return CancelJobResponse(message=f"Job already {existing.status.value}", job=existing)

    job = await services.scheduler.cancel(job_id)
    return CancelJobResponse(message="Job cancelled successfully", job=job)
