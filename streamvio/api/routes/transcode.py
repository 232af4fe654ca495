"""
Transcode job routes for StreamVio
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from ...exceptions import JobStoreError, JobValidationError
from ...jobs import get_job_scheduler
from ...models import (
    CancelResponse,
    JobListResponse,
    JobStatus,
    JobStatusResponse,
    TranscodeRequest,
)

router = APIRouter(prefix="/api/transcode")


async def _submit(submit, request: TranscodeRequest) -> JobStatusResponse:
    try:
        job = await submit(request)
    except JobValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except JobStoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return job.to_status_response()


@router.post("/start", response_model=JobStatusResponse)
async def start_transcode(request: TranscodeRequest):
    """Start a single-file transcoding job."""
    return await _submit(get_job_scheduler().submit, request)


@router.post("/hls", response_model=JobStatusResponse)
async def start_hls(request: TranscodeRequest):
    """Start an adaptive HLS job with a ladder sized to the source."""
    return await _submit(get_job_scheduler().submit_hls, request)


@router.post("/thumbnail", response_model=JobStatusResponse)
async def start_thumbnail(request: TranscodeRequest):
    """Grab a thumbnail frame."""
    return await _submit(get_job_scheduler().submit_thumbnail, request)


@router.post("/storyboard", response_model=JobStatusResponse)
async def start_storyboard(request: TranscodeRequest):
    """Grab options.count evenly spaced preview frames."""
    return await _submit(get_job_scheduler().submit_storyboard, request)


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs(
    status: Optional[JobStatus] = None,
    media_id: Optional[str] = None,
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """List jobs, most recently started first."""
    scheduler = get_job_scheduler()
    try:
        jobs = await scheduler.list_jobs(status=status, media_id=media_id, limit=limit, offset=offset)
    except JobStoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return JobListResponse(jobs=[j.to_status_response() for j in jobs], limit=limit, offset=offset)


@router.get("/{job_id}/status", response_model=JobStatusResponse)
async def get_job_status(job_id: str):
    """Get the status of a transcoding job."""
    try:
        job = await get_job_scheduler().get_job(job_id)
    except JobStoreError as e:
        raise HTTPException(status_code=503, detail=str(e))

    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    return job.to_status_response()


@router.post("/{job_id}/cancel", response_model=CancelResponse)
async def cancel_job(job_id: str, terminate: Optional[bool] = None):
    """Cancel a transcoding job."""
    try:
        result = await get_job_scheduler().cancel(job_id, terminate=terminate)
    except JobStoreError as e:
        raise HTTPException(status_code=503, detail=str(e))

    if not result.success and result.job is None:
        raise HTTPException(status_code=404, detail=result.message)
    if not result.success:
        raise HTTPException(status_code=400, detail=result.message)

    return CancelResponse(
        job_id=job_id,
        success=True,
        message=result.message,
        status=result.job.status if result.job else None,
    )
