"""
Queue endpoints.

HTTP adapter over the QueueManager held in app.state.queue_manager.
No queue logic lives here: handlers translate requests, call the manager
and map its errors onto status codes.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..execution.finalize import finalize
from ..execution.results import FinalizeResult
from ..jobs.errors import AdmissionError, JobNotFoundError
from ..jobs.models import Job, JobSpec, JobStatus, QueueConfig

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/queue", tags=["queue"])


class AddJobRequest(JobSpec):
    """Job spec plus its queue priority."""

    priority: int = 0


class ConfigUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_parallel_jobs: Optional[int] = Field(default=None, ge=1)
    auto_start: Optional[bool] = None


class FinalizeRequest(BaseModel):
    """Manual finalization of a temp output left on disk."""

    model_config = ConfigDict(extra="forbid")

    temp_path: str
    final_path: str
    job_id: str = "manual"
    is_overwrite: bool = False
    original_path: Optional[str] = None


class OperationResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    success: bool
    message: str


class QueueStatusResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    is_processing: bool
    in_flight: int
    config: QueueConfig
    jobs: List[Job]


def _manager(request: Request):
    return request.app.state.queue_manager


@router.get("/jobs", response_model=QueueStatusResponse)
async def list_jobs_endpoint(request: Request, status: Optional[JobStatus] = None):
    """All jobs in insertion order, plus the queue state."""
    manager = _manager(request)
    return QueueStatusResponse(
        is_processing=manager.is_processing,
        in_flight=manager.in_flight_count,
        config=manager.get_config(),
        jobs=manager.list_jobs(status),
    )


@router.post("/jobs", response_model=Job, status_code=201)
async def add_job_endpoint(body: AddJobRequest, request: Request):
    """
    Enqueue a job.

    Raises:
        400: Empty input or output path
    """
    spec = JobSpec(**body.model_dump(exclude={"priority"}))
    try:
        return _manager(request).add_job(spec, priority=body.priority)
    except AdmissionError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/jobs/{job_id}", response_model=Job)
async def get_job_endpoint(job_id: str, request: Request):
    try:
        return _manager(request).get_job_or_raise(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/jobs/{job_id}", response_model=OperationResponse)
def remove_job_endpoint(job_id: str, request: Request):
    """
    Remove a job. A running job has its encoder process terminated.

    Raises:
        404: Unknown job
    """
    if not _manager(request).remove_job(job_id):
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return OperationResponse(success=True, message=f"Job {job_id} removed")


@router.get("/jobs/{job_id}/log", response_class=PlainTextResponse)
async def get_job_log_endpoint(job_id: str, request: Request):
    """Raw per-job log text."""
    log_text = _manager(request).get_job_log(job_id)
    if log_text is None:
        raise HTTPException(status_code=404, detail=f"No log for job: {job_id}")
    return PlainTextResponse(log_text)


@router.post("/start", response_model=OperationResponse)
async def start_queue_endpoint(request: Request):
    _manager(request).start_processing()
    return OperationResponse(success=True, message="Queue started")


@router.post("/pause", response_model=OperationResponse)
async def pause_queue_endpoint(request: Request):
    _manager(request).pause_processing()
    return OperationResponse(success=True, message="Queue paused")


@router.post("/clear", response_model=OperationResponse)
async def clear_queue_endpoint(request: Request):
    removed = _manager(request).clear_queue()
    return OperationResponse(success=True, message=f"Removed {removed} queued job(s)")


@router.get("/config", response_model=QueueConfig)
async def get_config_endpoint(request: Request):
    return _manager(request).get_config()


@router.put("/config", response_model=QueueConfig)
async def update_config_endpoint(body: ConfigUpdateRequest, request: Request):
    try:
        return _manager(request).update_config(
            max_parallel_jobs=body.max_parallel_jobs,
            auto_start=body.auto_start,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/finalize", response_model=FinalizeResult)
def finalize_endpoint(body: FinalizeRequest, request: Request):
    """
    Commit a temp output to its final path outside the normal run.

    Failures are reported in the body (success=false), not as HTTP errors.
    """
    manager = _manager(request)
    result = finalize(
        body.temp_path,
        body.final_path,
        body.job_id,
        is_overwrite=body.is_overwrite,
        original_path=body.original_path,
        retry=manager.driver.retry,
    )
    logger.info(f"[Queue] Manual finalize for {body.job_id}: success={result.success}")
    return result
