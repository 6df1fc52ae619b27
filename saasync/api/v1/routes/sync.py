"""
Sync Routes
Manual syncs (immediate or job-based) and job status

All endpoints require the admin bearer key.
"""
import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from saasync.core.config import Settings, get_settings
from saasync.core.dependencies import get_job_store, get_orchestrator
from saasync.core.security import verify_admin_key
from saasync.core.validation import parse_json_body, read_limited_body
from saasync.middleware.rate_limit import limiter, sync_rate_limit
from saasync.models.schemas import SyncJobCreatedResponse, SyncJobStatusResponse, SyncRequest
from saasync.services.connectors.types import SyncOptions
from saasync.services.jobs.tasks import dispatch_worker
from saasync.services.store.jobs import JobStore
from saasync.services.sync.orchestrator import SyncOrchestrator, SyncRequestError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"], dependencies=[Depends(verify_admin_key)])


def _raise_for(error: SyncRequestError):
    if error.status_code >= 500:
        raise HTTPException(status_code=error.status_code, detail="Internal server error")
    if error.errors:
        raise HTTPException(status_code=error.status_code, detail={"error": error.message, "errors": error.errors})
    raise HTTPException(status_code=error.status_code, detail=error.message)


def _job_status_or_404(job_store: JobStore, job_id: str, include_tasks: bool) -> Dict[str, Any]:
    # Non-UUID ids can't exist; answering 404 avoids a Postgres cast error
    try:
        uuid.UUID(job_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Job not found")

    status = job_store.get_job_status(job_id, include_tasks=include_tasks)
    if status is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return status


# ============================================================================
# TRIGGER
# ============================================================================

@router.post("")
@limiter.limit(sync_rate_limit)
async def trigger_sync(
    request: Request,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
):
    """
    Start a sync for one app instance.

    Body: {app_key, mode?: full|incremental, resource_types?, immediate?, dry_run?, limit?}

    immediate=true runs every resource now and returns the counts.
    Otherwise one job with one task per resource is created, a worker run is
    dispatched, and the job id is returned right away.
    """
    body = await read_limited_body(request, settings.max_request_bytes)
    sync_request = parse_json_body(body, SyncRequest)

    try:
        if sync_request.immediate:
            options = SyncOptions(limit=sync_request.limit, dry_run=sync_request.dry_run)
            return await orchestrator.run_immediate(
                sync_request.app_key,
                sync_request.mode,
                sync_request.resource_types,
                options,
            )

        created = orchestrator.create_job(sync_request.app_key, sync_request.mode, sync_request.resource_types)
    except SyncRequestError as e:
        logger.warning(f"⚠️  Sync request for {sync_request.app_key} rejected: {e.message}")
        _raise_for(e)

    dispatched = dispatch_worker(created["job_id"]) if settings.dispatch_workers else False
    logger.info(
        f"📋 Sync job {created['job_id']} created for {sync_request.app_key}: "
        f"{created['total_tasks']} task(s), worker dispatched={dispatched}"
    )
    return SyncJobCreatedResponse(**created, worker_dispatched=dispatched)


# ============================================================================
# JOB STATUS
# ============================================================================

@router.get("/jobs", response_model=SyncJobStatusResponse, response_model_exclude_none=True)
async def get_job_by_query(
    job_id: Optional[str] = Query(default=None),
    include_tasks: bool = Query(default=False),
    job_store: JobStore = Depends(get_job_store),
):
    if not job_id:
        raise HTTPException(status_code=400, detail="job_id is required")
    return _job_status_or_404(job_store, job_id, include_tasks)


@router.get("/jobs/{job_id}", response_model=SyncJobStatusResponse, response_model_exclude_none=True)
async def get_job(
    job_id: str,
    include_tasks: bool = Query(default=False),
    job_store: JobStore = Depends(get_job_store),
):
    """Job metadata, progress_percentage and task statistics."""
    return _job_status_or_404(job_store, job_id, include_tasks)


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(job_id: str, job_store: JobStore = Depends(get_job_store)):
    """Cancel a job. Running tasks finish; nothing new is claimed for it."""
    _job_status_or_404(job_store, job_id, include_tasks=False)
    cancelled = job_store.cancel_job(job_id)
    if not cancelled:
        raise HTTPException(status_code=409, detail="Job already finished")
    return {"success": True, "job_id": job_id, "status": "cancelled"}


@router.post("/jobs/{job_id}/retry")
async def retry_job(
    job_id: str,
    job_store: JobStore = Depends(get_job_store),
    settings: Settings = Depends(get_settings),
):
    """Re-queue the job's failed tasks."""
    _job_status_or_404(job_store, job_id, include_tasks=False)
    requeued = job_store.retry_failed_tasks(job_id)
    dispatched = dispatch_worker(job_id) if requeued and settings.dispatch_workers else False
    return {"success": True, "job_id": job_id, "requeued_tasks": requeued, "worker_dispatched": dispatched}
