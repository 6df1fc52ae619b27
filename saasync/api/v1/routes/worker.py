"""
Worker Routes
HTTP entry for one bounded worker run (serverless hosts, cron pingers)

POST /worker {job_id?, max_tasks?}
Processes pending tasks until none remain, max_tasks is hit, or the
execution budget is nearly spent. Remaining tasks stay pending.
"""
import logging

from fastapi import APIRouter, Depends, Request

from saasync.core.config import Settings, get_settings
from saasync.core.dependencies import get_worker
from saasync.core.security import verify_admin_key
from saasync.core.validation import parse_json_body, read_limited_body
from saasync.models.schemas import WorkerRequest, WorkerResponse
from saasync.services.jobs.worker import ExecutionBudget, SyncWorker

logger = logging.getLogger(__name__)

router = APIRouter(tags=["worker"], dependencies=[Depends(verify_admin_key)])


@router.post("/worker", response_model=WorkerResponse)
async def run_worker(
    request: Request,
    worker: SyncWorker = Depends(get_worker),
    settings: Settings = Depends(get_settings),
):
    body = await read_limited_body(request, settings.max_request_bytes)
    worker_request = parse_json_body(body, WorkerRequest)

    budget = ExecutionBudget(settings.worker_max_runtime_seconds, settings.worker_task_reserve_seconds)
    summary = await worker.run(
        job_id=worker_request.job_id,
        max_tasks=worker_request.max_tasks,
        budget=budget,
    )
    return summary
