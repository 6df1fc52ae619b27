"""
Sync Worker
Polls the task queue and runs one resource sync at a time

LOOP:
1. Stop if the execution budget is nearly spent or max_tasks is reached
2. Claim the next pending task (conditional update, losers move on)
3. Run the connector's full/incremental sync for the task's resource
4. Record status, entity_count and error on the task
5. Recompute the job's status from its tasks

The budget is cooperative: a worker never interrupts a running task, it only
stops claiming new ones. Chunked connectors are the exception: between chunks
the worker checks the budget and hands the task back with its cursor.

Task failures are recorded on the task and never crash the loop.
"""
import asyncio
import logging
import time
from contextlib import suppress
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from saasync.core.app_config import AppConfig
from saasync.services.connectors.base import ChunkedSyncCapable, Connector
from saasync.services.connectors.errors import ConfigurationError
from saasync.services.connectors.types import SyncOptions, SyncProgress
from saasync.services.store.base import StoreError, parse_timestamp, utcnow
from saasync.services.store.jobs import (
    JOB_CANCELLED,
    JOB_COMPLETED,
    JOB_FAILED,
    TASK_COMPLETED,
    TASK_FAILED,
    JobStore,
)
from saasync.services.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

SHUTDOWN_NO_TASKS = "no_tasks"
SHUTDOWN_TIMEOUT = "timeout"
SHUTDOWN_MAX_TASKS = "max_tasks"
SHUTDOWN_STORE_ERROR = "store_error"


class ExecutionBudget:
    """
    Soft wall-clock budget for one worker invocation.

    max_runtime_seconds=None means unbounded (long-running daemon).
    exhausted() turns true once less than reserve_seconds remain.
    """

    def __init__(
        self,
        max_runtime_seconds: Optional[float],
        reserve_seconds: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_runtime_seconds = max_runtime_seconds
        self.reserve_seconds = reserve_seconds
        self._clock = clock
        self._started = clock()

    def elapsed(self) -> float:
        return self._clock() - self._started

    def remaining(self) -> Optional[float]:
        if self.max_runtime_seconds is None:
            return None
        return self.max_runtime_seconds - self.elapsed()

    def exhausted(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= self.reserve_seconds


class TaskOutcome(BaseModel):
    status: str
    entity_count: int = 0
    error_message: Optional[str] = None
    released: bool = False


class WorkerRunSummary(BaseModel):
    success: bool = True
    tasks_processed: int = 0
    tasks_completed: int = 0
    tasks_failed: int = 0
    tasks_released: int = 0
    jobs_completed: List[str] = Field(default_factory=list)
    duration_ms: int = 0
    shutdown_reason: str = SHUTDOWN_NO_TASKS


class SyncWorker:

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        job_store: JobStore,
        heartbeat_interval_seconds: float = 5.0,
    ):
        self.orchestrator = orchestrator
        self.job_store = job_store
        self.heartbeat_interval_seconds = heartbeat_interval_seconds

    # ============================================================================
    # LOOP
    # ============================================================================

    async def run(
        self,
        job_id: Optional[str] = None,
        max_tasks: Optional[int] = None,
        budget: Optional[ExecutionBudget] = None,
    ) -> WorkerRunSummary:
        budget = budget or ExecutionBudget(None)
        summary = WorkerRunSummary()
        scope = f"job {job_id}" if job_id else "all jobs"
        logger.info(f"👷 Worker starting ({scope}, max_tasks={max_tasks})")

        while True:
            if budget.exhausted():
                summary.shutdown_reason = SHUTDOWN_TIMEOUT
                logger.info(f"⏱️  Budget nearly exhausted after {budget.elapsed():.1f}s, stopping")
                break

            if max_tasks is not None and summary.tasks_processed >= max_tasks:
                summary.shutdown_reason = SHUTDOWN_MAX_TASKS
                break

            try:
                task = self.job_store.claim_task(job_id)
                if task is None:
                    summary.shutdown_reason = SHUTDOWN_NO_TASKS
                    break

                outcome = await self.process_task(task, budget)
                summary.tasks_processed += 1
                if outcome.released:
                    summary.tasks_released += 1
                elif outcome.status == TASK_COMPLETED:
                    summary.tasks_completed += 1
                else:
                    summary.tasks_failed += 1

                job = self.job_store.refresh_job_status(task["job_id"])
            except StoreError as e:
                # Queue unreachable: stop claiming, unfinished tasks are left to the sweeper
                logger.error(f"❌ Task queue unavailable, worker stopping: {e}", exc_info=True)
                summary.success = False
                summary.shutdown_reason = SHUTDOWN_STORE_ERROR
                break

            if job and job.get("status") in (JOB_COMPLETED, JOB_FAILED) and job["id"] not in summary.jobs_completed:
                summary.jobs_completed.append(job["id"])
                logger.info(f"🏁 Job {job['id']} finished: {job['status']}")

        summary.duration_ms = int(budget.elapsed() * 1000)
        logger.info(
            f"👷 Worker stopped ({summary.shutdown_reason}): {summary.tasks_processed} task(s) processed, "
            f"{summary.tasks_failed} failed, {len(summary.jobs_completed)} job(s) finished in {summary.duration_ms}ms"
        )
        return summary

    # ============================================================================
    # TASK
    # ============================================================================

    def _fail(self, task: Dict[str, Any], message: str, entity_count: int = 0) -> TaskOutcome:
        logger.warning(f"⚠️  Task {task['id']} ({task['resource_type']}) failed: {message}")
        self.job_store.complete_task(task["id"], TASK_FAILED, entity_count, message)
        return TaskOutcome(status=TASK_FAILED, entity_count=entity_count, error_message=message)

    async def process_task(self, task: Dict[str, Any], budget: ExecutionBudget) -> TaskOutcome:
        resource_type = task["resource_type"]

        job = self.job_store.get_job(task["job_id"])
        if job is None:
            return self._fail(task, "Job not found")
        if job.get("status") == JOB_CANCELLED:
            return self._fail(task, "Job cancelled")

        app_config = self.orchestrator.sync_config.get_app(job["app_key"])
        if app_config is None:
            return self._fail(task, f"App not found: {job['app_key']}")

        connector = self.orchestrator.registry.get(app_config.connector)
        if connector is None:
            return self._fail(task, f"Connector not found: {app_config.connector}")

        resource = connector.get_resource(resource_type)
        if resource is None:
            return self._fail(task, f"Unsupported resource type: {resource_type}")
        if resource.synced_with_parent:
            return self._fail(
                task,
                f"Resource {resource_type} is synced with its parent {resource.synced_with_parent}",
            )

        try:
            self.orchestrator.registry.validate_app_config(app_config)
        except ConfigurationError as e:
            return self._fail(task, e.message)

        progress = {"fetched": task.get("entity_count") or 0}

        def on_progress(update: SyncProgress) -> None:
            progress["fetched"] = update.fetched

        heartbeat = asyncio.create_task(self._heartbeat(task["id"], progress))
        try:
            if isinstance(connector, ChunkedSyncCapable):
                return await self._run_chunked(task, job, app_config, connector, budget, on_progress)

            outcome = await self.orchestrator.sync_resource(
                app_config,
                connector,
                resource_type,
                job["mode"],
                SyncOptions(on_progress=on_progress),
                metadata={"job_id": job["id"]},
            )
            result = outcome.result
            if not result.success:
                return self._fail(task, "; ".join(result.error_messages) or "Sync failed", result.entity_count)

            self.job_store.complete_task(task["id"], TASK_COMPLETED, result.entity_count)
            logger.info(
                f"✅ Task {task['id']} ({resource_type}, {outcome.mode}): "
                f"{result.created} created, {result.updated} updated, {result.deleted} deleted"
            )
            return TaskOutcome(status=TASK_COMPLETED, entity_count=result.entity_count)
        except Exception as e:
            logger.error(f"❌ Task {task['id']} ({resource_type}) crashed: {e}", exc_info=True)
            return self._fail(task, str(e) or type(e).__name__)
        finally:
            heartbeat.cancel()
            with suppress(asyncio.CancelledError):
                await heartbeat

    async def _run_chunked(
        self,
        task: Dict[str, Any],
        job: Dict[str, Any],
        app_config: AppConfig,
        connector: Connector,
        budget: ExecutionBudget,
        on_progress: Callable[[SyncProgress], None],
    ) -> TaskOutcome:
        resource_type = task["resource_type"]
        mode, since = self.orchestrator.resolve_mode(connector, app_config, resource_type, job["mode"])
        cursor = task.get("cursor")
        entity_count = task.get("entity_count") or 0
        options = SyncOptions(resource_types=[resource_type], on_progress=on_progress)

        while True:
            chunk = await connector.sync_chunk(app_config, resource_type, cursor, options, since=since)
            entity_count += chunk.result.entity_count
            if not chunk.result.success:
                return self._fail(task, "; ".join(chunk.result.error_messages) or "Chunk failed", entity_count)

            cursor = chunk.next_cursor
            if not chunk.has_more:
                break

            self.job_store.heartbeat(task["id"], entity_count=entity_count, cursor=cursor)
            if budget.exhausted():
                self.job_store.release_task(task["id"], cursor, entity_count)
                logger.info(f"⏸️  Task {task['id']} ({resource_type}) released at cursor {cursor}")
                return TaskOutcome(status="pending", entity_count=entity_count, released=True)

        # Chunks may span invocations: the job's creation time bounds every fetch
        synced_at = parse_timestamp(job.get("created_at")) or utcnow()
        self.orchestrator.record_sync_state(
            app_config,
            connector.collection_key_for(resource_type),
            synced_at,
            {"mode": mode, "job_id": job["id"]},
        )
        self.job_store.complete_task(task["id"], TASK_COMPLETED, entity_count)
        return TaskOutcome(status=TASK_COMPLETED, entity_count=entity_count)

    async def _heartbeat(self, task_id: str, progress: Dict[str, int]) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval_seconds)
            try:
                self.job_store.heartbeat(task_id, entity_count=progress["fetched"])
            except StoreError as e:
                logger.warning(f"⚠️  Heartbeat for task {task_id} failed: {e}")
