"""
Dramatiq Background Tasks
Drives sync jobs outside the request cycle

ACTORS:
- run_sync_worker: one bounded worker run; re-enqueues itself while the
  job still has pending tasks and the run stopped early (timeout/max_tasks)
- sweep_sync_jobs: periodic maintenance (stale task reclaim, old job cleanup)
"""
import asyncio
import logging
from typing import Any, Dict, Optional, Tuple

import dramatiq

from saasync.core.app_config import load_sync_config
from saasync.core.config import Settings, get_settings
from saasync.core.dependencies import build_orchestrator, build_worker, create_supabase_client
from saasync.services.connectors.registry import build_connector_registry
from saasync.services.jobs.broker import broker  # noqa: F401 (registers the broker before actors)
from saasync.services.jobs.worker import SHUTDOWN_MAX_TASKS, SHUTDOWN_TIMEOUT, ExecutionBudget, SyncWorker
from saasync.services.store import EntityStore
from saasync.services.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


def get_worker_dependencies() -> Tuple[Settings, SyncOrchestrator, SyncWorker]:
    """
    Create fresh instances of dependencies for background tasks.
    Dramatiq workers run in separate processes, so we can't share global clients.
    """
    settings = get_settings()
    client = create_supabase_client(settings)
    sync_config = load_sync_config(settings.apps_config_path)
    registry = build_connector_registry(EntityStore(client, settings.db_schema))
    orchestrator = build_orchestrator(client, settings, sync_config, registry)
    return settings, orchestrator, build_worker(orchestrator, settings)


@dramatiq.actor(max_retries=3)
def run_sync_worker(job_id: Optional[str] = None, max_tasks: Optional[int] = None) -> Dict[str, Any]:
    """
    Background worker run.

    Args:
        job_id: Restrict claiming to one job (None = any job)
        max_tasks: Stop after this many tasks
    """
    settings, orchestrator, worker = get_worker_dependencies()
    budget = ExecutionBudget(settings.worker_max_runtime_seconds, settings.worker_task_reserve_seconds)

    logger.info(f"🚀 Worker run for {job_id or 'all jobs'}")
    summary = asyncio.run(worker.run(job_id=job_id, max_tasks=max_tasks, budget=budget))

    # After a store failure the periodic sweep restarts the queue instead
    if summary.shutdown_reason in (SHUTDOWN_TIMEOUT, SHUTDOWN_MAX_TASKS):
        pending = orchestrator.job_store.count_pending_tasks(job_id)
        if pending:
            logger.info(f"🔗 {pending} task(s) still pending, chaining another worker run")
            run_sync_worker.send(job_id, max_tasks)

    return summary.model_dump()


@dramatiq.actor(max_retries=0)
def sweep_sync_jobs() -> Dict[str, int]:
    """Reclaim tasks whose worker died, drop expired jobs, and restart idle queues."""
    settings, orchestrator, _ = get_worker_dependencies()
    job_store = orchestrator.job_store

    reclaimed = job_store.reclaim_stale_tasks(settings.task_heartbeat_timeout_seconds)
    deleted = job_store.cleanup_old_jobs(settings.job_retention_days)
    pending = job_store.count_pending_tasks()
    if pending:
        run_sync_worker.send()

    logger.info(f"🧹 Sweep: {len(reclaimed)} reclaimed, {deleted} job(s) deleted, {pending} pending")
    return {"reclaimed": len(reclaimed), "deleted": deleted, "pending": pending}


def dispatch_worker(job_id: Optional[str] = None) -> bool:
    """Enqueue a worker run. Returns False when the broker refuses the message."""
    try:
        run_sync_worker.send(job_id)
        return True
    except Exception as e:
        logger.error(f"❌ Failed to dispatch worker for job {job_id}: {e}")
        return False
