"""
Job/Task Queue
Durable breakdown of a sync request into one task per resource type

STATE MACHINES:
- Job:  pending -> processing -> completed | failed | cancelled
- Task: pending -> processing -> completed | failed

CONCURRENCY:
- Claiming is a conditional UPDATE ... WHERE id = ? AND status = 'pending'.
  Exactly one concurrent claimer sees the row come back; the others move on
  to the next candidate. No locks, no leases beyond the heartbeat column.
- Job status is always recomputed from the tasks (derive_job_status), so
  concurrent refreshes converge on the same answer.
"""
import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

from saasync.services.store.base import StoreError, SupabaseStore, to_iso, utcnow

logger = logging.getLogger(__name__)

JOBS_TABLE = "sync_jobs"
TASKS_TABLE = "sync_job_tasks"

JOB_PENDING = "pending"
JOB_PROCESSING = "processing"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"
JOB_CANCELLED = "cancelled"

TASK_PENDING = "pending"
TASK_PROCESSING = "processing"
TASK_COMPLETED = "completed"
TASK_FAILED = "failed"

TERMINAL_TASK_STATUSES = {TASK_COMPLETED, TASK_FAILED}
TERMINAL_JOB_STATUSES = {JOB_COMPLETED, JOB_FAILED, JOB_CANCELLED}

CLAIM_CANDIDATES = 10


def derive_job_status(task_statuses: Iterable[str], current_status: Optional[str] = None) -> str:
    """
    Job status as a pure function of its tasks.

    cancelled is only ever set externally and is sticky.
    """
    if current_status == JOB_CANCELLED:
        return JOB_CANCELLED

    statuses = list(task_statuses)
    if not statuses:
        return current_status or JOB_PENDING

    if all(status in TERMINAL_TASK_STATUSES for status in statuses):
        return JOB_FAILED if TASK_FAILED in statuses else JOB_COMPLETED

    # A started job never drops back to pending (released chunked tasks)
    if current_status == JOB_PROCESSING or any(status != TASK_PENDING for status in statuses):
        return JOB_PROCESSING

    return JOB_PENDING


def progress_percentage(completed_tasks: int, total_tasks: int) -> int:
    if total_tasks <= 0:
        return 0
    return round(completed_tasks / total_tasks * 100)


class JobStore(SupabaseStore):
    """sync_jobs + sync_job_tasks."""

    # ============================================================================
    # JOBS
    # ============================================================================

    def create_job(self, app_key: str, mode: str, resource_types: List[str]) -> Dict[str, Any]:
        """Create a pending job with one pending task per resource type."""
        if not resource_types:
            raise ValueError("A sync job needs at least one resource type")

        job_result = self._execute(
            self._table(JOBS_TABLE).insert({
                "app_key": app_key,
                "mode": mode,
                "resource_types": list(resource_types),
                "status": JOB_PENDING,
                "total_tasks": 0,
                "completed_tasks": 0,
                "failed_tasks": 0,
                "processed_entities": 0,
            }),
            f"Create sync job for {app_key}",
        )
        job = job_result.data[0]

        try:
            self._insert_tasks(job["id"], resource_types)
        except StoreError:
            # No job without its tasks
            self._execute(self._table(JOBS_TABLE).delete().eq("id", job["id"]), f"Roll back job {job['id']}")
            raise

        updated = self._execute(
            self._table(JOBS_TABLE).update({"total_tasks": len(resource_types)}).eq("id", job["id"]),
            f"Set total_tasks on job {job['id']}",
        )
        job = updated.data[0] if updated.data else {**job, "total_tasks": len(resource_types)}
        logger.info(f"✅ Created sync job {job['id']} ({mode}) for {app_key}: {len(resource_types)} task(s)")
        return job

    def _insert_tasks(self, job_id: str, resource_types: Iterable[str]) -> List[Dict[str, Any]]:
        rows = [
            {
                "job_id": job_id,
                "resource_type": resource_type,
                "status": TASK_PENDING,
                "entity_count": 0,
            }
            for resource_type in resource_types
        ]
        result = self._execute(self._table(TASKS_TABLE).insert(rows), f"Create tasks for job {job_id}")
        return result.data or []

    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        result = self._execute(
            self._table(JOBS_TABLE).select("*").eq("id", job_id).limit(1),
            f"Get job {job_id}",
        )
        return result.data[0] if result.data else None

    def list_tasks(self, job_id: str) -> List[Dict[str, Any]]:
        result = self._execute(
            self._table(TASKS_TABLE).select("*").eq("job_id", job_id).order("created_at"),
            f"List tasks for job {job_id}",
        )
        return result.data or []

    def cancel_job(self, job_id: str) -> bool:
        result = self._execute(
            self._table(JOBS_TABLE)
            .update({"status": JOB_CANCELLED, "completed_at": to_iso(utcnow())})
            .eq("id", job_id)
            .in_("status", [JOB_PENDING, JOB_PROCESSING]),
            f"Cancel job {job_id}",
        )
        cancelled = bool(result.data)
        if cancelled:
            logger.info(f"🛑 Job {job_id} cancelled")
        return cancelled

    def refresh_job_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Recompute counters and status from the job's tasks."""
        job = self.get_job(job_id)
        if not job:
            return None

        tasks = self.list_tasks(job_id)
        statuses = [task["status"] for task in tasks]
        status = derive_job_status(statuses, job.get("status"))

        completed = statuses.count(TASK_COMPLETED)
        failed = statuses.count(TASK_FAILED)
        updates: Dict[str, Any] = {
            "status": status,
            "total_tasks": len(tasks),
            "completed_tasks": completed,
            "failed_tasks": failed,
            "processed_entities": sum(task.get("entity_count") or 0 for task in tasks),
        }

        now = to_iso(utcnow())
        if status != JOB_PENDING and not job.get("started_at"):
            started = sorted(task["started_at"] for task in tasks if task.get("started_at"))
            updates["started_at"] = started[0] if started else now

        if status in TERMINAL_JOB_STATUSES:
            if not job.get("completed_at"):
                updates["completed_at"] = now
        else:
            updates["completed_at"] = None

        if status == JOB_FAILED:
            updates["error_message"] = f"{failed} of {len(tasks)} task(s) failed"
        elif status != JOB_CANCELLED:
            updates["error_message"] = None

        result = self._execute(
            self._table(JOBS_TABLE).update(updates).eq("id", job_id),
            f"Refresh job {job_id}",
        )
        refreshed = result.data[0] if result.data else {**job, **updates}
        if status != job.get("status"):
            logger.info(f"Job {job_id}: {job.get('status')} -> {status}")
        return refreshed

    def get_job_status(self, job_id: str, include_tasks: bool = False) -> Optional[Dict[str, Any]]:
        job = self.get_job(job_id)
        if not job:
            return None

        total = job.get("total_tasks") or 0
        completed = job.get("completed_tasks") or 0
        status = {
            "job_id": job["id"],
            "app_key": job["app_key"],
            "mode": job["mode"],
            "status": job["status"],
            "resource_types": job.get("resource_types") or [],
            "progress_percentage": progress_percentage(completed, total),
            "total_tasks": total,
            "completed_tasks": completed,
            "failed_tasks": job.get("failed_tasks") or 0,
            "processed_entities": job.get("processed_entities") or 0,
            "created_at": job.get("created_at"),
            "started_at": job.get("started_at"),
            "completed_at": job.get("completed_at"),
            "error_message": job.get("error_message"),
        }
        if include_tasks:
            status["tasks"] = [
                {
                    "resource_type": task["resource_type"],
                    "status": task["status"],
                    "entity_count": task.get("entity_count") or 0,
                    "error_message": task.get("error_message"),
                    "started_at": task.get("started_at"),
                    "completed_at": task.get("completed_at"),
                }
                for task in self.list_tasks(job_id)
            ]
        return status

    # ============================================================================
    # TASKS
    # ============================================================================

    def claim_task(self, job_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Claim the oldest pending task.

        Returns None when nothing is claimable. A candidate that another
        worker claimed first is skipped, not treated as an error.
        """
        query = self._table(TASKS_TABLE).select("*").eq("status", TASK_PENDING)
        if job_id:
            query = query.eq("job_id", job_id)
        candidates = self._execute(query.order("created_at").limit(CLAIM_CANDIDATES), "Find pending tasks").data or []

        for candidate in candidates:
            now = to_iso(utcnow())
            result = self._execute(
                self._table(TASKS_TABLE)
                .update({
                    "status": TASK_PROCESSING,
                    "started_at": now,
                    "last_heartbeat": now,
                    "error_message": None,
                })
                .eq("id", candidate["id"])
                .eq("status", TASK_PENDING),
                f"Claim task {candidate['id']}",
            )
            if result.data:
                task = result.data[0]
                logger.info(f"🔒 Claimed task {task['id']} ({task['resource_type']}) of job {task['job_id']}")
                self._start_job(task["job_id"], now)
                return task
            logger.debug(f"Task {candidate['id']} already claimed, trying next candidate")

        return None

    def _start_job(self, job_id: str, started_at: str) -> None:
        # Only a pending job moves; cancelled and finished jobs keep their status
        result = self._execute(
            self._table(JOBS_TABLE)
            .update({"status": JOB_PROCESSING, "started_at": started_at})
            .eq("id", job_id)
            .eq("status", JOB_PENDING),
            f"Start job {job_id}",
        )
        if result.data:
            logger.info(f"Job {job_id}: {JOB_PENDING} -> {JOB_PROCESSING}")

    def complete_task(
        self,
        task_id: str,
        status: str,
        entity_count: int = 0,
        error_message: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        if status not in TERMINAL_TASK_STATUSES:
            raise ValueError(f"Task can only be completed as {sorted(TERMINAL_TASK_STATUSES)}, got {status}")
        now = to_iso(utcnow())
        result = self._execute(
            self._table(TASKS_TABLE)
            .update({
                "status": status,
                "entity_count": entity_count,
                "error_message": error_message,
                "completed_at": now,
                "last_heartbeat": now,
            })
            .eq("id", task_id)
            .eq("status", TASK_PROCESSING),
            f"Complete task {task_id}",
        )
        if not result.data:
            # Reclaimed by the sweeper (or otherwise finished) while we were running
            logger.warning(f"⚠️  Task {task_id} is no longer processing, {status} result dropped")
            return None
        return result.data[0]

    def heartbeat(self, task_id: str, entity_count: Optional[int] = None, cursor: Optional[str] = None) -> bool:
        updates: Dict[str, Any] = {"last_heartbeat": to_iso(utcnow())}
        if entity_count is not None:
            updates["entity_count"] = entity_count
        if cursor is not None:
            updates["cursor"] = cursor
        result = self._execute(
            self._table(TASKS_TABLE).update(updates).eq("id", task_id).eq("status", TASK_PROCESSING),
            f"Heartbeat task {task_id}",
        )
        return bool(result.data)

    def release_task(self, task_id: str, cursor: Optional[str], entity_count: int) -> Optional[Dict[str, Any]]:
        """Hand a partially processed task back to the queue with its checkpoint."""
        result = self._execute(
            self._table(TASKS_TABLE)
            .update({
                "status": TASK_PENDING,
                "cursor": cursor,
                "entity_count": entity_count,
                "last_heartbeat": to_iso(utcnow()),
            })
            .eq("id", task_id)
            .eq("status", TASK_PROCESSING),
            f"Release task {task_id}",
        )
        return result.data[0] if result.data else None

    def count_pending_tasks(self, job_id: Optional[str] = None) -> int:
        query = self._table(TASKS_TABLE).select("id", count="exact").eq("status", TASK_PENDING)
        if job_id:
            query = query.eq("job_id", job_id)
        result = self._execute(query, "Count pending tasks")
        return result.count if result.count is not None else len(result.data or [])

    # ============================================================================
    # MAINTENANCE
    # ============================================================================

    def reclaim_stale_tasks(self, timeout_seconds: int) -> List[Dict[str, Any]]:
        """Fail processing tasks whose heartbeat is older than timeout_seconds."""
        cutoff = to_iso(utcnow() - timedelta(seconds=timeout_seconds))
        result = self._execute(
            self._table(TASKS_TABLE)
            .update({
                "status": TASK_FAILED,
                "error_message": "Heartbeat timeout",
                "completed_at": to_iso(utcnow()),
            })
            .eq("status", TASK_PROCESSING)
            .lt("last_heartbeat", cutoff),
            "Reclaim stale tasks",
        )
        reclaimed = result.data or []
        for job_id in {task["job_id"] for task in reclaimed}:
            self.refresh_job_status(job_id)
        if reclaimed:
            logger.warning(f"⚠️  Reclaimed {len(reclaimed)} stale task(s)")
        return reclaimed

    def retry_failed_tasks(self, job_id: str) -> int:
        """
        Put the job's failed tasks back in the queue as fresh pending work.

        The reset is a single conditional UPDATE, so a store failure leaves
        the failed tasks exactly as they were.
        """
        job = self.get_job(job_id)
        if not job or job.get("status") == JOB_CANCELLED:
            return 0

        result = self._execute(
            self._table(TASKS_TABLE)
            .update({
                "status": TASK_PENDING,
                "entity_count": 0,
                "cursor": None,
                "error_message": None,
                "started_at": None,
                "completed_at": None,
                "last_heartbeat": None,
            })
            .eq("job_id", job_id)
            .eq("status", TASK_FAILED),
            f"Re-queue failed tasks of job {job_id}",
        )
        requeued = len(result.data or [])
        if not requeued:
            return 0

        self.refresh_job_status(job_id)
        logger.info(f"🔁 Re-queued {requeued} failed task(s) for job {job_id}")
        return requeued

    def cleanup_old_jobs(self, retention_days: int) -> int:
        """Delete terminal jobs older than the retention window. Tasks cascade."""
        cutoff = to_iso(utcnow() - timedelta(days=retention_days))
        result = self._execute(
            self._table(JOBS_TABLE)
            .delete(count="exact")
            .in_("status", sorted(TERMINAL_JOB_STATUSES))
            .lt("created_at", cutoff),
            "Clean up old jobs",
        )
        deleted = result.count if result.count is not None else len(result.data or [])
        if deleted:
            logger.info(f"🧹 Deleted {deleted} job(s) older than {retention_days} day(s)")
        return deleted
