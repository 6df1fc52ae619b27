"""Tests for the job/task queue: status derivation, claiming and maintenance."""

from datetime import timedelta

import pytest

from saasync.services.store.base import StoreError, to_iso, utcnow
from saasync.services.store.jobs import (
    JOB_CANCELLED,
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PENDING,
    JOB_PROCESSING,
    TASK_COMPLETED,
    TASK_FAILED,
    TASK_PENDING,
    TASK_PROCESSING,
    derive_job_status,
    progress_percentage,
)


@pytest.mark.parametrize(
    "statuses, expected",
    [
        (["pending", "pending", "pending"], JOB_PENDING),
        (["completed", "completed", "pending"], JOB_PROCESSING),
        (["completed", "processing", "pending"], JOB_PROCESSING),
        (["completed", "completed", "completed"], JOB_COMPLETED),
        (["completed", "completed", "failed"], JOB_FAILED),
        (["failed", "pending"], JOB_PROCESSING),
    ],
)
def test_derive_job_status(statuses, expected):
    """Test job status as a function of its task statuses."""
    assert derive_job_status(statuses) == expected


def test_cancelled_is_sticky():
    """Test that a cancelled job stays cancelled whatever its tasks do."""
    assert derive_job_status(["completed", "completed"], JOB_CANCELLED) == JOB_CANCELLED


def test_started_job_stays_processing_when_tasks_are_released():
    """Test that a processing job whose only task was handed back is still processing."""
    assert derive_job_status(["pending"], JOB_PROCESSING) == JOB_PROCESSING


def test_progress_percentage():
    """Test that progress counts completed tasks only."""
    assert progress_percentage(0, 0) == 0
    assert progress_percentage(1, 3) == 33
    assert progress_percentage(3, 3) == 100


def test_create_job_with_one_task_per_resource(db, job_store):
    """Test that a job is created pending with a pending task per resource."""
    job = job_store.create_job("app1", "full", ["widget", "gadget", "gizmo"])

    assert job["status"] == JOB_PENDING
    assert job["total_tasks"] == 3
    tasks = job_store.list_tasks(job["id"])
    assert sorted(task["resource_type"] for task in tasks) == ["gadget", "gizmo", "widget"]
    assert all(task["status"] == TASK_PENDING for task in tasks)


def test_create_job_without_resources_is_rejected(job_store):
    """Test that a job needs at least one task."""
    with pytest.raises(ValueError):
        job_store.create_job("app1", "full", [])


def test_create_job_rolls_back_when_tasks_fail(db, job_store):
    """Test that a job is removed again when its tasks cannot be inserted."""
    db.fail_tables.add("sync_job_tasks")

    with pytest.raises(StoreError):
        job_store.create_job("app1", "full", ["widget"])

    assert db.rows("sync_jobs") == []


def test_claim_task_marks_processing(job_store):
    """Test that claiming moves a task to processing with a heartbeat."""
    job = job_store.create_job("app1", "full", ["widget"])

    task = job_store.claim_task()

    assert task["job_id"] == job["id"]
    assert task["status"] == TASK_PROCESSING
    assert task["started_at"] is not None
    assert task["last_heartbeat"] is not None


def test_claim_task_starts_the_job(job_store):
    """Test that the first claim moves the job to processing right away."""
    job = job_store.create_job("app1", "full", ["widget", "gadget"])

    task = job_store.claim_task()

    started = job_store.get_job(job["id"])
    assert started["status"] == JOB_PROCESSING
    assert started["started_at"] == task["started_at"]

    job_store.claim_task()
    assert job_store.get_job(job["id"])["started_at"] == task["started_at"]


def test_claim_task_leaves_cancelled_job_cancelled(job_store):
    """Test that claiming a task of a cancelled job does not reopen it."""
    job = job_store.create_job("app1", "full", ["widget"])
    job_store.cancel_job(job["id"])

    job_store.claim_task()

    assert job_store.get_job(job["id"])["status"] == JOB_CANCELLED


def test_second_claim_on_single_task_gets_nothing(job_store):
    """Test that a task can only be claimed once."""
    job_store.create_job("app1", "full", ["widget"])

    first = job_store.claim_task()
    second = job_store.claim_task()

    assert first is not None
    assert second is None


def test_concurrent_claim_loser_moves_to_next_candidate(db, job_store):
    """Test that a claimer racing another worker skips the stolen task."""
    job_store.create_job("app1", "full", ["widget", "gadget"])
    first_task = sorted(db.rows("sync_job_tasks"), key=lambda t: t["created_at"])[0]
    stolen = {}

    def other_worker_claims_first(query):
        # Fires after the candidate read, right before our conditional update
        if query.operation == "update" and not stolen:
            first_task["status"] = TASK_PROCESSING
            stolen["id"] = first_task["id"]

    db.before_execute.append(other_worker_claims_first)

    claimed = job_store.claim_task()

    assert claimed is not None
    assert claimed["id"] != stolen["id"]
    assert claimed["resource_type"] == "gadget"


def test_claim_scoped_to_job(job_store):
    """Test that a job-scoped claim ignores other jobs' tasks."""
    job_store.create_job("app1", "full", ["widget"])
    other = job_store.create_job("app1", "full", ["gadget"])

    task = job_store.claim_task(other["id"])

    assert task["job_id"] == other["id"]


def test_refresh_job_status_follows_tasks(job_store):
    """Test that the job becomes processing, then completed, as tasks finish."""
    job = job_store.create_job("app1", "full", ["widget", "gadget", "gizmo"])

    for _ in range(2):
        task = job_store.claim_task()
        job_store.complete_task(task["id"], TASK_COMPLETED, entity_count=4)
    refreshed = job_store.refresh_job_status(job["id"])
    assert refreshed["status"] == JOB_PROCESSING
    assert refreshed["started_at"] is not None

    task = job_store.claim_task()
    job_store.complete_task(task["id"], TASK_COMPLETED, entity_count=2)
    refreshed = job_store.refresh_job_status(job["id"])

    assert refreshed["status"] == JOB_COMPLETED
    assert refreshed["completed_tasks"] == 3
    assert refreshed["processed_entities"] == 10
    assert refreshed["completed_at"] is not None


def test_refresh_job_status_failed_task_fails_job(job_store):
    """Test that one failed task fails the job once all tasks are terminal."""
    job = job_store.create_job("app1", "full", ["widget", "gadget"])
    first = job_store.claim_task()
    job_store.complete_task(first["id"], TASK_COMPLETED)
    second = job_store.claim_task()
    job_store.complete_task(second["id"], TASK_FAILED, error_message="upstream 502")

    refreshed = job_store.refresh_job_status(job["id"])

    assert refreshed["status"] == JOB_FAILED
    assert refreshed["failed_tasks"] == 1
    assert "1 of 2" in refreshed["error_message"]


def test_complete_task_rejects_non_terminal_status(job_store):
    """Test that tasks can only be completed as completed or failed."""
    with pytest.raises(ValueError):
        job_store.complete_task("task-id", TASK_PENDING)


def test_late_completion_does_not_revive_reclaimed_task(db, job_store):
    """Test that a worker finishing after its task was reclaimed cannot overwrite the failure."""
    job_store.create_job("app1", "full", ["widget"])
    task = job_store.claim_task()
    for row in db.rows("sync_job_tasks"):
        row["last_heartbeat"] = to_iso(utcnow() - timedelta(hours=1))
    job_store.reclaim_stale_tasks(timeout_seconds=300)

    assert job_store.complete_task(task["id"], TASK_COMPLETED, entity_count=9) is None

    row = db.rows("sync_job_tasks")[0]
    assert row["status"] == TASK_FAILED
    assert row["error_message"] == "Heartbeat timeout"
    assert row["entity_count"] == 0


def test_job_status_with_tasks(job_store):
    """Test that the status view carries progress and optional task detail."""
    job = job_store.create_job("app1", "full", ["widget", "gadget"])
    task = job_store.claim_task()
    job_store.complete_task(task["id"], TASK_COMPLETED, entity_count=3)
    job_store.refresh_job_status(job["id"])

    status = job_store.get_job_status(job["id"], include_tasks=True)

    assert status["progress_percentage"] == 50
    assert status["completed_tasks"] == 1
    assert len(status["tasks"]) == 2
    assert "tasks" not in job_store.get_job_status(job["id"])


def test_heartbeat_and_release_keep_cursor(job_store):
    """Test that a released task goes back to pending with its checkpoint."""
    job_store.create_job("app1", "full", ["widget"])
    task = job_store.claim_task()

    assert job_store.heartbeat(task["id"], entity_count=5, cursor="page-2")
    released = job_store.release_task(task["id"], "page-3", 7)

    assert released["status"] == TASK_PENDING
    assert released["cursor"] == "page-3"
    assert released["entity_count"] == 7
    assert job_store.count_pending_tasks() == 1


def test_heartbeat_ignored_for_finished_task(job_store):
    """Test that heartbeats never resurrect a completed task."""
    job_store.create_job("app1", "full", ["widget"])
    task = job_store.claim_task()
    job_store.complete_task(task["id"], TASK_COMPLETED)

    assert job_store.heartbeat(task["id"], entity_count=1) is False


def test_reclaim_stale_tasks(db, job_store):
    """Test that processing tasks without a recent heartbeat are failed."""
    job = job_store.create_job("app1", "full", ["widget", "gadget"])
    stale = job_store.claim_task()
    fresh = job_store.claim_task()
    for row in db.rows("sync_job_tasks"):
        if row["id"] == stale["id"]:
            row["last_heartbeat"] = to_iso(utcnow() - timedelta(minutes=30))

    reclaimed = job_store.reclaim_stale_tasks(timeout_seconds=300)

    assert [task["id"] for task in reclaimed] == [stale["id"]]
    tasks = {task["id"]: task for task in job_store.list_tasks(job["id"])}
    assert tasks[stale["id"]]["status"] == TASK_FAILED
    assert tasks[stale["id"]]["error_message"] == "Heartbeat timeout"
    assert tasks[fresh["id"]]["status"] == TASK_PROCESSING


def test_retry_failed_tasks_requeues(job_store):
    """Test that failed tasks come back as pending and the job reopens."""
    job = job_store.create_job("app1", "full", ["widget", "gadget"])
    for status in (TASK_COMPLETED, TASK_FAILED):
        task = job_store.claim_task()
        job_store.complete_task(task["id"], status)
    assert job_store.refresh_job_status(job["id"])["status"] == JOB_FAILED

    requeued = job_store.retry_failed_tasks(job["id"])

    assert requeued == 1
    refreshed = job_store.get_job(job["id"])
    assert refreshed["status"] == JOB_PROCESSING
    assert refreshed["completed_at"] is None
    assert job_store.count_pending_tasks(job["id"]) == 1


def test_retry_resets_tasks_in_place(db, job_store):
    """Test that retried tasks keep their rows and are wiped of the previous attempt."""
    job = job_store.create_job("app1", "full", ["widget"])
    task = job_store.claim_task()
    job_store.heartbeat(task["id"], entity_count=3, cursor="page-2")
    job_store.complete_task(task["id"], TASK_FAILED, entity_count=3, error_message="upstream 502")
    job_store.refresh_job_status(job["id"])

    def no_task_rewrites(query):
        if query.table_name == "sync_job_tasks" and query.operation in ("insert", "delete"):
            raise AssertionError(f"unexpected {query.operation} on tasks")

    db.before_execute.append(no_task_rewrites)

    assert job_store.retry_failed_tasks(job["id"]) == 1

    [row] = db.rows("sync_job_tasks")
    assert row["id"] == task["id"]
    assert row["status"] == TASK_PENDING
    assert (row["cursor"], row["entity_count"], row["error_message"]) == (None, 0, None)


def test_retry_store_failure_keeps_failed_tasks(db, job_store):
    """Test that a failed retry leaves the job's failed tasks untouched."""
    job = job_store.create_job("app1", "full", ["widget"])
    task = job_store.claim_task()
    job_store.complete_task(task["id"], TASK_FAILED, error_message="upstream 502")

    def tasks_unavailable_for_writes(query):
        if query.table_name == "sync_job_tasks" and query.operation != "select":
            raise ConnectionError("tasks table unavailable")

    db.before_execute.append(tasks_unavailable_for_writes)

    with pytest.raises(StoreError):
        job_store.retry_failed_tasks(job["id"])

    [row] = db.rows("sync_job_tasks")
    assert row["status"] == TASK_FAILED
    assert row["error_message"] == "upstream 502"


def test_cancel_job(job_store):
    """Test that only unfinished jobs can be cancelled."""
    job = job_store.create_job("app1", "full", ["widget"])

    assert job_store.cancel_job(job["id"]) is True
    assert job_store.cancel_job(job["id"]) is False
    assert job_store.refresh_job_status(job["id"])["status"] == JOB_CANCELLED


def test_cleanup_old_jobs_cascades_to_tasks(db, job_store):
    """Test that expired terminal jobs are removed with their tasks."""
    old = job_store.create_job("app1", "full", ["widget"])
    running = job_store.create_job("app1", "full", ["gadget"])
    recent = job_store.create_job("app1", "full", ["gizmo"])
    long_ago = to_iso(utcnow() - timedelta(days=30))
    for row in db.rows("sync_jobs"):
        if row["id"] == old["id"]:
            row.update(status=JOB_COMPLETED, created_at=long_ago)
        elif row["id"] == running["id"]:
            row.update(status=JOB_PROCESSING, created_at=long_ago)
        elif row["id"] == recent["id"]:
            row.update(status=JOB_FAILED)

    deleted = job_store.cleanup_old_jobs(retention_days=7)

    assert deleted == 1
    remaining = {row["id"] for row in db.rows("sync_jobs")}
    assert remaining == {running["id"], recent["id"]}
    assert all(task["job_id"] != old["id"] for task in db.rows("sync_job_tasks"))
