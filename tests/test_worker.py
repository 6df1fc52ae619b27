"""Tests for the sync worker loop against the in-memory queue."""

import pytest

from saasync.services.connectors.registry import ConnectorRegistry
from saasync.services.jobs.worker import (
    SHUTDOWN_MAX_TASKS,
    SHUTDOWN_NO_TASKS,
    SHUTDOWN_STORE_ERROR,
    SHUTDOWN_TIMEOUT,
    ExecutionBudget,
    SyncWorker,
)
from saasync.services.store.base import StoreError, parse_timestamp
from saasync.services.store.jobs import JOB_CANCELLED, JOB_COMPLETED, JOB_FAILED, TASK_COMPLETED, TASK_FAILED, TASK_PENDING
from saasync.services.sync.orchestrator import SyncOrchestrator
from tests.fakes import ChunkedAcmeConnector


def records(prefix, count, created=1_700_000_000):
    return [{"id": f"{prefix}{i}", "created": created + i, "updated": created + i} for i in range(count)]


class FlippingBudget(ExecutionBudget):
    """Reports exhausted from the n-th check onwards."""

    def __init__(self, exhausted_from_call):
        super().__init__(None)
        self.calls = 0
        self.exhausted_from_call = exhausted_from_call

    def exhausted(self):
        self.calls += 1
        return self.calls >= self.exhausted_from_call


@pytest.fixture
def worker(orchestrator, job_store):
    return SyncWorker(orchestrator, job_store)


@pytest.fixture
def seeded(acme):
    acme.remote["widget"] = records("w", 3)
    acme.remote["gadget"] = records("g", 2)
    acme.remote["gizmo"] = records("z", 1)
    return acme


@pytest.mark.asyncio
async def test_worker_runs_all_tasks_and_completes_job(seeded, orchestrator, job_store, worker, db):
    """Test that one worker run drains a three-task job and completes it."""
    created = orchestrator.create_job("app1", "full")

    summary = await worker.run()

    assert summary.success
    assert summary.tasks_processed == 3
    assert summary.tasks_completed == 3
    assert summary.shutdown_reason == SHUTDOWN_NO_TASKS
    assert summary.jobs_completed == [created["job_id"]]
    status = job_store.get_job_status(created["job_id"])
    assert status["status"] == JOB_COMPLETED
    assert status["progress_percentage"] == 100
    assert status["processed_entities"] == 6
    assert len(db.rows("entities")) == 6


@pytest.mark.asyncio
async def test_failing_resource_fails_task_and_job_but_loop_continues(seeded, orchestrator, job_store, worker):
    """Test that a failed resource is recorded on its task while the rest still run."""
    seeded.failing_resources.add("gadget")
    created = orchestrator.create_job("app1", "full")

    summary = await worker.run()

    assert summary.tasks_completed == 2
    assert summary.tasks_failed == 1
    tasks = {task["resource_type"]: task for task in job_store.list_tasks(created["job_id"])}
    assert tasks["gadget"]["status"] == TASK_FAILED
    assert tasks["gadget"]["error_message"]
    assert tasks["widget"]["status"] == TASK_COMPLETED
    assert job_store.get_job(created["job_id"])["status"] == JOB_FAILED


@pytest.mark.asyncio
async def test_watermark_only_recorded_for_successful_resources(seeded, orchestrator, sync_state_store, worker):
    """Test that a failed resource keeps no sync state."""
    seeded.failing_resources.add("gadget")
    orchestrator.create_job("app1", "full")

    await worker.run()

    assert sync_state_store.get_sync_state("app1", "acme_widgets") is not None
    assert sync_state_store.get_sync_state("app1", "acme_gadgets") is None


@pytest.mark.asyncio
async def test_exhausted_budget_stops_before_claiming(seeded, orchestrator, job_store, worker):
    """Test that a spent budget stops the loop with a timeout and claims nothing."""
    created = orchestrator.create_job("app1", "full")

    summary = await worker.run(budget=ExecutionBudget(max_runtime_seconds=0))

    assert summary.shutdown_reason == SHUTDOWN_TIMEOUT
    assert summary.tasks_processed == 0
    assert job_store.count_pending_tasks(created["job_id"]) == 3


@pytest.mark.asyncio
async def test_job_is_processing_while_its_first_task_runs(seeded, orchestrator, job_store, worker, monkeypatch):
    """Test that status polling sees the job as processing as soon as a task is claimed."""
    created = orchestrator.create_job("app1", "full", ["widget"])
    observed = []
    original_full_sync = seeded.full_sync

    async def full_sync(app_config, options):
        status = job_store.get_job_status(created["job_id"])
        observed.append((status["status"], status["started_at"] is not None))
        return await original_full_sync(app_config, options)

    monkeypatch.setattr(seeded, "full_sync", full_sync)

    await worker.run()

    assert observed == [("processing", True)]
    assert job_store.get_job(created["job_id"])["status"] == JOB_COMPLETED


@pytest.mark.asyncio
async def test_unreachable_queue_stops_worker_with_summary(seeded, orchestrator, worker, db):
    """Test that a claim against an unreachable task table ends the run with a summary."""
    orchestrator.create_job("app1", "full", ["widget"])
    db.fail_tables.add("sync_job_tasks")

    summary = await worker.run()

    assert summary.success is False
    assert summary.shutdown_reason == SHUTDOWN_STORE_ERROR
    assert summary.tasks_processed == 0


@pytest.mark.asyncio
async def test_store_failure_after_task_stops_worker(seeded, orchestrator, job_store, worker, monkeypatch):
    """Test that a failed job refresh keeps the count of work already done."""
    orchestrator.create_job("app1", "full", ["widget", "gadget"])

    def refresh_fails(job_id):
        raise StoreError(f"Refresh job {job_id} failed: connection reset")

    monkeypatch.setattr(job_store, "refresh_job_status", refresh_fails)

    summary = await worker.run()

    assert summary.shutdown_reason == SHUTDOWN_STORE_ERROR
    assert summary.tasks_processed == 1
    assert summary.tasks_completed == 1
    assert job_store.count_pending_tasks() == 1


@pytest.mark.asyncio
async def test_max_tasks_limits_one_invocation(seeded, orchestrator, job_store, worker):
    """Test that max_tasks stops the loop and leaves the rest pending."""
    created = orchestrator.create_job("app1", "full")

    summary = await worker.run(max_tasks=1)

    assert summary.tasks_processed == 1
    assert summary.shutdown_reason == SHUTDOWN_MAX_TASKS
    assert job_store.count_pending_tasks(created["job_id"]) == 2
    assert job_store.get_job(created["job_id"])["status"] == "processing"


@pytest.mark.asyncio
async def test_worker_scoped_to_job(seeded, orchestrator, job_store, worker):
    """Test that a job-scoped worker leaves other jobs alone."""
    first = orchestrator.create_job("app1", "full", ["widget"])
    second = orchestrator.create_job("app1", "full", ["gadget"])

    await worker.run(job_id=second["job_id"])

    assert job_store.get_job(second["job_id"])["status"] == JOB_COMPLETED
    assert job_store.count_pending_tasks(first["job_id"]) == 1


@pytest.mark.asyncio
async def test_nested_resource_task_fails(seeded, job_store, worker):
    """Test that a task for a resource synced with its parent is failed."""
    job = job_store.create_job("app1", "full", ["part"])

    summary = await worker.run()

    assert summary.tasks_failed == 1
    task = job_store.list_tasks(job["id"])[0]
    assert task["status"] == TASK_FAILED
    assert "synced with its parent" in task["error_message"]


@pytest.mark.asyncio
async def test_cancelled_job_tasks_are_failed(seeded, orchestrator, job_store, worker):
    """Test that tasks claimed for a cancelled job fail without syncing."""
    created = orchestrator.create_job("app1", "full", ["widget"])
    job_store.cancel_job(created["job_id"])

    summary = await worker.run()

    assert summary.tasks_failed == 1
    assert summary.jobs_completed == []
    assert seeded.full_sync_calls == []
    task = job_store.list_tasks(created["job_id"])[0]
    assert task["error_message"] == "Job cancelled"
    assert job_store.get_job(created["job_id"])["status"] == JOB_CANCELLED


@pytest.mark.asyncio
async def test_unknown_app_task_fails(job_store, worker):
    """Test that a job for an app that left the configuration fails its tasks."""
    job = job_store.create_job("gone", "full", ["widget"])

    await worker.run()

    task = job_store.list_tasks(job["id"])[0]
    assert task["status"] == TASK_FAILED
    assert task["error_message"] == "App not found: gone"


@pytest.mark.asyncio
async def test_incremental_job_uses_watermark(seeded, orchestrator, worker):
    """Test that an incremental job after a full one pulls incrementally."""
    orchestrator.create_job("app1", "full", ["widget"])
    await worker.run()

    orchestrator.create_job("app1", "incremental", ["widget", "gadget"])
    await worker.run()

    assert seeded.incremental_sync_calls == ["widget"]
    assert seeded.full_sync_calls == ["widget", "gadget"]


# ============================================================================
# CHUNKED CONNECTORS
# ============================================================================


@pytest.fixture
def chunked(entity_store):
    connector = ChunkedAcmeConnector(entity_store)
    connector.remote["widget"] = records("w", 5)
    return connector


@pytest.fixture
def chunked_worker(chunked, sync_config, entity_store, sync_state_store, job_store):
    registry = ConnectorRegistry()
    registry.register(chunked)
    orchestrator = SyncOrchestrator(
        registry=registry,
        sync_config=sync_config,
        entity_store=entity_store,
        sync_state_store=sync_state_store,
        job_store=job_store,
    )
    return SyncWorker(orchestrator, job_store)


@pytest.mark.asyncio
async def test_chunked_task_released_with_cursor_and_resumed(chunked, chunked_worker, job_store, sync_state_store):
    """Test that a chunked task is handed back at its cursor and later resumed there."""
    job = job_store.create_job("app1", "full", ["widget"])

    first = await chunked_worker.run(budget=FlippingBudget(exhausted_from_call=2))

    assert first.tasks_released == 1
    assert first.shutdown_reason == SHUTDOWN_TIMEOUT
    task = job_store.list_tasks(job["id"])[0]
    assert task["status"] == TASK_PENDING
    assert task["cursor"] == "2"
    assert task["entity_count"] == 2
    assert sync_state_store.get_sync_state("app1", "acme_widgets") is None

    second = await chunked_worker.run()

    assert second.tasks_completed == 1
    assert chunked.chunk_cursors == [None, "2", "4"]
    task = job_store.list_tasks(job["id"])[0]
    assert task["status"] == TASK_COMPLETED
    assert task["entity_count"] == 5
    state = sync_state_store.get_sync_state("app1", "acme_widgets")
    assert state.last_synced_at == parse_timestamp(job_store.get_job(job["id"])["created_at"])
