"""
Sync Jobs
Worker loop plus the dramatiq actors that drive it
"""
from saasync.services.jobs.worker import ExecutionBudget, SyncWorker, WorkerRunSummary

__all__ = ["ExecutionBudget", "SyncWorker", "WorkerRunSummary"]
