"""
Pydantic Schemas
All request/response models for API endpoints
"""

# Health check schemas
from .health import HealthResponse

# Sync schemas
from .sync import ErrorResponse, SyncJobCreatedResponse, SyncJobStatusResponse, SyncRequest, SyncTaskDetail

# Worker schemas
from .worker import WorkerRequest, WorkerResponse

__all__ = [
    # Health
    "HealthResponse",
    # Sync
    "ErrorResponse",
    "SyncJobCreatedResponse",
    "SyncJobStatusResponse",
    "SyncRequest",
    "SyncTaskDetail",
    # Worker
    "WorkerRequest",
    "WorkerResponse",
]
