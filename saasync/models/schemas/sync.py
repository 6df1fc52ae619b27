"""
Sync Schemas
Models for the sync orchestrator and job status endpoints
"""
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field


class SyncRequest(BaseModel):
    """
    Body of POST /sync.
    mode is a label for the request; resources without a watermark still run full.
    """
    app_key: str
    mode: Literal["full", "incremental"] = "incremental"
    resource_types: Optional[List[str]] = None
    immediate: bool = False
    dry_run: bool = False
    limit: Optional[int] = Field(default=None, ge=1)


class SyncJobCreatedResponse(BaseModel):
    success: bool
    job_id: str
    app_key: str
    mode: str
    status: str
    total_tasks: int
    resource_types: List[str]
    worker_dispatched: bool = False


class SyncTaskDetail(BaseModel):
    resource_type: str
    status: str
    entity_count: int = 0
    error_message: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class SyncJobStatusResponse(BaseModel):
    """
    Job metadata plus progress.
    progress_percentage = completed_tasks / total_tasks (failed tasks do not count)
    """
    job_id: str
    app_key: str
    mode: str
    status: str
    resource_types: List[str] = []
    progress_percentage: int
    total_tasks: int
    completed_tasks: int
    failed_tasks: int
    processed_entities: int = 0
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error_message: Optional[str] = None
    tasks: Optional[List[SyncTaskDetail]] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    errors: Optional[List[Dict[str, Any]]] = None
