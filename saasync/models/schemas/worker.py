"""
Worker Schemas
"""
from typing import List, Optional
from pydantic import BaseModel, Field


class WorkerRequest(BaseModel):
    """Body of POST /worker. Both fields optional."""
    job_id: Optional[str] = None
    max_tasks: Optional[int] = Field(default=None, ge=1)


class WorkerResponse(BaseModel):
    success: bool
    tasks_processed: int
    tasks_completed: int
    tasks_failed: int
    tasks_released: int
    jobs_completed: List[str]
    duration_ms: int
    shutdown_reason: str
