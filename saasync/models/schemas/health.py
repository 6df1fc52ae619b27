"""
Health Check Schemas
"""
from typing import List
from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    apps: int
    connectors: List[str]
