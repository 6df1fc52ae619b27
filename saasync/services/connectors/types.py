"""
Connector Types
Data shapes exchanged between connectors, the sync engine and the entity store
"""
from datetime import datetime
from typing import Any, Callable, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

WebhookEventType = Literal["create", "update", "delete", "archive"]
SyncMode = Literal["full", "incremental"]


class NormalizedEntity(BaseModel):
    """Connector output, ready to be written to the entity store."""
    model_config = ConfigDict(frozen=True)

    external_id: str
    app_key: str
    collection_key: str
    raw_payload: Dict[str, Any]
    api_version: Optional[str] = None
    archived_at: Optional[datetime] = None

    @property
    def identity(self) -> tuple:
        return (self.app_key, self.collection_key, self.external_id)


class WebhookRequest(BaseModel):
    """Transport-independent view of an incoming webhook."""
    model_config = ConfigDict(frozen=True)

    method: str = "POST"
    path: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)
    body: bytes = b""

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())


class WebhookVerificationResult(BaseModel):
    valid: bool
    reason: Optional[str] = None
    payload: Optional[Any] = None


class ParsedWebhookEvent(BaseModel):
    event_type: WebhookEventType
    original_event_type: str
    resource_type: str
    external_id: str
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SupportedResource(BaseModel):
    """One resource type a connector can sync."""
    model_config = ConfigDict(frozen=True)

    resource_type: str
    collection_key: str
    description: Optional[str] = None
    supports_incremental: bool = False
    supports_webhooks: bool = False
    # Resources synced as part of a parent never get their own job task
    synced_with_parent: Optional[str] = None


class ConnectorMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str
    version: str = "1.0.0"
    api_version: Optional[str] = None
    resources: List[SupportedResource] = Field(default_factory=list)
    migrations: List[str] = Field(default_factory=list)

    def get_resource(self, resource_type: str) -> Optional[SupportedResource]:
        for resource in self.resources:
            if resource.resource_type == resource_type:
                return resource
        return None

    def collection_key_for(self, resource_type: str) -> str:
        resource = self.get_resource(resource_type)
        return resource.collection_key if resource else resource_type


class SyncProgress(BaseModel):
    resource_type: str
    collection_key: str
    fetched: int
    page: int


class SyncOptions(BaseModel):
    resource_types: Optional[List[str]] = None
    limit: Optional[int] = None
    page_size: Optional[int] = None
    cursor: Optional[str] = None
    dry_run: bool = False
    on_progress: Optional[Callable[[SyncProgress], None]] = None


class SyncResult(BaseModel):
    success: bool = True
    created: int = 0
    updated: int = 0
    deleted: int = 0
    errors: int = 0
    error_messages: List[str] = Field(default_factory=list)
    duration_ms: int = 0

    @property
    def entity_count(self) -> int:
        return self.created + self.updated + self.deleted

    def add_error(self, message: str) -> None:
        self.errors += 1
        self.error_messages.append(message)


class SyncChunk(BaseModel):
    """Partial progress of a chunked sync."""
    result: SyncResult
    next_cursor: Optional[str] = None
    has_more: bool = False


class ConfigFieldError(BaseModel):
    field: str
    message: str
    suggestion: Optional[str] = None


class ConfigValidationResult(BaseModel):
    valid: bool
    errors: List[ConfigFieldError] = Field(default_factory=list)
