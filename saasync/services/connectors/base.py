"""
Connector Contract
Interface every provider integration implements

CAPABILITIES:
- Connector (required): metadata, webhook verify/parse/extract, normalize, full sync
- IncrementalSyncCapable: incremental_sync(since)
- MultiEntityExtractor: extract_entities(event) -> many entities per event
- ConfigValidator: validate_config(app_config) with field-level errors
- ChunkedSyncCapable: sync_chunk(cursor) for resumable, budget-bounded syncs

Optional capabilities are explicit mixin ABCs, checked with isinstance().
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, List, Optional

from saasync.core.app_config import AppConfig
from saasync.services.connectors.types import (
    ConfigValidationResult,
    ConnectorMetadata,
    NormalizedEntity,
    ParsedWebhookEvent,
    SupportedResource,
    SyncChunk,
    SyncOptions,
    SyncResult,
    WebhookRequest,
    WebhookVerificationResult,
)


class Connector(ABC):
    """Base provider integration."""

    @property
    @abstractmethod
    def metadata(self) -> ConnectorMetadata:
        ...

    @property
    def name(self) -> str:
        return self.metadata.name

    @abstractmethod
    async def verify_webhook(self, request: WebhookRequest, app_config: AppConfig) -> WebhookVerificationResult:
        """
        Authenticate a webhook from the raw body and headers only.

        Must not interpret the payload before the signature check passes.
        """

    @abstractmethod
    async def parse_webhook_event(self, payload: Any, app_config: AppConfig) -> ParsedWebhookEvent:
        """
        Map a verified provider event onto create/update/delete/archive.

        Unknown provider event types degrade to update with resource_type
        "unknown" instead of raising.
        """

    @abstractmethod
    async def extract_entity(self, event: ParsedWebhookEvent, app_config: AppConfig) -> Optional[NormalizedEntity]:
        """None for delete events and unknown resources."""

    @abstractmethod
    def normalize_entity(self, resource_type: str, raw: dict, app_config: AppConfig) -> NormalizedEntity:
        """Pure. archived_at must be derived deterministically from raw."""

    @abstractmethod
    async def full_sync(self, app_config: AppConfig, options: SyncOptions) -> SyncResult:
        """Fetch and converge whole resources, reconciling deletions."""

    def get_resource(self, resource_type: str) -> Optional[SupportedResource]:
        return self.metadata.get_resource(resource_type)

    def collection_key_for(self, resource_type: str) -> str:
        return self.metadata.collection_key_for(resource_type)

    def supports_incremental(self, resource_type: str) -> bool:
        resource = self.get_resource(resource_type)
        return isinstance(self, IncrementalSyncCapable) and bool(resource and resource.supports_incremental)


class IncrementalSyncCapable(ABC):

    @abstractmethod
    async def incremental_sync(self, app_config: AppConfig, since: datetime, options: SyncOptions) -> SyncResult:
        """Fetch records changed since `since`. Never deletes."""


class MultiEntityExtractor(ABC):

    @abstractmethod
    async def extract_entities(self, event: ParsedWebhookEvent, app_config: AppConfig) -> List[NormalizedEntity]:
        ...


class ConfigValidator(ABC):

    @abstractmethod
    def validate_config(self, app_config: AppConfig) -> ConfigValidationResult:
        ...


class ChunkedSyncCapable(ABC):

    @abstractmethod
    async def sync_chunk(
        self,
        app_config: AppConfig,
        resource_type: str,
        cursor: Optional[str],
        options: SyncOptions,
        since: Optional[datetime] = None,
    ) -> SyncChunk:
        """
        Sync one bounded slice of a resource starting at cursor.

        The returned next_cursor is persisted on the task so another worker
        can resume if this one runs out of budget.
        """
