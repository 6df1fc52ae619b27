"""
Sync Orchestrator
Entry point for pull-based syncs: run now (immediate) or enqueue a job

MODE RESOLUTION (per resource, per invocation):
- incremental needs connector support for the resource AND a stored watermark
- otherwise the resource falls back to a full sync; the request's mode label
  (stored on the job) is unchanged

WATERMARKS:
- Sync state is written only after a resource synced successfully
- last_synced_at is the time the sync STARTED, so records changed while the
  sync was running are picked up by the next incremental pull
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel

from saasync.core.app_config import AppConfig, SyncConfig, is_valid_app_key
from saasync.services.connectors.base import Connector, IncrementalSyncCapable
from saasync.services.connectors.errors import ConfigurationError
from saasync.services.connectors.registry import ConnectorRegistry
from saasync.services.connectors.types import SyncMode, SyncOptions, SyncResult
from saasync.services.connectors.utils import Timer, failed_sync_result
from saasync.services.store.base import utcnow
from saasync.services.store.entities import EntityStore
from saasync.services.store.jobs import JobStore
from saasync.services.store.sync_state import SyncStateStore

logger = logging.getLogger(__name__)


class SyncRequestError(Exception):
    """A sync request cannot be served. Carries the HTTP status to answer with."""

    def __init__(self, status_code: int, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.errors = errors or []


class ResourceSyncOutcome(BaseModel):
    resource_type: str
    collection_key: str
    mode: SyncMode
    result: SyncResult


class SyncOrchestrator:

    def __init__(
        self,
        registry: ConnectorRegistry,
        sync_config: SyncConfig,
        entity_store: EntityStore,
        sync_state_store: SyncStateStore,
        job_store: JobStore,
    ):
        self.registry = registry
        self.sync_config = sync_config
        self.entity_store = entity_store
        self.sync_state_store = sync_state_store
        self.job_store = job_store

    # ============================================================================
    # RESOLUTION
    # ============================================================================

    def resolve_app(self, app_key: str) -> Tuple[AppConfig, Connector]:
        if not is_valid_app_key(app_key):
            raise SyncRequestError(400, "Invalid app_key format")

        app_config = self.sync_config.get_app(app_key)
        if app_config is None:
            raise SyncRequestError(404, f"Unknown app_key: {app_key}")

        connector = self.registry.get(app_config.connector)
        if connector is None:
            logger.error(f"❌ No connector '{app_config.connector}' registered for {app_key}")
            raise SyncRequestError(500, "Connector not available")

        try:
            self.registry.validate_app_config(app_config)
        except ConfigurationError as e:
            errors = [error.model_dump(exclude_none=True) for error in e.errors]
            raise SyncRequestError(
                400,
                "Invalid app configuration",
                errors=errors or [{"field": e.field, "message": e.message}],
            )

        return app_config, connector

    def resolve_resource_types(
        self,
        connector: Connector,
        app_config: AppConfig,
        requested: Optional[List[str]] = None,
    ) -> List[str]:
        """Resources that get their own sync run. Nested resources are never listed."""
        top_level = [
            resource.resource_type
            for resource in connector.metadata.resources
            if not resource.synced_with_parent
        ]

        if requested:
            unknown = [resource_type for resource_type in requested if resource_type not in top_level]
            if unknown:
                raise SyncRequestError(400, f"Unsupported resource type(s): {', '.join(unknown)}")
            resource_types = list(dict.fromkeys(requested))
        else:
            allowed = app_config.config.get("sync_resources")
            resource_types = [r for r in top_level if not allowed or r in allowed]

        if not resource_types:
            raise SyncRequestError(400, "No resources to sync")
        return resource_types

    def resolve_mode(
        self,
        connector: Connector,
        app_config: AppConfig,
        resource_type: str,
        requested_mode: str,
    ) -> Tuple[SyncMode, Optional[datetime]]:
        if requested_mode != "incremental" or not connector.supports_incremental(resource_type):
            return "full", None

        collection_key = connector.collection_key_for(resource_type)
        state = self.sync_state_store.get_sync_state(app_config.app_key, collection_key)
        if state is None:
            logger.info(f"No watermark for {app_config.app_key}/{collection_key}, falling back to full sync")
            return "full", None
        return "incremental", state.last_synced_at

    # ============================================================================
    # EXECUTION
    # ============================================================================

    def record_sync_state(
        self,
        app_config: AppConfig,
        collection_key: str,
        synced_at: datetime,
        metadata: Dict[str, Any],
    ) -> None:
        self.sync_state_store.update_sync_state(app_config.app_key, collection_key, synced_at, metadata)

    async def sync_resource(
        self,
        app_config: AppConfig,
        connector: Connector,
        resource_type: str,
        requested_mode: str,
        options: Optional[SyncOptions] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ResourceSyncOutcome:
        """Run one resource's sync and advance its watermark on success."""
        started_at = utcnow()
        mode, since = self.resolve_mode(connector, app_config, resource_type, requested_mode)
        collection_key = connector.collection_key_for(resource_type)
        run_options = (options or SyncOptions()).model_copy(update={"resource_types": [resource_type]})

        try:
            if mode == "incremental" and isinstance(connector, IncrementalSyncCapable):
                result = await connector.incremental_sync(app_config, since, run_options)
            else:
                result = await connector.full_sync(app_config, run_options)
        except Exception as e:
            logger.error(f"❌ {mode} sync of {app_config.app_key}/{resource_type} raised: {e}", exc_info=True)
            result = failed_sync_result(str(e))

        if result.success and not run_options.dry_run:
            self.record_sync_state(app_config, collection_key, started_at, {"mode": mode, **(metadata or {})})

        return ResourceSyncOutcome(
            resource_type=resource_type,
            collection_key=collection_key,
            mode=mode,
            result=result,
        )

    async def run_immediate(
        self,
        app_key: str,
        mode: str,
        resource_types: Optional[List[str]] = None,
        options: Optional[SyncOptions] = None,
    ) -> Dict[str, Any]:
        """Sync every resource now, without job/task rows."""
        timer = Timer()
        app_config, connector = self.resolve_app(app_key)
        targets = self.resolve_resource_types(connector, app_config, resource_types)

        logger.info(f"🔄 Immediate {mode} sync for {app_key}: {', '.join(targets)}")
        collections = []
        for resource_type in targets:
            outcome = await self.sync_resource(app_config, connector, resource_type, mode, options)
            collections.append({
                "resource_type": outcome.resource_type,
                "collection_key": outcome.collection_key,
                "mode": outcome.mode,
                "success": outcome.result.success,
                "created": outcome.result.created,
                "updated": outcome.result.updated,
                "deleted": outcome.result.deleted,
                "errors": outcome.result.errors,
                "error_messages": outcome.result.error_messages,
                "duration_ms": outcome.result.duration_ms,
            })

        success = all(collection["success"] for collection in collections)
        summary = {
            "success": success,
            "app_key": app_key,
            "mode": mode,
            "collections": collections,
            "created": sum(c["created"] for c in collections),
            "updated": sum(c["updated"] for c in collections),
            "deleted": sum(c["deleted"] for c in collections),
            "errors": sum(c["errors"] for c in collections),
            "duration_ms": timer.elapsed_ms(),
        }
        logger.info(
            f"{'✅' if success else '⚠️ '} Immediate sync for {app_key} finished: "
            f"{summary['created']} created, {summary['updated']} updated, {summary['deleted']} deleted"
        )
        return summary

    def create_job(self, app_key: str, mode: str, resource_types: Optional[List[str]] = None) -> Dict[str, Any]:
        """Create a job with one pending task per resource; workers do the rest."""
        app_config, connector = self.resolve_app(app_key)
        targets = self.resolve_resource_types(connector, app_config, resource_types)
        job = self.job_store.create_job(app_key, mode, targets)
        return {
            "success": True,
            "job_id": job["id"],
            "app_key": app_key,
            "mode": mode,
            "status": job.get("status", "pending"),
            "total_tasks": job.get("total_tasks", len(targets)),
            "resource_types": targets,
        }
