"""
Dependency Injection
Provides reusable dependencies for FastAPI routes and background workers

DEPENDENCIES:
- Supabase client (one per process, created at startup)
- Stores (entities, sync state, jobs, webhook logs) bound to the SaaSync schema
- App instances (SyncConfig) and connector registry, loaded once into app.state
- Orchestrator, worker and webhook pipeline built per request from the above
"""
import logging
from typing import Optional

from fastapi import Depends, Request
from supabase import Client, create_client

from saasync.core.app_config import SyncConfig
from saasync.core.config import Settings, get_settings
from saasync.services.connectors.registry import ConnectorRegistry
from saasync.services.jobs.worker import SyncWorker
from saasync.services.store import EntityStore, JobStore, SyncStateStore, WebhookLogStore
from saasync.services.sync.orchestrator import SyncOrchestrator
from saasync.services.webhooks.pipeline import WebhookPipeline

logger = logging.getLogger(__name__)

# ============================================================================
# GLOBAL CLIENTS (initialized once, reused across requests)
# ============================================================================

_supabase_client: Optional[Client] = None


# ============================================================================
# INITIALIZATION (called on app startup)
# ============================================================================

def create_supabase_client(settings: Settings) -> Client:
    return create_client(settings.supabase_url, settings.supabase_service_key)


async def initialize_clients(settings: Settings, client: Optional[Client] = None) -> Client:
    """
    Initialize global clients on app startup.

    Called from main.py lifespan event. A prebuilt client (tests) is used as-is.
    """
    global _supabase_client

    logger.info("Initializing global clients...")
    try:
        _supabase_client = client if client is not None else create_supabase_client(settings)
        logger.info("✅ Supabase client initialized")
    except Exception as e:
        logger.error(f"❌ Failed to initialize Supabase: {e}")
        raise

    return _supabase_client


async def shutdown_clients():
    global _supabase_client

    logger.info("Shutting down global clients...")
    # Supabase doesn't need explicit cleanup
    _supabase_client = None
    logger.info("✅ All clients shutdown complete")


# ============================================================================
# SERVICE WIRING (shared by the API and dramatiq actors)
# ============================================================================

def build_orchestrator(
    client: Client,
    settings: Settings,
    sync_config: SyncConfig,
    registry: ConnectorRegistry,
) -> SyncOrchestrator:
    schema = settings.db_schema
    return SyncOrchestrator(
        registry=registry,
        sync_config=sync_config,
        entity_store=EntityStore(client, schema),
        sync_state_store=SyncStateStore(client, schema),
        job_store=JobStore(client, schema),
    )


def build_worker(orchestrator: SyncOrchestrator, settings: Settings) -> SyncWorker:
    return SyncWorker(
        orchestrator,
        orchestrator.job_store,
        heartbeat_interval_seconds=settings.worker_heartbeat_interval_seconds,
    )


# ============================================================================
# DEPENDENCY FUNCTIONS (injected into routes)
# ============================================================================

def get_supabase() -> Client:
    """
    Get Supabase client for dependency injection.

    Raises:
        RuntimeError if initialize_clients() has not run
    """
    if _supabase_client is None:
        logger.error("Supabase client not initialized")
        raise RuntimeError("Supabase client not initialized. Call initialize_clients() first.")

    return _supabase_client


def get_sync_config(request: Request) -> SyncConfig:
    """App instances loaded at startup (main.py lifespan)."""
    sync_config = getattr(request.app.state, "sync_config", None)
    if sync_config is None:
        raise RuntimeError("Sync config not loaded. Is the lifespan running?")
    return sync_config


def get_connector_registry(request: Request) -> ConnectorRegistry:
    registry = getattr(request.app.state, "connectors", None)
    if registry is None:
        raise RuntimeError("Connector registry not built. Is the lifespan running?")
    return registry


def get_job_store(
    supabase: Client = Depends(get_supabase),
    settings: Settings = Depends(get_settings),
) -> JobStore:
    return JobStore(supabase, settings.db_schema)


def get_orchestrator(
    supabase: Client = Depends(get_supabase),
    settings: Settings = Depends(get_settings),
    sync_config: SyncConfig = Depends(get_sync_config),
    registry: ConnectorRegistry = Depends(get_connector_registry),
) -> SyncOrchestrator:
    return build_orchestrator(supabase, settings, sync_config, registry)


def get_worker(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
) -> SyncWorker:
    return build_worker(orchestrator, settings)


def get_webhook_pipeline(
    supabase: Client = Depends(get_supabase),
    settings: Settings = Depends(get_settings),
    sync_config: SyncConfig = Depends(get_sync_config),
    registry: ConnectorRegistry = Depends(get_connector_registry),
) -> WebhookPipeline:
    webhook_logs = WebhookLogStore(supabase, settings.db_schema) if settings.webhook_logging_enabled else None
    return WebhookPipeline(
        registry=registry,
        sync_config=sync_config,
        entity_store=EntityStore(supabase, settings.db_schema),
        webhook_logs=webhook_logs,
    )
