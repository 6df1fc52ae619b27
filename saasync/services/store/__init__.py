"""
Persistence Layer
Supabase-backed stores for entities, sync state, jobs and webhook logs
"""
from saasync.services.store.base import StoreError
from saasync.services.store.entities import EntityStore, entity_to_row
from saasync.services.store.sync_state import SyncState, SyncStateStore
from saasync.services.store.jobs import JobStore, derive_job_status
from saasync.services.store.webhook_logs import WebhookLogStore, sanitize_headers

__all__ = [
    "StoreError",
    "EntityStore",
    "entity_to_row",
    "SyncState",
    "SyncStateStore",
    "JobStore",
    "derive_job_status",
    "WebhookLogStore",
    "sanitize_headers",
]
