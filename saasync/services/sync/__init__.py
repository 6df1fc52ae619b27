"""
Pull Sync Engine
Generic paginated sync driver and the sync orchestrator
"""
from saasync.services.sync.paginated import Page, load_existing_ids, paginated_sync
from saasync.services.sync.orchestrator import SyncOrchestrator, SyncRequestError

__all__ = [
    "Page",
    "load_existing_ids",
    "paginated_sync",
    "SyncOrchestrator",
    "SyncRequestError",
]
