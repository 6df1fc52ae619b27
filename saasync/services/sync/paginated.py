"""
Paginated Sync Utility
Generic cursor-pagination driver any connector's "list" primitive plugs into

FLOW (per resource):
1. list_page(cursor) until has_more is false or limit is reached
2. normalize each item, batch-upsert each page
3. full sync only: delete stored ids that the listing never returned
4. report progress after every page

RECONCILIATION GUARDS:
- Incremental runs (since is set) never delete
- A run truncated by limit never deletes (the listing is not authoritative)
- A run that failed mid-way never deletes
- With a historical floor, existing ids must be scoped with load_existing_ids(),
  which leaves out records created near the floor

ERRORS:
- A bad item is counted in errors and skipped; the rest of the page continues
- A page fetch or batch write failure aborts the loop and returns a partial
  result with success=False (callers retry the whole resource)
"""
import inspect
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Generic, Iterable, List, Optional, Set, TypeVar

from pydantic import BaseModel, Field

from saasync.services.connectors.errors import ConnectorError
from saasync.services.connectors.types import NormalizedEntity, SyncProgress, SyncResult
from saasync.services.connectors.utils import Timer, get_connector_logger

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Stored records created within this margin of the sync_from floor are never
# considered for deletion (clock skew between provider and floor)
FLOOR_SKEW_MARGIN_SECONDS = 300


class Page(BaseModel, Generic[T]):
    data: List[T] = Field(default_factory=list)
    has_more: bool = False
    next_cursor: Optional[str] = None


def reconciliation_floor(sync_from_timestamp: Optional[int]) -> Optional[int]:
    if sync_from_timestamp is None:
        return None
    return sync_from_timestamp + FLOOR_SKEW_MARGIN_SECONDS


def load_existing_ids(
    entity_store,
    app_key: str,
    collection_key: str,
    sync_from_timestamp: Optional[int] = None,
    created_field: str = "created",
) -> Set[str]:
    """Identity set for deletion reconciliation, scoped to the sync window."""
    return entity_store.list_external_ids(
        app_key,
        collection_key,
        created_after=reconciliation_floor(sync_from_timestamp),
        created_field=created_field,
    )


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


async def paginated_sync(
    *,
    resource_type: str,
    collection_key: str,
    list_page: Callable[[Optional[str]], Awaitable[Page]],
    get_id: Callable[[Any], str],
    normalize: Callable[[Any], NormalizedEntity],
    upsert_batch: Callable[[List[NormalizedEntity]], Any],
    delete_entity: Callable[[str], Any],
    existing_ids: Optional[Iterable[str]] = None,
    since: Optional[datetime] = None,
    sync_from_timestamp: Optional[int] = None,
    limit: Optional[int] = None,
    cursor: Optional[str] = None,
    on_progress: Optional[Callable[[SyncProgress], None]] = None,
    dry_run: bool = False,
    connector_name: str = "sync",
) -> SyncResult:
    """
    Drive a cursor-paginated listing into the entity store.

    Items whose id is in existing_ids are counted as updated, others as
    created. Without existing_ids every upsert counts as created. dry_run
    skips all writes but reports the counts a real run would produce.
    """
    log = get_connector_logger(connector_name)
    timer = Timer()
    result = SyncResult()
    known: Optional[Set[str]] = set(existing_ids) if existing_ids is not None else None
    seen: Set[str] = set()
    page_number = 0
    truncated = False
    prefix = "[DRY-RUN] " if dry_run else ""

    if sync_from_timestamp is not None and since is None:
        log.info(f"{resource_type}: sync_from floor {sync_from_timestamp} active")

    try:
        has_more = True
        while has_more:
            page_number += 1
            page = await list_page(cursor)

            entities: List[NormalizedEntity] = []
            for item in page.data:
                if limit and len(seen) >= limit:
                    truncated = True
                    break
                try:
                    item_id = get_id(item)
                except (KeyError, TypeError, ValueError) as e:
                    result.add_error(f"{resource_type}: item without id ({e})")
                    continue

                # Seen even if normalization fails: it exists upstream
                seen.add(item_id)
                try:
                    entities.append(normalize(item))
                except (ConnectorError, KeyError, TypeError, ValueError) as e:
                    result.add_error(f"{resource_type} {item_id}: {e}")
                    log.warning(f"Skipping {resource_type} {item_id}: {e}")

            if entities:
                if dry_run:
                    log.info(f"{prefix}Would upsert {len(entities)} {resource_type}(s)")
                else:
                    await _maybe_await(upsert_batch(entities))
                for entity in entities:
                    if known is not None and entity.external_id in known:
                        result.updated += 1
                    else:
                        result.created += 1

            if on_progress:
                on_progress(SyncProgress(
                    resource_type=resource_type,
                    collection_key=collection_key,
                    fetched=len(seen),
                    page=page_number,
                ))

            has_more = page.has_more
            if has_more and not page.next_cursor:
                raise ConnectorError(f"{resource_type}: listing reported more pages without a cursor", connector_name)
            cursor = page.next_cursor

            if limit and len(seen) >= limit:
                truncated = truncated or has_more
                log.info(f"Reached limit of {limit} {resource_type}(s)")
                break

        if known is not None:
            if since is not None:
                log.debug(f"{resource_type}: incremental run, skipping reconciliation")
            elif truncated:
                log.info(f"{resource_type}: listing truncated by limit, skipping reconciliation")
            else:
                for missing_id in sorted(known - seen):
                    if dry_run:
                        log.info(f"{prefix}Would delete {resource_type} {missing_id}")
                        result.deleted += 1
                        continue
                    try:
                        await _maybe_await(delete_entity(missing_id))
                        result.deleted += 1
                    except Exception as e:
                        result.add_error(f"Failed to delete {resource_type} {missing_id}: {e}")
                        log.error(f"Failed to delete {resource_type} {missing_id}: {e}")

        log.info(
            f"{prefix}Completed {resource_type} sync: {result.created} created, "
            f"{result.updated} updated, {result.deleted} deleted"
        )

    except Exception as e:
        result.success = False
        result.add_error(f"{resource_type} sync failed: {e}")
        log.error(f"❌ {resource_type} sync failed on page {page_number}: {e}")

    result.duration_ms = timer.elapsed_ms()
    return result
