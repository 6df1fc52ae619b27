"""
Stripe Sync
Full and incremental pulls over Stripe's starting_after cursor pagination

Every resource goes through paginated_sync. Subscriptions additionally carry
their subscription items: embedded items are collected while the
subscriptions are normalized, overflowing item lists are fetched from
/v1/subscription_items, and items are reconciled alongside their parents.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from saasync.core.app_config import AppConfig
from saasync.services.connectors.stripe.client import StripeClient
from saasync.services.connectors.stripe.normalization import normalize_stripe_entity
from saasync.services.connectors.stripe.types import (
    CONNECTOR_NAME,
    DEFAULT_PAGE_SIZE,
    LIST_PATHS,
    STRIPE_COLLECTION_KEYS,
)
from saasync.services.connectors.types import NormalizedEntity, SyncOptions, SyncResult
from saasync.services.connectors.utils import Timer, failed_sync_result, get_connector_logger
from saasync.services.sync.paginated import Page, load_existing_ids, paginated_sync

log = get_connector_logger(CONNECTOR_NAME)


def _page_lister(client: StripeClient, path: str, page_size: int, created_gte: Optional[int], extra: Dict[str, Any]):
    async def list_page(cursor: Optional[str]) -> Page:
        params: Dict[str, Any] = {"limit": page_size, **extra}
        if cursor:
            params["starting_after"] = cursor
        if created_gte is not None:
            params["created[gte]"] = created_gte
        body = await client.list(path, params)
        data = body.get("data") or []
        return Page(
            data=data,
            has_more=bool(body.get("has_more")),
            next_cursor=data[-1]["id"] if data else None,
        )

    return list_page


async def sync_resource(
    client: StripeClient,
    entity_store,
    app_config: AppConfig,
    resource_type: str,
    options: SyncOptions,
    since: Optional[datetime] = None,
    sync_from_timestamp: Optional[int] = None,
) -> SyncResult:
    """Sync one top-level Stripe resource. since set -> incremental."""
    path = LIST_PATHS.get(resource_type)
    if path is None or resource_type == "subscription_item":
        return failed_sync_result(f"Unsupported Stripe resource for direct sync: {resource_type}")

    app_key = app_config.app_key
    collection_key = STRIPE_COLLECTION_KEYS[resource_type]
    created_gte = int(since.timestamp()) if since else sync_from_timestamp
    existing_ids = None if since else load_existing_ids(entity_store, app_key, collection_key, sync_from_timestamp)

    extra: Dict[str, Any] = {"status": "all"} if resource_type == "subscription" else {}
    embedded_items: List[NormalizedEntity] = []
    overflowing: List[str] = []
    seen_subscriptions: Set[str] = set()

    def normalize(item: Dict[str, Any]) -> NormalizedEntity:
        entity = normalize_stripe_entity(resource_type, item, app_config)
        if resource_type == "subscription":
            seen_subscriptions.add(entity.external_id)
            items = item.get("items") or {}
            for sub_item in items.get("data") or []:
                embedded_items.append(_normalize_item(sub_item, entity.external_id, app_config))
            if items.get("has_more"):
                overflowing.append(entity.external_id)
        return entity

    result = await paginated_sync(
        resource_type=resource_type,
        collection_key=collection_key,
        list_page=_page_lister(client, path, options.page_size or DEFAULT_PAGE_SIZE, created_gte, extra),
        get_id=lambda item: item["id"],
        normalize=normalize,
        upsert_batch=entity_store.upsert_entities,
        delete_entity=lambda external_id: entity_store.delete_entity(app_key, collection_key, external_id),
        existing_ids=existing_ids,
        since=since,
        sync_from_timestamp=sync_from_timestamp,
        limit=options.limit,
        cursor=options.cursor,
        on_progress=options.on_progress,
        dry_run=options.dry_run,
        connector_name=CONNECTOR_NAME,
    )

    if resource_type == "subscription" and result.success:
        item_result = await _sync_subscription_items(
            client,
            entity_store,
            app_config,
            embedded_items,
            overflowing,
            seen_subscriptions,
            options,
            since,
            sync_from_timestamp,
        )
        result.created += item_result.created
        result.updated += item_result.updated
        result.deleted += item_result.deleted
        result.errors += item_result.errors
        result.error_messages.extend(item_result.error_messages)
        result.success = item_result.success

    return result


def _normalize_item(raw: Dict[str, Any], subscription_id: str, app_config: AppConfig) -> NormalizedEntity:
    # Stripe sends the parent id on every item; keep the link even if a payload lacks it
    return normalize_stripe_entity("subscription_item", {"subscription": subscription_id, **raw}, app_config)


async def _sync_subscription_items(
    client: StripeClient,
    entity_store,
    app_config: AppConfig,
    embedded_items: List[NormalizedEntity],
    overflowing: List[str],
    seen_subscriptions: Set[str],
    options: SyncOptions,
    since: Optional[datetime],
    sync_from_timestamp: Optional[int],
) -> SyncResult:
    """
    Upsert the items of the listed subscriptions and reconcile stored items.

    Items are listed through their parents, so under a sync_from floor only
    stored items whose subscription was listed in this run are candidates
    for deletion. An item added recently to a subscription older than the
    floor is never seen here and must be kept.
    """
    timer = Timer()
    result = SyncResult()
    app_key = app_config.app_key
    collection_key = STRIPE_COLLECTION_KEYS["subscription_item"]
    items: Dict[str, NormalizedEntity] = {item.external_id: item for item in embedded_items}

    try:
        for subscription_id in overflowing:
            list_page = _page_lister(
                client, LIST_PATHS["subscription_item"], DEFAULT_PAGE_SIZE, None, {"subscription": subscription_id}
            )
            cursor = None
            while True:
                page = await list_page(cursor)
                for raw in page.data:
                    item = _normalize_item(raw, subscription_id, app_config)
                    items[item.external_id] = item
                if not page.has_more:
                    break
                cursor = page.next_cursor

        reconcile = since is None and not options.limit
        if not reconcile:
            existing: Set[str] = set()
        elif sync_from_timestamp is not None:
            existing = entity_store.list_external_ids(
                app_key, collection_key, parent_field="subscription", parent_ids=seen_subscriptions
            )
        else:
            existing = load_existing_ids(entity_store, app_key, collection_key)

        if items and not options.dry_run:
            entity_store.upsert_entities(list(items.values()))
        for item_id in items:
            if item_id in existing:
                result.updated += 1
            else:
                result.created += 1

        if reconcile:
            for missing_id in sorted(existing - set(items)):
                if not options.dry_run:
                    entity_store.delete_entity(app_key, collection_key, missing_id)
                result.deleted += 1

        log.info(f"Synced {len(items)} subscription item(s), {result.deleted} removed")
    except Exception as e:
        result.success = False
        result.add_error(f"subscription_item sync failed: {e}")
        log.error(f"❌ subscription_item sync failed: {e}")

    result.duration_ms = timer.elapsed_ms()
    return result
