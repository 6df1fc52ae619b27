"""
Stripe Normalization
Canonical entity mapping and archived-state detection for Stripe objects

ARCHIVE RULES (deterministic, from the object's own fields):
- product / price / plan: active == false -> updated (or created) timestamp
- subscription: status == "canceled" -> canceled_at (or ended_at, created)
- customer / subscription_item: never archived (customers are hard-deleted)
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from saasync.core.app_config import AppConfig
from saasync.services.connectors.errors import NormalizationError
from saasync.services.connectors.stripe.types import CONNECTOR_NAME, DEFAULT_API_VERSION, STRIPE_COLLECTION_KEYS
from saasync.services.connectors.types import NormalizedEntity
from saasync.services.connectors.utils import create_normalized_entity, timestamp_to_datetime

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _first_timestamp(data: Dict[str, Any], *fields: str) -> datetime:
    for field in fields:
        value = timestamp_to_datetime(data.get(field))
        if value:
            return value
    return EPOCH


def detect_archived_at(resource_type: str, data: Dict[str, Any]) -> Optional[datetime]:
    if resource_type in ("product", "price", "plan"):
        if data.get("active") is False:
            return _first_timestamp(data, "updated", "created")
        return None

    if resource_type == "subscription":
        if data.get("status") == "canceled":
            return _first_timestamp(data, "canceled_at", "ended_at", "created")
        return None

    return None


def normalize_stripe_entity(resource_type: str, data: Dict[str, Any], app_config: AppConfig) -> NormalizedEntity:
    collection_key = STRIPE_COLLECTION_KEYS.get(resource_type)
    if collection_key is None:
        raise NormalizationError(f"Unknown Stripe resource type: {resource_type}", resource_type, connector=CONNECTOR_NAME)

    if not isinstance(data, dict):
        raise NormalizationError(f"Stripe {resource_type} payload is not an object", resource_type, connector=CONNECTOR_NAME)

    external_id = data.get("id")
    if not isinstance(external_id, str) or not external_id:
        raise NormalizationError(
            f"Stripe {resource_type} payload has no id",
            resource_type,
            field="id",
            connector=CONNECTOR_NAME,
        )

    return create_normalized_entity(
        external_id=external_id,
        app_key=app_config.app_key,
        collection_key=collection_key,
        raw_payload=data,
        api_version=DEFAULT_API_VERSION,
        archived_at=detect_archived_at(resource_type, data),
    )
