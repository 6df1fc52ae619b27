"""
Stripe Webhooks
Signature verification, event parsing and entity extraction

Signature scheme (Stripe-Signature header):
    t=<unix seconds>,v1=<hex hmac>[,v1=...]
    v1 = HMAC-SHA256(secret, "<t>.<raw body>")

The body is only decoded as JSON after the signature check passes.
"""
import hashlib
import hmac
import json
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from saasync.core.app_config import AppConfig
from saasync.services.connectors.errors import NormalizationError
from saasync.services.connectors.stripe.normalization import normalize_stripe_entity
from saasync.services.connectors.stripe.types import CONNECTOR_NAME, STRIPE_WEBHOOK_EVENTS, WEBHOOK_TOLERANCE_SECONDS
from saasync.services.connectors.types import NormalizedEntity, ParsedWebhookEvent, WebhookVerificationResult
from saasync.services.connectors.utils import get_connector_logger

log = get_connector_logger(CONNECTOR_NAME)


# ============================================================================
# VERIFICATION
# ============================================================================

def compute_signature(secret: str, timestamp: int, body: bytes) -> str:
    signed_payload = f"{timestamp}.".encode("utf-8") + body
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def _parse_signature_header(header: str):
    timestamp = None
    signatures: List[str] = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                return None, []
        elif key == "v1" and value:
            signatures.append(value)
    return timestamp, signatures


def verify_stripe_signature(
    body: bytes,
    header: Optional[str],
    secret: str,
    tolerance_seconds: int = WEBHOOK_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> WebhookVerificationResult:
    if not header:
        return WebhookVerificationResult(valid=False, reason="Missing Stripe-Signature header")

    timestamp, signatures = _parse_signature_header(header)
    if timestamp is None or not signatures:
        return WebhookVerificationResult(valid=False, reason="Malformed Stripe-Signature header")

    expected = compute_signature(secret, timestamp, body)
    if not any(hmac.compare_digest(expected, signature) for signature in signatures):
        return WebhookVerificationResult(valid=False, reason="Signature mismatch")

    current = time.time() if now is None else now
    if tolerance_seconds and abs(current - timestamp) > tolerance_seconds:
        return WebhookVerificationResult(valid=False, reason="Timestamp outside tolerance")

    try:
        payload = json.loads(body)
    except ValueError:
        return WebhookVerificationResult(valid=False, reason="Body is not valid JSON")

    return WebhookVerificationResult(valid=True, payload=payload)


# ============================================================================
# PARSING
# ============================================================================

def parse_stripe_event(payload: Any) -> ParsedWebhookEvent:
    if not isinstance(payload, dict):
        raise NormalizationError("Stripe event is not an object", "event", connector=CONNECTOR_NAME)

    event_type = payload.get("type") or ""
    data = (payload.get("data") or {}).get("object")
    if not isinstance(data, dict):
        raise NormalizationError("Stripe event has no data.object", "event", field="data.object", connector=CONNECTOR_NAME)

    created = payload.get("created")
    timestamp = (
        datetime.fromtimestamp(created, tz=timezone.utc)
        if isinstance(created, (int, float))
        else datetime.now(timezone.utc)
    )
    metadata = {"livemode": payload.get("livemode"), "api_version": payload.get("api_version"), "event_id": payload.get("id")}

    mapping = STRIPE_WEBHOOK_EVENTS.get(event_type)
    if mapping is None:
        log.warning(f"Unknown event type: {event_type}")
        return ParsedWebhookEvent(
            event_type="update",
            original_event_type=event_type,
            resource_type="unknown",
            external_id=str(data.get("id") or ""),
            data=data,
            timestamp=timestamp,
            metadata=metadata,
        )

    resource_type, canonical_type = mapping
    return ParsedWebhookEvent(
        event_type=canonical_type,
        original_event_type=event_type,
        resource_type=resource_type,
        external_id=str(data.get("id") or ""),
        data=data,
        timestamp=timestamp,
        metadata=metadata,
    )


# ============================================================================
# EXTRACTION
# ============================================================================

def extract_stripe_entities(event: ParsedWebhookEvent, app_config: AppConfig) -> List[NormalizedEntity]:
    """Main entity plus, for subscriptions, the embedded subscription items."""
    if event.resource_type == "unknown" or event.event_type == "delete":
        return []

    entities = [normalize_stripe_entity(event.resource_type, event.data, app_config)]

    if event.resource_type == "subscription":
        items: Dict[str, Any] = event.data.get("items") or {}
        item_data = items.get("data") if isinstance(items, dict) else None
        if isinstance(item_data, list):
            for item in item_data:
                linked = {"subscription": event.external_id, **item} if isinstance(item, dict) else item
                entities.append(normalize_stripe_entity("subscription_item", linked, app_config))
            if items.get("has_more"):
                log.warning(
                    f"Subscription {event.external_id} has more items than embedded in the webhook; "
                    f"run a full sync to capture all items"
                )
        else:
            log.warning(f"Subscription {event.external_id} has no embedded items in webhook payload")

    return entities
