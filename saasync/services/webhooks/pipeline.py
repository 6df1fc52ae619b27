"""
Webhook Ingestion Pipeline
receive -> resolve app_key -> resolve connector -> verify -> parse -> extract -> apply -> respond

Each stage can end the request early with its own status code:
- 400 malformed app_key
- 404 unknown app_key
- 401 signature invalid
- 500 connector missing, invalid app config, or any failure after verification

ORDERING: the signature is checked on the raw body before the payload is
parsed, so unauthenticated requests never reach the parser or the store.

APPLICATION:
- create / update: upsert (one or many entities)
- archive: upsert with archived_at forced to the event timestamp
- delete: physical delete by identity; deleting a missing row is a no-op

Redelivery converges: upserts are keyed on the identity triple and repeated
deletes do nothing.
"""
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from saasync.core.app_config import SyncConfig, is_valid_app_key
from saasync.services.connectors.base import Connector, MultiEntityExtractor
from saasync.services.connectors.errors import ConfigurationError, WebhookVerificationError
from saasync.services.connectors.registry import ConnectorRegistry
from saasync.services.connectors.types import NormalizedEntity, ParsedWebhookEvent, WebhookRequest
from saasync.services.connectors.utils import Timer, get_connector_logger
from saasync.services.store.entities import EntityStore
from saasync.services.store.webhook_logs import WebhookLogStore

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Internal server error"


class WebhookOutcome(BaseModel):
    status_code: int
    body: Dict[str, Any]
    error_detail: Optional[str] = None


def _error(status_code: int, message: str, detail: Optional[str] = None) -> WebhookOutcome:
    return WebhookOutcome(status_code=status_code, body={"success": False, "error": message}, error_detail=detail or message)


def force_archived_at(entities: List[NormalizedEntity], event: ParsedWebhookEvent) -> List[NormalizedEntity]:
    """Stamp the event's own entity as archived at the event time."""
    target = next((e for e in entities if e.external_id == event.external_id), entities[0])
    return [
        entity.model_copy(update={"archived_at": event.timestamp}) if entity is target else entity
        for entity in entities
    ]


class WebhookPipeline:

    def __init__(
        self,
        registry: ConnectorRegistry,
        sync_config: SyncConfig,
        entity_store: EntityStore,
        webhook_logs: Optional[WebhookLogStore] = None,
    ):
        self.registry = registry
        self.sync_config = sync_config
        self.entity_store = entity_store
        self.webhook_logs = webhook_logs

    async def handle(self, app_key: str, request: WebhookRequest) -> WebhookOutcome:
        timer = Timer()
        outcome = await self._process(app_key, request)

        if self.webhook_logs is not None and is_valid_app_key(app_key):
            self.webhook_logs.record(
                app_key=app_key,
                request_method=request.method,
                request_path=request.path,
                request_headers=request.headers,
                response_status=outcome.status_code,
                response_body=outcome.body,
                error_message=outcome.error_detail if outcome.status_code >= 400 else None,
                processing_duration_ms=timer.elapsed_ms(),
            )
        return outcome

    async def _process(self, app_key: str, request: WebhookRequest) -> WebhookOutcome:
        # Resolve app instance
        if not is_valid_app_key(app_key):
            return _error(400, "Invalid app_key")

        app_config = self.sync_config.get_app(app_key)
        if app_config is None:
            return _error(404, "Unknown app_key")

        # Resolve connector
        connector = self.registry.get(app_config.connector)
        if connector is None:
            logger.error(f"❌ Webhook for {app_key}: connector '{app_config.connector}' not registered")
            return _error(500, GENERIC_ERROR, f"Connector not registered: {app_config.connector}")

        try:
            self.registry.validate_app_config(app_config)
        except ConfigurationError as e:
            logger.error(f"❌ Webhook for {app_key}: {e.message}")
            return _error(500, GENERIC_ERROR, e.message)

        # Verify signature on the raw body
        try:
            verification = await connector.verify_webhook(request, app_config)
        except WebhookVerificationError as e:
            verification = None
            logger.warning(f"⚠️  Webhook verification error for {app_key}: {e.reason}")
        except ConfigurationError as e:
            logger.error(f"❌ Webhook for {app_key} cannot be verified: {e.message}")
            return _error(500, GENERIC_ERROR, e.message)
        except Exception as e:
            logger.error(f"❌ Webhook verification crashed for {app_key}: {e}", exc_info=True)
            return _error(500, GENERIC_ERROR, str(e))

        if verification is None or not verification.valid:
            reason = verification.reason if verification else "verification error"
            logger.warning(f"⚠️  Rejected webhook for {app_key}: {reason}")
            return _error(401, "Webhook verification failed", reason)

        # Parse, extract, apply
        try:
            event = await connector.parse_webhook_event(verification.payload, app_config)
            return await self._apply(connector, app_config, event)
        except Exception as e:
            logger.error(f"❌ Webhook processing failed for {app_key}: {e}", exc_info=True)
            return _error(500, GENERIC_ERROR, str(e))

    async def _extract(self, connector: Connector, event: ParsedWebhookEvent, app_config) -> List[NormalizedEntity]:
        if isinstance(connector, MultiEntityExtractor):
            return list(await connector.extract_entities(event, app_config) or [])
        entity = await connector.extract_entity(event, app_config)
        return [entity] if entity else []

    async def _apply(self, connector: Connector, app_config, event: ParsedWebhookEvent) -> WebhookOutcome:
        log = get_connector_logger(connector.name)

        if event.event_type == "delete":
            if not event.external_id:
                return self._skipped(event, "delete without external id")
            collection_key = connector.collection_key_for(event.resource_type)
            deleted = self.entity_store.delete_entity(app_config.app_key, collection_key, event.external_id)
            log.webhook_processed(event.original_event_type, "delete")
            return self._ok(event, "delete", deleted)

        entities = await self._extract(connector, event, app_config)
        if not entities:
            return self._skipped(event, "no entities extracted")

        if event.event_type == "archive":
            entities = force_archived_at(entities, event)

        if len(entities) == 1:
            self.entity_store.upsert_entity(entities[0])
        else:
            self.entity_store.upsert_entities(entities)

        log.webhook_processed(event.original_event_type, event.event_type)
        return self._ok(event, event.event_type, len(entities))

    def _ok(self, event: ParsedWebhookEvent, action: str, entity_count: int) -> WebhookOutcome:
        return WebhookOutcome(
            status_code=200,
            body={
                "success": True,
                "action": action,
                "event_type": event.original_event_type,
                "resource_type": event.resource_type,
                "external_id": event.external_id,
                "entity_count": entity_count,
            },
        )

    def _skipped(self, event: ParsedWebhookEvent, reason: str) -> WebhookOutcome:
        logger.info(f"Skipping {event.original_event_type} ({event.resource_type}): {reason}")
        return self._ok(event, "skip", 0)
