"""
Stripe Connector
Reference integration: customers, products, prices, plans, subscriptions
and subscription items (synced with their subscription)
"""
import time
from datetime import datetime
from typing import Any, Callable, List, Optional

import httpx

from saasync.core.app_config import AppConfig
from saasync.services.connectors.base import (
    ConfigValidator,
    Connector,
    IncrementalSyncCapable,
    MultiEntityExtractor,
)
from saasync.services.connectors.errors import ConfigurationError
from saasync.services.connectors.stripe import client as stripe_client
from saasync.services.connectors.stripe.normalization import normalize_stripe_entity
from saasync.services.connectors.stripe.sync import sync_resource
from saasync.services.connectors.stripe.types import (
    CONNECTOR_NAME,
    DEFAULT_API_VERSION,
    STRIPE_COLLECTION_KEYS,
    SYNCABLE_RESOURCES,
    WEBHOOK_TOLERANCE_SECONDS,
)
from saasync.services.connectors.stripe.webhooks import (
    extract_stripe_entities,
    parse_stripe_event,
    verify_stripe_signature,
)
from saasync.services.connectors.types import (
    ConfigFieldError,
    ConfigValidationResult,
    ConnectorMetadata,
    NormalizedEntity,
    ParsedWebhookEvent,
    SupportedResource,
    SyncOptions,
    SyncResult,
    WebhookRequest,
    WebhookVerificationResult,
)
from saasync.services.connectors.utils import (
    Timer,
    failed_sync_result,
    get_connector_logger,
    merge_sync_results,
)

log = get_connector_logger(CONNECTOR_NAME)

STRIPE_METADATA = ConnectorMetadata(
    name=CONNECTOR_NAME,
    display_name="Stripe",
    version="1.0.0",
    api_version=DEFAULT_API_VERSION,
    resources=[
        SupportedResource(
            resource_type=resource_type,
            collection_key=STRIPE_COLLECTION_KEYS[resource_type],
            supports_incremental=True,
            supports_webhooks=True,
        )
        for resource_type in SYNCABLE_RESOURCES
    ] + [
        SupportedResource(
            resource_type="subscription_item",
            collection_key=STRIPE_COLLECTION_KEYS["subscription_item"],
            description="Synced as part of subscription",
            supports_incremental=True,
            supports_webhooks=True,
            synced_with_parent="subscription",
        ),
    ],
)


class StripeConnector(Connector, IncrementalSyncCapable, MultiEntityExtractor, ConfigValidator):

    def __init__(
        self,
        entity_store,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        webhook_tolerance_seconds: int = WEBHOOK_TOLERANCE_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.entity_store = entity_store
        self._transport = transport
        self._webhook_tolerance_seconds = webhook_tolerance_seconds
        self._clock = clock

    @property
    def metadata(self) -> ConnectorMetadata:
        return STRIPE_METADATA

    # ============================================================================
    # CONFIG
    # ============================================================================

    def validate_config(self, app_config: AppConfig) -> ConfigValidationResult:
        errors: List[ConfigFieldError] = []

        try:
            stripe_client.get_api_key(app_config)
        except ConfigurationError as e:
            errors.append(ConfigFieldError(
                field=e.field or "config.api_key",
                message=e.message,
                suggestion="Set config.api_key_env to the name of an environment variable holding the secret key",
            ))

        resources = app_config.config.get("sync_resources")
        if resources is not None:
            if not isinstance(resources, list):
                errors.append(ConfigFieldError(field="config.sync_resources", message="must be a list"))
            else:
                unknown = [resource for resource in resources if resource not in SYNCABLE_RESOURCES]
                if unknown:
                    errors.append(ConfigFieldError(
                        field="config.sync_resources",
                        message=f"Unknown resource type(s): {', '.join(map(str, unknown))}",
                        suggestion=f"Valid values: {', '.join(SYNCABLE_RESOURCES)}",
                    ))

        try:
            stripe_client.get_sync_from_timestamp(app_config)
        except ConfigurationError as e:
            errors.append(ConfigFieldError(
                field="sync_from",
                message=e.message,
                suggestion="Use an ISO-8601 date such as 2024-01-01T00:00:00Z",
            ))

        return ConfigValidationResult(valid=not errors, errors=errors)

    # ============================================================================
    # WEBHOOKS
    # ============================================================================

    async def verify_webhook(self, request: WebhookRequest, app_config: AppConfig) -> WebhookVerificationResult:
        secret = stripe_client.get_webhook_secret(app_config)
        result = verify_stripe_signature(
            request.body,
            request.header("stripe-signature"),
            secret,
            tolerance_seconds=self._webhook_tolerance_seconds,
            now=self._clock(),
        )
        if not result.valid:
            log.warning(f"Webhook verification failed for {app_config.app_key}: {result.reason}")
        return result

    async def parse_webhook_event(self, payload: Any, app_config: AppConfig) -> ParsedWebhookEvent:
        event = parse_stripe_event(payload)
        log.webhook_received(event.original_event_type)
        return event

    async def extract_entity(self, event: ParsedWebhookEvent, app_config: AppConfig) -> Optional[NormalizedEntity]:
        entities = extract_stripe_entities(event, app_config)
        return entities[0] if entities else None

    async def extract_entities(self, event: ParsedWebhookEvent, app_config: AppConfig) -> List[NormalizedEntity]:
        return extract_stripe_entities(event, app_config)

    def normalize_entity(self, resource_type: str, raw: dict, app_config: AppConfig) -> NormalizedEntity:
        return normalize_stripe_entity(resource_type, raw, app_config)

    # ============================================================================
    # SYNC
    # ============================================================================

    def _client(self, app_config: AppConfig) -> stripe_client.StripeClient:
        return stripe_client.StripeClient(stripe_client.get_api_key(app_config), transport=self._transport)

    async def _run(
        self,
        mode: str,
        app_config: AppConfig,
        options: SyncOptions,
        since: Optional[datetime] = None,
    ) -> SyncResult:
        timer = Timer()
        resource_types = options.resource_types or stripe_client.get_resource_types_to_sync(app_config)
        sync_from_timestamp = None if since else stripe_client.get_sync_from_timestamp(app_config)
        log.sync_started(mode, resource_types)

        results = []
        async with self._client(app_config) as client:
            for resource_type in resource_types:
                if resource_type not in SYNCABLE_RESOURCES:
                    results.append(failed_sync_result(f"Unknown or nested resource type: {resource_type}"))
                    continue
                results.append(await sync_resource(
                    client,
                    self.entity_store,
                    app_config,
                    resource_type,
                    options,
                    since=since,
                    sync_from_timestamp=sync_from_timestamp,
                ))

        merged = merge_sync_results(results)
        merged.duration_ms = timer.elapsed_ms()
        log.sync_completed(merged)
        return merged

    async def full_sync(self, app_config: AppConfig, options: SyncOptions) -> SyncResult:
        return await self._run("full", app_config, options)

    async def incremental_sync(self, app_config: AppConfig, since: datetime, options: SyncOptions) -> SyncResult:
        return await self._run("incremental", app_config, options, since=since)
