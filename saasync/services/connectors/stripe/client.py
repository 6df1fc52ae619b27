"""
Stripe API Client
Thin async wrapper over the Stripe REST API (list endpoints only)

Errors are mapped onto the connector taxonomy so that retry policy lives in
one place (with_connector_retry).
"""
import logging
from datetime import timezone
from typing import Any, Dict, List, Optional

import httpx

from saasync.core.app_config import AppConfig
from saasync.core.circuit_breakers import with_connector_retry
from saasync.services.connectors.errors import ApiError, ConfigurationError, ConnectorError, RateLimitError
from saasync.services.connectors.stripe.types import (
    CONNECTOR_NAME,
    DEFAULT_API_VERSION,
    STRIPE_API_BASE,
    SYNCABLE_RESOURCES,
)
from saasync.services.connectors.utils import resolve_secret, timestamp_to_datetime

logger = logging.getLogger(__name__)


def get_api_key(app_config: AppConfig) -> str:
    return resolve_secret(app_config, "api_key", CONNECTOR_NAME)


def get_webhook_secret(app_config: AppConfig) -> str:
    return resolve_secret(app_config, "webhook_secret", CONNECTOR_NAME)


def get_resource_types_to_sync(app_config: AppConfig) -> List[str]:
    configured = app_config.config.get("sync_resources")
    if not configured:
        return list(SYNCABLE_RESOURCES)
    return [resource for resource in configured if resource in SYNCABLE_RESOURCES]


def get_sync_from_timestamp(app_config: AppConfig) -> Optional[int]:
    """Historical floor in unix seconds, from app.sync_from or config.sync_from."""
    value = app_config.sync_from or app_config.config.get("sync_from")
    if value is None:
        return None
    parsed = timestamp_to_datetime(value)
    if parsed is None:
        raise ConfigurationError(
            f"Invalid sync_from value: {value!r}",
            field="sync_from",
            connector=CONNECTOR_NAME,
        )
    return int(parsed.astimezone(timezone.utc).timestamp())


class StripeClient:
    """
    Usage:
        async with StripeClient(api_key) as stripe:
            page = await stripe.list("/v1/customers", {"limit": 100})
    """

    def __init__(
        self,
        api_key: str,
        api_version: str = DEFAULT_API_VERSION,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        self._http = httpx.AsyncClient(
            base_url=STRIPE_API_BASE,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Stripe-Version": api_version,
            },
            transport=transport,
            timeout=timeout,
        )

    async def __aenter__(self) -> "StripeClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    @with_connector_retry(max_attempts=3, min_wait=1, max_wait=10)
    async def list(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """GET a Stripe list endpoint. Returns {"data": [...], "has_more": bool}."""
        try:
            response = await self._http.get(path, params=params)
        except httpx.TimeoutException as e:
            raise ApiError(f"Stripe request timed out: {path}", 408, CONNECTOR_NAME) from e
        except httpx.TransportError as e:
            raise ConnectorError(f"Stripe connection error: {e}", CONNECTOR_NAME, retryable=True) from e

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            retry_after_seconds = float(retry_after) if retry_after and retry_after.isdigit() else None
            raise RateLimitError("Stripe rate limit exceeded", CONNECTOR_NAME, retry_after_seconds=retry_after_seconds)

        if response.status_code >= 400:
            try:
                body = response.json()
                message = body.get("error", {}).get("message") or response.reason_phrase
            except ValueError:
                body = None
                message = response.reason_phrase
            logger.error(f"❌ Stripe API error {response.status_code} on {path}: {message}")
            raise ApiError(f"Stripe API error ({response.status_code}): {message}", response.status_code, CONNECTOR_NAME, body)

        return response.json()
