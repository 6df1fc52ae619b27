"""
Connector Utilities
Helpers shared by provider integrations: normalization, results, timing,
credential lookup and connector-scoped logging
"""
import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from saasync.core.app_config import AppConfig
from saasync.services.connectors.errors import ConfigurationError
from saasync.services.connectors.types import NormalizedEntity, SyncResult

# Generic soft-delete markers, checked in order
ARCHIVED_TIMESTAMP_FIELDS = ("archived_at", "deleted_at", "canceled_at", "cancelled_at")


# ============================================================================
# NORMALIZATION
# ============================================================================

def build_collection_key(provider: str, resource_type: str) -> str:
    return f"{provider}_{resource_type}"


def extract_external_id(raw: Dict[str, Any], field: str = "id") -> str:
    value = raw.get(field)
    if value is None or value == "":
        raise ValueError(f"Missing '{field}' in payload")
    return str(value)


def timestamp_to_datetime(value: Any) -> Optional[datetime]:
    """Unix seconds, ISO-8601 strings and datetimes -> aware datetime."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def detect_archived_at(raw: Dict[str, Any]) -> Optional[datetime]:
    """Generic soft-delete detection from common provider fields."""
    for field in ARCHIVED_TIMESTAMP_FIELDS:
        archived = timestamp_to_datetime(raw.get(field))
        if archived:
            return archived
    if raw.get("archived") is True:
        return timestamp_to_datetime(raw.get("updated_at") or raw.get("updated"))
    return None


def create_normalized_entity(
    external_id: str,
    app_key: str,
    collection_key: str,
    raw_payload: Dict[str, Any],
    api_version: Optional[str] = None,
    archived_at: Optional[datetime] = None,
) -> NormalizedEntity:
    return NormalizedEntity(
        external_id=external_id,
        app_key=app_key,
        collection_key=collection_key,
        raw_payload=raw_payload,
        api_version=api_version,
        archived_at=archived_at,
    )


# ============================================================================
# SYNC RESULTS
# ============================================================================

def empty_sync_result() -> SyncResult:
    return SyncResult()


def failed_sync_result(message: str, duration_ms: int = 0) -> SyncResult:
    return SyncResult(success=False, errors=1, error_messages=[message], duration_ms=duration_ms)


def merge_sync_results(results: Iterable[SyncResult]) -> SyncResult:
    merged = SyncResult()
    for result in results:
        merged.success = merged.success and result.success
        merged.created += result.created
        merged.updated += result.updated
        merged.deleted += result.deleted
        merged.errors += result.errors
        merged.error_messages.extend(result.error_messages)
        merged.duration_ms += result.duration_ms
    return merged


class Timer:
    def __init__(self):
        self._start = time.monotonic()

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self._start) * 1000)


# ============================================================================
# CREDENTIALS
# ============================================================================

def resolve_secret(app_config: AppConfig, key: str, provider: str, required: bool = True) -> Optional[str]:
    """
    Resolve a credential for an app instance.

    Lookup order:
    1. config["<key>_env"] names an environment variable
    2. config["<key>"] literal value
    3. environment variable <PROVIDER>_<KEY>_<APP_KEY>
    """
    config = app_config.config
    env_name = config.get(f"{key}_env")
    if env_name:
        value = os.getenv(env_name)
        if value:
            return value
        if required:
            raise ConfigurationError(
                f"Environment variable {env_name} is not set",
                field=f"config.{key}_env",
                connector=provider,
            )
        return None

    if config.get(key):
        return config[key]

    fallback = f"{provider}_{key}_{app_config.app_key}".upper().replace("-", "_")
    value = os.getenv(fallback)
    if value:
        return value

    if required:
        raise ConfigurationError(
            f"No {key} configured for {app_config.app_key} (set config.{key}_env, config.{key} or {fallback})",
            field=f"config.{key}",
            connector=provider,
        )
    return None


# ============================================================================
# LOGGING
# ============================================================================

class ConnectorLogger(logging.LoggerAdapter):
    """Prefixes every message with [connector] and adds structured extras."""

    def process(self, msg, kwargs):
        extra = dict(kwargs.pop("extra", None) or {})
        extra.setdefault("connector", self.extra["connector"])
        kwargs["extra"] = extra
        return f"[{self.extra['connector']}] {msg}", kwargs

    def sync_started(self, mode: str, resource_types: List[str]) -> None:
        self.info(f"🔄 Starting {mode} sync: {', '.join(resource_types)}", extra={"mode": mode})

    def sync_completed(self, result: SyncResult) -> None:
        status = "✅" if result.success else "❌"
        self.info(
            f"{status} Sync finished: {result.created} created, {result.updated} updated, "
            f"{result.deleted} deleted, {result.errors} error(s) in {result.duration_ms}ms",
            extra={"created": result.created, "updated": result.updated, "deleted": result.deleted},
        )

    def webhook_received(self, event_type: str) -> None:
        self.info(f"📨 Webhook received: {event_type}")

    def webhook_processed(self, event_type: str, action: str) -> None:
        self.info(f"✅ Webhook processed: {event_type} -> {action}")


def get_connector_logger(connector: str) -> ConnectorLogger:
    return ConnectorLogger(logging.getLogger(f"saasync.connectors.{connector}"), {"connector": connector})
