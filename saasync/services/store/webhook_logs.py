"""
Webhook Request Log
Optional audit trail of webhook requests (enabled with WEBHOOK_LOGGING_ENABLED)

SECURITY: signature, authorization and cookie headers are redacted before
anything is written. Raw request bodies are never stored.
"""
import logging
from typing import Any, Dict, Mapping, Optional

from saasync.services.store.base import SupabaseStore

logger = logging.getLogger(__name__)

WEBHOOK_LOGS_TABLE = "webhook_logs"

SENSITIVE_HEADERS = {"authorization", "cookie", "set-cookie", "x-api-key"}
REDACTED = "[REDACTED]"


def is_sensitive_header(name: str) -> bool:
    """Credentials plus every provider signature header (stripe-signature, x-hub-signature-256, ...)."""
    lowered = name.lower()
    return lowered in SENSITIVE_HEADERS or "signature" in lowered


def sanitize_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    return {
        key: REDACTED if is_sensitive_header(key) else value
        for key, value in headers.items()
    }


class WebhookLogStore(SupabaseStore):

    def record(
        self,
        app_key: str,
        request_method: str,
        request_path: str,
        request_headers: Mapping[str, str],
        response_status: int,
        response_body: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
        processing_duration_ms: Optional[int] = None,
    ) -> None:
        """Write one log row. Failures are logged and swallowed."""
        row = {
            "app_key": app_key,
            "request_method": request_method,
            "request_path": request_path,
            "request_headers": sanitize_headers(request_headers),
            "response_status": response_status,
            "response_body": response_body,
            "error_message": error_message,
            "processing_duration_ms": processing_duration_ms,
        }
        try:
            self._table(WEBHOOK_LOGS_TABLE).insert(row).execute()
        except Exception as e:
            logger.warning(f"⚠️  Failed to write webhook log for {app_key}: {e}")
