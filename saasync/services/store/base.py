"""
Supabase Store Base
Shared plumbing for the SaaSync tables (schema-scoped tables, error wrapping)
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from supabase import Client

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """A database operation failed."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a timestamp column returned by PostgREST."""
    if value is None or isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SupabaseStore:
    """Base class for table-backed stores."""

    def __init__(self, client: Client, schema: str = "saasync"):
        self.client = client
        self.schema = schema

    def _table(self, name: str):
        return self.client.schema(self.schema).table(name)

    def _execute(self, query, action: str):
        try:
            return query.execute()
        except Exception as e:
            logger.error(f"❌ {action} failed: {e}")
            raise StoreError(f"{action} failed: {e}") from e
