"""
App Instance Configuration
Declares which provider app instances exist (e.g. "stripe account A")

FILE FORMAT (JSON):
{
    "apps": [
        {
            "app_key": "stripe_prod",
            "name": "Stripe Production",
            "connector": "stripe",
            "sync_from": "2024-01-01T00:00:00Z",
            "config": {"api_key_env": "STRIPE_API_KEY", "webhook_secret_env": "STRIPE_WEBHOOK_SECRET"}
        }
    ]
}

The file is loaded once at process start. The resulting SyncConfig is frozen
and handed to every entry point explicitly.
"""
import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

APP_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
APP_KEY_MAX_LENGTH = 64


def is_valid_app_key(app_key: Optional[str]) -> bool:
    """app_key is embedded in webhook URLs, so keep it to a safe charset."""
    if not app_key or not isinstance(app_key, str):
        return False
    return len(app_key) <= APP_KEY_MAX_LENGTH and bool(APP_KEY_PATTERN.fullmatch(app_key))


class AppConfig(BaseModel):
    """One configured instance of a provider."""
    model_config = ConfigDict(frozen=True)

    app_key: str
    name: str
    connector: str
    config: Dict[str, Any] = Field(default_factory=dict)
    sync_from: Optional[datetime] = None

    @field_validator("app_key")
    @classmethod
    def validate_app_key(cls, value: str) -> str:
        if not is_valid_app_key(value):
            raise ValueError(
                f"app_key must match {APP_KEY_PATTERN.pattern} and be at most {APP_KEY_MAX_LENGTH} characters"
            )
        return value

    @field_validator("name", "connector")
    @classmethod
    def validate_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value


class SyncConfig(BaseModel):
    """All configured app instances."""
    model_config = ConfigDict(frozen=True)

    apps: List[AppConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_app_keys(self):
        seen = set()
        for app in self.apps:
            if app.app_key in seen:
                raise ValueError(f"Duplicate app_key: {app.app_key}")
            seen.add(app.app_key)
        return self

    def get_app(self, app_key: str) -> Optional[AppConfig]:
        for app in self.apps:
            if app.app_key == app_key:
                return app
        return None

    def apps_for_connector(self, connector: str) -> List[AppConfig]:
        return [app for app in self.apps if app.connector == connector]


def load_sync_config(path: str) -> SyncConfig:
    """
    Load app instances from a JSON file.

    A missing file yields an empty config (webhooks then answer 404).
    A malformed file raises, failing startup.
    """
    config_path = Path(path)
    if not config_path.exists():
        logger.warning(f"⚠️  Apps config {path} not found, no app instances configured")
        return SyncConfig()

    with config_path.open("r", encoding="utf-8") as f:
        raw = json.load(f)

    sync_config = SyncConfig.model_validate(raw)
    logger.info(f"✅ Loaded {len(sync_config.apps)} app instance(s) from {path}")
    return sync_config
