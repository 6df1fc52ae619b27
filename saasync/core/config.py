"""
Unified Configuration
All environment variables and settings in one place

ARCHITECTURE:
- ONE Supabase project holds the canonical entity store and the job queue
- All SaaSync tables live in a dedicated Postgres schema (default: saasync)
- Provider app instances are declared in a JSON file (see app_config.py)

LIFECYCLE:
- Settings are read once per process via get_settings() and are immutable
- Entry points receive settings explicitly (lifespan, dramatiq actors, tests)
"""
from functools import lru_cache
from typing import List, Optional
import logging
from pydantic_settings import BaseSettings
from pydantic import Field, model_validator

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings.
    Validates all environment variables at startup.
    """

    # ============================================================================
    # SERVER
    # ============================================================================

    environment: str = Field(default="production", description="Environment: development/staging/production")
    port: int = Field(default=8080, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")

    # ============================================================================
    # DATABASE (Supabase PostgreSQL)
    # ============================================================================

    supabase_url: str = Field(description="Supabase project URL")
    supabase_service_key: str = Field(description="Supabase service key (backend uses this)")
    db_schema: str = Field(default="saasync", description="Postgres schema holding the SaaSync tables")

    # ============================================================================
    # APP INSTANCES
    # ============================================================================

    apps_config_path: str = Field(default="saasync.apps.json", description="JSON file declaring provider app instances")

    # ============================================================================
    # API KEYS
    # ============================================================================

    admin_api_key: Optional[str] = Field(default=None, description="Bearer key for /sync, /sync/jobs and /worker")

    # ============================================================================
    # WORKER
    # ============================================================================

    redis_url: Optional[str] = Field(default=None, description="Redis connection URL (dramatiq broker)")
    dispatch_workers: bool = Field(default=True, description="Enqueue a worker run after creating a sync job")
    worker_max_runtime_seconds: float = Field(default=45.0, description="Soft wall-clock budget per worker invocation")
    worker_task_reserve_seconds: float = Field(default=5.0, description="Stop claiming tasks when less than this remains")
    worker_heartbeat_interval_seconds: float = Field(default=5.0, description="Task heartbeat refresh interval")
    task_heartbeat_timeout_seconds: int = Field(default=300, description="Processing tasks without a heartbeat for this long are reclaimed")
    job_retention_days: int = Field(default=7, description="Finished (completed/failed/cancelled) jobs older than this are deleted")

    # ============================================================================
    # HTTP LIMITS
    # ============================================================================

    webhook_rate_limit: str = Field(default="100/minute", description="Webhook rate limit per app_key and client IP")
    sync_rate_limit: str = Field(default="10/minute", description="Rate limit for POST /sync")
    max_request_bytes: int = Field(default=1024 * 1024, description="Maximum accepted request body size")

    # ============================================================================
    # WEBHOOK LOGGING
    # ============================================================================

    webhook_logging_enabled: bool = Field(default=False, description="Persist webhook requests to webhook_logs")

    # ============================================================================
    # PRODUCTION INFRASTRUCTURE
    # ============================================================================

    sentry_dsn: Optional[str] = Field(default=None, description="Sentry DSN for error tracking")

    # ============================================================================
    # CORS
    # ============================================================================

    cors_allowed_origins: str = Field(default="http://localhost:3000", description="Comma-separated list of allowed CORS origins")

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.cors_allowed_origins.split(",") if origin.strip()]

    @model_validator(mode='after')
    def validate_settings(self):
        """
        Validate critical settings at startup.

        SECURITY CHECKS:
        - Warn if admin endpoints are unprotected
        - Warn if running in production without Sentry
        - Warn if debug mode enabled in production
        """
        if self.environment == "production":
            if self.debug:
                logger.warning("⚠️  DEBUG MODE ENABLED IN PRODUCTION! This is insecure.")

            if not self.sentry_dsn:
                logger.warning("⚠️  Sentry not configured in production. Error tracking disabled.")

        if not self.admin_api_key:
            logger.warning("⚠️  ADMIN_API_KEY not set. Admin endpoints will reject every request.")

        if self.worker_task_reserve_seconds >= self.worker_max_runtime_seconds:
            raise ValueError("worker_task_reserve_seconds must be smaller than worker_max_runtime_seconds")

        logger.info("=" * 80)
        logger.info("SaaSync Configuration Loaded")
        logger.info("=" * 80)
        logger.info(f"Environment: {self.environment}")
        logger.info(f"Debug: {self.debug}")
        logger.info(f"Supabase URL: {self.supabase_url}")
        logger.info(f"Schema: {self.db_schema}")
        logger.info(f"Apps config: {self.apps_config_path}")
        logger.info(f"Redis: {'✅ Configured' if self.redis_url else '❌ Not configured'}")
        logger.info(f"Sentry: {'✅ Configured' if self.sentry_dsn else '❌ Not configured'}")
        logger.info(f"Webhook logging: {'✅ Enabled' if self.webhook_logging_enabled else '❌ Disabled'}")
        logger.info("=" * 80)

        return self

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        frozen = True


@lru_cache()
def get_settings() -> Settings:
    """Load settings once per process."""
    return Settings()
