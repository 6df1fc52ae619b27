"""
SaaSync - SaaS Change Data Capture
==================================
Version: 1.0.0

FastAPI application entry point.

Run:
    python main.py
    uvicorn main:create_app --factory --port 8080

Architecture:
- saasync/core/: Configuration, app instances, dependencies, security
- saasync/middleware/: Error handling, logging, CORS, rate limiting
- saasync/models/: Pydantic schemas
- saasync/services/: Connectors, entity store, sync, jobs, webhooks
- saasync/api/v1/routes/: API endpoints
"""
import sys
import logging
import traceback
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

# Startup error handling
try:
    from slowapi.errors import RateLimitExceeded

    # Import core components
    from saasync import __version__
    from saasync.core.app_config import SyncConfig, load_sync_config
    from saasync.core.config import Settings, get_settings
    from saasync.core.dependencies import initialize_clients, shutdown_clients
    from saasync.services.connectors.registry import ConnectorRegistry, build_connector_registry
    from saasync.services.store import EntityStore

    # Import middleware
    from saasync.middleware.cors import get_cors_middleware
    from saasync.middleware.error_handler import ErrorHandlerMiddleware
    from saasync.middleware.logging import RequestLoggingMiddleware
    from saasync.middleware.rate_limit import limiter, rate_limit_exceeded_handler
    from saasync.middleware.security_headers import SecurityHeadersMiddleware

    # Import routes
    from saasync.api.v1.routes.health import router as health_router
    from saasync.api.v1.routes.webhook import router as webhook_router
    from saasync.api.v1.routes.sync import router as sync_router
    from saasync.api.v1.routes.worker import router as worker_router

except Exception as e:
    print(f"🚨 FATAL STARTUP ERROR: {e}", file=sys.stderr)
    print(f"Traceback:\n{traceback.format_exc()}", file=sys.stderr)
    sys.exit(1)

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.INFO if settings.environment == "production" else logging.DEBUG,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


# ============================================================================
# SENTRY ERROR TRACKING
# ============================================================================

def init_sentry(settings: Settings) -> None:
    if not settings.sentry_dsn:
        logger.info("ℹ️  Sentry not configured (SENTRY_DSN not set)")
        return

    try:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.logging import LoggingIntegration

        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            traces_sample_rate=0.1,  # 10% of requests for performance monitoring
            send_default_pii=False,  # webhook headers carry signatures
            integrations=[
                FastApiIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)
            ]
        )
        logger.info("✅ Sentry error tracking initialized")
    except Exception as e:
        logger.warning(f"⚠️  Failed to initialize Sentry: {e}")


# ============================================================================
# APP FACTORY
# ============================================================================

def create_app(
    settings: Optional[Settings] = None,
    sync_config: Optional[SyncConfig] = None,
    supabase_client=None,
    registry: Optional[ConnectorRegistry] = None,
) -> FastAPI:
    """
    Build the FastAPI app.

    Everything that is loaded once per process (app instances, connector
    registry, Supabase client) is created in the lifespan and kept on
    app.state. Tests pass prebuilt pieces in.
    """
    settings = settings or get_settings()
    configure_logging(settings)
    init_sentry(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan event handler for startup and shutdown."""
        logger.info("=" * 80)
        logger.info("Starting SaaSync")
        logger.info("=" * 80)
        logger.info(f"Version: {__version__}")
        logger.info(f"Environment: {settings.environment}")
        logger.info(f"Port: {settings.port}")

        client = await initialize_clients(settings, client=supabase_client)
        app.state.sync_config = sync_config if sync_config is not None else load_sync_config(settings.apps_config_path)
        app.state.connectors = (
            registry if registry is not None else build_connector_registry(EntityStore(client, settings.db_schema))
        )

        logger.info(f"📦 {len(app.state.sync_config.apps)} app instance(s) loaded")
        logger.info(f"🔌 Connectors: {', '.join(app.state.connectors.names()) or 'none'}")
        logger.info("=" * 80)
        logger.info("✅ SaaSync started successfully")
        logger.info("=" * 80)

        yield

        logger.info("Shutting down SaaSync...")
        await shutdown_clients()
        logger.info("✅ Shutdown complete")

    app = FastAPI(
        title="SaaSync API",
        description="Webhook ingestion and pull sync for SaaS providers",
        version=__version__,
        docs_url="/docs" if settings.debug else None,  # Disable docs in production
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan
    )

    # ============================================================================
    # RATE LIMITING
    # ============================================================================

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    # ============================================================================
    # MIDDLEWARE (order matters!)
    # ============================================================================

    app.add_middleware(SecurityHeadersMiddleware, environment=settings.environment)

    cors_middleware, cors_config = get_cors_middleware(settings)
    app.add_middleware(cors_middleware, **cors_config)

    app.add_middleware(RequestLoggingMiddleware)

    # Global error handler (added last = outermost)
    app.add_middleware(ErrorHandlerMiddleware)

    # ============================================================================
    # ROUTES
    # ============================================================================

    app.include_router(health_router)
    app.include_router(webhook_router)
    app.include_router(sync_router)
    app.include_router(worker_router)

    return app


# ============================================================================
# MAIN
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host="0.0.0.0",
        port=settings.port,
        log_level="info"
    )
