"""
Dramatiq Background Worker
Runs sync job tasks and job maintenance outside the API process

Usage:
    dramatiq worker -p 2 -t 1

Maintenance (cron, every few minutes):
    python -c "from worker import sweep_sync_jobs; sweep_sync_jobs.send()"

Environment: same as the API (SUPABASE_URL, SUPABASE_SERVICE_KEY, REDIS_URL, ...)
"""
import logging
import os

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Initialize Sentry for error tracking (if configured)
sentry_dsn = os.getenv("SENTRY_DSN")
if sentry_dsn:
    try:
        import sentry_sdk
        from sentry_sdk.integrations.logging import LoggingIntegration

        sentry_sdk.init(
            dsn=sentry_dsn,
            environment=os.getenv("ENVIRONMENT", "production"),
            traces_sample_rate=0.1,
            integrations=[
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)
            ]
        )
        logger.info("✅ Sentry initialized in worker")
    except Exception as e:
        logger.warning(f"⚠️  Failed to initialize Sentry in worker: {e}")
else:
    logger.info("ℹ️  Sentry not configured (SENTRY_DSN not set)")

# Import tasks (this registers them with Dramatiq)
try:
    from saasync.services.jobs.broker import broker  # noqa: F401
    from saasync.services.jobs.tasks import run_sync_worker, sweep_sync_jobs  # noqa: F401

    logger.info("✅ SaaSync worker initialized")
    logger.info("📋 Registered tasks: run_sync_worker, sweep_sync_jobs")

except Exception as e:
    logger.error(f"❌ Failed to initialize worker: {e}", exc_info=True)
    raise
